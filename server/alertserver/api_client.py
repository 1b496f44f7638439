from __future__ import annotations

import asyncio
import functools
import logging
import os
from typing import Any

import certifi
import requests

from alertserver.errors import AnalysisError
from alertserver.protocol import AlarmNotification, ThreatVerdict

ANALYSIS_ENDPOINT = "/analysis"
ALARM_ENDPOINT = "/alarm"


def _ca_bundle() -> str:
    cafile = (os.environ.get("SSL_CERT_FILE") or os.environ.get("REQUESTS_CA_BUNDLE") or "").strip()
    return cafile or certifi.where()


class ThreatApiClient:
    """Blocking `requests` calls pushed onto the loop's executor."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._timeout_s = float(max(0.1, timeout_s))
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        self._verify = _ca_bundle()
        self._logger = logger or logging.getLogger("alertserver.api")

    @property
    def base_url(self) -> str:
        return self._base_url

    async def analyze(self, text: str) -> ThreatVerdict:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._analyze_sync, text))

    async def send_alarm(self, notification: AlarmNotification) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._send_alarm_sync, notification))

    def close(self) -> None:
        self._session.close()

    def _post(self, endpoint: str, payload: dict[str, Any]) -> requests.Response:
        url = f"{self._base_url}{endpoint}"
        kwargs: dict[str, Any] = {"json": payload, "timeout": self._timeout_s}
        if url.startswith("https://"):
            kwargs["verify"] = self._verify
        return self._session.post(url, **kwargs)

    def _analyze_sync(self, text: str) -> ThreatVerdict:
        try:
            resp = self._post(ANALYSIS_ENDPOINT, {"text": text})
        except requests.RequestException as e:
            raise AnalysisError(f"analysis request failed: {type(e).__name__}: {e}") from e
        if resp.status_code != 200:
            raise AnalysisError(f"analysis call failed with response code: {resp.status_code}")
        try:
            return ThreatVerdict.from_json(resp.json())
        except ValueError as e:
            raise AnalysisError(f"malformed analysis response: {e}") from e

    def _send_alarm_sync(self, notification: AlarmNotification) -> bool:
        try:
            resp = self._post(ALARM_ENDPOINT, notification.to_json())
        except requests.RequestException as e:
            self._logger.warning("Alarm notification failed: %s (%s)", e, type(e).__name__)
            return False
        ok = resp.status_code in (200, 201)
        if not ok:
            self._logger.warning("Alarm notification rejected status=%s", resp.status_code)
        return ok

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_API_BASE_URL = "http://192.168.1.70:8000"


def _parse_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None:
        return bool(default)
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_float(raw: str | None, default: float, lo: float = 0.0) -> float:
    if raw is None or not raw.strip():
        return float(default)
    return max(lo, float(raw))


def _parse_urls(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(u.strip() for u in raw.split(",") if u.strip())


@dataclass(frozen=True, slots=True)
class AlertConfig:
    api_base_url: str = DEFAULT_API_BASE_URL
    http_timeout_s: float = 10.0
    analysis_interval_s: float = 20.0
    recording_duration_s: float = 20.0
    finalize_timeout_s: float = 3.0
    recording_settle_s: float = 0.3
    strobe_period_s: float = 0.5
    camera_bind_timeout_s: float = 10.0
    stop_alarm_on_evidence: bool = False
    default_mode: str = "manual"
    external_haptics: bool = False
    external_haptics_urls: tuple[str, ...] = field(default_factory=tuple)
    external_haptics_format: str = "csv"

    @classmethod
    def from_env(cls) -> "AlertConfig":
        env = os.environ
        mode = (env.get("DEFAULT_MODE") or "manual").strip().lower()
        if mode not in ("manual", "automatic"):
            mode = "manual"
        return cls(
            api_base_url=(env.get("ANALYSIS_API_URL") or DEFAULT_API_BASE_URL).strip().rstrip("/"),
            http_timeout_s=_parse_float(env.get("HTTP_TIMEOUT_S"), 10.0, lo=0.1),
            analysis_interval_s=_parse_float(env.get("ANALYSIS_INTERVAL_S"), 20.0, lo=0.01),
            recording_duration_s=_parse_float(env.get("RECORDING_DURATION_S"), 20.0),
            finalize_timeout_s=_parse_float(env.get("FINALIZE_TIMEOUT_S"), 3.0),
            recording_settle_s=min(_parse_float(env.get("RECORDING_SETTLE_S"), 0.3), 2.0),
            strobe_period_s=_parse_float(env.get("STROBE_PERIOD_S"), 0.5, lo=0.05),
            camera_bind_timeout_s=_parse_float(env.get("CAMERA_BIND_TIMEOUT_S"), 10.0, lo=0.1),
            stop_alarm_on_evidence=_parse_bool(env.get("STOP_ALARM_ON_EVIDENCE"), default=False),
            default_mode=mode,
            external_haptics=_parse_bool(env.get("EXTERNAL_HAPTICS"), default=False),
            external_haptics_urls=_parse_urls(env.get("EXTERNAL_HAPTICS_URLS")),
            external_haptics_format=(env.get("EXTERNAL_HAPTICS_FORMAT") or "csv").strip().lower(),
        )

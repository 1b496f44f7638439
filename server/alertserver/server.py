from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import websockets
from websockets.asyncio.server import ServerConnection

from alertserver.alarm import AlarmController, RemoteAlarmEffects
from alertserver.api_client import ThreatApiClient
from alertserver.config import AlertConfig
from alertserver.coordinator import (
    LocationUpdate,
    ManualTrigger,
    ModeChange,
    ResetTranscript,
    SpeechEnded,
    SpeechError,
    SpeechFinal,
    SpeechPartial,
    StopAlarm,
    ThreatResponseCoordinator,
)
from alertserver.haptics import HapticsLink
from alertserver.logging_utils import setup_logging
from alertserver.protocol import dumps, loads
from alertserver.recording import EvidenceSession, RemoteCamera
from alertserver.scheduler import OperationMode


@dataclass(slots=True)
class PhoneClientInfo:
    v: int | None
    client: str | None
    model: str | None
    sdk_int: int | None
    last_seen_monotonic: float


class AlertServer:
    def __init__(
        self,
        host: str,
        port: int,
        log_level: str = "INFO",
        *,
        config: AlertConfig | None = None,
        api: Any = None,
    ) -> None:
        setup_logging(log_level)
        self._logger = logging.getLogger("alertserver")

        self._host = host
        self._port = port
        self._config = config or AlertConfig.from_env()

        self._events_conns: set[ServerConnection] = set()
        self._stt_conns: set[ServerConnection] = set()
        self._camera_conn: ServerConnection | None = None
        self._client_info: dict[ServerConnection, PhoneClientInfo] = {}

        self._haptics: list[HapticsLink] = []
        if self._config.external_haptics:
            for i, url in enumerate(self._config.external_haptics_urls):
                self._haptics.append(
                    HapticsLink(
                        name=f"h{i}",
                        url=url,
                        payload_format=self._config.external_haptics_format,
                        logger=self._logger.getChild("haptics"),
                    )
                )

        self._api = api or ThreatApiClient(
            self._config.api_base_url,
            timeout_s=self._config.http_timeout_s,
            logger=self._logger.getChild("api"),
        )
        self._camera = RemoteCamera(
            bind_timeout_s=self._config.camera_bind_timeout_s,
            logger=self._logger.getChild("camera"),
        )
        self._alarm = AlarmController(
            RemoteAlarmEffects(self._broadcast_events, self._haptics),
            strobe_period_s=self._config.strobe_period_s,
            logger=self._logger.getChild("alarm"),
        )
        self._evidence = EvidenceSession(
            self._camera,
            settle_s=self._config.recording_settle_s,
            logger=self._logger.getChild("recording"),
        )
        self.coordinator = ThreatResponseCoordinator(
            self._api,
            self._alarm,
            self._evidence,
            config=self._config,
            on_change=self._broadcast_events,
            restart_listening=self._restart_listening,
            logger=self._logger.getChild("coordinator"),
        )

        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        self._logger.info("Starting server on %s:%s (analysis api %s)", self._host, self._port, self._config.api_base_url)
        tasks: list[asyncio.Task[None]] = [
            asyncio.create_task(self.coordinator.run(self._stop), name="coordinator"),
            asyncio.create_task(self._status_loop(), name="status_loop"),
        ]
        for link in self._haptics:
            tasks.append(asyncio.create_task(link.run(self._stop), name=f"haptics_{link.url}"))
        if not self._haptics:
            self._logger.info("External haptics disabled (set EXTERNAL_HAPTICS=1 and EXTERNAL_HAPTICS_URLS)")
        try:
            async with websockets.serve(self._route, self._host, self._port, max_size=1024 * 1024):
                await self._stop.wait()
        finally:
            self._stop.set()
            # Let the coordinator tear down (alarm off, camera released) before cancelling.
            await asyncio.wait({tasks[0]}, timeout=5.0)
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            close = getattr(self._api, "close", None)
            if close is not None:
                close()

    async def _route(self, conn: ServerConnection) -> None:
        raw_path = conn.request.path
        path = urlparse(raw_path).path

        if path == "/events":
            await self._handle_events(conn)
            return
        if path == "/stt":
            await self._handle_stt(conn)
            return
        if path == "/camera":
            await self._handle_camera(conn)
            return

        self._logger.warning("Unknown websocket path %s from %s", raw_path, conn.remote_address)
        await conn.close(code=1008, reason="Unknown path")

    async def _handle_events(self, conn: ServerConnection) -> None:
        self._events_conns.add(conn)
        self._logger.info("Phone /events connected from %s", conn.remote_address)
        self._client_info[conn] = PhoneClientInfo(
            v=None,
            client=None,
            model=None,
            sdk_int=None,
            last_seen_monotonic=asyncio.get_running_loop().time(),
        )
        try:
            await conn.send(dumps({"type": "status", "server": "connected"}))
            await conn.send(dumps(self.coordinator.snapshot()))
            async for msg in conn:
                if not isinstance(msg, str):
                    continue
                try:
                    obj = loads(msg)
                except Exception:
                    continue
                if not isinstance(obj, dict):
                    continue
                info = self._client_info.get(conn)
                if info is not None:
                    info.last_seen_monotonic = asyncio.get_running_loop().time()
                await self._on_events_message(conn, obj, info)
        finally:
            self._events_conns.discard(conn)
            self._client_info.pop(conn, None)
            self._logger.info("Phone /events disconnected from %s", conn.remote_address)

    async def _on_events_message(self, conn: ServerConnection, obj: dict[str, Any], info: PhoneClientInfo | None) -> None:
        msg_type = obj.get("type")
        if msg_type == "hello":
            if info is None:
                return
            try:
                if obj.get("v") is not None:
                    info.v = int(obj.get("v"))
                if obj.get("client") is not None:
                    info.client = str(obj.get("client"))
                if obj.get("model") is not None:
                    info.model = str(obj.get("model"))
                if obj.get("sdkInt") is not None:
                    info.sdk_int = int(obj.get("sdkInt"))
            except (TypeError, ValueError):
                self._logger.debug("Malformed hello from %s", conn.remote_address)
        elif msg_type == "mode.set":
            try:
                mode = OperationMode(str(obj.get("mode") or "").strip().lower())
            except ValueError:
                await conn.send(dumps({"type": "error", "message": f"unknown mode {obj.get('mode')!r}"}))
                return
            self.coordinator.post(ModeChange(mode))
        elif msg_type == "analyze":
            self.coordinator.post(ManualTrigger())
        elif msg_type == "alarm.stop":
            self.coordinator.post(StopAlarm())
        elif msg_type == "transcript.reset":
            self.coordinator.post(ResetTranscript())
        elif msg_type == "location.update":
            self.coordinator.post(LocationUpdate(str(obj.get("location") or "")))
        elif msg_type == "state.get":
            await conn.send(dumps(self.coordinator.snapshot()))
        else:
            self._logger.debug("Ignoring /events message type=%s", msg_type)

    async def _handle_stt(self, conn: ServerConnection) -> None:
        self._stt_conns.add(conn)
        self._logger.info("Phone /stt connected from %s", conn.remote_address)
        try:
            async for msg in conn:
                if not isinstance(msg, str):
                    continue
                try:
                    obj = loads(msg)
                except Exception:
                    continue
                if not isinstance(obj, dict):
                    continue
                msg_type = obj.get("type")
                if msg_type == "partial":
                    self.coordinator.post(SpeechPartial(str(obj.get("text") or "")))
                elif msg_type == "final":
                    self.coordinator.post(SpeechFinal(str(obj.get("text") or "")))
                elif msg_type == "end":
                    self.coordinator.post(SpeechEnded())
                elif msg_type == "error":
                    self.coordinator.post(SpeechError(str(obj.get("code") or "")))
        finally:
            self._stt_conns.discard(conn)
            self._logger.info("Phone /stt disconnected from %s", conn.remote_address)

    async def _handle_camera(self, conn: ServerConnection) -> None:
        previous = self._camera_conn
        if previous is not None:
            self._logger.warning("Replacing camera client %s with %s", previous.remote_address, conn.remote_address)
            self._camera.detach()
            await previous.close(code=1000, reason="Replaced")
        self._camera_conn = conn
        self._logger.info("Camera connected from %s", conn.remote_address)

        async def send(obj: dict[str, Any]) -> None:
            await conn.send(dumps(obj))

        self._camera.attach(send)
        try:
            async for msg in conn:
                if not isinstance(msg, str):
                    continue
                try:
                    obj = loads(msg)
                except Exception:
                    continue
                if isinstance(obj, dict):
                    self._camera.handle_message(obj)
        finally:
            if self._camera_conn is conn:
                self._camera_conn = None
                self._camera.detach()
            self._logger.info("Camera disconnected from %s", conn.remote_address)

    async def _restart_listening(self) -> None:
        await self._broadcast(self._stt_conns, dumps({"type": "listen.restart"}))

    async def _broadcast_events(self, obj: dict[str, Any]) -> None:
        if not self._events_conns:
            return
        await self._broadcast(self._events_conns, dumps(obj))

    async def _broadcast(self, conns: set[ServerConnection], payload: str) -> None:
        dead: list[ServerConnection] = []
        for c in list(conns):
            try:
                await c.send(payload)
            except Exception:
                dead.append(c)
        for c in dead:
            conns.discard(c)

    def _build_status_payload(self, now: float) -> dict[str, Any]:
        clients = [
            {
                "v": info.v,
                "client": info.client,
                "model": info.model,
                "sdkInt": info.sdk_int,
                "ageS": float(max(0.0, now - info.last_seen_monotonic)),
            }
            for info in list(self._client_info.values())
        ]
        return {
            "type": "status",
            "server": "ok",
            "phone": {
                "eventsClients": len(self._events_conns),
                "sttClients": len(self._stt_conns),
                "cameraAttached": self._camera.attached,
                "clients": clients,
            },
            "coordinator": {
                "state": self.coordinator.state.value,
                "mode": self.coordinator.scheduler.mode.value,
                "timerPending": self.coordinator.scheduler.timer_pending,
                "pendingEvents": self.coordinator.events.qsize(),
            },
            "externalHaptics": [{"url": h.url, "connected": h.connected, "playing": h.playing} for h in self._haptics],
        }

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(1.0)
            now = asyncio.get_running_loop().time()
            await self._broadcast_events(self._build_status_payload(now))

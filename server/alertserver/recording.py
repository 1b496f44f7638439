from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from alertserver.errors import (
    CameraBindFailure,
    ConcurrentOperationRejected,
    PermissionDenied,
    RecordingFinalizeError,
)

ResultCallback = Callable[[str | None], None]


class RecordingState(str, Enum):
    IDLE = "idle"
    BINDING = "binding"
    RECORDING = "recording"
    FINALIZING = "finalizing"


class CameraBackend:
    """Preview + video capture pipeline.

    `start` hands over a callback that must be invoked exactly once, on the
    event loop, with the artifact URI or None when finalization failed.
    """

    async def bind(self) -> None:
        raise NotImplementedError

    async def start(self, on_result: ResultCallback) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError

    async def unbind(self) -> None:
        raise NotImplementedError


def _display_name(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return "kuntur_video_" + now.strftime("%Y%m%d_%H%M%S_") + f"{now.microsecond // 1000:03d}"


class RemoteCamera(CameraBackend):
    """Camera owned by the phone, driven over the /camera websocket."""

    def __init__(self, *, bind_timeout_s: float = 10.0, logger: logging.Logger | None = None) -> None:
        self._bind_timeout_s = float(max(0.1, bind_timeout_s))
        self._logger = logger or logging.getLogger("alertserver.camera")
        self._send: Callable[[dict[str, Any]], Awaitable[None]] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._on_result: ResultCallback | None = None

    @property
    def attached(self) -> bool:
        return self._send is not None

    def attach(self, send: Callable[[dict[str, Any]], Awaitable[None]]) -> None:
        self._send = send

    def detach(self) -> None:
        self._send = None
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(CameraBindFailure("camera client disconnected"))
        self._deliver(None)

    async def bind(self) -> None:
        send = self._require_send()
        self._ready = asyncio.get_running_loop().create_future()
        await send({"type": "camera.bind"})
        try:
            await asyncio.wait_for(self._ready, timeout=self._bind_timeout_s)
        except asyncio.TimeoutError as e:
            raise CameraBindFailure(f"camera did not become ready within {self._bind_timeout_s:.1f}s") from e
        finally:
            self._ready = None

    async def start(self, on_result: ResultCallback) -> None:
        send = self._require_send()
        self._on_result = on_result
        await send({"type": "camera.start", "displayName": _display_name()})

    async def stop(self) -> None:
        await self._require_send()({"type": "camera.stop"})

    async def unbind(self) -> None:
        if self._send is not None:
            await self._send({"type": "camera.unbind"})

    def handle_message(self, obj: dict[str, Any]) -> None:
        msg_type = obj.get("type")
        if msg_type == "camera.ready":
            if self._ready is not None and not self._ready.done():
                self._ready.set_result(None)
        elif msg_type == "camera.bind_failed":
            if self._ready is not None and not self._ready.done():
                reason = str(obj.get("reason") or "")
                exc: Exception
                if reason == "permission":
                    exc = PermissionDenied("camera permission denied")
                else:
                    exc = CameraBindFailure(reason or "bind failed")
                self._ready.set_exception(exc)
        elif msg_type == "camera.finalized":
            uri = obj.get("uri") if not obj.get("error") else None
            if obj.get("error"):
                self._logger.warning("Camera reported finalize error: %s", obj.get("error"))
            self._deliver(str(uri) if uri else None)
        else:
            self._logger.debug("Ignoring camera message type=%s", msg_type)

    def _deliver(self, uri: str | None) -> None:
        cb = self._on_result
        self._on_result = None
        if cb is not None:
            cb(uri)

    def _require_send(self) -> Callable[[dict[str, Any]], Awaitable[None]]:
        if self._send is None:
            raise CameraBindFailure("no camera client connected")
        return self._send


class EvidenceSession:
    """Single video capture bound to one camera; at most one recording at a time.

    The session never stops itself: whoever calls `start` owns the duration
    timer and calls `stop`.
    """

    def __init__(
        self,
        camera: CameraBackend,
        *,
        settle_s: float = 0.3,
        logger: logging.Logger | None = None,
    ) -> None:
        self._camera = camera
        self._settle_s = float(min(max(0.0, settle_s), 2.0))
        self._logger = logger or logging.getLogger("alertserver.recording")

        self.state = RecordingState.IDLE
        self.bound = False
        self.started_at: float | None = None
        self.artifact_ref: str | None = None
        self.last_error: Exception | None = None

        self._on_result: ResultCallback | None = None
        self._finalized: asyncio.Future[str | None] | None = None
        self._idle_since: float | None = None
        self._attempt = 0

    @property
    def recording(self) -> bool:
        return self.state is RecordingState.RECORDING

    async def bind(self) -> bool:
        if self.state is not RecordingState.IDLE:
            self._logger.warning("Bind rejected in state=%s", self.state.value)
            return False
        if self.bound:
            return True
        self.state = RecordingState.BINDING
        try:
            await self._camera.bind()
            self.bound = True
            self._logger.info("Camera bound")
        except (CameraBindFailure, PermissionDenied) as e:
            self.last_error = e
            self._logger.warning("Camera bind failed: %s (%s)", e, type(e).__name__)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = CameraBindFailure(str(e))
            self._logger.exception("Camera bind failed")
        finally:
            self.state = RecordingState.IDLE
        return self.bound

    async def start(self, on_result: ResultCallback | None = None, *, abort: asyncio.Event | None = None) -> bool:
        try:
            self._require_startable()
            wait_s = self._settle_remaining()
            if wait_s > 0:
                await asyncio.sleep(wait_s)
                self._require_startable()
        except ConcurrentOperationRejected as e:
            self._logger.warning("Recording start rejected: %s", e)
            return False
        if abort is not None and abort.is_set():
            self._logger.info("Recording start abandoned")
            return False

        self.state = RecordingState.RECORDING
        self.started_at = time.time()
        self.artifact_ref = None
        self.last_error = None
        self._on_result = on_result
        self._finalized = asyncio.get_running_loop().create_future()
        self._attempt += 1
        attempt = self._attempt

        def on_camera_result(uri: str | None) -> None:
            if attempt != self._attempt:
                self._logger.debug("Stale camera result ignored uri=%s", uri)
                return
            self._on_camera_result(uri)

        try:
            await self._camera.start(on_camera_result)
        except asyncio.CancelledError:
            self._on_camera_result(None)
            raise
        except Exception as e:
            self._logger.exception("Recording failed to start")
            self._finish(None, RecordingFinalizeError(str(e)))
            return False
        self._logger.info("Recording started")
        return True

    async def stop(self) -> bool:
        if self.state is not RecordingState.RECORDING:
            if self.state is RecordingState.FINALIZING:
                self._logger.debug("Stop requested while finalizing")
            return False
        self.state = RecordingState.FINALIZING
        self._logger.info("Stopping recording")
        try:
            await self._camera.stop()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.exception("Error stopping recording")
            self._finish(None, RecordingFinalizeError(str(e)))
        return True

    async def wait_finalized(self, timeout_s: float) -> str | None:
        fut = self._finalized
        if fut is None or self.state is RecordingState.IDLE:
            return self.artifact_ref
        try:
            return await asyncio.wait_for(asyncio.shield(fut), timeout=timeout_s)
        except asyncio.TimeoutError:
            self._logger.warning("Recording not finalized within %.1fs", timeout_s)
            if fut is self._finalized and self.state is RecordingState.FINALIZING:
                self._finish(None, RecordingFinalizeError("finalize timed out"))
            return None

    async def unbind(self) -> None:
        if self.state is RecordingState.RECORDING:
            await self.stop()
        if not self.bound:
            return
        self.bound = False
        try:
            await self._camera.unbind()
            self._logger.info("Camera released")
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("Error releasing camera")

    def _require_startable(self) -> None:
        if self.state in (RecordingState.RECORDING, RecordingState.FINALIZING):
            raise ConcurrentOperationRejected(f"a recording is already {self.state.value}")
        if self.state is not RecordingState.IDLE or not self.bound:
            raise ConcurrentOperationRejected(f"camera not ready (state={self.state.value}, bound={self.bound})")

    def _settle_remaining(self) -> float:
        if self._idle_since is None:
            return 0.0
        return max(0.0, self._settle_s - (time.monotonic() - self._idle_since))

    def _on_camera_result(self, uri: str | None) -> None:
        if self.state not in (RecordingState.RECORDING, RecordingState.FINALIZING):
            self._logger.debug("Late camera result ignored uri=%s", uri)
            return
        if uri:
            self._finish(uri, None)
        else:
            self._finish(None, RecordingFinalizeError("recording produced no artifact"))

    def _finish(self, uri: str | None, error: Exception | None) -> None:
        self.state = RecordingState.IDLE
        self.artifact_ref = uri
        self.last_error = error
        self._idle_since = time.monotonic()
        if error is not None:
            self._logger.warning("Recording finished without artifact: %s", error)
        else:
            self._logger.info("Video saved: %s", uri)

        fut = self._finalized
        if fut is not None and not fut.done():
            fut.set_result(uri)

        cb = self._on_result
        self._on_result = None
        if cb is not None:
            try:
                cb(uri)
            except Exception:
                self._logger.exception("Recording result callback failed")

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from alertserver.alarm import AlarmController
from alertserver.config import AlertConfig
from alertserver.logging_utils import preview
from alertserver.protocol import AlarmNotification, ThreatVerdict
from alertserver.recording import EvidenceSession
from alertserver.registry import VideoRegistry
from alertserver.scheduler import AnalysisScheduler, OperationMode
from alertserver.transcript import TranscriptBuffer

UNKNOWN_LOCATION = "unavailable"


class CoordinatorState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    ALARMED = "alarmed"


@dataclass(frozen=True, slots=True)
class SpeechPartial:
    text: str


@dataclass(frozen=True, slots=True)
class SpeechFinal:
    text: str


@dataclass(frozen=True, slots=True)
class SpeechEnded:
    pass


@dataclass(frozen=True, slots=True)
class SpeechError:
    code: str = ""


@dataclass(frozen=True, slots=True)
class ModeChange:
    mode: OperationMode


@dataclass(frozen=True, slots=True)
class ManualTrigger:
    pass


@dataclass(frozen=True, slots=True)
class StopAlarm:
    pass


@dataclass(frozen=True, slots=True)
class ResetTranscript:
    pass


@dataclass(frozen=True, slots=True)
class LocationUpdate:
    location: str


Event = Union[
    SpeechPartial,
    SpeechFinal,
    SpeechEnded,
    SpeechError,
    ModeChange,
    ManualTrigger,
    StopAlarm,
    ResetTranscript,
    LocationUpdate,
]


class ThreatResponseCoordinator:
    """Idle -> Analyzing -> (Idle | Alarmed) -> Idle.

    Every mutation happens on the event loop; platform callbacks arrive as
    events through `post()` and are applied in order by `run()`.
    """

    def __init__(
        self,
        api: Any,
        alarm: AlarmController,
        evidence: EvidenceSession,
        *,
        config: AlertConfig | None = None,
        transcript: TranscriptBuffer | None = None,
        registry: VideoRegistry | None = None,
        on_change: Callable[[dict[str, Any]], Awaitable[None]] | None = None,
        restart_listening: Callable[[], Awaitable[None]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or AlertConfig()
        self._logger = logger or logging.getLogger("alertserver.coordinator")
        self._api = api
        self._alarm = alarm
        self._evidence = evidence
        self._on_change = on_change
        self._restart_listening = restart_listening

        self.transcript = transcript or TranscriptBuffer()
        self.registry = registry or VideoRegistry()
        self.scheduler = AnalysisScheduler(
            self.transcript,
            self._submit,
            interval_s=self._config.analysis_interval_s,
            logger=self._logger.getChild("scheduler"),
        )

        self.state = CoordinatorState.IDLE
        self.verdict: ThreatVerdict | None = None
        self.location = UNKNOWN_LOCATION
        self.events: asyncio.Queue[Event] = asyncio.Queue()

        self._analysis_task: asyncio.Task[None] | None = None
        self._evidence_task: asyncio.Task[None] | None = None
        self._evidence_stop = asyncio.Event()

    def post(self, event: Event) -> None:
        self.events.put_nowait(event)

    async def run(self, stop: asyncio.Event) -> None:
        self.scheduler.set_mode(self._config.default_mode)
        try:
            while not stop.is_set():
                try:
                    event = await asyncio.wait_for(self.events.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                try:
                    await self.handle(event)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self._logger.exception("Failed to handle %s", type(event).__name__)
        finally:
            await self.close()

    async def handle(self, event: Event) -> Any:
        if isinstance(event, SpeechPartial):
            self.transcript.on_partial(event.text)
            await self._notify()
        elif isinstance(event, SpeechFinal):
            self.transcript.on_final(event.text)
            await self._notify()
        elif isinstance(event, (SpeechEnded, SpeechError)):
            if isinstance(event, SpeechError):
                self._logger.info("Speech engine error code=%s; restarting listener", event.code)
            if self._restart_listening is not None:
                await self._restart_listening()
        elif isinstance(event, ModeChange):
            self.scheduler.set_mode(event.mode)
            await self._notify()
        elif isinstance(event, ManualTrigger):
            result = self.scheduler.on_manual_trigger()
            await self._emit({"type": "analyze", "result": result.value})
            await self._notify()
            return result
        elif isinstance(event, StopAlarm):
            return await self.stop_alarm()
        elif isinstance(event, ResetTranscript):
            self.transcript.reset()
            await self._notify()
        elif isinstance(event, LocationUpdate):
            self.location = event.location or UNKNOWN_LOCATION
        else:
            self._logger.warning("Unknown event %r", event)
        return None

    async def stop_alarm(self) -> bool:
        if self.state is not CoordinatorState.ALARMED:
            self._logger.debug("Stop alarm requested in state=%s", self.state.value)
            return False
        self._logger.warning("Alarm stop requested")
        self.state = CoordinatorState.IDLE
        await self._alarm.stop()
        self._evidence_stop.set()
        # Finalization completes on its own; the evidence task logs the outcome.
        await self._evidence.stop()
        await self._notify()
        return True

    async def close(self) -> None:
        self.scheduler.close()
        tasks = [t for t in (self._analysis_task, self._evidence_task) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._alarm.stop()
        self.state = CoordinatorState.IDLE

    def snapshot(self) -> dict[str, Any]:
        return {
            "type": "state",
            "state": self.state.value,
            "mode": self.scheduler.mode.value,
            "transcript": self.transcript.text,
            "verdict": self.verdict.to_json() if self.verdict is not None else None,
            "alarmActive": self._alarm.active,
            "recording": self._evidence.state.value,
            "location": self.location,
            "videos": [{"uri": v.uri, "name": v.name} for v in self.registry.videos],
        }

    def _submit(self, source: str) -> bool:
        if self.state is not CoordinatorState.IDLE:
            return False
        text = self.transcript.snapshot()
        if not text.strip():
            return False
        self.state = CoordinatorState.ANALYZING
        self._logger.info("Analysis started source=%s text=%s", source, preview(text))
        self._analysis_task = asyncio.get_running_loop().create_task(self._analyze(text), name="threat_analysis")
        return True

    async def _analyze(self, text: str) -> None:
        try:
            verdict = await asyncio.wait_for(self._api.analyze(text), timeout=self._config.http_timeout_s + 1.0)
        except asyncio.CancelledError:
            self.state = CoordinatorState.IDLE
            raise
        except asyncio.TimeoutError:
            self._logger.warning("Threat analysis timed out")
            self.state = CoordinatorState.IDLE
            await self._notify()
            return
        except Exception as e:
            self._logger.warning("Threat analysis failed: %s (%s)", e, type(e).__name__)
            self.state = CoordinatorState.IDLE
            await self._notify()
            return

        self.verdict = verdict
        self._logger.warning("Threat detection threat=%s type=%s", verdict.confirmed, verdict.threat_type)
        if not verdict.confirmed:
            self.state = CoordinatorState.IDLE
            await self._notify()
            return
        await self._enter_alarm(verdict)

    async def _enter_alarm(self, verdict: ThreatVerdict) -> None:
        self.state = CoordinatorState.ALARMED
        self._evidence_stop = asyncio.Event()
        previous = self._evidence_task
        self._evidence_task = asyncio.get_running_loop().create_task(
            self._evidence_workflow(verdict, previous, self._evidence_stop), name="evidence_session"
        )
        await self._alarm.start()
        await self._notify()

    async def _evidence_workflow(
        self,
        verdict: ThreatVerdict,
        previous: asyncio.Task[None] | None,
        stop_requested: asyncio.Event,
    ) -> None:
        if previous is not None and not previous.done():
            # An earlier session may still be finalizing; the camera is exclusive.
            await asyncio.wait({previous}, timeout=self._config.finalize_timeout_s + self._config.recording_settle_s)

        uri: str | None = None
        try:
            if not await self._evidence.bind():
                self._logger.warning("Camera unavailable; continuing without evidence")
            elif stop_requested.is_set():
                self._logger.info("Alarm stopped before recording started; skipping evidence")
            elif await self._evidence.start(abort=stop_requested):
                await self._notify()
                try:
                    await asyncio.wait_for(stop_requested.wait(), timeout=self._config.recording_duration_s)
                except asyncio.TimeoutError:
                    self._logger.info("Recording time completed (%.0fs)", self._config.recording_duration_s)
                await self._evidence.stop()
                uri = await self._evidence.wait_finalized(self._config.finalize_timeout_s)
                if uri:
                    self.registry.add(uri)
        finally:
            await self._evidence.unbind()

        notification = AlarmNotification.build(verdict, location=self.location, video_url=uri or "")
        try:
            sent = await self._api.send_alarm(notification)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("Alarm notification failed")
            sent = False
        self._logger.info("Alarm notification sent=%s video=%s", sent, uri)

        current = self._evidence_task is asyncio.current_task()
        if self._config.stop_alarm_on_evidence and current and self.state is CoordinatorState.ALARMED:
            await self.stop_alarm()
        else:
            await self._notify()

    async def _notify(self) -> None:
        await self._emit(self.snapshot())

    async def _emit(self, obj: dict[str, Any]) -> None:
        if self._on_change is None:
            return
        try:
            await self._on_change(obj)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("State listener failed")

from __future__ import annotations

import asyncio
from typing import Any, Callable, Sequence

from alertserver.alarm import AlarmController, AlarmEffects
from alertserver.config import AlertConfig
from alertserver.coordinator import ThreatResponseCoordinator
from alertserver.protocol import AlarmNotification, ThreatVerdict
from alertserver.recording import CameraBackend, EvidenceSession

THREAT = ThreatVerdict(keyword="fire", threat_type="incendio", is_threat="SI", justification="mentions a fire")
NO_THREAT = ThreatVerdict(keyword="", threat_type="none", is_threat="NO", justification="small talk")

FAST = dict(
    analysis_interval_s=0.05,
    recording_duration_s=0.05,
    finalize_timeout_s=0.5,
    recording_settle_s=0.0,
    strobe_period_s=0.01,
    http_timeout_s=0.5,
)


async def until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeEffects(AlarmEffects):
    def __init__(self, fail: Sequence[str] = (), torch_delay_s: float = 0.0) -> None:
        self.calls: list[str] = []
        self.torch_on = False
        self.torch_commands: list[bool] = []
        self._fail = set(fail)
        self._torch_delay_s = torch_delay_s

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self._fail:
            raise RuntimeError(f"{name} failed")

    async def start_siren(self) -> None:
        self._record("start_siren")

    async def stop_siren(self) -> None:
        self._record("stop_siren")

    async def start_vibration(self, timings_ms: Sequence[int], amplitudes: Sequence[int]) -> None:
        self._record("start_vibration")

    async def cancel_vibration(self) -> None:
        self._record("cancel_vibration")

    async def set_torch(self, on: bool) -> None:
        self.torch_commands.append(on)
        self.torch_on = on
        self._record("set_torch")
        if self._torch_delay_s:
            await asyncio.sleep(self._torch_delay_s)


class FakeCamera(CameraBackend):
    def __init__(self, uri: str | None = "content://video/123", bind_error: Exception | None = None) -> None:
        self.uri = uri
        self.bind_error = bind_error
        self.bind_delay_s = 0.0
        self.finalize_on_stop = True
        self.binds = 0
        self.starts = 0
        self.stops = 0
        self.unbinds = 0
        self.on_result: Callable[[str | None], None] | None = None

    async def bind(self) -> None:
        self.binds += 1
        if self.bind_delay_s:
            await asyncio.sleep(self.bind_delay_s)
        if self.bind_error is not None:
            raise self.bind_error

    async def start(self, on_result: Callable[[str | None], None]) -> None:
        self.starts += 1
        self.on_result = on_result

    async def stop(self) -> None:
        self.stops += 1
        if self.finalize_on_stop:
            asyncio.get_running_loop().call_soon(self.finalize, self.uri)

    async def unbind(self) -> None:
        self.unbinds += 1

    def finalize(self, uri: str | None) -> None:
        cb = self.on_result
        self.on_result = None
        if cb is not None:
            cb(uri)


class StubApi:
    def __init__(self, verdict: ThreatVerdict = NO_THREAT, error: Exception | None = None, delay_s: float = 0.0) -> None:
        self.verdict = verdict
        self.error = error
        self.delay_s = delay_s
        self.analyze_calls: list[str] = []
        self.alarms: list[AlarmNotification] = []

    async def analyze(self, text: str) -> ThreatVerdict:
        self.analyze_calls.append(text)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.verdict

    async def send_alarm(self, notification: AlarmNotification) -> bool:
        self.alarms.append(notification)
        return True


def build_coordinator(
    api: StubApi | None = None,
    camera: FakeCamera | None = None,
    effects: FakeEffects | None = None,
    **overrides: Any,
) -> tuple[ThreatResponseCoordinator, StubApi, FakeCamera, FakeEffects]:
    api = api or StubApi()
    camera = camera or FakeCamera()
    effects = effects or FakeEffects()
    config = AlertConfig(**{**FAST, **overrides})
    alarm = AlarmController(effects, strobe_period_s=config.strobe_period_s)
    evidence = EvidenceSession(camera, settle_s=config.recording_settle_s)
    coord = ThreatResponseCoordinator(api, alarm, evidence, config=config)
    return coord, api, camera, effects

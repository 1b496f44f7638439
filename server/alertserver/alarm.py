from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

VIBRATION_TIMINGS_MS: tuple[int, ...] = (0, 500, 500, 500, 500, 500, 500)
VIBRATION_AMPLITUDES: tuple[int, ...] = (0, 255, 0, 255, 0, 255, 0)


class AlarmEffects:
    """Siren, vibrator and torch hardware behind the alarm."""

    async def start_siren(self) -> None:
        raise NotImplementedError

    async def stop_siren(self) -> None:
        raise NotImplementedError

    async def start_vibration(self, timings_ms: Sequence[int], amplitudes: Sequence[int]) -> None:
        raise NotImplementedError

    async def cancel_vibration(self) -> None:
        raise NotImplementedError

    async def set_torch(self, on: bool) -> None:
        raise NotImplementedError


class RemoteAlarmEffects(AlarmEffects):
    """Forward effect commands to the phone over /events, and vibration to haptics links."""

    def __init__(
        self,
        send: Callable[[dict[str, Any]], Awaitable[None]],
        haptics: Sequence[Any] = (),
    ) -> None:
        self._send = send
        self._haptics = list(haptics)

    async def start_siren(self) -> None:
        await self._send({"type": "alarm.siren", "state": "started", "loop": True})

    async def stop_siren(self) -> None:
        await self._send({"type": "alarm.siren", "state": "ended"})

    async def start_vibration(self, timings_ms: Sequence[int], amplitudes: Sequence[int]) -> None:
        for link in self._haptics:
            link.start_pattern(timings_ms, amplitudes)
        await self._send(
            {
                "type": "alarm.vibration",
                "state": "started",
                "timingsMs": list(timings_ms),
                "amplitudes": list(amplitudes),
                "repeat": 0,
            }
        )

    async def cancel_vibration(self) -> None:
        for link in self._haptics:
            link.stop_pattern()
        await self._send({"type": "alarm.vibration", "state": "ended"})

    async def set_torch(self, on: bool) -> None:
        await self._send({"type": "alarm.torch", "on": bool(on)})


class AlarmController:
    def __init__(
        self,
        effects: AlarmEffects,
        *,
        strobe_period_s: float = 0.5,
        logger: logging.Logger | None = None,
    ) -> None:
        self._effects = effects
        self._strobe_period_s = float(max(0.01, strobe_period_s))
        self._logger = logger or logging.getLogger("alertserver.alarm")

        self._active = False
        self._torch_on = False
        self._strobe_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def torch_on(self) -> bool:
        return self._torch_on

    async def start(self) -> bool:
        async with self._lock:
            if self._active:
                self._logger.warning("Alarm already active; ignoring start")
                return False
            self._active = True
            self._logger.warning("Starting alarm")

            try:
                await self._effects.start_siren()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.exception("Failed to start siren")

            try:
                await self._effects.start_vibration(VIBRATION_TIMINGS_MS, VIBRATION_AMPLITUDES)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.exception("Failed to start vibration")

            self._strobe_task = asyncio.create_task(self._strobe_loop(), name="alarm_strobe")
            return True

    async def stop(self) -> bool:
        async with self._lock:
            if not self._active:
                return False
            self._active = False
            self._logger.warning("Stopping alarm")

            try:
                await self._effects.stop_siren()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.exception("Failed to stop siren")

            try:
                await self._effects.cancel_vibration()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.exception("Failed to cancel vibration")

            task = self._strobe_task
            self._strobe_task = None
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

            # Cancelling the strobe leaves the torch wherever the last toggle put it.
            if self._torch_on:
                try:
                    await self._effects.set_torch(False)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self._logger.exception("Failed to turn torch off")
                self._torch_on = False
            return True

    async def _strobe_loop(self) -> None:
        while self._active:
            target = not self._torch_on
            # Recorded before the await so a cancel mid-toggle still counts as lit.
            if target:
                self._torch_on = True
            try:
                await self._effects.set_torch(target)
                self._torch_on = target
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.exception("Error toggling torch")
            await asyncio.sleep(self._strobe_period_s)

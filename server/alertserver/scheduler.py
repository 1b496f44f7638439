from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable

from alertserver.transcript import TranscriptBuffer


class OperationMode(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class TriggerResult(str, Enum):
    STARTED = "started"
    BLANK = "blank"
    BUSY = "busy"
    SKIPPED = "skipped"


class AnalysisScheduler:
    """Decides when the transcript is submitted for analysis.

    `submit` is called with the trigger source and returns False when an
    analysis (or alarm) is already in progress.
    """

    def __init__(
        self,
        transcript: TranscriptBuffer,
        submit: Callable[[str], bool],
        *,
        interval_s: float = 20.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transcript = transcript
        self._submit = submit
        self._interval_s = float(max(0.01, interval_s))
        self._logger = logger or logging.getLogger("alertserver.scheduler")

        self._mode = OperationMode.MANUAL
        self._timer_task: asyncio.Task[None] | None = None
        self._generation = 0

    @property
    def mode(self) -> OperationMode:
        return self._mode

    @property
    def interval_s(self) -> float:
        return self._interval_s

    @property
    def timer_pending(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def set_mode(self, mode: OperationMode | str) -> None:
        mode = OperationMode(mode)
        self._cancel_timer()
        self._mode = mode
        self._logger.info("Mode changed to %s", mode.value)
        if mode is OperationMode.AUTOMATIC:
            self._generation += 1
            generation = self._generation
            self._timer_task = asyncio.get_running_loop().create_task(
                self._timer_loop(generation), name=f"analysis_timer_{generation}"
            )
            self._logger.info("Automatic analysis every %.1fs", self._interval_s)

    def on_timer_fire(self) -> TriggerResult:
        if self._mode is not OperationMode.AUTOMATIC:
            return TriggerResult.SKIPPED
        if self._transcript.is_blank():
            self._logger.debug("Timer fired with blank transcript; skipping")
            return TriggerResult.SKIPPED
        if not self._submit("timer"):
            self._logger.debug("Timer fired while busy; skipping")
            return TriggerResult.BUSY
        return TriggerResult.STARTED

    def on_manual_trigger(self) -> TriggerResult:
        if self._transcript.is_blank():
            self._logger.warning("Analyze requested but transcript is blank")
            return TriggerResult.BLANK
        if not self._submit("manual"):
            self._logger.info("Analyze requested while already analyzing; dropped")
            return TriggerResult.BUSY
        return TriggerResult.STARTED

    def close(self) -> None:
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        # Bumping the generation invalidates a wait that already elapsed but hasn't resumed.
        self._generation += 1
        task = self._timer_task
        self._timer_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _timer_loop(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            if generation != self._generation:
                return
            try:
                self.on_timer_fire()
            except Exception:
                self._logger.exception("Periodic analysis trigger failed")

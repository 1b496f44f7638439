from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from typing import Sequence

import websockets


def _clamp_int(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(v)))


class HapticsLink:
    """WS link to an external vibration device that plays the alarm waveform.

    The device only understands single (durationMs, intensity) buzzes, so the
    repeating waveform is played from here one segment at a time.
    """

    def __init__(
        self,
        *,
        name: str,
        url: str,
        payload_format: str = "csv",
        open_timeout_s: float = 15.0,
        max_queue: int = 16,
        logger: logging.Logger | None = None,
    ) -> None:
        self._name = name
        self._url = url
        self._payload_format = (payload_format or "csv").strip().lower()
        self._open_timeout_s = float(max(0.1, open_timeout_s))
        self._q: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, int(max_queue)))
        self._logger = logger or logging.getLogger("alertserver.haptics")

        self._pattern: tuple[tuple[int, int], ...] = ()
        self._pattern_changed = asyncio.Event()

        self.connected: bool = False
        self._last_err_log_s: float = 0.0

    @property
    def url(self) -> str:
        return self._url

    @property
    def playing(self) -> bool:
        return bool(self._pattern)

    def start_pattern(self, timings_ms: Sequence[int], amplitudes: Sequence[int]) -> None:
        segments = tuple(
            (_clamp_int(t, 0, 60_000), _clamp_int(a, 0, 255)) for t, a in zip(timings_ms, amplitudes)
        )
        self._pattern = tuple(s for s in segments if s[0] > 0)
        self._pattern_changed.set()

    def stop_pattern(self) -> None:
        self._pattern = ()
        self._pattern_changed.set()
        self.enqueue_buzz(0, 0)

    def enqueue_buzz(self, duration_ms: int, intensity: int) -> None:
        payload = self.format_payload(duration_ms, intensity)
        if self._q.full():
            try:
                _ = self._q.get_nowait()
            except asyncio.QueueEmpty:
                pass
        try:
            self._q.put_nowait(payload)
        except asyncio.QueueFull:
            pass

    def format_payload(self, duration_ms: int, intensity: int) -> str:
        duration_ms_i = _clamp_int(duration_ms, 0, 60_000)
        intensity_i = _clamp_int(intensity, 0, 255)
        if self._payload_format == "json":
            return json.dumps([duration_ms_i, intensity_i], separators=(",", ":"))
        if self._payload_format == "tuple":
            return f"({duration_ms_i},{intensity_i})"
        return f"{duration_ms_i},{intensity_i}"

    async def run(self, stop: asyncio.Event) -> None:
        player = asyncio.create_task(self._play_loop(stop), name=f"haptics_{self._name}_player")
        try:
            await self._connection_loop(stop)
        finally:
            player.cancel()
            await asyncio.gather(player, return_exceptions=True)

    async def _play_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            pattern = self._pattern
            if not pattern:
                self._pattern_changed.clear()
                await self._pattern_changed.wait()
                continue
            for duration_ms, intensity in pattern:
                if self._pattern is not pattern:
                    break
                if intensity > 0:
                    self.enqueue_buzz(duration_ms, intensity)
                await asyncio.sleep(duration_ms / 1000.0)

    async def _connection_loop(self, stop: asyncio.Event) -> None:
        backoff_s = 0.5
        while not stop.is_set():
            try:
                async with websockets.connect(
                    self._url,
                    open_timeout=self._open_timeout_s,
                    ping_interval=None,
                    close_timeout=2,
                    max_size=64 * 1024,
                    max_queue=8,
                ) as ws:
                    self.connected = True
                    backoff_s = 0.5
                    self._logger.info("Haptics %s connected url=%s", self._name, self._url)

                    async def drain_incoming() -> None:
                        while not stop.is_set():
                            try:
                                await ws.recv()
                            except asyncio.CancelledError:
                                raise
                            except Exception:
                                return

                    drain_task = asyncio.create_task(drain_incoming(), name=f"haptics_{self._name}_drain")
                    while not stop.is_set():
                        try:
                            payload = await asyncio.wait_for(self._q.get(), timeout=1.0)
                        except asyncio.TimeoutError:
                            continue
                        await ws.send(payload)
                    drain_task.cancel()
                    await asyncio.gather(drain_task, return_exceptions=True)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                now_s = time.monotonic()
                if (now_s - self._last_err_log_s) > 3.0:
                    self._last_err_log_s = now_s
                    self._logger.info(
                        "Haptics %s unavailable url=%s (%s); retrying", self._name, self._url, type(e).__name__
                    )
            finally:
                if self.connected:
                    self.connected = False
                    self._logger.info("Haptics %s disconnected url=%s", self._name, self._url)

            await asyncio.sleep(backoff_s + random.random() * 0.2)
            backoff_s = min(backoff_s * 1.7, 5.0)

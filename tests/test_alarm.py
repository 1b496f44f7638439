"""Tests for the alarm controller."""

import asyncio
import logging

from alertserver.alarm import VIBRATION_AMPLITUDES, VIBRATION_TIMINGS_MS, AlarmController, RemoteAlarmEffects
from helpers import FakeEffects


def test_start_is_idempotent():
    async def scenario():
        effects = FakeEffects()
        alarm = AlarmController(effects, strobe_period_s=0.01)
        assert await alarm.start() is True
        assert await alarm.start() is False
        assert effects.calls.count("start_siren") == 1
        assert effects.calls.count("start_vibration") == 1
        await alarm.stop()

    asyncio.run(scenario())


def test_strobe_toggles_on_period():
    async def scenario():
        effects = FakeEffects()
        alarm = AlarmController(effects, strobe_period_s=0.01)
        await alarm.start()
        await asyncio.sleep(0.06)
        await alarm.stop()
        assert effects.torch_commands[:3] == [True, False, True]

    asyncio.run(scenario())


def test_stop_leaves_torch_off():
    async def scenario():
        effects = FakeEffects()
        alarm = AlarmController(effects, strobe_period_s=0.01)
        await alarm.start()
        await asyncio.sleep(0.005)
        assert effects.torch_on is True
        await alarm.stop()
        assert effects.torch_on is False
        assert alarm.torch_on is False
        assert effects.calls.count("stop_siren") == 1
        assert effects.calls.count("cancel_vibration") == 1

    asyncio.run(scenario())


def test_stop_mid_toggle_turns_torch_off():
    async def scenario():
        effects = FakeEffects(torch_delay_s=0.05)
        alarm = AlarmController(effects, strobe_period_s=0.01)
        await alarm.start()
        await asyncio.sleep(0.01)  # strobe is inside set_torch(True)
        await alarm.stop()
        assert effects.torch_commands[-1] is False
        assert effects.torch_on is False

    asyncio.run(scenario())


def test_stop_without_start_is_noop():
    async def scenario():
        effects = FakeEffects()
        alarm = AlarmController(effects)
        assert await alarm.stop() is False
        assert effects.calls == []

    asyncio.run(scenario())


def test_restart_after_stop():
    async def scenario():
        effects = FakeEffects()
        alarm = AlarmController(effects, strobe_period_s=0.01)
        await alarm.start()
        await alarm.stop()
        assert await alarm.start() is True
        assert effects.calls.count("start_siren") == 2
        await alarm.stop()

    asyncio.run(scenario())


def test_effect_failure_does_not_block_others(caplog):
    async def scenario():
        effects = FakeEffects(fail=["start_siren", "stop_siren"])
        alarm = AlarmController(effects, strobe_period_s=0.01)
        assert await alarm.start() is True
        assert "start_vibration" in effects.calls
        await asyncio.sleep(0.005)
        assert effects.torch_on is True
        assert await alarm.stop() is True
        assert "cancel_vibration" in effects.calls
        assert effects.torch_on is False

    asyncio.run(scenario())
    assert any("Failed to start siren" in r.getMessage() for r in caplog.records if r.levelno == logging.ERROR)


class FakeLink:
    def __init__(self):
        self.patterns = []
        self.stopped = 0

    def start_pattern(self, timings, amplitudes):
        self.patterns.append((tuple(timings), tuple(amplitudes)))

    def stop_pattern(self):
        self.stopped += 1


def test_remote_effects_messages():
    async def scenario():
        sent = []

        async def send(obj):
            sent.append(obj)

        link = FakeLink()
        effects = RemoteAlarmEffects(send, [link])
        await effects.start_siren()
        await effects.start_vibration(VIBRATION_TIMINGS_MS, VIBRATION_AMPLITUDES)
        await effects.set_torch(True)
        await effects.cancel_vibration()
        await effects.stop_siren()
        return sent, link

    sent, link = asyncio.run(scenario())
    assert [m["type"] for m in sent] == [
        "alarm.siren",
        "alarm.vibration",
        "alarm.torch",
        "alarm.vibration",
        "alarm.siren",
    ]
    assert sent[1]["timingsMs"] == [0, 500, 500, 500, 500, 500, 500]
    assert sent[1]["amplitudes"] == [0, 255, 0, 255, 0, 255, 0]
    assert sent[2]["on"] is True
    assert link.patterns == [(VIBRATION_TIMINGS_MS, VIBRATION_AMPLITUDES)]
    assert link.stopped == 1

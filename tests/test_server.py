"""Websocket routing tests with in-memory connections."""

import asyncio
import json

from alertserver.config import AlertConfig
from alertserver.coordinator import LocationUpdate, ManualTrigger, ModeChange, SpeechEnded, SpeechFinal, StopAlarm
from alertserver.scheduler import OperationMode
from alertserver.server import AlertServer
from helpers import FAST, StubApi


class FakeConn:
    def __init__(self, incoming=()):
        self._incoming = list(incoming)
        self.sent = []
        self.remote_address = ("127.0.0.1", 5555)
        self.closed = None

    async def send(self, payload):
        self.sent.append(json.loads(payload))

    async def close(self, code=1000, reason=""):
        self.closed = (code, reason)

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for msg in self._incoming:
            yield msg if isinstance(msg, (str, bytes)) else json.dumps(msg)


def _server():
    return AlertServer("127.0.0.1", 0, log_level="DEBUG", config=AlertConfig(**FAST), api=StubApi())


def _drain(server):
    events = []
    while not server.coordinator.events.empty():
        events.append(server.coordinator.events.get_nowait())
    return events


def test_events_commands_are_queued():
    async def scenario():
        server = _server()
        conn = FakeConn(
            [
                {"type": "hello", "v": 1, "client": "android", "model": "Pixel", "sdkInt": 34},
                {"type": "mode.set", "mode": "Automatic"},
                {"type": "analyze"},
                {"type": "location.update", "location": "Quito"},
                {"type": "alarm.stop"},
                "not json",
                b"\x00\x01",
                {"type": "mode.set", "mode": "sometimes"},
            ]
        )
        await server._handle_events(conn)
        return server, conn

    server, conn = asyncio.run(scenario())
    assert conn.sent[0] == {"type": "status", "server": "connected"}
    assert conn.sent[1]["type"] == "state"
    assert conn.sent[-1]["type"] == "error"
    assert _drain(server) == [
        ModeChange(OperationMode.AUTOMATIC),
        ManualTrigger(),
        LocationUpdate("Quito"),
        StopAlarm(),
    ]
    assert server._events_conns == set()


def test_stt_events_are_queued():
    async def scenario():
        server = _server()
        conn = FakeConn([{"type": "partial", "text": "there"}, {"type": "final", "text": "there is a fire"}, {"type": "end"}])
        await server._handle_stt(conn)
        return server

    events = _drain(asyncio.run(scenario()))
    assert events[1] == SpeechFinal("there is a fire")
    assert events[2] == SpeechEnded()


def test_camera_messages_reach_remote_camera():
    async def scenario():
        server = _server()
        conn = FakeConn([{"type": "camera.finalized", "uri": "content://video/1"}])
        results = []
        server._camera._on_result = results.append
        await server._handle_camera(conn)
        return server, results

    server, results = asyncio.run(scenario())
    assert results == ["content://video/1"]
    assert not server._camera.attached


def test_unknown_path_is_closed():
    async def scenario():
        server = _server()
        conn = FakeConn()
        conn.request = type("Req", (), {"path": "/nope"})()
        await server._route(conn)
        return conn

    assert asyncio.run(scenario()).closed == (1008, "Unknown path")


def test_status_payload():
    server = _server()
    status = server._build_status_payload(0.0)
    assert status["type"] == "status"
    assert status["phone"]["cameraAttached"] is False
    assert status["coordinator"]["state"] == "idle"
    assert status["externalHaptics"] == []

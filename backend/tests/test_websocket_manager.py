"""
backend/tests/test_websocket_manager.py

Purpose:
    Unit tests for websocket manager connection lifecycle, topic
    subscriptions, publish fan-out and heartbeat cleanup.
"""

from __future__ import annotations

import asyncio

import pytest

from app.services.websocket_manager import WebSocketManager


class _FakeWebSocket:
    def __init__(self, *, fail_send: bool = False):
        self.accepted = False
        self.fail_send = fail_send
        self.messages: list[dict] = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.fail_send:
            raise RuntimeError("send failed")
        self.messages.append(payload)


@pytest.mark.asyncio
async def test_connect_subscribe_and_topic_publish():
    manager = WebSocketManager(max_connections=10, heartbeat_seconds=30)
    ws = _FakeWebSocket()
    conn_id = await manager.connect(ws, user_id="u1", topics={"https://x/users/u1"})
    assert ws.accepted is True

    topics = await manager.update_topics(conn_id, "subscribe", {"https://x/topics/trips"})
    assert topics == ["https://x/topics/trips", "https://x/users/u1"]

    sent = await manager.publish("https://x/topics/trips", {"event_type": "trip.expired"})
    assert sent == 1
    assert ws.messages[-1]["event_type"] == "trip.expired"

    assert await manager.publish("https://x/groups/admin", {"event_type": "admin.stats.updated"}) == 0

    await manager.update_topics(conn_id, "unsubscribe", {"https://x/topics/trips"})
    assert await manager.publish("https://x/topics/trips", {"event_type": "trip.expired"}) == 0


@pytest.mark.asyncio
async def test_publish_drops_dead_connections():
    manager = WebSocketManager(max_connections=10, heartbeat_seconds=30)
    await manager.connect(_FakeWebSocket(), user_id="ok", topics={"t"})
    await manager.connect(_FakeWebSocket(fail_send=True), user_id="dead", topics={"t"})

    assert await manager.publish("t", {"x": 1}) == 1
    stats = manager.stats()
    assert stats["active_connections"] == 1
    assert stats["send_failures"] == 1
    assert stats["dropped_connections"] == 1


@pytest.mark.asyncio
async def test_connection_cap():
    manager = WebSocketManager(max_connections=1, heartbeat_seconds=30)
    await manager.connect(_FakeWebSocket(), user_id="u1")
    with pytest.raises(RuntimeError):
        await manager.connect(_FakeWebSocket(), user_id="u2")


@pytest.mark.asyncio
async def test_unknown_command_rejected():
    manager = WebSocketManager(max_connections=10, heartbeat_seconds=30)
    conn_id = await manager.connect(_FakeWebSocket(), user_id="u1")
    with pytest.raises(ValueError):
        await manager.update_topics(conn_id, "replace", {"t"})


@pytest.mark.asyncio
async def test_heartbeat_removes_dead_connections():
    manager = WebSocketManager(max_connections=10, heartbeat_seconds=1)
    ws_ok = _FakeWebSocket()
    ws_fail = _FakeWebSocket(fail_send=True)
    await manager.connect(ws_ok, user_id="u-ok")
    await manager.connect(ws_fail, user_id="u-fail")
    await manager.start()
    await asyncio.sleep(2.2)
    await manager.stop()
    stats = manager.stats()
    assert stats["dropped_connections"] >= 1

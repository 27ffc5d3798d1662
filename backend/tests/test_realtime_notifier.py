"""
backend/tests/test_realtime_notifier.py

Purpose:
    Topic naming, envelope shape and failure mapping of the realtime
    notification sink.
"""

from __future__ import annotations

import pytest

from app.models.user import Actor
from app.services.realtime_notifier import NotificationDeliveryError, RealtimeNotifier, TopicBuilder


class _FakeManager:
    def __init__(self, *, running: bool = True, fail: bool = False):
        self.running = running
        self.fail = fail
        self.published: list[tuple[str, dict]] = []

    async def publish(self, topic, message):
        if self.fail:
            raise RuntimeError("socket gone")
        self.published.append((topic, message))
        return 1


def _notifier(manager) -> RealtimeNotifier:
    return RealtimeNotifier(manager, TopicBuilder("https://cobage.test/"))


def test_topic_builder():
    topics = TopicBuilder("https://cobage.test/")
    assert topics.for_user("u1") == "https://cobage.test/users/u1"
    assert topics.for_group("Admin") == "https://cobage.test/groups/admin"
    assert topics.for_channel("public") == "https://cobage.test/public"
    assert topics.for_channel("trips") == "https://cobage.test/topics/trips"


@pytest.mark.asyncio
async def test_broadcast_wraps_payload_with_server_time():
    manager = _FakeManager()
    delivered = await _notifier(manager).publish_broadcast("trips", {"trip_id": "t1"}, "trip.expired")

    assert delivered == 1
    topic, message = manager.published[0]
    assert topic == "https://cobage.test/topics/trips"
    assert message["event_type"] == "trip.expired"
    assert message["data"]["trip_id"] == "t1"
    assert "server_time" in message["data"]
    assert message["timestamp"]


@pytest.mark.asyncio
async def test_publish_to_user_accepts_actor_or_id():
    manager = _FakeManager()
    notifier = _notifier(manager)
    await notifier.publish_to_user(Actor(id="u1"), {"a": 1}, "notification.new")
    await notifier.publish_to_user("u2", {"a": 2}, "notification.new")
    assert [topic for topic, _ in manager.published] == [
        "https://cobage.test/users/u1",
        "https://cobage.test/users/u2",
    ]


@pytest.mark.asyncio
async def test_manager_failure_raises_delivery_error():
    with pytest.raises(NotificationDeliveryError):
        await _notifier(_FakeManager(fail=True)).publish_to_group("admin", {}, "admin.stats.updated")


@pytest.mark.asyncio
async def test_unserializable_payload_raises_delivery_error():
    with pytest.raises(NotificationDeliveryError):
        await _notifier(_FakeManager()).publish_to_user("u1", {"blob": object()}, "notification.new")


@pytest.mark.asyncio
async def test_idle_manager_delivers_nothing():
    manager = _FakeManager(running=False)
    assert await _notifier(manager).publish_to_user("u1", {"a": 1}, "notification.new") == 0
    assert manager.published == []

"""
backend/tests/test_ws_router_topics.py

Purpose:
    Topic subscription rules of the realtime WebSocket endpoint.
"""

from __future__ import annotations

from app.models.user import Actor, Role
from app.routers import ws as ws_router
from app.services.realtime_notifier import TopicBuilder

TOPICS = TopicBuilder("https://cobage.test")
ALICE = Actor(id="alice")
MODERATOR = Actor(id="mod", roles={Role.USER, Role.MODERATOR})


def test_public_channels_open_to_everyone():
    assert ws_router.resolve_topic(ALICE, "trips", TOPICS) == "https://cobage.test/topics/trips"
    assert ws_router.resolve_topic(ALICE, "public", TOPICS) == "https://cobage.test/public"


def test_only_own_user_topic():
    assert ws_router.resolve_topic(ALICE, "user:alice", TOPICS) == "https://cobage.test/users/alice"
    assert ws_router.resolve_topic(ALICE, "user:bob", TOPICS) is None


def test_admin_group_requires_staff():
    assert ws_router.resolve_topic(ALICE, "group:admin", TOPICS) is None
    assert ws_router.resolve_topic(MODERATOR, "group:admin", TOPICS) == "https://cobage.test/groups/admin"
    assert ws_router.resolve_topic(MODERATOR, "group:finance", TOPICS) is None


def test_banned_staff_loses_admin_group():
    banned = MODERATOR.model_copy(update={"is_banned": True})
    assert ws_router.resolve_topic(banned, "group:admin", TOPICS) is None


def test_default_topics():
    assert ws_router.default_topics(ALICE, TOPICS) == {
        "https://cobage.test/users/alice",
        "https://cobage.test/public",
    }
    assert "https://cobage.test/groups/admin" in ws_router.default_topics(MODERATOR, TOPICS)

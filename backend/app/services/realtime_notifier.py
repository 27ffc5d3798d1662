"""
backend/app/services/realtime_notifier.py

Purpose:
    Notification sink used by workers and services. Builds topic names for a
    user, a group (admin, moderators) or a public channel (trips, requests),
    wraps the payload in a ``RealtimeEnvelope`` and hands it to the WebSocket
    manager. Every publish fails independently with
    ``NotificationDeliveryError``; callers catch and count, never propagate.

Dependencies:
    - app.config
    - app.services.websocket_manager
    - app.services.event_models
"""

from __future__ import annotations

import json
import logging
from typing import Any

from app.config import settings
from app.models.user import Actor
from app.services.event_models import RealtimeEnvelope
from app.services.websocket_manager import WebSocketManager, websocket_manager
from app.utils import utcnow

logger = logging.getLogger("cobage.realtime")

PUBLIC_CHANNELS = frozenset({"public", "trips", "delivery_requests"})


class NotificationDeliveryError(Exception):
    """A single realtime publish could not be delivered."""


class TopicBuilder:
    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def for_user(self, user_id: str) -> str:
        return f"{self.base_url}/users/{user_id}"

    def for_group(self, group: str) -> str:
        return f"{self.base_url}/groups/{group.lower()}"

    def for_channel(self, channel: str) -> str:
        if channel == "public":
            return f"{self.base_url}/public"
        return f"{self.base_url}/topics/{channel}"


class RealtimeNotifier:
    def __init__(self, manager: WebSocketManager, topics: TopicBuilder) -> None:
        self._manager = manager
        self.topics = topics

    async def publish_broadcast(self, channel: str, payload: dict[str, Any], event_type: str) -> int:
        """Publish to a public channel. Payloads get a ``server_time`` stamp."""
        data = {"server_time": utcnow().isoformat(), **payload}
        return await self._publish(self.topics.for_channel(channel), data, event_type)

    async def publish_to_user(self, user: Actor | str, payload: dict[str, Any], event_type: str) -> int:
        user_id = user.id if isinstance(user, Actor) else str(user)
        return await self._publish(self.topics.for_user(user_id), payload, event_type)

    async def publish_to_group(self, group: str, payload: dict[str, Any], event_type: str) -> int:
        return await self._publish(self.topics.for_group(group), payload, event_type)

    async def _publish(self, topic: str, data: dict[str, Any], event_type: str) -> int:
        try:
            envelope = RealtimeEnvelope(event_type=event_type, data=data)
            message = json.loads(envelope.model_dump_json())
        except (TypeError, ValueError) as exc:
            raise NotificationDeliveryError(f"Unserializable payload for {event_type}: {exc}") from exc

        if not self._manager.running:
            logger.debug("Realtime manager idle, %s on %s not delivered", event_type, topic)
            return 0

        try:
            return await self._manager.publish(topic, message)
        except Exception as exc:
            raise NotificationDeliveryError(f"Publish failed for {event_type} on {topic}: {exc}") from exc


notifier = RealtimeNotifier(websocket_manager, TopicBuilder(settings.REALTIME_TOPIC_BASE))

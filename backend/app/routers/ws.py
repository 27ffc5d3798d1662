"""
backend/app/routers/ws.py

Purpose:
    Realtime notification socket. Authenticated clients are subscribed to
    their own user topic and the public channel on connect, and may
    subscribe to more public channels or, as staff, to the admin group.

Dependencies:
    - app.services.websocket_manager
    - app.services.realtime_notifier
    - app.services.authorization
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from app.config import settings
from app.models.user import Actor
from app.services.auth_service import load_actor_from_token
from app.services.authorization import Capability, decide
from app.services.realtime_notifier import PUBLIC_CHANNELS, TopicBuilder, notifier
from app.services.websocket_manager import websocket_manager

logger = logging.getLogger("cobage.ws")

router = APIRouter()

STAFF_GROUPS = frozenset({"admin"})


def resolve_topic(actor: Actor, name: str, topics: TopicBuilder) -> Optional[str]:
    """Map a client topic name to a full topic if ``actor`` may subscribe.

    Accepted names: a public channel ("trips"), "user:<own id>" and
    "group:admin" for staff.
    """
    if name in PUBLIC_CHANNELS:
        return topics.for_channel(name)
    kind, _, value = name.partition(":")
    if kind == "user" and value == actor.id:
        return topics.for_user(actor.id)
    if kind == "group" and value in STAFF_GROUPS and decide(actor, Capability.VIEW_DASHBOARD):
        return topics.for_group(value)
    return None


def default_topics(actor: Actor, topics: TopicBuilder) -> set[str]:
    subscribed = {topics.for_user(actor.id), topics.for_channel("public")}
    if decide(actor, Capability.VIEW_DASHBOARD):
        subscribed.add(topics.for_group("admin"))
    return subscribed


@router.websocket("/ws/events")
async def websocket_events(ws: WebSocket):
    if not settings.WS_EVENTS_ENABLED or not websocket_manager.running:
        await ws.close(code=4001, reason="Realtime disabled")
        return

    token = ws.cookies.get("access_token") or ws.query_params.get("token")
    try:
        actor = await load_actor_from_token(token)
    except HTTPException:
        await ws.close(code=4401, reason="Not authenticated")
        return
    if actor.is_banned:
        await ws.close(code=4403, reason="Account banned")
        return

    try:
        connection_id = await websocket_manager.connect(
            ws, user_id=actor.id, topics=default_topics(actor, notifier.topics),
        )
    except RuntimeError:
        await ws.close(code=4002, reason="Too many connections")
        return

    logger.info("WS client %s connected for user %s", connection_id, actor.id)
    try:
        while True:
            raw = await ws.receive_text()
            await websocket_manager.touch(connection_id)
            if raw == "ping":
                await ws.send_text("pong")
                continue
            await _handle_command(ws, connection_id, actor, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await websocket_manager.disconnect(connection_id)
        logger.info("WS client %s disconnected", connection_id)


async def _handle_command(ws: WebSocket, connection_id: str, actor: Actor, raw: str) -> None:
    try:
        command = json.loads(raw)
    except ValueError:
        await ws.send_json({"type": "error", "data": {"message": "invalid_json"}})
        return

    command_type = command.get("type") if isinstance(command, dict) else None
    requested = command.get("topics") if isinstance(command, dict) else None
    if command_type not in ("subscribe", "unsubscribe") or not isinstance(requested, list):
        await ws.send_json({"type": "error", "data": {"message": "unsupported_command"}})
        return

    allowed: set[str] = set()
    denied: list[str] = []
    for name in requested:
        topic = resolve_topic(actor, str(name), notifier.topics)
        if topic is None:
            denied.append(str(name))
        else:
            allowed.add(topic)

    current = await websocket_manager.update_topics(connection_id, command_type, allowed)
    await ws.send_json({"type": command_type, "data": {"topics": current, "denied": denied}})

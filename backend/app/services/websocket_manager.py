"""
backend/app/services/websocket_manager.py

Purpose:
    Process-local WebSocket connection manager for realtime notifications.
    Each authenticated connection holds a set of subscribed topics (user,
    group and public channel topics); ``publish`` fans a message out to every
    connection subscribed to the topic. Dead connections are dropped on send
    failure and by the heartbeat loop.

Dependencies:
    - fastapi.WebSocket
    - app.config
    - app.utils
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fastapi import WebSocket

from app.config import settings
from app.utils import utcnow

logger = logging.getLogger("cobage.websocket_manager")

_ERROR_BUFFER_SIZE = 200


@dataclass
class ManagedConnection:
    connection_id: str
    user_id: str
    websocket: WebSocket
    topics: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)


class WebSocketManager:
    def __init__(
        self,
        *,
        max_connections: int,
        heartbeat_seconds: int,
    ) -> None:
        self._max_connections = max(1, int(max_connections))
        self._heartbeat_seconds = max(1, int(heartbeat_seconds))
        self._connections: dict[str, ManagedConnection] = {}
        self._lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task | None = None
        self._running = False
        self._publish_total = 0
        self._send_failures = 0
        self._dropped_connections = 0
        self._last_errors: list[dict[str, Any]] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="ws_heartbeat")
            logger.info("WebSocket manager started")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            if self._heartbeat_task is not None:
                self._heartbeat_task.cancel()
                try:
                    await self._heartbeat_task
                except asyncio.CancelledError:
                    pass
                self._heartbeat_task = None
            self._connections.clear()
            logger.info("WebSocket manager stopped")

    async def connect(self, websocket: WebSocket, *, user_id: str, topics: set[str] | None = None) -> str:
        await websocket.accept()
        async with self._lock:
            if len(self._connections) >= self._max_connections:
                raise RuntimeError("max_connections_exceeded")
            connection_id = str(uuid.uuid4())
            self._connections[connection_id] = ManagedConnection(
                connection_id=connection_id,
                user_id=str(user_id),
                websocket=websocket,
                topics=set(topics or ()),
            )
            return connection_id

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self._connections.pop(connection_id, None)

    async def touch(self, connection_id: str) -> None:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn:
                conn.last_seen_at = utcnow()

    async def update_topics(self, connection_id: str, command_type: str, topics: set[str]) -> list[str]:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if not conn:
                raise RuntimeError("connection_not_found")

            if command_type == "subscribe":
                conn.topics.update(topics)
            elif command_type == "unsubscribe":
                conn.topics.difference_update(topics)
            else:
                raise ValueError("unsupported_command")

            conn.last_seen_at = utcnow()
            return sorted(conn.topics)

    async def publish(self, topic: str, message: dict[str, Any]) -> int:
        """Send ``message`` to every connection subscribed to ``topic``."""
        async with self._lock:
            connections = [c for c in self._connections.values() if topic in c.topics]

        delivered = 0
        dead_ids: list[str] = []
        for conn in connections:
            try:
                await conn.websocket.send_json(message)
                delivered += 1
            except Exception as exc:
                dead_ids.append(conn.connection_id)
                self._send_failures += 1
                self._append_error(
                    {
                        "ts": utcnow().isoformat(),
                        "connection_id": conn.connection_id,
                        "topic": topic,
                        "error": str(exc),
                    }
                )

        for conn_id in dead_ids:
            await self.disconnect(conn_id)
            self._dropped_connections += 1

        self._publish_total += 1
        return delivered

    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "active_connections": len(self._connections),
            "max_connections": self._max_connections,
            "heartbeat_seconds": self._heartbeat_seconds,
            "publish_total": self._publish_total,
            "send_failures": self._send_failures,
            "dropped_connections": self._dropped_connections,
            "last_errors": list(self._last_errors),
        }

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._heartbeat_seconds)
            async with self._lock:
                connections = list(self._connections.values())
            dead_ids: list[str] = []
            for conn in connections:
                try:
                    await conn.websocket.send_json({"type": "ping", "data": {"ts": utcnow().isoformat()}})
                except Exception:
                    dead_ids.append(conn.connection_id)
            for conn_id in dead_ids:
                await self.disconnect(conn_id)
                self._dropped_connections += 1

    def _append_error(self, error: dict[str, Any]) -> None:
        self._last_errors.append(error)
        if len(self._last_errors) > _ERROR_BUFFER_SIZE:
            self._last_errors = self._last_errors[-_ERROR_BUFFER_SIZE:]


websocket_manager = WebSocketManager(
    max_connections=settings.WS_MAX_CONNECTIONS,
    heartbeat_seconds=settings.WS_HEARTBEAT_SECONDS,
)

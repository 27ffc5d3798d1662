"""
backend/tests/test_request_gate.py

Purpose:
    Request gate: token extraction, actor loading, the banned-account block
    with its exempt paths, and capability dependencies.
"""

from __future__ import annotations

from datetime import datetime, timezone

import jwt
import pytest
from bson import ObjectId
from fastapi import HTTPException
from starlette.requests import Request

from app.config import settings
from app.models.user import Actor, Role
from app.services import auth_service
from app.services.authorization import Capability


def _request(path: str = "/api/reports", *, cookie: str | None = None, bearer: str | None = None) -> Request:
    headers = []
    if cookie:
        headers.append((b"cookie", f"access_token={cookie}".encode()))
    if bearer:
        headers.append((b"authorization", f"Bearer {bearer}".encode()))
    return Request({
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": headers,
        "client": ("127.0.0.1", 12345),
        "server": ("testserver", 80),
        "scheme": "http",
    })


def _banned_actor() -> Actor:
    return Actor(
        id="u1",
        is_banned=True,
        banned_at=datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc),
        ban_reason="Fraud",
    )


def test_extract_token_prefers_cookie():
    assert auth_service.extract_token(_request(cookie="c", bearer="b")) == "c"
    assert auth_service.extract_token(_request(bearer="b")) == "b"
    assert auth_service.extract_token(_request()) is None


def test_ban_payload_shape():
    payload = auth_service.ban_block_payload(_banned_actor(), "/api/trips")
    assert payload["error"] == "account_banned"
    assert payload["reason"] == "Fraud"
    assert payload["banned_at"] == "2026-02-01T12:00:00+00:00"
    assert payload["message"]


@pytest.mark.parametrize(
    "path",
    ["/api/login", "/api/register", "/api/forgot-password", "/api/reset-password", "/api/auth/logout"],
)
def test_banned_actor_may_reach_exempt_paths(path):
    assert auth_service.ban_block_payload(_banned_actor(), path) is None


def test_active_actor_never_blocked():
    assert auth_service.ban_block_payload(Actor(id="u2"), "/api/trips") is None


def test_decode_jwt_falls_back_to_old_secret(monkeypatch):
    token = jwt.encode({"sub": "u1", "type": "access"}, "previous-secret-with-at-least-32-bytes", algorithm="HS256")
    monkeypatch.setattr(settings, "JWT_SECRET", "current-secret-with-at-least-32-bytes!")
    monkeypatch.setattr(settings, "JWT_SECRET_OLD", "previous-secret-with-at-least-32-bytes")
    assert auth_service.decode_jwt(token)["sub"] == "u1"


@pytest.mark.asyncio
async def test_get_current_actor_loads_user(fake_db):
    user_id = ObjectId()
    fake_db.users.docs.append({"_id": user_id, "email": "a@example.com", "roles": ["user", "moderator"]})
    token = auth_service.create_access_token(str(user_id))

    actor = await auth_service.get_current_actor(_request(cookie=token))

    assert actor.id == str(user_id)
    assert actor.roles == {Role.USER, Role.MODERATOR}


@pytest.mark.asyncio
async def test_get_current_actor_blocks_banned_user(fake_db):
    user_id = ObjectId()
    fake_db.users.docs.append({
        "_id": user_id,
        "email": "b@example.com",
        "is_banned": True,
        "ban_reason": "Fraud",
        "banned_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
    })
    token = auth_service.create_access_token(str(user_id))

    with pytest.raises(HTTPException) as exc:
        await auth_service.get_current_actor(_request("/api/trips", bearer=token))
    assert exc.value.status_code == 403
    assert exc.value.detail["error"] == "account_banned"

    # Logout still works
    actor = await auth_service.get_current_actor(_request("/api/auth/logout", bearer=token))
    assert actor.is_banned is True


@pytest.mark.asyncio
async def test_missing_or_invalid_token_is_401(fake_db):
    with pytest.raises(HTTPException) as exc:
        await auth_service.get_current_actor(_request())
    assert exc.value.status_code == 401

    with pytest.raises(HTTPException) as exc:
        await auth_service.get_current_actor(_request(cookie="garbage"))
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_unknown_user_is_401(fake_db):
    token = auth_service.create_access_token(str(ObjectId()))
    with pytest.raises(HTTPException) as exc:
        await auth_service.get_current_actor(_request(cookie=token))
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_require_capability_dependency():
    dependency = auth_service.require_capability(Capability.VIEW_LOGS)
    admin = Actor(id="a1", roles={Role.USER, Role.ADMIN})
    assert await dependency(actor=admin) is admin

    with pytest.raises(HTTPException) as exc:
        await dependency(actor=Actor(id="m1", roles={Role.USER, Role.MODERATOR}))
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_invalidate_user_tokens(fake_db):
    fake_db.refresh_tokens.docs.extend([{"user_id": "u1"}, {"user_id": "u1"}, {"user_id": "u2"}])
    await auth_service.invalidate_user_tokens("u1")
    assert fake_db.refresh_tokens.docs == [{"user_id": "u2"}]

import logging
import secrets
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError as JWTError

import app.database as _db
from app.config import settings
from app.models.user import Actor
from app.services.authorization import Capability, decide
from app.utils import ensure_utc, to_object_id, utcnow

logger = logging.getLogger("cobage.auth")

ALGORITHM = "HS256"

# Banned accounts may still reach these (plus any logout route)
BAN_EXEMPT_PATHS = frozenset({
    "/api/login",
    "/api/register",
    "/api/forgot-password",
    "/api/reset-password",
})


def decode_jwt(token: str) -> dict:
    """Decode a JWT, trying the current secret first, then the old one.

    This allows zero-downtime rotation of JWT_SECRET:
    1. Set JWT_SECRET to the new value and JWT_SECRET_OLD to the previous one.
    2. Once all tokens signed with the old secret have expired, remove
       JWT_SECRET_OLD from .env.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        if settings.JWT_SECRET_OLD:
            return jwt.decode(token, settings.JWT_SECRET_OLD, algorithms=[ALGORITHM])
        raise


def create_access_token(user_id: str) -> str:
    expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": user_id,
        "exp": expire,
        "type": "access",
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


async def invalidate_user_tokens(user_id: str) -> None:
    """Invalidate all refresh tokens for a user (ban, deletion, logout-all)."""
    result = await _db.db.refresh_tokens.delete_many({"user_id": user_id})
    logger.info("Revoked %d refresh tokens of user %s", result.deleted_count, user_id)


def extract_token(request: Request) -> Optional[str]:
    """Access token from the cookie, falling back to an Authorization header."""
    token = request.cookies.get("access_token")
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def load_actor_from_token(token: Optional[str]) -> Actor:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")

    try:
        payload = decode_jwt(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type.")

    oid = to_object_id(payload.get("sub"))
    if oid is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")

    user = await _db.db.users.find_one({"_id": oid})
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found.")
    return Actor.from_doc(user)


def is_ban_exempt(path: str) -> bool:
    return path in BAN_EXEMPT_PATHS or "logout" in path


def ban_block_payload(actor: Actor, path: str) -> Optional[dict]:
    """Body of the 403 returned to a banned actor, or None when the path is allowed."""
    if not actor.is_banned or is_ban_exempt(path):
        return None
    return {
        "error": "account_banned",
        "message": "Your account has been suspended. Contact support for more information.",
        "banned_at": ensure_utc(actor.banned_at).isoformat() if actor.banned_at else None,
        "reason": actor.ban_reason,
    }


async def get_current_actor(request: Request) -> Actor:
    """FastAPI dependency: authenticated actor, with banned accounts blocked."""
    actor = await load_actor_from_token(extract_token(request))
    blocked = ban_block_payload(actor, request.url.path)
    if blocked is not None:
        logger.info("Blocked banned user %s on %s", actor.id, request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=blocked)
    return actor


def require_capability(capability: Capability):
    """Dependency factory: 403 unless the actor holds ``capability``."""

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not decide(actor, capability):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
        return actor

    return dependency

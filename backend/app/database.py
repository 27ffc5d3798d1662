"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for all collections.
    Indexes back the expiration scans (status + deadline), ownership lookups
    and the audit log filters.

Dependencies:
    - motor.motor_asyncio
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("cobage.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Users ----
    await db.users.create_index("email", unique=True)
    await db.users.create_index("is_banned")
    await db.users.create_index("roles")

    # ---- Marketplace content ----
    # Expiration scans: open status + deadline strictly before cutoff
    await db.trips.create_index([("status", 1), ("departure_date", 1)])
    await db.trips.create_index("owner_id")
    await db.delivery_requests.create_index([("status", 1), ("deadline", 1)])
    await db.delivery_requests.create_index("owner_id")
    await db.reviews.create_index("author_id")
    await db.reviews.create_index("subject_id")
    await db.messages.create_index("sender_id")
    await db.messages.create_index("recipient_id")

    # ---- Reports ----
    await db.reports.create_index([("status", 1), ("created_at", -1)])
    await db.reports.create_index("reporter_id")

    # ---- Notifications ----
    await db.notifications.create_index([("user_id", 1), ("created_at", -1)])

    # ---- Auth ----
    await db.refresh_tokens.create_index("user_id")
    await db.refresh_tokens.create_index("expires_at", expireAfterSeconds=0)

    # ---- Audit logs (insert-only, retention sweep deletes by timestamp) ----
    await db.audit_logs.create_index([("timestamp", -1)])
    await db.audit_logs.create_index([("admin_id", 1), ("timestamp", -1)])
    await db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
    await db.audit_logs.create_index([("target_type", 1), ("target_id", 1)])

    logger.info("Indexes ensured")

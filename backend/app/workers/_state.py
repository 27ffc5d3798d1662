"""Persistent worker state: last run summary per scheduled job.

Stored in the lightweight `worker_state` collection so the admin area can show
when a job last ran and what it did, across restarts.
"""

from datetime import datetime
from typing import Optional

import app.database as _db
from app.utils import ensure_utc, utcnow


async def record_run(worker_id: str, summary: dict) -> None:
    """Store the outcome of the latest run of ``worker_id``."""
    await _db.db.worker_state.update_one(
        {"_id": worker_id},
        {"$set": {"last_run_at": utcnow(), "last_summary": summary}},
        upsert=True,
    )


async def get_last_run(worker_id: str) -> Optional[dict]:
    doc = await _db.db.worker_state.find_one({"_id": worker_id})
    if not doc:
        return None
    last_run_at: Optional[datetime] = doc.get("last_run_at")
    return {
        "worker_id": worker_id,
        "last_run_at": ensure_utc(last_run_at).isoformat() if last_run_at else None,
        "last_summary": doc.get("last_summary", {}),
    }

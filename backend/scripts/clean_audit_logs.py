"""
backend/scripts/clean_audit_logs.py

Purpose:
    Audit log retention sweep: delete entries older than N days. Same call as
    the scheduled job; use --dry-run to count first.

Usage:
    cd backend && python -m scripts.clean_audit_logs --dry-run
    cd backend && python -m scripts.clean_audit_logs --days 730
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta

import app.database as _db
from app.config import settings
from app.middleware.logging import setup_logging
from app.services import audit_service
from app.utils import utcnow


async def _run(days: int, dry_run: bool) -> int:
    await _db.connect_db()
    try:
        if dry_run:
            cutoff = utcnow() - timedelta(days=days)
            count = await _db.db.audit_logs.count_documents({"timestamp": {"$lt": cutoff}})
            print({"ok": True, "mode": "dry-run", "days_to_keep": days, "would_delete": count})
            return 0
        deleted = await audit_service.clean_old_logs(days)
        print({"ok": True, "mode": "execute", "days_to_keep": days, "deleted": deleted})
        return 0
    finally:
        await _db.close_db()


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Delete audit log entries older than the retention window.")
    parser.add_argument("--days", type=int, default=settings.AUDIT_RETENTION_DAYS, help="Days to keep.")
    parser.add_argument("--dry-run", action="store_true", help="Only count matching entries.")
    args = parser.parse_args(argv)
    if args.days <= 0:
        parser.error("--days must be positive")

    setup_logging(settings.LOG_LEVEL)
    return await _run(args.days, args.dry_run)


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))

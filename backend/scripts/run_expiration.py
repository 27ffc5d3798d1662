"""
backend/scripts/run_expiration.py

Purpose:
    Manually run one expiration pass, same code path as the nightly jobs.
    Prints a one-line summary. Exit status: 0 success (per-item errors
    included), 1 fatal failure, 2 invalid arguments.

Usage:
    cd backend && python -m scripts.run_expiration trips
    cd backend && python -m scripts.run_expiration requests --batch-size 50
"""

from __future__ import annotations

import argparse
import asyncio
import logging

import app.database as _db
from app.config import settings
from app.middleware.logging import setup_logging
from app.services.expiration_service import VARIANTS, build_worker

EXIT_OK = 0
EXIT_FATAL = 1


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {raw!r}")
    if value < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Expire trips or delivery requests whose deadline has passed.")
    parser.add_argument("variant", choices=sorted(VARIANTS), help="Which listings to expire.")
    parser.add_argument(
        "--batch-size",
        type=_positive_int,
        default=settings.EXPIRATION_BATCH_SIZE,
        help=f"Items per committed batch (default {settings.EXPIRATION_BATCH_SIZE}).",
    )
    return parser


async def _run(variant: str, batch_size: int) -> int:
    await _db.connect_db()
    try:
        summary = await build_worker(variant, batch_size).run()
    finally:
        await _db.close_db()

    print(summary.describe())
    return EXIT_FATAL if summary.failed else EXIT_OK


async def main(argv: list[str] | None = None) -> int:
    # argparse exits with status 2 on invalid arguments
    args = build_parser().parse_args(argv)
    setup_logging(settings.LOG_LEVEL)
    logging.getLogger("cobage.scripts").info("Manual %s expiration, batch size %d", args.variant, args.batch_size)
    return await _run(args.variant, args.batch_size)


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))

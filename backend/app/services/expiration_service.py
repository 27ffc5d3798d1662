"""
backend/app/services/expiration_service.py

Purpose:
    Batch expiration of marketplace listings whose deadline has passed while
    still open (trips: departure date, delivery requests: limit date).
    Candidates are transitioned to "expired" in sequential batches; each batch
    is committed as one bulk write before the next starts. Malformed documents
    and per-item failures are counted and logged, never fatal. Listings whose
    status changed between scan and commit are left as they are and neither
    counted nor notified. A failing candidate query or batch commit ends the
    run; already committed batches stay committed.

Dependencies:
    - app.database
    - app.services.realtime_notifier
    - app.utils
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

from bson import ObjectId
from pymongo import UpdateOne

import app.database as _db
from app.config import settings
from app.models.resources import (
    DeliveryRequest,
    DeliveryRequestStatus,
    Trip,
    TripStatus,
)
from app.services.event_models import ADMIN_STATS_UPDATED, DELIVERY_REQUEST_EXPIRED, TRIP_EXPIRED
from app.services.realtime_notifier import NotificationDeliveryError, RealtimeNotifier, notifier
from app.utils import start_of_day, to_object_id, utcnow

logger = logging.getLogger("cobage.expiration")

DEFAULT_BATCH_SIZE = 100


class RunFatalError(Exception):
    """The candidate query or a batch commit failed; the run cannot go on."""


@dataclass(frozen=True)
class ExpirationVariant:
    name: str
    label: str
    model: type
    collection: str
    deadline_field: str
    open_status: str
    expired_status: str
    event_type: str
    id_key: str
    # Per-item broadcast + owner notification and the aggregate admin event
    notify: bool = False
    broadcast_channel: Optional[str] = None


TRIPS = ExpirationVariant(
    name="trips",
    label="trip",
    model=Trip,
    collection="trips",
    deadline_field="departure_date",
    open_status=TripStatus.ACTIVE.value,
    expired_status=TripStatus.EXPIRED.value,
    event_type=TRIP_EXPIRED,
    id_key="trip_id",
    notify=True,
    broadcast_channel="trips",
)

DELIVERY_REQUESTS = ExpirationVariant(
    name="requests",
    label="delivery request",
    model=DeliveryRequest,
    collection="delivery_requests",
    deadline_field="deadline",
    open_status=DeliveryRequestStatus.SEARCHING.value,
    expired_status=DeliveryRequestStatus.EXPIRED.value,
    event_type=DELIVERY_REQUEST_EXPIRED,
    id_key="request_id",
)

VARIANTS = {variant.name: variant for variant in (TRIPS, DELIVERY_REQUESTS)}


@dataclass
class ExpirationSummary:
    variant: str
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    total: int = 0
    batches: int = 0
    failed: bool = False
    fatal_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def describe(self) -> str:
        line = f"{self.variant}: processed={self.processed} errors={self.errors} total={self.total}"
        if self.failed:
            line += f" FAILED ({self.fatal_error})"
        return line


class ResourceStore(Protocol):
    async def find_expirable(self, cutoff: datetime) -> list[Any]: ...

    def hydrate(self, candidate: Any) -> Any: ...

    def mark_expired(self, resource: Any) -> None: ...

    async def commit(self) -> set[str]: ...

    def release_working_set(self) -> None: ...


class MongoExpirationStore:
    """ResourceStore over one Mongo collection.

    ``find_expirable`` returns raw documents; ``hydrate`` validates one of them
    so a malformed row fails on its own. ``mark_expired`` stages an update and
    ``commit`` flushes the staged updates as one unordered bulk write. The
    update filter repeats the open status, so a listing cancelled by its owner
    between scan and commit is left alone and missing from the returned ids.
    """

    def __init__(self, variant: ExpirationVariant, database=None) -> None:
        self.variant = variant
        self._database = database
        self._staged: list[tuple[ObjectId, UpdateOne]] = []
        self._now: datetime | None = None

    @property
    def _collection(self):
        database = self._database if self._database is not None else _db.db
        return database[self.variant.collection]

    async def find_expirable(self, cutoff: datetime) -> list[dict]:
        query = {
            "status": self.variant.open_status,
            self.variant.deadline_field: {"$lt": cutoff},
        }
        return await self._collection.find(query).to_list(length=None)

    def hydrate(self, candidate: dict) -> Any:
        return self.variant.model.from_doc(candidate)

    def mark_expired(self, resource: Any) -> None:
        oid = to_object_id(resource.id)
        if oid is None:
            raise ValueError(f"Malformed {self.variant.label} id: {resource.id!r}")
        if self._now is None:
            # Mongo keeps milliseconds; commit() matches on this exact stamp
            now = utcnow()
            self._now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        self._staged.append((
            oid,
            UpdateOne(
                {"_id": oid, "status": self.variant.open_status},
                {"$set": {
                    "status": self.variant.expired_status,
                    "expired_at": self._now,
                    "updated_at": self._now,
                }},
            ),
        ))

    async def commit(self) -> set[str]:
        """Flush staged updates; return the ids this commit actually expired."""
        if not self._staged:
            return set()
        staged_ids = [oid for oid, _ in self._staged]
        result = await self._collection.bulk_write([op for _, op in self._staged], ordered=False)
        self._staged = []
        if result.modified_count == len(staged_ids):
            return {str(oid) for oid in staged_ids}

        logger.warning(
            "%d of %d staged %s updates matched no open document",
            len(staged_ids) - result.modified_count,
            len(staged_ids),
            self.variant.label,
        )
        docs = await self._collection.find(
            {"_id": {"$in": staged_ids}, "status": self.variant.expired_status, "expired_at": self._now},
            {"_id": 1},
        ).to_list(length=None)
        return {str(doc["_id"]) for doc in docs}

    def release_working_set(self) -> None:
        self._staged = []
        self._now = None


def _candidate_id(candidate: Any) -> Any:
    if isinstance(candidate, dict):
        return candidate.get("_id", "?")
    return getattr(candidate, "id", "?")


class ExpirationWorker:
    def __init__(
        self,
        variant: ExpirationVariant,
        store: ResourceStore,
        sink: Optional[RealtimeNotifier] = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        self.variant = variant
        self.store = store
        self.sink = sink
        self.batch_size = batch_size
        self._clock = clock

    async def run(self) -> ExpirationSummary:
        """Run one expiration pass. Never raises; fatal errors mark the summary."""
        summary = ExpirationSummary(variant=self.variant.name)
        try:
            await self._run(summary)
        except Exception as exc:
            summary.failed = True
            summary.fatal_error = str(exc)
            logger.critical(
                "Expiration of %s failed after %d processed: %s",
                self.variant.name, summary.processed, exc,
                exc_info=True,
            )
            return summary

        logger.info(
            "Expiration of %s complete: processed=%d errors=%d skipped=%d total=%d",
            self.variant.name, summary.processed, summary.errors, summary.skipped, summary.total,
        )
        return summary

    async def _run(self, summary: ExpirationSummary) -> None:
        cutoff = start_of_day(self._clock())
        try:
            candidates = await self.store.find_expirable(cutoff)
        except Exception as exc:
            raise RunFatalError(f"candidate query failed: {exc}") from exc

        summary.total = len(candidates)
        if not candidates:
            logger.info("No %s to expire (cutoff %s)", self.variant.name, cutoff.date().isoformat())
            return

        logger.info("Expiring %d %s in batches of %d", summary.total, self.variant.name, self.batch_size)

        for batch_index, start in enumerate(range(0, summary.total, self.batch_size)):
            batch = candidates[start:start + self.batch_size]
            staged = []
            for candidate in batch:
                try:
                    resource = self.store.hydrate(candidate)
                except Exception as exc:
                    summary.errors += 1
                    logger.error(
                        "Skipping invalid %s document %s: %s", self.variant.label, _candidate_id(candidate), exc,
                    )
                    continue
                try:
                    self.store.mark_expired(resource)
                except Exception as exc:
                    summary.errors += 1
                    logger.error(
                        "Failed to expire %s %s: %s", self.variant.label, getattr(resource, "id", "?"), exc,
                    )
                    continue
                staged.append(resource)

            try:
                committed = await self.store.commit()
            except Exception as exc:
                raise RunFatalError(f"commit of batch {batch_index} failed: {exc}") from exc

            transitioned = [resource for resource in staged if str(resource.id) in committed]
            if len(transitioned) < len(staged):
                summary.skipped += len(staged) - len(transitioned)
                logger.warning(
                    "%d %s changed concurrently and were left untouched: %s",
                    len(staged) - len(transitioned),
                    self.variant.name,
                    [resource.id for resource in staged if str(resource.id) not in committed],
                )
            summary.processed += len(transitioned)
            summary.batches += 1

            if self.variant.notify and self.sink is not None:
                await self._notify_expired(transitioned, summary)

            self.store.release_working_set()
            logger.info(
                "Batch %d of %s processed: size=%d total_processed=%d",
                batch_index, self.variant.name, len(batch), summary.processed,
            )

        if self.variant.notify and self.sink is not None and summary.processed > 0:
            await self._notify_stats_changed(summary)

    async def _notify_expired(self, resources: list[Any], summary: ExpirationSummary) -> None:
        label = self.variant.label
        for resource in resources:
            public_payload = {
                "title": f"{label.capitalize()} expired",
                "message": f"{label.capitalize()} #{resource.id} reached its deadline and was marked as expired.",
                self.variant.id_key: resource.id,
                "status": self.variant.expired_status,
            }
            owner_payload = {
                "title": f"Your {label} has expired",
                "message": f"Your {label} #{resource.id} reached its deadline and was marked as expired.",
                self.variant.id_key: resource.id,
                "status": self.variant.expired_status,
            }
            try:
                await self.sink.publish_broadcast(
                    self.variant.broadcast_channel or "public", public_payload, self.variant.event_type,
                )
            except NotificationDeliveryError as exc:
                summary.errors += 1
                logger.error("Broadcast failed for expired %s %s: %s", label, resource.id, exc)
            try:
                await self.sink.publish_to_user(resource.owner_id, owner_payload, self.variant.event_type)
            except NotificationDeliveryError as exc:
                summary.errors += 1
                logger.error("Owner notification failed for expired %s %s: %s", label, resource.id, exc)

    async def _notify_stats_changed(self, summary: ExpirationSummary) -> None:
        try:
            await self.sink.publish_to_group(
                "admin",
                {
                    "title": "Statistics updated",
                    "message": f"{summary.processed} {self.variant.name} expired, refresh the stats",
                },
                ADMIN_STATS_UPDATED,
            )
        except NotificationDeliveryError as exc:
            logger.error("Admin stats notification failed after %s expiration: %s", self.variant.name, exc)


def build_worker(
    variant_name: str,
    batch_size: Optional[int] = None,
    *,
    database=None,
    sink: Optional[RealtimeNotifier] = None,
) -> ExpirationWorker:
    variant = VARIANTS[variant_name]
    return ExpirationWorker(
        variant,
        MongoExpirationStore(variant, database),
        sink if sink is not None else notifier,
        batch_size=batch_size or settings.EXPIRATION_BATCH_SIZE,
    )


async def expire_trips(batch_size: Optional[int] = None) -> ExpirationSummary:
    return await build_worker(TRIPS.name, batch_size).run()


async def expire_delivery_requests(batch_size: Optional[int] = None) -> ExpirationSummary:
    return await build_worker(DELIVERY_REQUESTS.name, batch_size).run()

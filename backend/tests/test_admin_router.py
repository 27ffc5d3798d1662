"""
backend/tests/test_admin_router.py

Purpose:
    Admin router wiring: manual expiration runs record their outcome and an
    audit entry, unknown job/content names 404, and the jobs overview.
"""

from __future__ import annotations

import pytest
from bson import ObjectId
from fastapi import HTTPException
from starlette.requests import Request

from app.models.admin import DeleteContentBody, RunExpirationBody
from app.models.user import Actor, Role
from app.routers import admin as admin_router
from app.services.expiration_service import ExpirationSummary

ADMIN = Actor(id=str(ObjectId()), roles={Role.USER, Role.ADMIN})


def _request() -> Request:
    return Request({"type": "http", "headers": [], "client": ("127.0.0.1", 12345)})


class _FakeWorker:
    def __init__(self, summary):
        self.summary = summary

    async def run(self):
        return self.summary


@pytest.mark.asyncio
async def test_run_expiration_records_run_and_audit(monkeypatch, fake_db):
    seen = {}

    def _build(variant, batch_size):
        seen["batch_size"] = batch_size
        return _FakeWorker(ExpirationSummary(variant=variant, processed=4, total=4, batches=1))

    monkeypatch.setattr(admin_router, "build_worker", _build)

    result = await admin_router.run_expiration(
        "trips", _request(), body=RunExpirationBody(batch_size=10), admin=ADMIN,
    )

    assert result["processed"] == 4
    assert seen["batch_size"] == 10
    assert fake_db.worker_state.docs[0]["_id"] == "expire_trips"
    assert fake_db.worker_state.docs[0]["last_summary"]["processed"] == 4
    entry = fake_db.audit_logs.docs[0]
    assert entry["action"] == "run_expiration"
    assert entry["target_id"] == "trips"


@pytest.mark.asyncio
async def test_failed_expiration_returns_500(monkeypatch, fake_db):
    summary = ExpirationSummary(variant="requests", failed=True, fatal_error="query timeout")
    monkeypatch.setattr(admin_router, "build_worker", lambda variant, batch_size: _FakeWorker(summary))

    with pytest.raises(HTTPException) as exc:
        await admin_router.run_expiration("requests", _request(), body=None, admin=ADMIN)
    assert exc.value.status_code == 500
    # The failed run is still recorded
    assert fake_db.worker_state.docs[0]["last_summary"]["failed"] is True


@pytest.mark.asyncio
async def test_unknown_expiration_job_is_404(fake_db):
    with pytest.raises(HTTPException) as exc:
        await admin_router.run_expiration("boats", _request(), body=None, admin=ADMIN)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_unknown_content_type_is_404(fake_db):
    with pytest.raises(HTTPException) as exc:
        await admin_router.delete_content(
            "parcels", str(ObjectId()), DeleteContentBody(reason="spam"), _request(), admin=ADMIN,
        )
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_list_jobs_defaults_for_never_run(fake_db):
    result = await admin_router.list_jobs(admin=ADMIN)
    assert [job["worker_id"] for job in result["jobs"]] == ["expire_trips", "expire_requests", "audit_retention"]
    assert all(job["last_run_at"] is None for job in result["jobs"])
    assert "active_connections" in result["realtime"]

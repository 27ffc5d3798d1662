"""
backend/tests/test_run_expiration_cli.py

Purpose:
    Exit status contract and summary output of the manual expiration and
    audit retention scripts.
"""

from __future__ import annotations

import pytest

from app.services.expiration_service import ExpirationSummary
from scripts import clean_audit_logs, run_expiration


class _FakeWorker:
    def __init__(self, summary: ExpirationSummary):
        self.summary = summary

    async def run(self) -> ExpirationSummary:
        return self.summary


@pytest.fixture
def no_db(monkeypatch):
    calls: list[str] = []

    async def _connect():
        calls.append("connect")

    async def _close():
        calls.append("close")

    monkeypatch.setattr(run_expiration._db, "connect_db", _connect)
    monkeypatch.setattr(run_expiration._db, "close_db", _close)
    return calls


@pytest.mark.asyncio
async def test_successful_run_prints_summary_and_exits_zero(monkeypatch, no_db, capsys):
    seen: dict = {}

    def _build(variant, batch_size):
        seen.update(variant=variant, batch_size=batch_size)
        return _FakeWorker(ExpirationSummary(variant=variant, processed=99, errors=1, total=100))

    monkeypatch.setattr(run_expiration, "build_worker", _build)

    code = await run_expiration.main(["trips", "--batch-size", "25"])

    assert code == 0
    assert seen == {"variant": "trips", "batch_size": 25}
    assert no_db == ["connect", "close"]
    assert "processed=99 errors=1 total=100" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_fatal_run_exits_one(monkeypatch, no_db, capsys):
    summary = ExpirationSummary(variant="requests", failed=True, fatal_error="commit of batch 0 failed")
    monkeypatch.setattr(run_expiration, "build_worker", lambda variant, batch_size: _FakeWorker(summary))

    assert await run_expiration.main(["requests"]) == 1
    assert "FAILED" in capsys.readouterr().out
    assert no_db == ["connect", "close"]


@pytest.mark.asyncio
@pytest.mark.parametrize("argv", [["boats"], [], ["trips", "--batch-size", "0"], ["trips", "--batch-size", "ten"]])
async def test_invalid_arguments_exit_two(argv, no_db):
    with pytest.raises(SystemExit) as exc:
        await run_expiration.main(argv)
    assert exc.value.code == 2
    assert no_db == []


@pytest.mark.asyncio
async def test_clean_audit_logs_rejects_non_positive_days(monkeypatch):
    with pytest.raises(SystemExit) as exc:
        await clean_audit_logs.main(["--days", "0"])
    assert exc.value.code == 2


@pytest.mark.asyncio
async def test_clean_audit_logs_dry_run_counts(monkeypatch, fake_db, capsys):
    async def _noop():
        return None

    monkeypatch.setattr(clean_audit_logs._db, "connect_db", _noop)
    monkeypatch.setattr(clean_audit_logs._db, "close_db", _noop)

    assert await clean_audit_logs.main(["--dry-run", "--days", "30"]) == 0
    assert "would_delete" in capsys.readouterr().out

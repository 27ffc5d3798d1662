"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths for backend modules, plus a small
    in-memory stand-in for the motor database used by service and router
    tests (equality and comparison filters, $set updates, bulk writes).
"""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, arg in condition.items():
            if op == "$lt" and not (value is not None and value < arg):
                return False
            if op == "$lte" and not (value is not None and value <= arg):
                return False
            if op == "$gt" and not (value is not None and value > arg):
                return False
            if op == "$gte" and not (value is not None and value >= arg):
                return False
            if op == "$in" and value not in arg:
                return False
            if op == "$exists" and (value is not None) != bool(arg):
                return False
        return True
    return value == condition


def matches(doc: dict, query: dict) -> bool:
    return all(_matches_condition(doc.get(key), cond) for key, cond in query.items())


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs = sorted(
            self._docs,
            key=lambda d: (d.get(key) is None, d.get(key)),
            reverse=direction == -1,
        )
        return self

    def skip(self, n: int):
        self._docs = self._docs[n:]
        return self

    def limit(self, n: int):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        docs = self._docs if length is None else self._docs[:length]
        return [dict(d) for d in docs]


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.bulk_calls: list[list] = []
        self.fail_on: set[str] = set()

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise RuntimeError(f"{self.name}.{op} failed")

    async def insert_one(self, doc: dict):
        self._maybe_fail("insert_one")
        doc.setdefault("_id", ObjectId())
        self.docs.append(dict(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query: dict, projection=None):
        self._maybe_fail("find_one")
        for doc in self.docs:
            if matches(doc, query):
                return dict(doc)
        return None

    def find(self, query: dict | None = None, projection=None) -> FakeCursor:
        self._maybe_fail("find")
        return FakeCursor([d for d in self.docs if matches(d, query or {})])

    async def count_documents(self, query: dict) -> int:
        return sum(1 for d in self.docs if matches(d, query))

    def _apply_update(self, doc: dict, update: dict) -> None:
        for key, value in update.get("$set", {}).items():
            doc[key] = value

    async def update_one(self, query: dict, update: dict, upsert: bool = False):
        self._maybe_fail("update_one")
        for doc in self.docs:
            if matches(doc, query):
                self._apply_update(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            self._apply_update(doc, update)
            self.docs.append(doc)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query: dict):
        for doc in self.docs:
            if matches(doc, query):
                self.docs.remove(doc)
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query: dict):
        self._maybe_fail("delete_many")
        keep = [d for d in self.docs if not matches(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)

    async def bulk_write(self, operations: list, ordered: bool = True):
        self._maybe_fail("bulk_write")
        self.bulk_calls.append(list(operations))
        modified = 0
        for op in operations:
            for doc in self.docs:
                if matches(doc, op._filter):
                    self._apply_update(doc, op._doc)
                    modified += 1
                    break
        return SimpleNamespace(modified_count=modified)


class FakeDatabase:
    def __init__(self):
        self._collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


@pytest.fixture
def fake_db(monkeypatch):
    import app.database as _db

    database = FakeDatabase()
    monkeypatch.setattr(_db, "db", database, raising=False)
    return database

from __future__ import annotations

import itertools
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from google.api_core import exceptions as google_exceptions

from pylamp.audit.firestore import FirestoreAuditLog, entry_from_document
from pylamp.audit.memory import InMemoryAuditLog
from pylamp.exceptions import AuditEntryNotFoundError, AuditLogError, AuditWriteError
from pylamp.models.device import DeviceKey, LampState


def _ticking_clock() -> Any:
    start = datetime(2026, 1, 1, tzinfo=UTC)
    ticks = itertools.count()
    return lambda: start + timedelta(seconds=next(ticks))


# ----------------------------------------------------------------------
# Minimal async Firestore double: collection/document/batch surface only.
# ----------------------------------------------------------------------


class _Snapshot:
    def __init__(self, ref: _DocRef, data: dict[str, Any] | None) -> None:
        self.reference = ref
        self.id = ref.id
        self.exists = data is not None
        self._data = data

    def to_dict(self) -> dict[str, Any] | None:
        return dict(self._data) if self._data is not None else None


class _DocRef:
    def __init__(self, collection: _Collection, doc_id: str) -> None:
        self._collection = collection
        self.id = doc_id

    async def get(self) -> _Snapshot:
        self._collection.check()
        return _Snapshot(self, self._collection.docs.get(self.id))

    async def delete(self) -> None:
        self._collection.check()
        self._collection.docs.pop(self.id, None)


class _Query:
    def __init__(self, collection: _Collection, field: str, direction: str) -> None:
        self._collection = collection
        self._field = field
        self._direction = direction

    async def get(self) -> list[_Snapshot]:
        snapshots = await self._collection.get()
        return sorted(
            snapshots,
            key=lambda s: s.to_dict()[self._field],  # type: ignore[index]
            reverse=self._direction == "DESCENDING",
        )


class _Collection:
    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.fail: Exception | None = None
        self._ids = itertools.count(1)

    def check(self) -> None:
        if self.fail is not None:
            raise self.fail

    def document(self, doc_id: str) -> _DocRef:
        return _DocRef(self, doc_id)

    async def add(self, data: dict[str, Any]) -> tuple[object, _DocRef]:
        self.check()
        doc_id = f"doc{next(self._ids)}"
        self.docs[doc_id] = dict(data)
        return object(), _DocRef(self, doc_id)

    def order_by(self, field: str, direction: str = "ASCENDING") -> _Query:
        return _Query(self, field, direction)

    async def get(self) -> list[_Snapshot]:
        self.check()
        return [_Snapshot(_DocRef(self, doc_id), data) for doc_id, data in self.docs.items()]


class _Batch:
    def __init__(self) -> None:
        self.deletes: list[_DocRef] = []
        self.committed = False

    def delete(self, ref: _DocRef) -> None:
        self.deletes.append(ref)

    async def commit(self) -> None:
        for ref in self.deletes:
            await ref.delete()
        self.committed = True


class _FakeFirestore:
    def __init__(self) -> None:
        self.collections: dict[str, _Collection] = {}
        self.batches: list[_Batch] = []

    def collection(self, name: str) -> _Collection:
        return self.collections.setdefault(name, _Collection())

    def batch(self) -> _Batch:
        batch = _Batch()
        self.batches.append(batch)
        return batch


# ----------------------------------------------------------------------
# In-memory
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_memory_log_lists_newest_first() -> None:
    log = InMemoryAuditLog(clock=_ticking_clock())
    await log.append("a@example.com", DeviceKey.KITCHEN, LampState.ON)
    await log.append("b@example.com", DeviceKey.GUEST, LampState.OFF)
    await log.append("c@example.com", DeviceKey.DINING, LampState.ON)

    entries = await log.list_entries()

    assert [e.actor_email for e in entries] == ["c@example.com", "b@example.com", "a@example.com"]


@pytest.mark.asyncio
async def test_memory_log_orders_same_timestamp_by_insertion() -> None:
    fixed = datetime(2026, 1, 1, tzinfo=UTC)
    log = InMemoryAuditLog(clock=lambda: fixed)
    first = await log.append("a@example.com", DeviceKey.KITCHEN, LampState.ON)
    second = await log.append("a@example.com", DeviceKey.KITCHEN, LampState.OFF)

    assert [e.id for e in await log.list_entries()] == [second.id, first.id]


@pytest.mark.asyncio
async def test_memory_log_delete_one_and_missing() -> None:
    log = InMemoryAuditLog()
    entry = await log.append("a@example.com", DeviceKey.KITCHEN, LampState.ON)

    await log.delete(entry.id)

    assert await log.list_entries() == []
    with pytest.raises(AuditEntryNotFoundError):
        await log.delete(entry.id)


@pytest.mark.asyncio
async def test_memory_log_delete_all_then_retry_is_a_no_op() -> None:
    log = InMemoryAuditLog()
    for _ in range(5):
        await log.append("a@example.com", DeviceKey.DINING, LampState.OFF)

    assert await log.delete_all() == 5
    assert await log.list_entries() == []
    assert await log.delete_all() == 0


# ----------------------------------------------------------------------
# Firestore
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_firestore_append_writes_dashboard_field_names() -> None:
    db = _FakeFirestore()
    log = FirestoreAuditLog(db, collection="lampu_logs", clock=_ticking_clock())

    entry = await log.append("alice@example.com", DeviceKey.KITCHEN, LampState.ON)

    stored = db.collection("lampu_logs").docs[entry.id]
    assert stored["user"] == "alice@example.com"
    assert stored["lampu"] == "kitchen"
    assert stored["action"] == "ON"
    assert stored["timestamp"] == entry.timestamp


@pytest.mark.asyncio
async def test_firestore_list_is_newest_first_and_skips_malformed_documents() -> None:
    db = _FakeFirestore()
    log = FirestoreAuditLog(db, clock=_ticking_clock())
    await log.append("a@example.com", DeviceKey.KITCHEN, LampState.ON)
    await log.append("b@example.com", DeviceKey.GUEST, LampState.OFF)
    db.collection("lampu_logs").docs["legacy"] = {
        "user": "old@example.com",
        "lampu": "dapur",
        "action": "OFF",
        "timestamp": datetime(2025, 1, 1, tzinfo=UTC),
    }
    db.collection("lampu_logs").docs["broken"] = {
        "user": "x@example.com",
        "lampu": "garage",
        "action": "ON",
        "timestamp": datetime(2025, 1, 2, tzinfo=UTC),
    }

    entries = await log.list_entries()

    assert [e.actor_email for e in entries] == ["b@example.com", "a@example.com", "old@example.com"]
    assert entries[-1].device is DeviceKey.KITCHEN


@pytest.mark.asyncio
async def test_firestore_delete_missing_entry() -> None:
    log = FirestoreAuditLog(_FakeFirestore())

    with pytest.raises(AuditEntryNotFoundError):
        await log.delete("nope")


@pytest.mark.asyncio
async def test_firestore_delete_all_uses_one_batch() -> None:
    db = _FakeFirestore()
    log = FirestoreAuditLog(db)
    for _ in range(5):
        await log.append("a@example.com", DeviceKey.DINING, LampState.ON)

    assert await log.delete_all() == 5
    assert len(db.batches) == 1
    assert db.batches[0].committed is True
    assert db.collection("lampu_logs").docs == {}

    assert await log.delete_all() == 0
    assert len(db.batches) == 1


@pytest.mark.asyncio
async def test_firestore_delete_all_refuses_more_than_one_batch() -> None:
    db = _FakeFirestore()
    docs = db.collection("lampu_logs").docs
    for i in range(501):
        docs[f"d{i}"] = {"user": "a", "lampu": "kitchen", "action": "ON", "timestamp": datetime(2026, 1, 1, tzinfo=UTC)}

    with pytest.raises(AuditWriteError):
        await FirestoreAuditLog(db).delete_all()

    assert len(docs) == 501
    assert db.batches == []


@pytest.mark.asyncio
async def test_firestore_errors_are_wrapped() -> None:
    db = _FakeFirestore()
    db.collection("lampu_logs").fail = google_exceptions.PermissionDenied("rules rejected write")
    log = FirestoreAuditLog(db)

    with pytest.raises(AuditWriteError):
        await log.append("a@example.com", DeviceKey.KITCHEN, LampState.ON)
    with pytest.raises(AuditLogError):
        await log.list_entries()
    with pytest.raises(AuditWriteError):
        await log.delete_all()


def test_entry_from_document_requires_timestamp() -> None:
    assert entry_from_document("x", {"user": "a", "lampu": "kitchen", "action": "ON"}) is None

"""Firestore-backed activity log.

Documents keep the field names written by the first dashboard release
(``user``, ``lampu``, ``action``, ``timestamp``) so existing logs stay
readable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from google.api_core import exceptions as google_exceptions

from pylamp._constants import FIRESTORE_MAX_BATCH, LOG_COLLECTION
from pylamp.exceptions import AuditEntryNotFoundError, AuditLogError, AuditWriteError
from pylamp.models._base import utcnow
from pylamp.models.device import DeviceKey, LampState
from pylamp.models.log_entry import LogEntry

_logger = logging.getLogger(__name__)


def entry_from_document(doc_id: str, data: dict[str, Any]) -> LogEntry | None:
    """Build a :class:`LogEntry` from a stored document, ``None`` if malformed."""
    try:
        return LogEntry(
            id=doc_id,
            actor_email=str(data.get("user") or ""),
            device=DeviceKey(data.get("lampu")),
            action=LampState.parse(data.get("action")),
            timestamp=data["timestamp"],
        )
    except (KeyError, TypeError, ValueError):
        _logger.debug("Skipping malformed log document %s: %s", doc_id, data)
        return None


class FirestoreAuditLog:
    """Activity log stored in a Firestore collection.

    *db* is a ``google.cloud.firestore.AsyncClient`` as returned by
    ``firebase_admin.firestore_async.client()``.
    """

    def __init__(
        self,
        db: Any,
        *,
        collection: str = LOG_COLLECTION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._collection_name = collection
        self._clock = clock

    def _collection(self) -> Any:
        return self._db.collection(self._collection_name)

    async def append(self, actor_email: str, device: DeviceKey, action: LampState) -> LogEntry:
        timestamp = self._clock()
        document = {
            "user": actor_email,
            "lampu": device.value,
            "action": action.value,
            "timestamp": timestamp,
        }
        try:
            _update_time, ref = await self._collection().add(document)
        except google_exceptions.GoogleAPIError as exc:
            raise AuditWriteError(f"Could not append log entry: {exc}") from exc
        return LogEntry(id=ref.id, actor_email=actor_email, device=device, action=action, timestamp=timestamp)

    async def list_entries(self) -> list[LogEntry]:
        query = self._collection().order_by("timestamp", direction="DESCENDING")
        try:
            snapshots = await query.get()
        except google_exceptions.GoogleAPIError as exc:
            raise AuditLogError(f"Could not read log entries: {exc}") from exc
        entries: list[LogEntry] = []
        for snapshot in snapshots:
            entry = entry_from_document(snapshot.id, snapshot.to_dict() or {})
            if entry is not None:
                entries.append(entry)
        return entries

    async def delete(self, entry_id: str) -> None:
        ref = self._collection().document(entry_id)
        try:
            snapshot = await ref.get()
            if not snapshot.exists:
                raise AuditEntryNotFoundError(entry_id)
            await ref.delete()
        except google_exceptions.NotFound as exc:
            raise AuditEntryNotFoundError(entry_id) from exc
        except google_exceptions.GoogleAPIError as exc:
            raise AuditWriteError(f"Could not delete log entry {entry_id}: {exc}") from exc

    async def delete_all(self) -> int:
        """Delete every entry in a single batch.

        Firestore batches are atomic but capped at 500 writes; a larger log
        is refused before anything is deleted.
        """
        try:
            snapshots = await self._collection().get()
            if not snapshots:
                return 0
            if len(snapshots) > FIRESTORE_MAX_BATCH:
                raise AuditWriteError(
                    f"Log holds {len(snapshots)} entries; at most {FIRESTORE_MAX_BATCH} can be deleted atomically"
                )
            batch = self._db.batch()
            for snapshot in snapshots:
                batch.delete(snapshot.reference)
            await batch.commit()
        except google_exceptions.GoogleAPIError as exc:
            raise AuditWriteError(f"Could not clear the log: {exc}") from exc
        _logger.info("Deleted %d log entries", len(snapshots))
        return len(snapshots)

"""In-memory activity log for local runs and tests."""

from __future__ import annotations

import itertools
import secrets
from collections.abc import Callable
from datetime import datetime

from pylamp.exceptions import AuditEntryNotFoundError
from pylamp.models._base import utcnow
from pylamp.models.device import DeviceKey, LampState
from pylamp.models.log_entry import LogEntry


class InMemoryAuditLog:
    """Process-local activity log. Contents are lost on restart."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[int, LogEntry]] = {}
        self._seq = itertools.count()

    async def append(self, actor_email: str, device: DeviceKey, action: LampState) -> LogEntry:
        entry = LogEntry(
            id=secrets.token_hex(10),
            actor_email=actor_email,
            device=device,
            action=action,
            timestamp=self._clock(),
        )
        self._entries[entry.id] = (next(self._seq), entry)
        return entry

    async def list_entries(self) -> list[LogEntry]:
        ordered = sorted(self._entries.values(), key=lambda item: (item[1].timestamp, item[0]), reverse=True)
        return [entry for _, entry in ordered]

    async def delete(self, entry_id: str) -> None:
        if self._entries.pop(entry_id, None) is None:
            raise AuditEntryNotFoundError(entry_id)

    async def delete_all(self) -> int:
        count = len(self._entries)
        self._entries = {}
        return count

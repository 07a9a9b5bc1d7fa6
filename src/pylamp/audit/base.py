"""Activity log contract."""

from __future__ import annotations

from typing import Protocol

from pylamp.models.device import DeviceKey, LampState
from pylamp.models.log_entry import LogEntry


class AuditLog(Protocol):
    """Append-only record of dispatched commands.

    Implementations raise :class:`~pylamp.exceptions.AuditWriteError` for
    storage failures and :class:`~pylamp.exceptions.AuditEntryNotFoundError`
    when deleting an id that does not exist.
    """

    async def append(self, actor_email: str, device: DeviceKey, action: LampState) -> LogEntry: ...

    async def list_entries(self) -> list[LogEntry]:
        """Snapshot of all entries, newest first."""
        ...

    async def delete(self, entry_id: str) -> None: ...

    async def delete_all(self) -> int:
        """Remove every entry in one atomic write; returns how many were removed."""
        ...

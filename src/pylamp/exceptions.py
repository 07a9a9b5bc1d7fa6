"""Custom exception hierarchy for pylamp."""

from __future__ import annotations


class LampError(Exception):
    """Base exception for all pylamp errors."""


class LampConfigError(LampError):
    """Invalid or missing configuration."""


class InvalidDeviceError(LampError, ValueError):
    """Device key is not part of the registry."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Unknown device key: {key!r}")


class LampTransportError(LampError):
    """Transport-level failure (bridge or broker)."""

    def __init__(
        self,
        message: str,
        *,
        device: str = "",
        status_code: int | None = None,
    ) -> None:
        self.device = device
        self.status_code = status_code
        super().__init__(message)


class LampConnectionError(LampTransportError):
    """Transport unreachable or not connected.

    Raised immediately by ``send`` while a broadcast transport is
    disconnected; commands are never queued.
    """


class LampTimeoutError(LampTransportError):
    """No answer from the transport within the configured window."""


class AuditLogError(LampError):
    """Base class for activity log failures."""


class AuditWriteError(AuditLogError):
    """Append or delete against the activity log failed."""


class AuditEntryNotFoundError(AuditLogError):
    """Deleting a log entry that does not exist."""

    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"Log entry not found: {entry_id}")


class LampAuthenticationError(LampError):
    """Sign-in failed, was cancelled, or the ID token was rejected."""


class AccessDeniedError(LampError):
    """The current role may not perform the requested action."""


class ProfileStoreError(LampError):
    """Reading or writing a user profile record failed."""


class ProfileNotFoundError(ProfileStoreError):
    """No profile record for the given uid."""

    def __init__(self, uid: str) -> None:
        self.uid = uid
        super().__init__(f"No profile for uid {uid}")

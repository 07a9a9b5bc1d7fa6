"""Per-device sync state and the change notifications emitted for it."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from pylamp.models._base import LampBaseModel, utcnow
from pylamp.models.device import DeviceKey, LampState


class SyncPhase(StrEnum):
    UNKNOWN = "unknown"
    PENDING = "pending"
    CONFIRMED = "confirmed"


class ChangeReason(StrEnum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    SEND_FAILED = "send_failed"
    TIMEOUT = "timeout"


class DeviceSyncState(LampBaseModel):
    """Where one lamp stands in the command/confirmation cycle.

    ``confirmed`` survives a pending command so that a failed or
    timed-out command can be undone. ``last_command_id`` names the newest
    command issued for the lamp, pending or not.
    """

    device: DeviceKey
    phase: SyncPhase = SyncPhase.UNKNOWN
    confirmed: LampState = LampState.UNKNOWN
    desired: LampState | None = None
    command_id: str | None = None
    last_command_id: str | None = None
    pending_since: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.phase is SyncPhase.PENDING

    @property
    def displayed(self) -> LampState:
        """The state a renderer should show, optimism included."""
        if self.phase is SyncPhase.PENDING and self.desired is not None:
            return self.desired
        return self.confirmed


class StateChange(LampBaseModel):
    """Notification sent to listeners after every state transition."""

    device: DeviceKey
    previous: DeviceSyncState
    current: DeviceSyncState
    reason: ChangeReason
    discrepancy: bool = False
    error: str | None = None

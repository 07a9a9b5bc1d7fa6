"""Commands issued by users."""

from __future__ import annotations

import secrets
from datetime import datetime

from pydantic import Field, field_validator

from pylamp.models._base import LampBaseModel, utcnow
from pylamp.models.device import DeviceKey, LampState
from pylamp.models.identity import Identity


def new_command_id() -> str:
    return secrets.token_hex(8)


class Command(LampBaseModel):
    """A single user request to switch a lamp. Never retried."""

    command_id: str = Field(default_factory=new_command_id)
    device: DeviceKey
    desired: LampState
    issued_by: Identity | None = None
    issued_at: datetime = Field(default_factory=utcnow)

    @field_validator("desired")
    @classmethod
    def _reject_unknown(cls, value: LampState) -> LampState:
        if value is LampState.UNKNOWN:
            raise ValueError("desired state must be ON or OFF")
        return value


class CommandReceipt(LampBaseModel):
    """Outcome of :meth:`pylamp.state.StateReconciler.request`.

    ``dispatched`` is ``False`` when the device was already confirmed in
    the desired state. ``log_error`` carries the message of a failed
    activity-log write; the command itself still went out.
    """

    command: Command
    dispatched: bool
    displayed: LampState
    pending: bool
    log_entry_id: str | None = None
    log_error: str | None = None

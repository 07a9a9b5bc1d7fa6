"""Activity log records."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from pylamp.models._base import LampBaseModel, utcnow
from pylamp.models.device import DeviceKey, LampState


class LogEntry(LampBaseModel):
    """One dispatched command, as written to the activity log."""

    id: str
    actor_email: str
    device: DeviceKey
    action: LampState
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("action")
    @classmethod
    def _known_action(cls, value: LampState) -> LampState:
        if value is LampState.UNKNOWN:
            raise ValueError("action must be ON or OFF")
        return value

"""Data models for pylamp."""

from pylamp.models._base import LampBaseModel, LampEnum, utcnow
from pylamp.models.command import Command, CommandReceipt, new_command_id
from pylamp.models.device import Device, DeviceKey, LampState
from pylamp.models.identity import Identity, Role, UserProfile
from pylamp.models.log_entry import LogEntry

__all__ = [
    "Command",
    "CommandReceipt",
    "Device",
    "DeviceKey",
    "Identity",
    "LampBaseModel",
    "LampEnum",
    "LampState",
    "LogEntry",
    "Role",
    "UserProfile",
    "new_command_id",
    "utcnow",
]

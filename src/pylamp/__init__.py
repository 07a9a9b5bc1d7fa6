"""pylamp - Async lamp dashboard with optimistic device-state synchronization."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pylamp")
except PackageNotFoundError:
    __version__ = "0+local"
from pylamp.client import LampClient
from pylamp.config import LampConfig, TransportMode
from pylamp.exceptions import (
    AccessDeniedError,
    AuditEntryNotFoundError,
    AuditLogError,
    AuditWriteError,
    InvalidDeviceError,
    LampAuthenticationError,
    LampConfigError,
    LampConnectionError,
    LampError,
    LampTimeoutError,
    LampTransportError,
    ProfileNotFoundError,
    ProfileStoreError,
)
from pylamp.models import (
    Command,
    CommandReceipt,
    Device,
    DeviceKey,
    Identity,
    LampState,
    LogEntry,
    Role,
    UserProfile,
)
from pylamp.registry import DeviceRegistry
from pylamp.state import ChangeReason, DeviceSyncState, StateChange, StateReconciler, SyncPhase
from pylamp.transport import ConnectionStatus

__all__ = [
    "AccessDeniedError",
    "AuditEntryNotFoundError",
    "AuditLogError",
    "AuditWriteError",
    "ChangeReason",
    "Command",
    "CommandReceipt",
    "ConnectionStatus",
    "Device",
    "DeviceKey",
    "DeviceRegistry",
    "DeviceSyncState",
    "Identity",
    "InvalidDeviceError",
    "LampAuthenticationError",
    "LampClient",
    "LampConfig",
    "LampConfigError",
    "LampConnectionError",
    "LampError",
    "LampState",
    "LampTimeoutError",
    "LampTransportError",
    "LogEntry",
    "ProfileNotFoundError",
    "ProfileStoreError",
    "Role",
    "StateChange",
    "StateReconciler",
    "SyncPhase",
    "TransportMode",
    "UserProfile",
    "__version__",
]

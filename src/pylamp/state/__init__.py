"""State layer.

This package is the single owner of per-lamp state. Optimistic commands,
transport confirmations and timeouts are merged here into one
authoritative value per device; everything else only reads it.
"""

from pylamp.state.events import ChangeReason, DeviceSyncState, StateChange, SyncPhase
from pylamp.state.reconciler import StateListener, StateReconciler

__all__ = [
    "ChangeReason",
    "DeviceSyncState",
    "StateChange",
    "StateListener",
    "StateReconciler",
    "SyncPhase",
]

"""Deterministic transition rules for the per-device state machine.

These functions are pure: they take the current state and return the
next one, or ``None`` when the input must be ignored. The reconciler
owns sequencing, notification and side effects.
"""

from __future__ import annotations

from datetime import datetime

from pylamp.models.device import LampState
from pylamp.state.events import DeviceSyncState, SyncPhase


def begin_command(
    state: DeviceSyncState,
    desired: LampState,
    *,
    command_id: str,
    now: datetime,
) -> DeviceSyncState | None:
    """Enter ``PENDING(desired)``; ``None`` if already confirmed in *desired*."""
    if state.phase is SyncPhase.CONFIRMED and state.confirmed is desired:
        return None
    return state.model_copy(
        update={
            "phase": SyncPhase.PENDING,
            "desired": desired,
            "command_id": command_id,
            "last_command_id": command_id,
            "pending_since": now,
            "updated_at": now,
        }
    )


def confirm(
    state: DeviceSyncState,
    observed: LampState,
    *,
    now: datetime,
    command_id: str | None = None,
) -> tuple[DeviceSyncState, bool] | None:
    """Apply a confirmation. Returns ``(next_state, discrepancy)``.

    Confirmations are applied in arrival order and always win over the
    optimistic value. A confirmation correlated to a command that a newer
    command has since replaced (the answer to a superseded direct-mode
    request) is dropped, as is an ``UNKNOWN`` observation. The answer to
    the newest command is applied even after a read probe or a timeout
    already settled it.
    """
    if observed is LampState.UNKNOWN:
        return None
    if command_id is not None and command_id != state.last_command_id:
        return None

    discrepancy = state.is_pending and state.desired is not observed
    return (
        state.model_copy(
            update={
                "phase": SyncPhase.CONFIRMED,
                "confirmed": observed,
                "desired": None,
                "command_id": None,
                "pending_since": None,
                "updated_at": now,
            }
        ),
        discrepancy,
    )


def revert(state: DeviceSyncState, *, command_id: str, now: datetime) -> DeviceSyncState | None:
    """Undo the optimistic value of *command_id*.

    Only the command that is still pending may be reverted; a failure
    reported for an already superseded command changes nothing.
    """
    if not state.is_pending or state.command_id != command_id:
        return None
    phase = SyncPhase.UNKNOWN if state.confirmed is LampState.UNKNOWN else SyncPhase.CONFIRMED
    return state.model_copy(
        update={
            "phase": phase,
            "desired": None,
            "command_id": None,
            "pending_since": None,
            "updated_at": now,
        }
    )

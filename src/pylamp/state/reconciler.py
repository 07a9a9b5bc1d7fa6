"""Merge optimistic commands and transport confirmations into one state per lamp.

This is the only component allowed to mutate the per-device state table.
All mutation happens on the event loop; transports deliver from other
threads via ``call_soon_threadsafe`` only.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime

from pylamp._redact import mask_email
from pylamp.audit.base import AuditLog
from pylamp.exceptions import AuditWriteError
from pylamp.models._base import utcnow
from pylamp.models.command import Command, CommandReceipt
from pylamp.models.device import DeviceKey, LampState
from pylamp.models.identity import Identity
from pylamp.registry import DeviceRegistry
from pylamp.state.events import ChangeReason, DeviceSyncState, StateChange
from pylamp.state.policy import begin_command, confirm, revert
from pylamp.transport.base import Transport, TransportSubscription

_logger = logging.getLogger(__name__)

StateListener = Callable[[StateChange], None]


class StateReconciler:
    """Per-device state machine: ``UNKNOWN`` -> ``PENDING(v)`` -> ``CONFIRMED(v)``.

    Usage::

        reconciler = StateReconciler(transport, registry, audit_log=log)
        remove = reconciler.add_listener(render)
        await reconciler.start()
        await reconciler.request("kitchen", LampState.ON, actor=identity)
    """

    def __init__(
        self,
        transport: Transport,
        registry: DeviceRegistry,
        *,
        audit_log: AuditLog | None = None,
        pending_timeout: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._audit_log = audit_log
        self._pending_timeout = pending_timeout
        self._clock = clock
        now = clock()
        self._states: dict[DeviceKey, DeviceSyncState] = {
            key: DeviceSyncState(device=key, updated_at=now) for key in registry.keys
        }
        self._listeners: list[StateListener] = []
        self._timers: dict[DeviceKey, asyncio.TimerHandle] = {}
        self._subscription: TransportSubscription | None = None
        self._consumer: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming transport confirmations."""
        if self._consumer is not None:
            return
        subscription = self._transport.subscribe()
        self._subscription = subscription
        self._consumer = asyncio.create_task(self._consume(subscription))

    async def stop(self) -> None:
        subscription = self._subscription
        consumer = self._consumer
        self._subscription = None
        self._consumer = None
        if subscription is not None:
            subscription.close()
        if consumer is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    async def _consume(self, subscription: TransportSubscription) -> None:
        async for observation in subscription:
            self.apply_confirmation(observation.device, observation.state)

    # ------------------------------------------------------------------
    # Observers and read access
    # ------------------------------------------------------------------

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener* for every :class:`StateChange`; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    def state(self, device: str | DeviceKey) -> DeviceSyncState:
        return self._states[self._registry.resolve(device)]

    def displayed(self, device: str | DeviceKey) -> LampState:
        return self.state(device).displayed

    def snapshot(self) -> dict[DeviceKey, DeviceSyncState]:
        return dict(self._states)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set(
        self,
        device: DeviceKey,
        new_state: DeviceSyncState,
        reason: ChangeReason,
        *,
        discrepancy: bool = False,
        error: str | None = None,
    ) -> StateChange:
        previous = self._states[device]
        self._states[device] = new_state
        change = StateChange(
            device=device,
            previous=previous,
            current=new_state,
            reason=reason,
            discrepancy=discrepancy,
            error=error,
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                _logger.exception("State listener failed for %s", device)
        return change

    def _cancel_timer(self, device: DeviceKey) -> None:
        handle = self._timers.pop(device, None)
        if handle is not None:
            handle.cancel()

    def _arm_timer(self, device: DeviceKey, command_id: str) -> None:
        self._cancel_timer(device)
        if self._pending_timeout <= 0:
            return
        loop = asyncio.get_running_loop()
        self._timers[device] = loop.call_later(self._pending_timeout, self._expire, device, command_id)

    def _expire(self, device: DeviceKey, command_id: str) -> None:
        self._timers.pop(device, None)
        if self._revert(device, command_id, ChangeReason.TIMEOUT, error="No confirmation received") is not None:
            _logger.warning(
                "No confirmation for %s within %.1fs, reverted to %s",
                device,
                self._pending_timeout,
                self._states[device].displayed,
            )

    def _revert(
        self,
        device: DeviceKey,
        command_id: str,
        reason: ChangeReason,
        *,
        error: str | None = None,
    ) -> StateChange | None:
        reverted = revert(self._states[device], command_id=command_id, now=self._clock())
        if reverted is None:
            return None
        self._cancel_timer(device)
        return self._set(device, reverted, reason, error=error)

    def apply_confirmation(
        self,
        device: str | DeviceKey,
        observed: LampState,
        *,
        command_id: str | None = None,
    ) -> StateChange | None:
        """Apply a state reported by the transport.

        Returns the resulting change, or ``None`` when the confirmation was
        dropped (``UNKNOWN`` value, or correlated to a superseded command).
        """
        key = self._registry.resolve(device)
        current = self._states[key]
        result = confirm(current, observed, now=self._clock(), command_id=command_id)
        if result is None:
            _logger.debug("Dropped confirmation %s for %s (command=%s)", observed, key, command_id)
            return None
        new_state, discrepancy = result
        if current.is_pending:
            self._cancel_timer(key)
        if discrepancy:
            _logger.warning("%s reported %s while %s was pending", key, observed, current.desired)
        return self._set(key, new_state, ChangeReason.CONFIRMED, discrepancy=discrepancy)

    async def request(
        self,
        device: str | DeviceKey,
        desired: LampState | str,
        *,
        actor: Identity | None = None,
    ) -> CommandReceipt:
        """Switch *device* to *desired* optimistically and dispatch the command.

        Raises the transport's error after reverting the optimistic value
        when the send fails. Activity-log failures never fail the command;
        they are reported in :attr:`CommandReceipt.log_error`.
        """
        key = self._registry.resolve(device)
        command = Command(device=key, desired=LampState(desired), issued_by=actor)

        next_state = begin_command(
            self._states[key],
            command.desired,
            command_id=command.command_id,
            now=self._clock(),
        )
        if next_state is None:
            current = self._states[key]
            return CommandReceipt(command=command, dispatched=False, displayed=current.displayed, pending=False)

        self._set(key, next_state, ChangeReason.OPTIMISTIC)
        self._arm_timer(key, command.command_id)

        try:
            confirmed = await self._transport.send(key, command.desired)
        except Exception as exc:
            self._revert(key, command.command_id, ChangeReason.SEND_FAILED, error=str(exc))
            _logger.warning("Command %s -> %s failed: %s", key, command.desired, exc)
            raise

        if confirmed is not None:
            self.apply_confirmation(key, confirmed, command_id=command.command_id)

        log_entry_id: str | None = None
        log_error: str | None = None
        if actor is not None and self._audit_log is not None:
            actor_email = actor.email or actor.uid
            try:
                entry = await self._audit_log.append(actor_email, key, command.desired)
                log_entry_id = entry.id
            except AuditWriteError as exc:
                _logger.warning("Activity log write failed for %s: %s", mask_email(actor.email), exc)
                log_error = str(exc)

        final = self._states[key]
        return CommandReceipt(
            command=command,
            dispatched=True,
            displayed=final.displayed,
            pending=final.is_pending,
            log_entry_id=log_entry_id,
            log_error=log_error,
        )

    async def toggle(self, device: str | DeviceKey, *, actor: Identity | None = None) -> CommandReceipt:
        """Request the opposite of what is currently displayed."""
        return await self.request(device, self.displayed(device).inverted(), actor=actor)

    async def refresh(self) -> dict[DeviceKey, LampState]:
        """Read-probe every device and apply the answers as confirmations.

        Devices that cannot be read keep their state; the failure is logged.
        """
        results: dict[DeviceKey, LampState] = {}
        for key in self._registry.keys:
            try:
                observed = await self._transport.read(key)
            except Exception as exc:
                _logger.warning("Read probe for %s failed: %s", key, exc)
                continue
            results[key] = observed
            self.apply_confirmation(key, observed)
        return results

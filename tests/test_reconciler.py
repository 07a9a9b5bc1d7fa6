from __future__ import annotations

import asyncio

import pytest

from pylamp.audit.memory import InMemoryAuditLog
from pylamp.exceptions import AuditWriteError, InvalidDeviceError, LampConnectionError
from pylamp.models.device import DeviceKey, LampState
from pylamp.models.identity import Identity
from pylamp.registry import DeviceRegistry
from pylamp.state.events import ChangeReason, StateChange, SyncPhase
from pylamp.state.reconciler import StateReconciler
from pylamp.transport.base import ConnectionStatus, StateObservation, SubscriptionHub, TransportSubscription

ALICE = Identity(uid="u-alice", email="alice@example.com", display_name="Alice")


class _FakeTransport:
    """Records sends; optionally answers in-band like the HTTP bridge."""

    def __init__(self, *, answer_in_band: bool = False) -> None:
        self._hub = SubscriptionHub()
        self.answer_in_band = answer_in_band
        self.sent: list[tuple[DeviceKey, LampState]] = []
        self.fail_with: Exception | None = None
        self.gates: list[asyncio.Event] = []
        self.answers: dict[DeviceKey, LampState] = {}
        self.remote: dict[DeviceKey, LampState] = {}

    @property
    def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus.CONNECTED

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        self._hub.close_all()

    async def send(self, device: DeviceKey, desired: LampState) -> LampState | None:
        self.sent.append((device, desired))
        if self.gates:
            await self.gates.pop(0).wait()
        if self.fail_with is not None:
            raise self.fail_with
        if self.answer_in_band:
            return self.answers.get(device, desired)
        return None

    async def read(self, device: DeviceKey) -> LampState:
        if device not in self.remote:
            raise LampConnectionError("bridge unreachable", device=device)
        return self.remote[device]

    def subscribe(self, callback=None) -> TransportSubscription:  # type: ignore[no-untyped-def]
        return self._hub.subscribe(callback)

    def push(self, device: DeviceKey, state: LampState) -> None:
        self._hub.publish(StateObservation(device=device, state=state))


class _FailingAuditLog(InMemoryAuditLog):
    async def append(self, actor_email, device, action):  # type: ignore[no-untyped-def]
        raise AuditWriteError("permission denied")


def _reconciler(transport: _FakeTransport, **kwargs) -> tuple[StateReconciler, list[StateChange]]:  # type: ignore[no-untyped-def]
    kwargs.setdefault("pending_timeout", 0)
    reconciler = StateReconciler(transport, DeviceRegistry.default(topic_base="lampu"), **kwargs)
    changes: list[StateChange] = []
    reconciler.add_listener(changes.append)
    return reconciler, changes


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_initial_state_is_unknown_for_every_device() -> None:
    reconciler, _ = _reconciler(_FakeTransport())
    snapshot = reconciler.snapshot()
    assert set(snapshot) == set(DeviceKey)
    assert all(s.phase is SyncPhase.UNKNOWN for s in snapshot.values())
    assert all(s.displayed is LampState.UNKNOWN for s in snapshot.values())


@pytest.mark.asyncio
async def test_request_is_optimistic_until_broadcast_confirmation() -> None:
    transport = _FakeTransport()
    reconciler, changes = _reconciler(transport)

    receipt = await reconciler.request("kitchen", LampState.ON)

    assert receipt.dispatched is True
    assert receipt.pending is True
    assert receipt.displayed is LampState.ON
    assert transport.sent == [(DeviceKey.KITCHEN, LampState.ON)]
    assert reconciler.state("kitchen").phase is SyncPhase.PENDING

    change = reconciler.apply_confirmation(DeviceKey.KITCHEN, LampState.ON)

    assert change is not None
    assert change.discrepancy is False
    state = reconciler.state("kitchen")
    assert state.phase is SyncPhase.CONFIRMED
    assert state.confirmed is LampState.ON
    assert [c.reason for c in changes] == [ChangeReason.OPTIMISTIC, ChangeReason.CONFIRMED]


@pytest.mark.asyncio
async def test_in_band_answer_confirms_immediately() -> None:
    reconciler, _ = _reconciler(_FakeTransport(answer_in_band=True))

    receipt = await reconciler.request(DeviceKey.GUEST, "ON")

    assert receipt.pending is False
    assert receipt.displayed is LampState.ON
    assert reconciler.state(DeviceKey.GUEST).confirmed is LampState.ON


@pytest.mark.asyncio
async def test_send_failure_reverts_and_writes_no_log_entry() -> None:
    transport = _FakeTransport()
    transport.fail_with = LampConnectionError("broker offline")
    audit = InMemoryAuditLog()
    reconciler, changes = _reconciler(transport, audit_log=audit)
    reconciler.apply_confirmation(DeviceKey.KITCHEN, LampState.OFF)

    with pytest.raises(LampConnectionError):
        await reconciler.request("kitchen", LampState.ON, actor=ALICE)

    state = reconciler.state("kitchen")
    assert state.phase is SyncPhase.CONFIRMED
    assert state.displayed is LampState.OFF
    assert changes[-1].reason is ChangeReason.SEND_FAILED
    assert changes[-1].error == "broker offline"
    assert await audit.list_entries() == []


@pytest.mark.asyncio
async def test_send_failure_from_unknown_returns_to_unknown() -> None:
    transport = _FakeTransport()
    transport.fail_with = LampConnectionError("broker offline")
    reconciler, _ = _reconciler(transport)

    with pytest.raises(LampConnectionError):
        await reconciler.request("dining", LampState.ON)

    assert reconciler.state("dining").phase is SyncPhase.UNKNOWN
    assert reconciler.displayed("dining") is LampState.UNKNOWN


@pytest.mark.asyncio
async def test_remote_truth_wins_over_pending_command() -> None:
    transport = _FakeTransport()
    reconciler, changes = _reconciler(transport)

    await reconciler.request("kitchen", LampState.ON)
    change = reconciler.apply_confirmation("kitchen", LampState.OFF)

    assert change is not None
    assert change.discrepancy is True
    assert reconciler.displayed("kitchen") is LampState.OFF
    assert reconciler.state("kitchen").is_pending is False
    assert changes[-1].reason is ChangeReason.CONFIRMED


@pytest.mark.asyncio
async def test_toggle_from_confirmed_off_turns_dining_on() -> None:
    transport = _FakeTransport()
    reconciler, _ = _reconciler(transport)
    reconciler.apply_confirmation("dining", LampState.OFF)

    receipt = await reconciler.toggle("dining")

    assert receipt.command.desired is LampState.ON
    assert transport.sent == [(DeviceKey.DINING, LampState.ON)]

    transport.push(DeviceKey.DINING, LampState.ON)
    # Not subscribed yet: nothing is consumed until start().
    assert reconciler.state("dining").is_pending is True

    reconciler.apply_confirmation("dining", LampState.ON)
    assert reconciler.state("dining").confirmed is LampState.ON


@pytest.mark.asyncio
async def test_toggle_from_unknown_requests_on() -> None:
    transport = _FakeTransport()
    reconciler, _ = _reconciler(transport)

    receipt = await reconciler.toggle("guest")

    assert receipt.command.desired is LampState.ON


@pytest.mark.asyncio
async def test_subscription_confirmations_are_consumed_after_start() -> None:
    transport = _FakeTransport()
    reconciler, changes = _reconciler(transport)
    await reconciler.start()
    try:
        await reconciler.request("kitchen", LampState.ON)
        transport.push(DeviceKey.KITCHEN, LampState.ON)
        # Unsolicited status for a device nobody commanded.
        transport.push(DeviceKey.GUEST, LampState.OFF)
        await _drain()
    finally:
        await reconciler.stop()

    assert reconciler.state("kitchen").confirmed is LampState.ON
    assert reconciler.state("guest").confirmed is LampState.OFF
    assert [c.device for c in changes if c.reason is ChangeReason.CONFIRMED] == [
        DeviceKey.KITCHEN,
        DeviceKey.GUEST,
    ]


@pytest.mark.asyncio
async def test_confirmations_apply_in_arrival_order() -> None:
    reconciler, _ = _reconciler(_FakeTransport())

    reconciler.apply_confirmation("guest", LampState.ON)
    reconciler.apply_confirmation("guest", LampState.OFF)
    reconciler.apply_confirmation("guest", LampState.ON)

    assert reconciler.state("guest").confirmed is LampState.ON


@pytest.mark.asyncio
async def test_pending_timeout_reverts_to_last_confirmed_state() -> None:
    transport = _FakeTransport()
    reconciler, changes = _reconciler(transport, pending_timeout=0.05)
    reconciler.apply_confirmation("kitchen", LampState.OFF)

    await reconciler.request("kitchen", LampState.ON)
    assert reconciler.displayed("kitchen") is LampState.ON

    await asyncio.sleep(0.15)

    assert reconciler.state("kitchen").phase is SyncPhase.CONFIRMED
    assert reconciler.displayed("kitchen") is LampState.OFF
    assert changes[-1].reason is ChangeReason.TIMEOUT


@pytest.mark.asyncio
async def test_confirmation_before_timeout_cancels_the_revert() -> None:
    transport = _FakeTransport()
    reconciler, changes = _reconciler(transport, pending_timeout=0.05)

    await reconciler.request("kitchen", LampState.ON)
    reconciler.apply_confirmation("kitchen", LampState.ON)
    await asyncio.sleep(0.1)

    assert reconciler.displayed("kitchen") is LampState.ON
    assert ChangeReason.TIMEOUT not in [c.reason for c in changes]


@pytest.mark.asyncio
async def test_answer_for_superseded_command_is_dropped() -> None:
    transport = _FakeTransport(answer_in_band=True)
    first_gate, second_gate = asyncio.Event(), asyncio.Event()
    transport.gates = [first_gate, second_gate]
    reconciler, _ = _reconciler(transport)

    first = asyncio.create_task(reconciler.request("kitchen", LampState.ON))
    await _drain()
    second = asyncio.create_task(reconciler.request("kitchen", LampState.OFF))
    await _drain()

    second_gate.set()
    second_receipt = await second
    assert second_receipt.displayed is LampState.OFF

    first_gate.set()
    first_receipt = await first

    assert reconciler.state("kitchen").confirmed is LampState.OFF
    assert first_receipt.displayed is LampState.OFF


@pytest.mark.asyncio
async def test_answer_after_read_probe_settled_the_command_still_applies() -> None:
    transport = _FakeTransport(answer_in_band=True)
    gate = asyncio.Event()
    transport.gates = [gate]
    transport.remote = {DeviceKey.KITCHEN: LampState.OFF}
    reconciler, changes = _reconciler(transport)
    reconciler.apply_confirmation("kitchen", LampState.OFF)

    task = asyncio.create_task(reconciler.request("kitchen", LampState.ON))
    await _drain()
    await reconciler.refresh()
    assert reconciler.state("kitchen").is_pending is False
    assert reconciler.displayed("kitchen") is LampState.OFF

    gate.set()
    receipt = await task

    assert receipt.displayed is LampState.ON
    assert reconciler.state("kitchen").confirmed is LampState.ON
    assert changes[-1].reason is ChangeReason.CONFIRMED


@pytest.mark.asyncio
async def test_answer_after_pending_timeout_still_applies() -> None:
    transport = _FakeTransport(answer_in_band=True)
    gate = asyncio.Event()
    transport.gates = [gate]
    reconciler, changes = _reconciler(transport, pending_timeout=0.02)
    reconciler.apply_confirmation("dining", LampState.OFF)

    task = asyncio.create_task(reconciler.request("dining", LampState.ON))
    await asyncio.sleep(0.1)
    assert reconciler.displayed("dining") is LampState.OFF
    assert ChangeReason.TIMEOUT in [c.reason for c in changes]

    gate.set()
    receipt = await task

    assert receipt.pending is False
    assert reconciler.state("dining").confirmed is LampState.ON


@pytest.mark.asyncio
async def test_correlated_confirmation_for_other_command_is_ignored() -> None:
    reconciler, _ = _reconciler(_FakeTransport())

    await reconciler.request("kitchen", LampState.ON)
    assert reconciler.apply_confirmation("kitchen", LampState.OFF, command_id="not-the-pending-one") is None
    assert reconciler.state("kitchen").is_pending is True


@pytest.mark.asyncio
async def test_request_for_already_confirmed_state_is_a_no_op() -> None:
    transport = _FakeTransport()
    audit = InMemoryAuditLog()
    reconciler, changes = _reconciler(transport, audit_log=audit)
    reconciler.apply_confirmation("guest", LampState.ON)
    changes.clear()

    receipt = await reconciler.request("guest", LampState.ON, actor=ALICE)

    assert receipt.dispatched is False
    assert receipt.displayed is LampState.ON
    assert transport.sent == []
    assert changes == []
    assert await audit.list_entries() == []


@pytest.mark.asyncio
async def test_successful_command_by_signed_in_user_is_logged() -> None:
    audit = InMemoryAuditLog()
    reconciler, _ = _reconciler(_FakeTransport(), audit_log=audit)

    receipt = await reconciler.request("dining", LampState.ON, actor=ALICE)

    entries = await audit.list_entries()
    assert len(entries) == 1
    assert entries[0].id == receipt.log_entry_id
    assert entries[0].actor_email == "alice@example.com"
    assert entries[0].device is DeviceKey.DINING
    assert entries[0].action is LampState.ON


@pytest.mark.asyncio
async def test_anonymous_command_is_not_logged() -> None:
    audit = InMemoryAuditLog()
    reconciler, _ = _reconciler(_FakeTransport(), audit_log=audit)

    receipt = await reconciler.request("dining", LampState.ON)

    assert receipt.log_entry_id is None
    assert await audit.list_entries() == []


@pytest.mark.asyncio
async def test_log_failure_does_not_fail_the_command() -> None:
    transport = _FakeTransport(answer_in_band=True)
    reconciler, _ = _reconciler(transport, audit_log=_FailingAuditLog())

    receipt = await reconciler.request("kitchen", LampState.ON, actor=ALICE)

    assert receipt.dispatched is True
    assert receipt.log_error == "permission denied"
    assert reconciler.state("kitchen").confirmed is LampState.ON


@pytest.mark.asyncio
async def test_unknown_device_is_rejected_before_anything_is_sent() -> None:
    transport = _FakeTransport()
    reconciler, changes = _reconciler(transport)

    with pytest.raises(InvalidDeviceError):
        await reconciler.request("garage", LampState.ON)

    assert transport.sent == []
    assert changes == []


@pytest.mark.asyncio
async def test_unknown_observation_is_ignored() -> None:
    reconciler, changes = _reconciler(_FakeTransport())

    assert reconciler.apply_confirmation("kitchen", LampState.UNKNOWN) is None
    assert changes == []


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_other_listeners() -> None:
    reconciler, changes = _reconciler(_FakeTransport())

    def _boom(_change: StateChange) -> None:
        raise RuntimeError("render failed")

    reconciler.add_listener(_boom)
    seen: list[StateChange] = []
    remove = reconciler.add_listener(seen.append)

    reconciler.apply_confirmation("kitchen", LampState.ON)
    remove()
    reconciler.apply_confirmation("kitchen", LampState.OFF)

    assert len(changes) == 2
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_refresh_applies_reads_and_skips_failures() -> None:
    transport = _FakeTransport()
    transport.remote = {DeviceKey.KITCHEN: LampState.ON, DeviceKey.DINING: LampState.OFF}
    reconciler, _ = _reconciler(transport)

    results = await reconciler.refresh()

    assert results == {DeviceKey.KITCHEN: LampState.ON, DeviceKey.DINING: LampState.OFF}
    assert reconciler.state("kitchen").confirmed is LampState.ON
    assert reconciler.state("guest").phase is SyncPhase.UNKNOWN

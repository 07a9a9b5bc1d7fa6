"""Transport contract shared by the direct and broadcast implementations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from pydantic import Field

from pylamp.models._base import LampBaseModel, utcnow
from pylamp.models.device import DeviceKey, LampState

_logger = logging.getLogger(__name__)

ObservationCallback = Callable[["StateObservation"], None]


class ConnectionStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    OFFLINE = "offline"


class StateObservation(LampBaseModel):
    """A lamp state reported by the transport.

    In broadcast mode this is a status message pushed by the broker and
    may come from a different physical device than the command target.
    """

    device: DeviceKey
    state: LampState
    observed_at: datetime = Field(default_factory=utcnow)
    raw: str = ""


class TransportSubscription:
    """Lazy, infinite stream of :class:`StateObservation`.

    Iterate with ``async for``. Iteration ends only after :meth:`close`;
    a closed subscription cannot be restarted, call ``subscribe`` again.
    """

    def __init__(
        self,
        hub: SubscriptionHub,
        callback: ObservationCallback | None = None,
    ) -> None:
        self._hub = hub
        self._callback = callback
        self._queue: asyncio.Queue[StateObservation | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, observation: StateObservation) -> None:
        if self._closed:
            return
        self._queue.put_nowait(observation)
        if self._callback is not None:
            try:
                self._callback(observation)
            except Exception:
                _logger.exception("Subscription callback failed for %s", observation.device)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        self._hub.discard(self)

    def __aiter__(self) -> TransportSubscription:
        return self

    async def __anext__(self) -> StateObservation:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


class SubscriptionHub:
    """Fans observations out to every open subscription.

    Must only be used from the event loop thread.
    """

    def __init__(self) -> None:
        self._subscriptions: list[TransportSubscription] = []
        self._last: dict[DeviceKey, LampState] = {}

    def subscribe(self, callback: ObservationCallback | None = None) -> TransportSubscription:
        subscription = TransportSubscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def discard(self, subscription: TransportSubscription) -> None:
        self._subscriptions = [s for s in self._subscriptions if s is not subscription]

    def publish(self, observation: StateObservation) -> None:
        self._last[observation.device] = observation.state
        for subscription in list(self._subscriptions):
            subscription._push(observation)

    def last_state(self, device: DeviceKey) -> LampState:
        return self._last.get(device, LampState.UNKNOWN)

    def close_all(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()


class Transport(Protocol):
    """Structural transport interface used by the reconciler.

    Having a protocol here makes it easy to pass test doubles while the
    production implementations stay concrete.
    """

    @property
    def connection_status(self) -> ConnectionStatus: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def send(self, device: DeviceKey, desired: LampState) -> LampState | None:
        """Dispatch a command.

        Returns the confirmed state when the transport answers in-band
        (direct mode) and ``None`` when confirmation arrives through the
        subscription (broadcast mode).
        """
        ...

    async def read(self, device: DeviceKey) -> LampState: ...

    def subscribe(self, callback: ObservationCallback | None = None) -> TransportSubscription: ...

"""Transports: how commands reach lamps and how their state comes back."""

from __future__ import annotations

from pylamp.config import LampConfig, TransportMode
from pylamp.registry import DeviceRegistry
from pylamp.transport.base import (
    ConnectionStatus,
    StateObservation,
    SubscriptionHub,
    Transport,
    TransportSubscription,
)
from pylamp.transport.broadcast import BroadcastTransport
from pylamp.transport.direct import DirectTransport


def create_transport(config: LampConfig, registry: DeviceRegistry) -> Transport:
    """Build the transport selected by ``config.mode``."""
    if config.mode is TransportMode.DIRECT:
        return DirectTransport(config, registry)
    return BroadcastTransport(config, registry)


__all__ = [
    "BroadcastTransport",
    "ConnectionStatus",
    "DirectTransport",
    "StateObservation",
    "SubscriptionHub",
    "Transport",
    "TransportSubscription",
    "create_transport",
]

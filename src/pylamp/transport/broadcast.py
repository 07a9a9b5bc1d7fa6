"""Publish/subscribe transport over an MQTT broker."""

from __future__ import annotations

import asyncio
import logging
import secrets

from pylamp.config import LampConfig
from pylamp.exceptions import LampConnectionError
from pylamp.models.device import DeviceKey, LampState
from pylamp.registry import DeviceRegistry
from pylamp.transport._mqtt import ClientFactory, LampMqttRuntime, parse_broker_url
from pylamp.transport.base import (
    ConnectionStatus,
    ObservationCallback,
    StateObservation,
    SubscriptionHub,
    TransportSubscription,
)

_logger = logging.getLogger(__name__)


class BroadcastTransport:
    """Commands go to ``<base>/<device>/set``; status comes back on ``.../status``.

    The status channel is decoupled from the command: a confirmation can
    come from another device, or arrive without any command at all.
    """

    def __init__(
        self,
        config: LampConfig,
        registry: DeviceRegistry,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._client_factory = client_factory
        self._hub = SubscriptionHub()
        self._runtime: LampMqttRuntime | None = None
        self._status = ConnectionStatus.OFFLINE
        self._client_id: str | None = None

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def client_id(self) -> str | None:
        return self._client_id

    async def connect(self) -> None:
        if self._runtime is not None and self._runtime.is_running:
            return
        loop = asyncio.get_running_loop()
        endpoint = parse_broker_url(self._config.mqtt_url)
        client_id = f"{self._config.mqtt_client_prefix}{secrets.randbelow(10000)}"
        self._client_id = client_id
        runtime = LampMqttRuntime(
            loop=loop,
            on_message=self._on_message,
            on_status=self._set_status,
            keepalive=self._config.mqtt_keepalive,
            reconnect_period=self._config.mqtt_reconnect_period,
            client_factory=self._client_factory,
            logger=_logger,
        )
        topics = list(self._registry.status_topics)
        self._status = ConnectionStatus.CONNECTING
        await loop.run_in_executor(
            None,
            lambda: runtime.start(
                endpoint,
                client_id=client_id,
                username=self._config.mqtt_username,
                password=self._config.mqtt_password,
                topics=topics,
                qos=self._config.mqtt_qos,
            ),
        )
        self._runtime = runtime

    async def disconnect(self) -> None:
        self._hub.close_all()
        runtime = self._runtime
        self._runtime = None
        if runtime is not None:
            await asyncio.get_running_loop().run_in_executor(None, runtime.stop)
        self._status = ConnectionStatus.OFFLINE

    def subscribe(self, callback: ObservationCallback | None = None) -> TransportSubscription:
        return self._hub.subscribe(callback)

    async def send(self, device: DeviceKey, desired: LampState) -> None:
        if desired is LampState.UNKNOWN:
            raise ValueError("desired state must be ON or OFF")
        runtime = self._runtime
        if runtime is None or self._status is not ConnectionStatus.CONNECTED:
            raise LampConnectionError(f"MQTT broker is {self._status}, command not sent", device=device)
        topic = self._registry.get(device).set_topic
        try:
            runtime.publish(topic, desired.wire, qos=self._config.mqtt_qos)
        except LampConnectionError as exc:
            exc.device = device
            raise
        return None

    async def read(self, device: DeviceKey) -> LampState:
        """Last status seen on the broker (retained messages arrive on subscribe)."""
        return self._hub.last_state(self._registry.resolve(device))

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is ConnectionStatus.OFFLINE and self._runtime is not None and self._runtime.is_running:
            # A stale OFFLINE from a replaced runtime.
            return
        if status != self._status:
            _logger.info("MQTT connection %s -> %s", self._status, status)
        self._status = status

    def _on_message(self, topic: str, payload: bytes) -> None:
        device = self._registry.by_status_topic(topic)
        if device is None:
            _logger.debug("Ignoring message on unrelated topic %s", topic)
            return
        state = LampState.parse(payload)
        if state is LampState.UNKNOWN:
            _logger.debug("Ignoring unparseable status on %s: %r", topic, payload[:64])
            return
        self._hub.publish(
            StateObservation(
                device=device,
                state=state,
                raw=payload.decode("utf-8", errors="replace"),
            )
        )

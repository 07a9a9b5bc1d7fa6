"""Internal MQTT runtime shared by the broadcast transport and the lamp simulator."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from pylamp.exceptions import LampConfigError, LampConnectionError
from pylamp.transport.base import ConnectionStatus

ClientFactory = Callable[[str, str], Any]

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "ws": 80, "wss": 443}


@dataclass(frozen=True)
class MqttEndpoint:
    """Broker address parsed from a URL."""

    host: str
    port: int
    transport: str
    tls: bool
    path: str = "/mqtt"


def parse_broker_url(url: str) -> MqttEndpoint:
    value = url.strip()
    if not value:
        raise LampConfigError("MQTT broker URL is empty")
    if "://" not in value:
        value = f"mqtt://{value}"

    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise LampConfigError(f"Unsupported MQTT URL scheme: {scheme!r}")
    if not parts.hostname:
        raise LampConfigError(f"MQTT broker URL has no host: {url!r}")

    websockets = scheme in {"ws", "wss"}
    return MqttEndpoint(
        host=parts.hostname,
        port=parts.port or _DEFAULT_PORTS[scheme],
        transport="websockets" if websockets else "tcp",
        tls=scheme in {"mqtts", "ssl", "wss"},
        path=(parts.path or "/mqtt") if websockets else "/mqtt",
    )


def _default_client_factory(client_id: str, transport: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        transport=cast(Any, transport),
    )


class LampMqttRuntime:
    """Threaded paho-mqtt runtime that forwards messages onto an asyncio loop.

    Paho runs its network loop in a background thread. Every callback
    that touches pylamp state is marshalled with ``call_soon_threadsafe``
    so the rest of the library only ever runs on the event loop.
    Reconnects are left to paho with a fixed delay.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[str, bytes], None],
        on_status: Callable[[ConnectionStatus], None] | None = None,
        keepalive: int = 60,
        reconnect_period: float = 3.0,
        client_factory: ClientFactory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_status = on_status
        self._keepalive = keepalive
        self._reconnect_period = max(1, round(reconnect_period))
        self._client_factory = client_factory or _default_client_factory
        self._logger = logger or logging.getLogger(__name__)
        self._client: Any = None
        self._running = False
        self._topics: list[tuple[str, int]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        client = self._client
        return bool(client is not None and self._running and client.is_connected())

    def _emit_status(self, status: ConnectionStatus) -> None:
        if self._on_status is not None:
            self._loop.call_soon_threadsafe(self._on_status, status)

    def start(
        self,
        endpoint: MqttEndpoint,
        *,
        client_id: str,
        username: str | None,
        password: str | None,
        topics: Sequence[str],
        qos: int = 0,
    ) -> None:
        """Connect in the background and subscribe to *topics* on every (re)connect."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s transport=%s client_id=%s",
            endpoint.host,
            endpoint.port,
            endpoint.transport,
            client_id,
        )

        client = self._client_factory(client_id, endpoint.transport)
        client.enable_logger(self._logger)
        if username:
            client.username_pw_set(username, password)
        if endpoint.tls:
            client.tls_set()
        if endpoint.transport == "websockets":
            client.ws_set_options(path=endpoint.path)
        client.reconnect_delay_set(min_delay=self._reconnect_period, max_delay=self._reconnect_period)

        self._topics = [(topic, qos) for topic in topics]

        def on_connect(
            c: Any,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                self._emit_status(ConnectionStatus.RECONNECTING)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            if self._topics:
                self._logger.debug("MQTT subscribing topics=%s", [t for t, _ in self._topics])
                c.subscribe(self._topics)
            self._emit_status(ConnectionStatus.CONNECTED)

        def on_message(_c: Any, _userdata: Any, msg: Any) -> None:
            self._logger.debug("Received PUBLISH topic=%s payload=%r", msg.topic, msg.payload[:64])
            self._loop.call_soon_threadsafe(self._on_message, msg.topic, bytes(msg.payload))

        def on_disconnect(
            _client: Any,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.info("MQTT disconnected (%s), reconnecting", reason_code)
                self._emit_status(ConnectionStatus.RECONNECTING)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        self._client = client
        self._running = True
        self._emit_status(ConnectionStatus.CONNECTING)
        client.connect_async(endpoint.host, endpoint.port, keepalive=self._keepalive)
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None:
        """Publish without queueing; raises when the broker is not connected."""
        client = self._client
        if client is None or not self._running or not client.is_connected():
            raise LampConnectionError(f"Not connected to MQTT broker, cannot publish to {topic}")
        info = client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise LampConnectionError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")
        self._logger.debug("Published %s -> %s", topic, payload)

    def stop(self) -> None:
        """Stop and disconnect the current client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topics = []

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
            self._emit_status(ConnectionStatus.OFFLINE)

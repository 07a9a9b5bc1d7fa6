"""Client configuration for pylamp."""

from __future__ import annotations

import dataclasses
import os
from enum import StrEnum
from typing import Any

from pylamp._constants import (
    DEFAULT_BRIDGE_URL,
    DEFAULT_KEEPALIVE,
    DEFAULT_MQTT_CLIENT_PREFIX,
    DEFAULT_MQTT_URL,
    DEFAULT_PENDING_TIMEOUT,
    DEFAULT_RECONNECT_PERIOD,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TOPIC_BASE,
    LOG_COLLECTION,
    USERS_COLLECTION,
)
from pylamp.exceptions import LampConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class TransportMode(StrEnum):
    """How commands reach the lamps."""

    BROADCAST = "broadcast"
    DIRECT = "direct"


@dataclasses.dataclass(frozen=True)
class LampConfig:
    """Client configuration.

    Parameters
    ----------
    mode : TransportMode
        ``broadcast`` publishes over MQTT, ``direct`` calls the HTTP bridge.
    mqtt_url : str
        Broker URL. ``mqtt://``, ``mqtts://``, ``ws://`` and ``wss://``
        are accepted; websocket URLs may carry a path.
    mqtt_username, mqtt_password : str or None
        Broker credentials.
    mqtt_client_prefix : str
        Prefix for the randomly generated MQTT client id.
    mqtt_topic_base : str
        Topic root. Commands go to ``<base>/<device>/set`` and status is
        read from ``<base>/<device>/status``.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_reconnect_period : float
        Fixed delay between reconnect attempts in seconds.
    mqtt_qos : int
        QoS for publish and subscribe.
    bridge_url : str
        Base URL of the local device bridge (direct mode).
    request_timeout : float
        Total timeout for one bridge request in seconds.
    pending_timeout : float
        Seconds a command may stay unconfirmed before the optimistic
        state is reverted. ``0`` disables the timeout.
    default_role : str
        Role for signed-in users without a profile record. Must be
        ``user`` or ``guest``.
    allow_anonymous_control : bool
        Let requests without a session switch lamps. Such commands are
        never written to the activity log.
    firebase_enabled : bool
        Use Firebase Authentication and Firestore instead of the
        in-memory stores.
    firebase_credentials : str or None
        Path to a service-account JSON file. Application default
        credentials are used when unset.
    firebase_project_id : str or None
        Firebase project id.
    log_collection, users_collection : str
        Firestore collection names.
    http_host, http_port
        Bind address for ``pylamp serve``.
    """

    mode: TransportMode = TransportMode.BROADCAST
    mqtt_url: str = DEFAULT_MQTT_URL
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_prefix: str = DEFAULT_MQTT_CLIENT_PREFIX
    mqtt_topic_base: str = DEFAULT_TOPIC_BASE
    mqtt_keepalive: int = DEFAULT_KEEPALIVE
    mqtt_reconnect_period: float = DEFAULT_RECONNECT_PERIOD
    mqtt_qos: int = 0
    bridge_url: str = DEFAULT_BRIDGE_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    pending_timeout: float = DEFAULT_PENDING_TIMEOUT
    default_role: str = "user"
    allow_anonymous_control: bool = False
    firebase_enabled: bool = False
    firebase_credentials: str | None = None
    firebase_project_id: str | None = None
    log_collection: str = LOG_COLLECTION
    users_collection: str = USERS_COLLECTION
    http_host: str = "127.0.0.1"
    http_port: int = 8080

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "mode", TransportMode(self.mode))
        except ValueError as exc:
            raise LampConfigError(f"Unsupported transport mode: {self.mode!r}") from exc
        if self.default_role not in {"user", "guest"}:
            raise LampConfigError(f"default_role must be 'user' or 'guest', got {self.default_role!r}")
        if self.mqtt_qos not in (0, 1, 2):
            raise LampConfigError(f"mqtt_qos must be 0, 1 or 2, got {self.mqtt_qos!r}")
        if self.mqtt_reconnect_period <= 0:
            raise LampConfigError("mqtt_reconnect_period must be positive")
        if self.request_timeout <= 0:
            raise LampConfigError("request_timeout must be positive")
        if self.pending_timeout < 0:
            raise LampConfigError("pending_timeout must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> LampConfig:
        """Create configuration from ``LAMP_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "LAMP_MODE": "mode",
            "LAMP_MQTT_URL": "mqtt_url",
            "LAMP_MQTT_USER": "mqtt_username",
            "LAMP_MQTT_PASS": "mqtt_password",
            "LAMP_MQTT_CLIENT_PREFIX": "mqtt_client_prefix",
            "LAMP_MQTT_TOPIC_BASE": "mqtt_topic_base",
            "LAMP_BRIDGE_URL": "bridge_url",
            "LAMP_DEFAULT_ROLE": "default_role",
            "LAMP_FIREBASE_CREDENTIALS": "firebase_credentials",
            "LAMP_FIREBASE_PROJECT_ID": "firebase_project_id",
            "LAMP_LOG_COLLECTION": "log_collection",
            "LAMP_USERS_COLLECTION": "users_collection",
            "LAMP_HTTP_HOST": "http_host",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "LAMP_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "LAMP_MQTT_RECONNECT_PERIOD": ("mqtt_reconnect_period", float),
            "LAMP_MQTT_QOS": ("mqtt_qos", int),
            "LAMP_REQUEST_TIMEOUT": ("request_timeout", float),
            "LAMP_PENDING_TIMEOUT": ("pending_timeout", float),
            "LAMP_HTTP_PORT": ("http_port", int),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = cast(val)
            except ValueError as exc:
                raise LampConfigError(f"{env_key} is not a valid number: {val!r}") from exc

        if "allow_anonymous_control" not in overrides:
            config_kwargs["allow_anonymous_control"] = _env_bool(env.get("LAMP_ALLOW_ANONYMOUS"), False)

        if "firebase_enabled" not in overrides:
            config_kwargs["firebase_enabled"] = _env_bool(env.get("LAMP_FIREBASE_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)

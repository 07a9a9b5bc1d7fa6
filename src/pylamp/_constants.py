"""Constants shared across pylamp."""

from __future__ import annotations

DEFAULT_MQTT_URL = "mqtt://localhost:1883"
DEFAULT_MQTT_CLIENT_PREFIX = "pylamp_"
DEFAULT_TOPIC_BASE = "lampu"
DEFAULT_BRIDGE_URL = "http://192.168.1.166"

#: Reconnect period used by the first dashboard's MQTT client.
DEFAULT_RECONNECT_PERIOD: float = 3.0
DEFAULT_KEEPALIVE = 60
DEFAULT_REQUEST_TIMEOUT: float = 5.0
DEFAULT_PENDING_TIMEOUT: float = 10.0

SET_SUFFIX = "set"
STATUS_SUFFIX = "status"

LOG_COLLECTION = "lampu_logs"
USERS_COLLECTION = "users"

#: Firestore rejects write batches with more operations than this.
FIRESTORE_MAX_BATCH = 500

SESSION_COOKIE = "pylamp_session"

USER_AGENT = "pylamp/1.0"

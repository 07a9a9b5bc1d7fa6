"""Masking for what pylamp writes to its logs.

Broker passwords, Firebase ID tokens and session ids must never reach a
log line, and e-mail addresses are shortened at INFO level.
"""

from __future__ import annotations

from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "mqtt_password",
        "idtoken",
        "id_token",
        "token",
        "cookie",
        "session_id",
        "private_key",
    }
)


def redact_for_log(value: Any, *, max_string: int = 256) -> Any:
    """Copy a config dict or decoded JSON body with secret fields masked."""
    if isinstance(value, dict):
        return {
            str(key): "<redacted>" if str(key).lower() in _SECRET_KEYS else redact_for_log(item, max_string=max_string)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact_for_log(item, max_string=max_string) for item in value]
    if isinstance(value, str) and len(value) > max_string:
        return f"{value[:max_string]}...<truncated>"
    return value


def mask_email(email: str | None) -> str:
    """``alice@example.com`` -> ``a***@example.com``."""
    if not email:
        return "<anonymous>"
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"

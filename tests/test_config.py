from __future__ import annotations

import pytest

from pylamp.config import LampConfig, TransportMode
from pylamp.exceptions import LampConfigError


def test_defaults() -> None:
    config = LampConfig()
    assert config.mode is TransportMode.BROADCAST
    assert config.mqtt_topic_base == "lampu"
    assert config.pending_timeout == 10.0
    assert config.default_role == "user"
    assert config.allow_anonymous_control is False
    assert config.log_collection == "lampu_logs"


def test_from_env_reads_lamp_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAMP_MODE", "direct")
    monkeypatch.setenv("LAMP_BRIDGE_URL", "http://10.0.0.5")
    monkeypatch.setenv("LAMP_MQTT_QOS", "1")
    monkeypatch.setenv("LAMP_PENDING_TIMEOUT", "2.5")
    monkeypatch.setenv("LAMP_ALLOW_ANONYMOUS", "yes")
    monkeypatch.setenv("LAMP_DEFAULT_ROLE", "guest")

    config = LampConfig.from_env()

    assert config.mode is TransportMode.DIRECT
    assert config.bridge_url == "http://10.0.0.5"
    assert config.mqtt_qos == 1
    assert config.pending_timeout == 2.5
    assert config.allow_anonymous_control is True
    assert config.default_role == "guest"


def test_explicit_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAMP_MODE", "direct")
    monkeypatch.setenv("LAMP_HTTP_PORT", "9000")
    monkeypatch.setenv("LAMP_ALLOW_ANONYMOUS", "1")

    config = LampConfig.from_env(mode="broadcast", http_port=8181, allow_anonymous_control=False)

    assert config.mode is TransportMode.BROADCAST
    assert config.http_port == 8181
    assert config.allow_anonymous_control is False


def test_invalid_numeric_environment_value(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAMP_REQUEST_TIMEOUT", "soon")
    with pytest.raises(LampConfigError):
        LampConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"mode": "carrier-pigeon"},
        {"default_role": "admin"},
        {"mqtt_qos": 3},
        {"request_timeout": 0},
        {"pending_timeout": -1},
        {"mqtt_reconnect_period": 0},
    ],
)
def test_invalid_values_are_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(LampConfigError):
        LampConfig(**kwargs)  # type: ignore[arg-type]


def test_zero_pending_timeout_is_allowed() -> None:
    assert LampConfig(pending_timeout=0).pending_timeout == 0

"""Device keys, lamp states and the device record."""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any

from pydantic import Field

from pylamp._constants import SET_SUFFIX, STATUS_SUFFIX
from pylamp.models._base import LampBaseModel, LampEnum

# Payload spellings seen from bridges and lamps, including the stock
# ESP32 firmware's Indonesian "nyala"/"mati".
_ON_WORDS = frozenset({"on", "1", "true", "nyala", "lampu nyala"})
_OFF_WORDS = frozenset({"off", "0", "false", "mati", "lampu mati"})


class DeviceKey(StrEnum):
    """Fixed identifiers of the controllable lamps."""

    KITCHEN = "kitchen"
    GUEST = "guest"
    DINING = "dining"

    @classmethod
    def _missing_(cls, value: object) -> DeviceKey | None:
        # Room names used by the first dashboard's topics and log documents.
        if isinstance(value, str):
            folded = value.strip().lower()
            if folded in cls._value2member_map_:
                return cls(folded)
            return _LEGACY_KEYS.get(folded)
        return None

    @property
    def legacy_name(self) -> str:
        return next(name for name, key in _LEGACY_KEYS.items() if key is self)


_LEGACY_KEYS: dict[str, DeviceKey] = {
    "dapur": DeviceKey.KITCHEN,
    "tamu": DeviceKey.GUEST,
    "makan": DeviceKey.DINING,
}


class LampState(LampEnum):
    ON = "ON"
    OFF = "OFF"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, payload: Any) -> LampState:
        """Decode a wire payload into a lamp state.

        Accepts bytes or text, plain words (``on``, ``OFF``, ``1``,
        ``nyala``...) and JSON objects carrying a ``status``, ``state``
        or ``message`` field. Unrecognised input yields ``UNKNOWN``.
        """
        if isinstance(payload, LampState):
            return payload
        if isinstance(payload, bool):
            return cls.ON if payload else cls.OFF
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8", errors="replace")
        if isinstance(payload, dict):
            for key in ("status", "state", "message"):
                if key in payload:
                    return cls.parse(payload[key])
            return cls.UNKNOWN
        if not isinstance(payload, str):
            return cls.UNKNOWN

        text = payload.strip()
        if text.startswith("{"):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                return cls.UNKNOWN
            return cls.parse(decoded)

        word = text.strip('"').lower()
        if word in _ON_WORDS:
            return cls.ON
        if word in _OFF_WORDS:
            return cls.OFF
        return cls.UNKNOWN

    @property
    def wire(self) -> str:
        """Lower-case payload used on the command channel."""
        return self.value.lower()

    def inverted(self) -> LampState:
        """The state a toggle moves to. ``UNKNOWN`` toggles to ``ON``."""
        return LampState.OFF if self is LampState.ON else LampState.ON


class Device(LampBaseModel):
    """A lamp and where to reach it."""

    key: DeviceKey
    topic: str = Field(..., description="MQTT topic stem, e.g. lampu/kitchen")
    address: str = Field(..., description="Path on the HTTP bridge, e.g. kitchen")
    current_state: LampState = LampState.UNKNOWN

    @property
    def set_topic(self) -> str:
        return f"{self.topic}/{SET_SUFFIX}"

    @property
    def status_topic(self) -> str:
        return f"{self.topic}/{STATUS_SUFFIX}"

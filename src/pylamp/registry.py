"""Static device registry: device key -> topic and bridge address."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from pylamp._constants import DEFAULT_TOPIC_BASE
from pylamp.exceptions import InvalidDeviceError
from pylamp.models.device import Device, DeviceKey


class DeviceRegistry:
    """Immutable lookup of the known lamps.

    Usage::

        registry = DeviceRegistry.default(topic_base="home/lampu")
        registry.get("kitchen").status_topic  # "home/lampu/kitchen/status"
    """

    def __init__(self, devices: Mapping[DeviceKey, Device]) -> None:
        self._devices: dict[DeviceKey, Device] = dict(devices)
        self._by_topic: dict[str, DeviceKey] = {}
        for device in self._devices.values():
            self._by_topic[device.status_topic] = device.key
            # Older firmware reports on the bare topic stem, or on the
            # Indonesian room name (lampu/dapur, lampu/tamu, lampu/makan).
            self._by_topic[device.topic] = device.key
            parent, _, _ = device.topic.rpartition("/")
            legacy = f"{parent}/{device.key.legacy_name}" if parent else device.key.legacy_name
            self._by_topic[legacy] = device.key

    @classmethod
    def default(
        cls,
        *,
        topic_base: str = DEFAULT_TOPIC_BASE,
        addresses: Mapping[DeviceKey, str] | None = None,
    ) -> DeviceRegistry:
        base = topic_base.strip().rstrip("/")
        overrides = addresses or {}
        return cls(
            {
                key: Device(
                    key=key,
                    topic=f"{base}/{key.value}",
                    address=overrides.get(key, key.value),
                )
                for key in DeviceKey
            }
        )

    def resolve(self, key: str | DeviceKey) -> DeviceKey:
        """Validate *key* and return the matching :class:`DeviceKey`."""
        if isinstance(key, DeviceKey) and key in self._devices:
            return key
        try:
            resolved = DeviceKey(str(key).strip().lower())
        except ValueError:
            raise InvalidDeviceError(str(key)) from None
        if resolved not in self._devices:
            raise InvalidDeviceError(str(key))
        return resolved

    def get(self, key: str | DeviceKey) -> Device:
        return self._devices[self.resolve(key)]

    def by_status_topic(self, topic: str) -> DeviceKey | None:
        return self._by_topic.get(topic)

    @property
    def status_topics(self) -> tuple[str, ...]:
        """Every topic a lamp may report its state on."""
        return tuple(self._by_topic)

    def by_set_topic(self, topic: str) -> DeviceKey | None:
        for device in self._devices.values():
            if device.set_topic == topic:
                return device.key
        return None

    @property
    def keys(self) -> tuple[DeviceKey, ...]:
        return tuple(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(self._devices.values())

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, (str, DeviceKey)):
            try:
                self.resolve(key)
            except InvalidDeviceError:
                return False
            return True
        return False

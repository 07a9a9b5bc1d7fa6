"""Simulated lamps: an HTTP device bridge and an MQTT lamp node.

Both stand in for the ESP32 firmware the dashboard was built against.
"""

from __future__ import annotations

import asyncio
import logging
import secrets

from aiohttp import web

from pylamp.config import LampConfig
from pylamp.exceptions import LampConnectionError
from pylamp.models.device import DeviceKey, LampState
from pylamp.registry import DeviceRegistry
from pylamp.transport._mqtt import ClientFactory, LampMqttRuntime, parse_broker_url
from pylamp.transport.base import ConnectionStatus

_logger = logging.getLogger(__name__)

BRIDGE_STATE = web.AppKey("bridge_state", dict)


def _lamp_or_404(request: web.Request) -> str:
    name = request.match_info["device"].lower()
    if name not in request.app[BRIDGE_STATE]:
        raise web.HTTPNotFound(text=f"Unknown lamp {name}")
    return name


async def _get_lamp(request: web.Request) -> web.Response:
    name = _lamp_or_404(request)
    return web.Response(text=request.app[BRIDGE_STATE][name].value)


async def _toggle_lamp(request: web.Request) -> web.Response:
    name = _lamp_or_404(request)
    states = request.app[BRIDGE_STATE]
    states[name] = states[name].inverted()
    _logger.info("Bridge toggled %s -> %s", name, states[name])
    return web.Response(text=states[name].value)


async def _set_lamp(request: web.Request) -> web.Response:
    name = _lamp_or_404(request)
    state = LampState.parse(request.match_info["action"])
    if state is LampState.UNKNOWN:
        raise web.HTTPBadRequest(text="Action must be on or off")
    request.app[BRIDGE_STATE][name] = state
    _logger.info("Bridge set %s -> %s", name, state)
    return web.Response(text=state.value)


def create_bridge_app(
    devices: list[str] | None = None,
    *,
    initial: LampState = LampState.OFF,
) -> web.Application:
    """aiohttp application emulating the lamp bridge.

    ``GET /<lamp>`` reads, ``POST /<lamp>`` toggles and
    ``POST /<lamp>/<on|off>`` sets. Replies are plain ``ON``/``OFF``.
    """
    app = web.Application()
    app[BRIDGE_STATE] = {name: initial for name in devices or [key.value for key in DeviceKey]}
    app.router.add_get("/{device}", _get_lamp)
    app.router.add_post("/{device}", _toggle_lamp)
    app.router.add_post("/{device}/{action}", _set_lamp)
    return app


class MqttLampSimulator:
    """Listens on ``<base>/<lamp>/set`` and answers with a retained ``.../status``."""

    def __init__(
        self,
        config: LampConfig,
        registry: DeviceRegistry | None = None,
        *,
        initial: LampState = LampState.OFF,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._config = config
        self._registry = registry or DeviceRegistry.default(topic_base=config.mqtt_topic_base)
        self._client_factory = client_factory
        self._states: dict[DeviceKey, LampState] = {key: initial for key in self._registry.keys}
        self._runtime: LampMqttRuntime | None = None

    @property
    def states(self) -> dict[DeviceKey, LampState]:
        return dict(self._states)

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        runtime = LampMqttRuntime(
            loop=loop,
            on_message=self._on_message,
            on_status=self._on_status,
            keepalive=self._config.mqtt_keepalive,
            reconnect_period=self._config.mqtt_reconnect_period,
            client_factory=self._client_factory,
            logger=_logger,
        )
        self._runtime = runtime
        await loop.run_in_executor(
            None,
            lambda: runtime.start(
                parse_broker_url(self._config.mqtt_url),
                client_id=f"{self._config.mqtt_client_prefix}sim_{secrets.randbelow(10000)}",
                username=self._config.mqtt_username,
                password=self._config.mqtt_password,
                topics=[device.set_topic for device in self._registry],
                qos=self._config.mqtt_qos,
            ),
        )

    async def stop(self) -> None:
        runtime = self._runtime
        self._runtime = None
        if runtime is not None:
            await asyncio.get_running_loop().run_in_executor(None, runtime.stop)

    def _publish_status(self, device: DeviceKey) -> None:
        if self._runtime is None:
            return
        try:
            self._runtime.publish(
                self._registry.get(device).status_topic,
                self._states[device].wire,
                qos=self._config.mqtt_qos,
                retain=True,
            )
        except LampConnectionError as exc:
            _logger.warning("Simulator could not report %s: %s", device, exc)

    def _on_status(self, status: ConnectionStatus) -> None:
        if status is ConnectionStatus.CONNECTED:
            for device in self._registry.keys:
                self._publish_status(device)

    def _on_message(self, topic: str, payload: bytes) -> None:
        device = self._registry.by_set_topic(topic)
        state = LampState.parse(payload)
        if device is None or state is LampState.UNKNOWN:
            _logger.debug("Simulator ignoring %s: %r", topic, payload[:64])
            return
        self._states[device] = state
        _logger.info("Simulated lamp %s -> %s", device, state)
        self._publish_status(device)

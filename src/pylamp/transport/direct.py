"""Request/response transport against the local HTTP device bridge."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from pylamp._constants import USER_AGENT
from pylamp.config import LampConfig
from pylamp.exceptions import LampConnectionError, LampTimeoutError, LampTransportError
from pylamp.models.device import DeviceKey, LampState
from pylamp.registry import DeviceRegistry
from pylamp.transport.base import (
    ConnectionStatus,
    ObservationCallback,
    SubscriptionHub,
    TransportSubscription,
)

_logger = logging.getLogger(__name__)


class DirectTransport:
    """HTTP transport where the response to a command is its confirmation.

    ``send`` issues ``POST <bridge>/<address>/<on|off>``; ``read`` issues
    ``GET <bridge>/<address>``. The bridge answers with plain text
    (``ON``/``OFF``) or a ``{"status": ...}`` JSON body.

    There is no push channel: the subscription stays silent until it is
    closed, and fresh state comes from ``read`` probes.
    """

    def __init__(
        self,
        config: LampConfig,
        registry: DeviceRegistry,
        *,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._external_session = http_session is not None
        self._http = http_session
        self._hub = SubscriptionHub()
        self._status = ConnectionStatus.OFFLINE
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    async def connect(self) -> None:
        if self._http is None:
            self._http = aiohttp.ClientSession(
                headers={"user-agent": USER_AGENT},
            )
        # No persistent channel; the first successful call proves reachability.
        self._status = ConnectionStatus.CONNECTING

    async def disconnect(self) -> None:
        self._hub.close_all()
        if not self._external_session and self._http is not None:
            await self._http.close()
        self._http = None
        self._status = ConnectionStatus.OFFLINE

    def subscribe(self, callback: ObservationCallback | None = None) -> TransportSubscription:
        return self._hub.subscribe(callback)

    async def send(self, device: DeviceKey, desired: LampState) -> LampState:
        if desired is LampState.UNKNOWN:
            raise ValueError("desired state must be ON or OFF")
        address = self._registry.get(device).address
        return await self._request("POST", f"/{address}/{desired.wire}", device)

    async def read(self, device: DeviceKey) -> LampState:
        address = self._registry.get(device).address
        return await self._request("GET", f"/{address}", device)

    async def _request(self, method: str, path: str, device: DeviceKey) -> LampState:
        if self._http is None:
            raise LampConnectionError("Transport not connected. Call connect() first", device=device)

        url = f"{self._config.bridge_url.rstrip('/')}{path}"
        _logger.debug("%s %s", method, url)

        try:
            async with self._http.request(method, url, timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise LampConnectionError(
                        f"HTTP {resp.status} from bridge for {device}: {text[:200]}",
                        device=device,
                        status_code=resp.status,
                    )
        except LampTransportError:
            self._status = ConnectionStatus.OFFLINE
            raise
        except asyncio.TimeoutError as exc:
            self._status = ConnectionStatus.OFFLINE
            raise LampTimeoutError(f"Bridge did not answer for {device}", device=device) from exc
        except aiohttp.ClientError as exc:
            self._status = ConnectionStatus.OFFLINE
            raise LampConnectionError(f"Cannot reach bridge for {device}: {exc}", device=device) from exc

        self._status = ConnectionStatus.CONNECTED
        state = LampState.parse(text)
        _logger.debug("Bridge answered %s for %s -> %s", text[:64], device, state)
        return state

"""aiohttp application exposing the dashboard API."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import weakref
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from aiohttp import WSMsgType, web
from pydantic import ValidationError

from pylamp._constants import SESSION_COOKIE
from pylamp._redact import redact_for_log
from pylamp.access.sessions import UserSession
from pylamp.client import LampClient
from pylamp.exceptions import (
    AccessDeniedError,
    AuditEntryNotFoundError,
    AuditLogError,
    InvalidDeviceError,
    LampAuthenticationError,
    LampError,
    LampTransportError,
    ProfileNotFoundError,
    ProfileStoreError,
)
from pylamp.models.device import LampState
from pylamp.state.events import DeviceSyncState, StateChange

_logger = logging.getLogger(__name__)

CLIENT = web.AppKey("client", LampClient)
WEBSOCKETS = web.AppKey("websockets", weakref.WeakSet)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (InvalidDeviceError, 400),
    (LampAuthenticationError, 401),
    (AccessDeniedError, 403),
    (AuditEntryNotFoundError, 404),
    (ProfileNotFoundError, 404),
    (LampTransportError, 500),
    (AuditLogError, 500),
    (ProfileStoreError, 500),
    (LampError, 500),
]


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Render every failure as ``{"error": ...}`` with a matching status."""
    try:
        return await handler(request)
    except web.HTTPException as exc:
        if exc.status < 400:
            raise
        return _error(exc.status, exc.reason)
    except (ValidationError, ValueError) as exc:
        if isinstance(exc, InvalidDeviceError):
            return _error(400, str(exc))
        return _error(400, f"Invalid request: {exc}")
    except LampError as exc:
        for exc_type, status in _ERROR_STATUS:
            if isinstance(exc, exc_type):
                if status >= 500:
                    _logger.warning("%s %s failed: %s", request.method, request.path, exc)
                return _error(status, str(exc))
        raise


def _client(request: web.Request) -> LampClient:
    return request.app[CLIENT]


def _session(request: web.Request) -> UserSession | None:
    return _client(request).sessions.get(request.cookies.get(SESSION_COOKIE))


async def _json_body(request: web.Request) -> dict[str, Any]:
    if not request.body_exists:
        return {}
    try:
        data = await request.json()
    except json.JSONDecodeError as exc:
        raise web.HTTPBadRequest(reason="Body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(reason="Body must be a JSON object")
    _logger.debug("%s %s body=%s", request.method, request.path, redact_for_log(data))
    return data


def _lamp_payload(state: DeviceSyncState) -> dict[str, Any]:
    return {
        "status": state.displayed.value,
        "phase": state.phase.value,
        "pending": state.is_pending,
        "confirmed": state.confirmed.value,
    }


def _snapshot_payload(client: LampClient) -> dict[str, Any]:
    return {
        "connection": client.connection_status.value,
        "lamps": {key.value: _lamp_payload(state) for key, state in client.reconciler.snapshot().items()},
    }


def _change_payload(change: StateChange) -> dict[str, Any]:
    return {
        "type": "change",
        "device": change.device.value,
        "reason": change.reason.value,
        "discrepancy": change.discrepancy,
        "error": change.error,
        **_lamp_payload(change.current),
    }


# ----------------------------------------------------------------------
# Lamps
# ----------------------------------------------------------------------


async def list_lamps(request: web.Request) -> web.Response:
    return web.json_response(_snapshot_payload(_client(request)))


async def read_lamp(request: web.Request) -> web.Response:
    client = _client(request)
    device = client.registry.resolve(request.match_info["device"])
    status = await client.read_lamp(device)
    return web.json_response({"device": device.value, "status": status.value})


async def command_lamp(request: web.Request) -> web.Response:
    client = _client(request)
    device = client.registry.resolve(request.match_info["device"])
    body = await _json_body(request)
    session = _session(request)

    if "state" in body:
        desired = LampState.parse(body["state"])
        if desired is LampState.UNKNOWN:
            raise web.HTTPBadRequest(reason="state must be 'on' or 'off'")
        receipt = await client.set_lamp(device, desired, session=session)
    else:
        receipt = await client.toggle_lamp(device, session=session)

    return web.json_response(
        {
            "device": device.value,
            "status": receipt.displayed.value,
            "pending": receipt.pending,
            "dispatched": receipt.dispatched,
            "logError": receipt.log_error,
        }
    )


async def state_socket(request: web.Request) -> web.WebSocketResponse:
    """Push a snapshot, then every state change, until the peer disconnects."""
    client = _client(request)
    ws = web.WebSocketResponse(heartbeat=30)
    await ws.prepare(request)
    request.app[WEBSOCKETS].add(ws)

    queue: asyncio.Queue[StateChange] = asyncio.Queue()
    remove = client.reconciler.add_listener(queue.put_nowait)

    async def _pump() -> None:
        while True:
            change = await queue.get()
            await ws.send_json(_change_payload(change))

    await ws.send_json({"type": "snapshot", **_snapshot_payload(client)})
    sender = asyncio.create_task(_pump())
    try:
        async for msg in ws:
            if msg.type is WSMsgType.ERROR:
                _logger.debug("Websocket closed with %s", ws.exception())
    finally:
        remove()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        request.app[WEBSOCKETS].discard(ws)
    return ws


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------


def _session_payload(session: UserSession | None) -> dict[str, Any]:
    if session is None:
        return {"signedIn": False, "role": None, "isAdmin": False, "user": None}
    return {
        "signedIn": True,
        "role": session.role.value,
        "isAdmin": session.is_admin,
        "user": session.identity.model_dump(mode="json", by_alias=True),
    }


async def get_session(request: web.Request) -> web.Response:
    return web.json_response(_session_payload(_session(request)))


async def create_session(request: web.Request) -> web.Response:
    body = await _json_body(request)
    token = body.get("idToken")
    if not isinstance(token, str):
        raise web.HTTPBadRequest(reason="idToken is required")
    session = await _client(request).sessions.sign_in(token)
    response = web.json_response(_session_payload(session))
    response.set_cookie(
        SESSION_COOKIE,
        session.session_id,
        httponly=True,
        samesite="Lax",
        secure=request.secure,
    )
    return response


async def delete_session(request: web.Request) -> web.Response:
    _client(request).sessions.sign_out(request.cookies.get(SESSION_COOKIE))
    response = web.json_response(_session_payload(None))
    response.del_cookie(SESSION_COOKIE)
    return response


# ----------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------


async def list_logs(request: web.Request) -> web.Response:
    entries = await _client(request).list_log(_session(request))
    return web.json_response({"entries": [entry.model_dump(mode="json", by_alias=True) for entry in entries]})


async def delete_log(request: web.Request) -> web.Response:
    entry_id = request.match_info["entry_id"]
    await _client(request).delete_log_entry(_session(request), entry_id)
    return web.json_response({"deleted": 1})


async def clear_logs(request: web.Request) -> web.Response:
    count = await _client(request).clear_log(_session(request))
    return web.json_response({"deleted": count})


async def list_users(request: web.Request) -> web.Response:
    profiles = await _client(request).list_users(_session(request))
    return web.json_response({"users": [p.model_dump(mode="json", by_alias=True) for p in profiles]})


async def update_user_role(request: web.Request) -> web.Response:
    body = await _json_body(request)
    role = body.get("role")
    if not isinstance(role, str):
        raise web.HTTPBadRequest(reason="role is required")
    profile = await _client(request).set_user_role(_session(request), request.match_info["uid"], role)
    return web.json_response(profile.model_dump(mode="json", by_alias=True))


async def delete_user(request: web.Request) -> web.Response:
    await _client(request).delete_user(_session(request), request.match_info["uid"])
    return web.json_response({"deleted": 1})


# ----------------------------------------------------------------------
# Application
# ----------------------------------------------------------------------


async def _close_websockets(app: web.Application) -> None:
    for ws in list(app[WEBSOCKETS]):
        await ws.close(code=1001, message=b"Server shutdown")


def create_app(client: LampClient, *, manage_client: bool = False) -> web.Application:
    """Build the dashboard API around *client*.

    With ``manage_client`` the app enters and exits the client's async
    context together with its own startup and cleanup.
    """
    app = web.Application(middlewares=[error_middleware])
    app[CLIENT] = client
    app[WEBSOCKETS] = weakref.WeakSet()

    if manage_client:

        async def _client_ctx(_app: web.Application) -> AsyncIterator[None]:
            async with client:
                yield

        app.cleanup_ctx.append(_client_ctx)
    app.on_shutdown.append(_close_websockets)

    app.router.add_get("/api/lamps", list_lamps)
    app.router.add_get("/api/lamps/{device}", read_lamp)
    app.router.add_post("/api/lamps/{device}", command_lamp)
    app.router.add_get("/api/ws", state_socket)

    app.router.add_get("/api/session", get_session)
    app.router.add_post("/api/session", create_session)
    app.router.add_delete("/api/session", delete_session)

    app.router.add_get("/api/logs", list_logs)
    app.router.add_delete("/api/logs", clear_logs)
    app.router.add_delete("/api/logs/{entry_id}", delete_log)

    app.router.add_get("/api/users", list_users)
    app.router.add_put("/api/users/{uid}/role", update_user_role)
    app.router.add_delete("/api/users/{uid}", delete_user)
    return app

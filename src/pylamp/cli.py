"""Command line entry point: ``pylamp serve|bridge|mqtt-sim|set|watch``."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any

from aiohttp import web

from pylamp.client import LampClient
from pylamp.config import LampConfig, TransportMode
from pylamp.exceptions import LampError
from pylamp.models.device import LampState
from pylamp.simulator import MqttLampSimulator, create_bridge_app
from pylamp.state.events import StateChange
from pylamp.web.app import create_app

_LOG = logging.getLogger("pylamp.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pylamp", description="Lamp dashboard and device-state sync.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--mode", choices=[m.value for m in TransportMode], help="Override LAMP_MODE")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the dashboard API")
    serve.add_argument("--host", help="Bind address (default: LAMP_HTTP_HOST)")
    serve.add_argument("--port", type=int, help="Bind port (default: LAMP_HTTP_PORT)")

    bridge = sub.add_parser("bridge", help="Run a simulated HTTP lamp bridge")
    bridge.add_argument("--host", default="127.0.0.1")
    bridge.add_argument("--port", type=int, default=8081)

    sub.add_parser("mqtt-sim", help="Run simulated MQTT lamps against the configured broker")

    set_cmd = sub.add_parser("set", help="Switch one lamp and wait for confirmation")
    set_cmd.add_argument("device", help="kitchen, guest or dining")
    set_cmd.add_argument("state", help="on, off or toggle")

    sub.add_parser("watch", help="Print lamp state changes until interrupted")
    return parser


def _config(args: argparse.Namespace, **overrides: Any) -> LampConfig:
    if args.mode:
        overrides["mode"] = args.mode
    return LampConfig.from_env(**overrides)


async def _wait_for_signal() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await stop.wait()


async def _run_set(config: LampConfig, device: str, action: str) -> int:
    async with LampClient(config) as client:
        if not await client.wait_connected(config.request_timeout):
            print(f"Transport not connected ({client.connection_status})", file=sys.stderr)
            return 2
        if action.strip().lower() == "toggle":
            receipt = await client.toggle_lamp(device)
        else:
            desired = LampState.parse(action)
            if desired is LampState.UNKNOWN:
                print(f"Unknown state {action!r}; use on, off or toggle", file=sys.stderr)
                return 2
            receipt = await client.set_lamp(device, desired)

        if not receipt.dispatched:
            print(f"{receipt.command.device}: already {receipt.displayed}")
            return 0
        final = await client.wait_settled(receipt.command.device, config.pending_timeout or config.request_timeout)
        suffix = " (unconfirmed)" if final.is_pending else ""
        print(f"{receipt.command.device}: {final.displayed}{suffix}")
        return 0


async def _run_watch(config: LampConfig) -> int:
    def _print_change(change: StateChange) -> None:
        marker = " !" if change.discrepancy else ""
        print(f"{change.device}: {change.previous.displayed} -> {change.current.displayed} [{change.reason}]{marker}")

    async with LampClient(config) as client:
        for key, state in client.reconciler.snapshot().items():
            print(f"{key}: {state.displayed}")
        client.reconciler.add_listener(_print_change)
        await _wait_for_signal()
    return 0


async def _run_mqtt_sim(config: LampConfig) -> int:
    simulator = MqttLampSimulator(config)
    await simulator.start()
    try:
        await _wait_for_signal()
    finally:
        await simulator.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    try:
        if args.command == "serve":
            config = _config(args)
            web.run_app(
                create_app(LampClient(config), manage_client=True),
                host=args.host or config.http_host,
                port=args.port or config.http_port,
            )
            return 0
        if args.command == "bridge":
            web.run_app(create_bridge_app(), host=args.host, port=args.port)
            return 0
        if args.command == "mqtt-sim":
            return asyncio.run(_run_mqtt_sim(_config(args)))
        if args.command == "set":
            return asyncio.run(_run_set(_config(args, allow_anonymous_control=True), args.device, args.state))
        if args.command == "watch":
            return asyncio.run(_run_watch(_config(args)))
    except LampError as exc:
        _LOG.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130
    return 2


if __name__ == "__main__":
    sys.exit(main())

# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import argparse
import asyncio
import logging

from .capabilities import SimulatedCapabilityProvider
from .config import Config
from .exceptions import PairLinkError
from .protocol import KNOWN_COMMANDS, Role, message_to_dict
from .relay import start_relay_server
from .session import PairingSession, SessionOptions, generate_pairing_code
from .transport import LoopbackHub, Transport, TransportFactory


def setup_logging(config, override_level=None):
    """Configure logging based on config settings."""
    log_level_str = override_level.lower() if override_level else config.get("log.level").lower()

    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "warn": logging.WARNING,  # alias
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    logging.basicConfig(
        level=level_map.get(log_level_str, logging.INFO),
        format="[%(levelname)s] [%(name)s] %(message)s",  # Level first, then logger name
        handlers=[logging.StreamHandler()],
        force=True,  # Reset any existing configuration
    )


def create_transport(config, kind: str | None = None, hub: LoopbackHub | None = None) -> Transport:
    """Build the configured transport; loopback transports share ``hub``."""
    kind = kind or config.get("transport.kind")
    require_peer = bool(config.get("transport.require_peer"))
    pairing_timeout_s = config.get("transport.pairing_timeout_ms") / 1000.0

    if kind == "loopback":
        return TransportFactory.create(
            "loopback",
            hub=hub if hub is not None else LoopbackHub(),
            connect_delay_s=config.get("transport.connect_delay_ms") / 1000.0,
            require_peer=require_peer,
            pairing_timeout_s=pairing_timeout_s,
        )
    return TransportFactory.create(
        kind,
        relay_url=config.get("transport.relay_url"),
        require_peer=require_peer,
        pairing_timeout_s=pairing_timeout_s,
    )


async def run_demo(config, code: str, duration_s: float, transport_kind: str | None = None) -> None:
    """Pair a parent and a child in-process and exercise the protocol."""
    logger = logging.getLogger("main")
    options = SessionOptions.from_config(config)
    hub = LoopbackHub()

    parent = PairingSession(create_transport(config, transport_kind, hub), options=options)
    child = PairingSession(
        create_transport(config, transport_kind, hub),
        capabilities=SimulatedCapabilityProvider.from_config(config),
        options=options,
    )

    parent.on_connection_state_changed(lambda state: logger.info(f"parent connection: {state.value}"))
    child.on_connection_state_changed(lambda state: logger.info(f"child connection: {state.value}"))
    parent.on_message_received(lambda message: logger.info(f"parent received {message_to_dict(message)}"))

    try:
        await parent.begin(Role.PARENT, code)
        await child.begin(Role.CHILD, code)
        if not (await parent.wait_connected() and await child.wait_connected()):
            logger.error(f"pairing failed: {parent.last_error or child.last_error}")
            return

        for kind in ("location", "gallery", "camera"):
            granted = await parent.request_permission(kind)
            logger.info(f"{kind} permission {'granted' if granted else 'denied'}")

        for command in KNOWN_COMMANDS:
            parent.send_command(command)

        await asyncio.sleep(duration_s)
        logger.info(f"parent buffer holds {len(parent.buffer)} messages, permissions={parent.permissions}")
    except PairLinkError as e:
        logger.error(f"demo aborted: {e}")
    finally:
        await child.disconnect()
        await parent.disconnect()


async def run_relay(host: str, port: int, require_parent: bool) -> None:
    runner = await start_relay_server(host, port, require_parent=require_parent)
    try:
        await asyncio.Future()  # run forever
    finally:
        await runner.cleanup()


async def main():
    """Main entry point for the pairlink CLI."""
    parser = argparse.ArgumentParser(description="Parent/child device pairing")
    parser.add_argument("--config", default=None, help="Path to YAML/TOML/JSON config file")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "warn", "error", "critical"],
        type=str.lower,
        help="Set logging level (overrides config file)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    demo = sub.add_parser("demo", help="Pair a simulated parent and child in one process")
    demo.add_argument("--code", default=None, help="6-digit pairing code (random if omitted)")
    demo.add_argument("--duration", type=float, default=12.0, help="Seconds to stream before disconnecting")
    demo.add_argument("--transport", choices=TransportFactory.list_transports(), default=None,
                      help="Transport to pair over (overrides config)")

    relay = sub.add_parser("relay", help="Run the WebSocket pairing relay")
    relay.add_argument("--host", default=None, help="Host to bind to")
    relay.add_argument("--port", type=int, default=None, help="Port to bind to")

    args = parser.parse_args()

    config = Config()
    config.load(args.config)

    setup_logging(config, override_level=args.log_level)
    logger = logging.getLogger("main")
    logger.debug(f"loaded config: {config.get()}")

    if args.command == "relay":
        await run_relay(
            args.host or config.get("relay.host"),
            args.port or int(config.get("relay.port")),
            bool(config.get("transport.require_peer")),
        )
    else:
        code = args.code or generate_pairing_code()
        logger.info(f"pairing code: {code}")
        await run_demo(config, code, args.duration, args.transport)


def run():
    """Entry point for setuptools console scripts."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger("main").info("Shutting down...")


if __name__ == "__main__":
    run()

"""CLI entry point for the settings link central."""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ..adapter import platform_adapter_monitor
from ..config import (
    CHARACTERISTIC_UUID,
    PERIPHERAL_NAME,
    SCAN_TIMEOUT,
    SERVICE_UUID,
    LinkConfig,
    LinkConfigError,
    format_config_for_logging,
)
from ..errors import LinkError
from ..relay import RELAY_HOST, StatusRelay
from .permissions import PermissionGate, default_checker
from .radio import BleakRadio
from .session import Session, SessionStatus

logger = logging.getLogger(__name__)

# Bound on adapter power-on and the first permission check
STARTUP_TIMEOUT = 10.0


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def build_config(args: argparse.Namespace, auto_connect: bool = True) -> LinkConfig:
    scan_timeout = getattr(args, "scan_seconds", None) or args.timeout
    return LinkConfig(
        peripheral_name=args.name,
        service_uuid=args.service,
        characteristic_uuid=args.characteristic,
        scan_timeout=scan_timeout,
        auto_connect=auto_connect,
    )


@asynccontextmanager
async def open_session(
    config: LinkConfig, relay_port: Optional[int] = None
) -> AsyncIterator[Session]:
    """Run a session (and optional status relay) for the duration of a command."""
    logger.debug(f"Config: {format_config_for_logging(config)}")
    session = Session(
        BleakRadio(),
        platform_adapter_monitor(config.adapter),
        PermissionGate(default_checker(config.adapter)),
        config,
    )

    relay = None
    pending: set[asyncio.Future] = set()
    if relay_port is not None:
        relay = StatusRelay(RELAY_HOST, relay_port)
        await relay.start()

        def forward(status: SessionStatus) -> None:
            future = asyncio.ensure_future(relay.publish_status(status))
            pending.add(future)
            future.add_done_callback(pending.discard)

        session.add_listener(forward)

    try:
        async with session:
            await session.wait_until_usable(STARTUP_TIMEOUT)
            yield session
    finally:
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if relay is not None:
            await relay.stop()


async def cmd_scan(args: argparse.Namespace) -> int:
    """List peripherals advertising the settings service."""
    config = build_config(args, auto_connect=False)
    async with open_session(config, args.relay_port) as session:
        await session.start_scan()
        print(f"Scanning for {config.scan_timeout:.0f}s...")
        count = 0
        async for peripheral in session.scanner.results():
            count += 1
            rssi = f"{peripheral.rssi} dBm" if peripheral.rssi is not None else "n/a"
            print(f"  {peripheral.name or 'Unnamed':<24} {peripheral.identity}  RSSI: {rssi}")
        print(f"\nFound {count} device(s)")
    return 0


async def cmd_send(args: argparse.Namespace) -> int:
    """Connect, send one message and disconnect."""
    async with open_session(build_config(args), args.relay_port) as session:
        status = await session.open_link()
        print(status.message)
        try:
            await session.send(args.message)
            print(f'Sent "{args.message}"')
        finally:
            await session.disconnect()
    return 0


async def cmd_read(args: argparse.Namespace) -> int:
    """Connect, read the characteristic once and disconnect."""
    async with open_session(build_config(args), args.relay_port) as session:
        await session.open_link()
        try:
            print(await session.read())
        finally:
            await session.disconnect()
    return 0


async def cmd_interactive(args: argparse.Namespace) -> int:
    """Connect and send lines typed at the prompt."""
    loop = asyncio.get_running_loop()
    async with open_session(build_config(args), args.relay_port) as session:
        status = await session.open_link()
        print(status.message)
        print("\nInteractive mode. Type messages to send, /read to read, /quit to exit:")
        try:
            while True:
                try:
                    line = await loop.run_in_executor(None, input, "> ")
                except EOFError:
                    break
                line = line.strip()
                if not line:
                    continue
                if line == "/quit":
                    break
                try:
                    if line == "/read":
                        print(await session.read())
                    else:
                        await session.send(line)
                except LinkError as e:
                    # Write/read failures leave the link usable
                    print(f"Error: {e}")
                    if session.target is None:
                        return 1
        finally:
            await session.disconnect()
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "send": cmd_send,
    "read": cmd_read,
    "interactive": cmd_interactive,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ble-link-client",
        description="BLE settings client - send text to the settings peripheral",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "-n", "--name",
        default=PERIPHERAL_NAME,
        help=f"Expected peripheral name (default: {PERIPHERAL_NAME})",
    )
    parser.add_argument(
        "--service",
        default=SERVICE_UUID,
        help="Service UUID to scan for",
    )
    parser.add_argument(
        "--characteristic",
        default=CHARACTERISTIC_UUID,
        help="Characteristic UUID to read and write",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=SCAN_TIMEOUT,
        help=f"Scan timeout in seconds (default: {SCAN_TIMEOUT:.0f})",
    )
    parser.add_argument(
        "--relay-port",
        type=int,
        default=None,
        help="Relay session status over WebSocket on this port",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    scan_parser = subparsers.add_parser("scan", help="List matching peripherals")
    scan_parser.add_argument(
        "-t", "--timeout",
        dest="scan_seconds",
        type=float,
        default=None,
        help="Scan timeout in seconds",
    )

    send_parser = subparsers.add_parser("send", help="Send one message")
    send_parser.add_argument("message", help="Text to write to the characteristic")

    subparsers.add_parser("read", help="Read the characteristic once")
    subparsers.add_parser("interactive", help="Send messages from a prompt")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 0

    try:
        return asyncio.run(command(args))
    except LinkConfigError as e:
        print(f"Invalid configuration: {e}")
        return 1
    except LinkError as e:
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nExiting...")
        return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Entry point for running the settings peripheral.

Usage:
    python -m ble_settings_link.server
    python -m ble_settings_link.server -v --relay-port 8799
"""

import argparse
import asyncio
import logging
import signal
import sys

from ..config import DEFAULT_ADAPTER, PERIPHERAL_NAME, LinkConfig, LinkConfigError
from ..relay import RELAY_HOST, StatusRelay
from .server import SettingsGattServer

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ble-link-server",
        description="Advertise the BLE settings service and log incoming writes",
    )
    parser.add_argument(
        "--name",
        default=PERIPHERAL_NAME,
        help=f"Advertised device name (default: {PERIPHERAL_NAME})",
    )
    parser.add_argument(
        "--adapter",
        default=DEFAULT_ADAPTER,
        help=f"Bluetooth adapter (default: {DEFAULT_ADAPTER})",
    )
    parser.add_argument(
        "--relay-port",
        type=int,
        default=None,
        help="Relay writes and client events over WebSocket on this port",
    )
    parser.add_argument(
        "--strict-ack",
        action="store_true",
        help="Reject writes the handler fails to process",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


async def run_server(args: argparse.Namespace) -> None:
    """Run the GATT server until interrupted."""
    config = LinkConfig(peripheral_name=args.name, adapter=args.adapter)

    relay = None
    if args.relay_port is not None:
        relay = StatusRelay(RELAY_HOST, args.relay_port)
        await relay.start()

    server = SettingsGattServer(
        config=config,
        relay=relay,
        reject_on_handler_error=args.strict_ack,
    )

    stop_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

    await server.start()
    print("Press Ctrl+C to stop")

    try:
        await stop_event.wait()
    finally:
        await server.stop()
        if relay is not None:
            await relay.stop()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        asyncio.run(run_server(args))
    except LinkConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Connection monitor for platforms without per-device connection signals."""

import asyncio
import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

# bless does not expose client addresses outside BlueZ
ANONYMOUS_CLIENT = "client"


class BLEServer(Protocol):
    """Protocol for BLE servers that support connection checking."""

    async def is_connected(self) -> bool:
        """Check if any clients are connected."""
        ...


class ConnectionMonitor:
    """Polls a BLE server and reports connects and disconnects."""

    def __init__(
        self,
        server: BLEServer,
        on_connect: Callable[[str], None],
        on_disconnect: Callable[[str], None],
        poll_interval: float = 1.0,
    ):
        """Initialize the connection monitor.

        Args:
            server: BLE server instance with is_connected() method
            on_connect: Called with the client address when a client connects
            on_disconnect: Called with the client address when it disconnects
            poll_interval: How often to check connection status (seconds)
        """
        self._server = server
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._poll_interval = poll_interval
        self._task: asyncio.Task | None = None
        self._running = False
        self._was_connected = False

    async def start(self) -> None:
        """Start monitoring."""
        if self._task:
            await self.stop()

        self._running = True
        self._was_connected = False
        self._task = asyncio.create_task(self._monitor_loop())
        logger.debug("[CLIENTS] Connection monitor started")

    async def stop(self) -> None:
        """Stop monitoring."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("[CLIENTS] Connection monitor stopped")

    async def poll(self) -> None:
        """Check the server once and report any change."""
        is_connected = await self._server.is_connected()

        if not self._was_connected and is_connected:
            self._on_connect(ANONYMOUS_CLIENT)
        elif self._was_connected and not is_connected:
            self._on_disconnect(ANONYMOUS_CLIENT)

        self._was_connected = is_connected

    async def _monitor_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.poll()
            except Exception as e:
                logger.error(f"[CLIENTS] Error checking connection status: {e}")

"""
GATT server for the settings link (peripheral role).

Uses bless to advertise the settings service with one write-only
characteristic. Writes are decoded as UTF-8 and handed to an external
handler; the write is acknowledged as delivered whatever the handler does,
unless strict acknowledgment is enabled.
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from bless import (
    BlessGATTCharacteristic,
    BlessServer,
    GATTAttributePermissions,
    GATTCharacteristicProperties,
)

from ..adapter import AdapterMonitor, AdapterState, platform_adapter_monitor
from ..config import LinkConfig
from ..frames import FrameError
from ..relay import StatusRelay
from .connection_monitor import ConnectionMonitor

logger = logging.getLogger(__name__)

WriteHandler = Callable[[str], Optional[Awaitable[None]]]
ServerFactory = Callable[[str, asyncio.AbstractEventLoop], BlessServer]


class ClientWatcher(Protocol):
    """Source of client connect/disconnect notifications."""

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


WatcherFactory = Callable[
    [BlessServer, Callable[[str], None], Callable[[str], None]], ClientWatcher
]


def default_write_handler(payload: str) -> None:
    """Default handler for incoming writes: log the text and any JSON in it."""
    logger.info(f"[WRITE] Received data: {payload}")
    try:
        json_data = json.loads(payload)
        logger.info(f"[WRITE] Parsed JSON: {json_data}")
    except json.JSONDecodeError:
        logger.info("[WRITE] Received plain text (not JSON)")


def bless_server_factory(name: str, loop: asyncio.AbstractEventLoop) -> BlessServer:
    return BlessServer(name=name, loop=loop)


def make_watcher_factory(adapter: str = "hci0") -> WatcherFactory:
    """Return the client watcher factory for this platform."""

    def factory(server, on_connect, on_disconnect) -> ClientWatcher:
        if sys.platform == "linux":
            from ..bluez import BluezDeviceWatcher

            return BluezDeviceWatcher(on_connect, on_disconnect, adapter=adapter)
        return ConnectionMonitor(server, on_connect, on_disconnect)

    return factory


@dataclass
class AdvertiserSession:
    """Observable peripheral state."""
    advertising_active: bool = False
    connected_clients: set[str] = field(default_factory=set)


class SettingsGattServer:
    """Advertises the settings service while the adapter is powered on."""

    def __init__(
        self,
        write_handler: WriteHandler | None = None,
        config: LinkConfig | None = None,
        adapter: AdapterMonitor | None = None,
        relay: StatusRelay | None = None,
        server_factory: ServerFactory | None = None,
        watcher_factory: WatcherFactory | None = None,
        reject_on_handler_error: bool = False,
    ):
        """
        Initialize the GATT server.

        Args:
            write_handler: Called with each decoded payload (sync or async)
            config: Link configuration (name and UUIDs)
            adapter: Adapter monitor driving advertising
            relay: Optional relay for writes and client events
            server_factory: Builds the bless server (injectable for tests)
            watcher_factory: Builds the client connection watcher
            reject_on_handler_error: Fail the write when decoding or a
                synchronous handler fails, instead of acknowledging it
        """
        self.config = config or LinkConfig()
        self.name = self.config.peripheral_name
        self.write_handler = write_handler or default_write_handler
        self.session = AdvertiserSession()
        self.server: BlessServer | None = None
        self.reject_on_handler_error = reject_on_handler_error

        self._adapter = adapter or platform_adapter_monitor(self.config.adapter)
        self._relay = relay
        self._server_factory = server_factory or bless_server_factory
        self._watcher_factory = watcher_factory or make_watcher_factory(self.config.adapter)
        self._watcher: ClientWatcher | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._observing = False
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the server has been started."""
        return self._running

    @property
    def advertising(self) -> bool:
        return self.session.advertising_active

    async def start(self) -> None:
        """Start following the adapter; advertising begins once it is powered on."""
        self._loop = asyncio.get_running_loop()
        self._running = True
        if not self._observing:
            self._adapter.on_state_change(self._on_adapter_state)
            self._observing = True
        logger.info(f"Starting GATT server: {self.name}")
        await self._adapter.start()
        await self.reconcile()

    async def stop(self) -> None:
        """Stop advertising and stop following the adapter."""
        self._running = False
        await self._adapter.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        async with self._lock:
            await self._stop_advertising()
        logger.info("GATT server stopped")

    async def reconcile(self) -> None:
        """Bring advertising in line with the current adapter state."""
        async with self._lock:
            powered = self._adapter.current_state() is AdapterState.POWERED_ON
            if self._running and powered and not self.session.advertising_active:
                await self._start_advertising()
            elif not (self._running and powered) and self.session.advertising_active:
                await self._stop_advertising()

    def _on_adapter_state(self, state: AdapterState) -> None:
        if state is not AdapterState.POWERED_ON:
            logger.info(f"[ADVERTISE] Adapter {state.value}, advertising paused")
        self._spawn(self.reconcile())

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[ADVERTISE] Background task failed: {task.exception()}")

    async def _start_advertising(self) -> None:
        # BlueZ drops registered applications when the adapter powers off,
        # so each advertising period gets a fresh server
        server = self._server_factory(self.name, self._loop)
        server.read_request_func = self._on_read
        server.write_request_func = self._on_write

        try:
            await server.add_new_service(self.config.service_uuid)
            await server.add_new_characteristic(
                self.config.service_uuid,
                self.config.characteristic_uuid,
                GATTCharacteristicProperties.write,
                None,
                GATTAttributePermissions.writeable,
            )
            await server.start()
        except Exception as e:
            logger.error(f"[ADVERTISE] Failed to start advertising: {e}")
            try:
                await server.stop()
            except Exception as stop_error:
                logger.warning(f"[ADVERTISE] Error stopping server: {stop_error}")
            return

        self.server = server
        self.session.advertising_active = True
        logger.info(f"[ADVERTISE] Advertising as {self.name}")
        logger.info(f"  Service UUID: {self.config.service_uuid}")
        logger.info(f"  Characteristic UUID: {self.config.characteristic_uuid}")

        self._watcher = self._watcher_factory(
            server, self._on_client_connect, self._on_client_disconnect
        )
        try:
            await self._watcher.start()
        except Exception as e:
            logger.warning(f"[CLIENTS] Client tracking unavailable: {e}")
            self._watcher = None

    async def _stop_advertising(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            try:
                await watcher.stop()
            except Exception as e:
                logger.warning(f"[CLIENTS] Error stopping client tracking: {e}")

        server, self.server = self.server, None
        if server is not None:
            try:
                await server.stop()
            except Exception as e:
                logger.warning(f"[ADVERTISE] Error stopping server: {e}")

        if self.session.advertising_active:
            logger.info("[ADVERTISE] Advertising stopped")
        self.session.advertising_active = False
        for address in list(self.session.connected_clients):
            self._on_client_disconnect(address)

    def _on_read(self, characteristic: BlessGATTCharacteristic, **kwargs) -> bytearray:
        """Handle read requests. The characteristic is write-only."""
        logger.debug(f"Read request for {characteristic.uuid} (not supported)")
        return bytearray(b"")

    def _on_write(self, characteristic: BlessGATTCharacteristic, value: Any, **kwargs) -> None:
        """Handle write requests.

        Returning normally acknowledges the write. Raising makes bless
        report an error to the central.
        """
        uuid = str(characteristic.uuid).lower()
        if uuid != self.config.characteristic_uuid:
            logger.warning(f"[WRITE] Write to unknown characteristic: {uuid}")
            return

        try:
            payload = bytes(value).decode("utf-8")
        except (TypeError, UnicodeDecodeError) as e:
            logger.error(f"[WRITE] Undecodable payload: {e}")
            if self.reject_on_handler_error:
                raise FrameError(f"Payload is not valid UTF-8: {e}") from e
            return

        logger.debug(f"[WRITE] {len(payload)} char(s) on {uuid}")
        if self._relay is not None:
            self._spawn(self._relay.publish_write(payload))

        try:
            result = self.write_handler(payload)
        except Exception as e:
            logger.error(f"[WRITE] Handler failed: {e}")
            if self.reject_on_handler_error:
                raise
            return

        if asyncio.iscoroutine(result):
            self._spawn(self._await_handler(result))

    async def _await_handler(self, result: Awaitable[None]) -> None:
        try:
            await result
        except Exception as e:
            logger.error(f"[WRITE] Handler failed: {e}")

    def _on_client_connect(self, address: str) -> None:
        if address in self.session.connected_clients:
            return
        self.session.connected_clients.add(address)
        logger.info(
            f"[CLIENTS] Connected: {address} "
            f"({len(self.session.connected_clients)} connected)"
        )
        if self._relay is not None:
            self._spawn(self._relay.publish_client(address, True))

    def _on_client_disconnect(self, address: str) -> None:
        if address not in self.session.connected_clients:
            return
        self.session.connected_clients.discard(address)
        logger.info(
            f"[CLIENTS] Disconnected: {address} "
            f"({len(self.session.connected_clients)} connected)"
        )
        if self._relay is not None:
            self._spawn(self._relay.publish_client(address, False))

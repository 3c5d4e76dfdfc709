"""Radio platform boundary for the central role.

`RadioPlatform` is everything the session needs from the Bluetooth stack.
`BleakRadio` implements it with bleak. Characteristic values cross this
boundary as base64 transport text; the bytes on air are the decoded value.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Protocol

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from ..frames import encode_transport, transport_to_bytes
from ..subscriptions import Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveredPeripheral:
    """An advertising peripheral seen during the current scan pass."""
    identity: str
    name: Optional[str] = None
    rssi: Optional[int] = None
    service_ids: frozenset[str] = field(default_factory=frozenset)

    @property
    def label(self) -> str:
        return self.name or self.identity


AdvertisementHandler = Callable[[DiscoveredPeripheral], None]
DisconnectHandler = Callable[[str], None]


class RadioPlatform(Protocol):
    """Protocol for the central-side Bluetooth stack."""

    async def start_scan(
        self, service_ids: list[str], on_advertisement: AdvertisementHandler
    ) -> None:
        """Start scanning; report every advertisement through the handler."""
        ...

    async def stop_scan(self) -> None:
        """Stop the hardware scan."""
        ...

    async def connect(self, identity: str, *, timeout: float, mtu: int) -> None:
        """Establish a link to the peripheral."""
        ...

    def subscribe_disconnect(
        self, identity: str, callback: DisconnectHandler
    ) -> Subscription:
        """Deliver unsolicited disconnects of `identity` until removed."""
        ...

    async def discover(self, identity: str) -> Mapping[str, frozenset[str]]:
        """Return service UUID -> characteristic UUIDs (lower case)."""
        ...

    async def write(
        self, identity: str, service_uuid: str, characteristic_uuid: str, value: str
    ) -> None:
        """Write a base64 value and wait for the acknowledgment."""
        ...

    async def read(
        self, identity: str, service_uuid: str, characteristic_uuid: str
    ) -> Optional[str]:
        """Read a characteristic; return its base64 value or None if empty."""
        ...

    async def cancel_connection(self, identity: str) -> None:
        """Close (or abort) the link to the peripheral."""
        ...


class BleakRadio:
    """RadioPlatform implementation using bleak."""

    def __init__(self) -> None:
        self._scanner: BleakScanner | None = None
        self._devices: dict[str, BLEDevice] = {}
        self._clients: dict[str, BleakClient] = {}
        self._connecting: set[BleakClient] = set()
        self._cancelled: set[BleakClient] = set()
        self._disconnect_handlers: dict[str, DisconnectHandler] = {}

    async def start_scan(
        self, service_ids: list[str], on_advertisement: AdvertisementHandler
    ) -> None:
        def detection_callback(device: BLEDevice, adv: AdvertisementData) -> None:
            self._devices[device.address] = device
            on_advertisement(
                DiscoveredPeripheral(
                    identity=device.address,
                    name=adv.local_name or device.name,
                    rssi=adv.rssi,
                    service_ids=frozenset(u.lower() for u in (adv.service_uuids or [])),
                )
            )

        self._devices.clear()
        self._scanner = BleakScanner(
            detection_callback=detection_callback,
            service_uuids=service_ids,
        )
        await self._scanner.start()
        logger.debug(f"[RADIO] Scan started (filter: {service_ids})")

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            await scanner.stop()
            logger.debug("[RADIO] Scan stopped")

    async def connect(self, identity: str, *, timeout: float, mtu: int) -> None:
        target = self._devices.get(identity, identity)
        client = BleakClient(
            target,
            disconnected_callback=self._on_disconnected,
            timeout=timeout,
        )
        # Registered before connecting so cancel_connection can abort it
        self._clients[identity] = client
        self._connecting.add(client)

        logger.info(f"[RADIO] Connecting to {identity}...")
        try:
            await client.connect()
        except BaseException:
            self._cancelled.discard(client)
            if self._clients.get(identity) is client:
                del self._clients[identity]
            raise
        finally:
            self._connecting.discard(client)

        if client in self._cancelled:
            # Cancelled while connecting; close the link nobody owns
            self._cancelled.discard(client)
            logger.info(f"[RADIO] Link to {identity} completed after cancel, closing")
            await client.disconnect()
            raise ConnectionAbortedError(f"Connection to {identity} was cancelled")

        try:
            logger.info(f"[RADIO] Connected to {identity}, MTU {client.mtu_size} (requested {mtu})")
        except Exception:
            logger.info(f"[RADIO] Connected to {identity}")

    def subscribe_disconnect(
        self, identity: str, callback: DisconnectHandler
    ) -> Subscription:
        self._disconnect_handlers[identity] = callback

        def release() -> None:
            if self._disconnect_handlers.get(identity) is callback:
                del self._disconnect_handlers[identity]

        client = self._clients.get(identity)
        if client is None or not client.is_connected:
            # Link dropped before the subscription existed
            asyncio.get_running_loop().call_soon(self._dispatch_disconnect, identity)

        return Subscription(release, label=f"disconnect:{identity}")

    async def discover(self, identity: str) -> Mapping[str, frozenset[str]]:
        client = self._client(identity)
        services: dict[str, frozenset[str]] = {}
        for service in client.services:
            services[service.uuid.lower()] = frozenset(
                c.uuid.lower() for c in service.characteristics
            )
        logger.debug(f"[RADIO] Discovered {len(services)} service(s) on {identity}")
        return services

    async def write(
        self, identity: str, service_uuid: str, characteristic_uuid: str, value: str
    ) -> None:
        client = self._client(identity)
        characteristic = self._characteristic(client, service_uuid, characteristic_uuid)
        await client.write_gatt_char(characteristic, transport_to_bytes(value), response=True)

    async def read(
        self, identity: str, service_uuid: str, characteristic_uuid: str
    ) -> Optional[str]:
        client = self._client(identity)
        characteristic = self._characteristic(client, service_uuid, characteristic_uuid)
        data = await client.read_gatt_char(characteristic)
        return encode_transport(bytes(data)) if data else None

    async def cancel_connection(self, identity: str) -> None:
        client = self._clients.pop(identity, None)
        if client is None:
            logger.debug(f"[RADIO] No link to {identity}")
            return
        if client in self._connecting:
            self._cancelled.add(client)
            try:
                await client.disconnect()
            except Exception as e:
                logger.debug(f"[RADIO] Abort of pending connect to {identity}: {e}")
            logger.info(f"[RADIO] Cancelled pending connect to {identity}")
            return
        await client.disconnect()
        logger.info(f"[RADIO] Disconnected from {identity}")

    def _client(self, identity: str) -> BleakClient:
        client = self._clients.get(identity)
        if client is None or not client.is_connected:
            raise ConnectionError(f"Not connected to {identity}")
        return client

    @staticmethod
    def _characteristic(client: BleakClient, service_uuid: str, characteristic_uuid: str):
        service = client.services.get_service(service_uuid)
        if service is None:
            raise LookupError(f"Service {service_uuid} not found")
        characteristic = service.get_characteristic(characteristic_uuid)
        if characteristic is None:
            raise LookupError(f"Characteristic {characteristic_uuid} not found")
        return characteristic

    def _on_disconnected(self, client: BleakClient) -> None:
        identity = client.address
        # Clients already popped by cancel_connection were closed on request
        if self._clients.get(identity) is not client:
            return
        del self._clients[identity]
        self._dispatch_disconnect(identity)

    def _dispatch_disconnect(self, identity: str) -> None:
        handler = self._disconnect_handlers.get(identity)
        if handler is not None:
            handler(identity)

from __future__ import annotations

import asyncio
from typing import Callable, Mapping, Optional

from ble_settings_link.adapter import AdapterMonitor, AdapterState, StaticAdapterSource
from ble_settings_link.client.permissions import PermissionGate
from ble_settings_link.client.radio import DiscoveredPeripheral
from ble_settings_link.client.session import Session
from ble_settings_link.config import CHARACTERISTIC_UUID, SERVICE_UUID, LinkConfig
from ble_settings_link.subscriptions import Subscription

PI_ADDRESS = "DC:A6:32:00:11:22"


def settings_peripheral(
    identity: str = PI_ADDRESS,
    name: Optional[str] = "MyRaspberryPiSettings",
    rssi: int = -55,
) -> DiscoveredPeripheral:
    return DiscoveredPeripheral(
        identity=identity,
        name=name,
        rssi=rssi,
        service_ids=frozenset({SERVICE_UUID}),
    )


class FakeRadio:
    """In-memory RadioPlatform. Tests poke it to simulate the peripheral."""

    def __init__(self) -> None:
        self.scanning = False
        self.start_calls = 0
        self.stop_calls = 0
        self.scan_filters: list[list[str]] = []
        self._on_advertisement = None

        self.connect_calls: list[str] = []
        self.connect_gate: asyncio.Event | None = None
        self.connect_error: BaseException | None = None
        self.connected: set[str] = set()
        self.disconnect_callbacks: dict[str, Callable[[str], None]] = {}

        self.services: Mapping[str, frozenset[str]] = {
            SERVICE_UUID: frozenset({CHARACTERISTIC_UUID}),
        }
        self.discover_error: BaseException | None = None

        self.writes: list[tuple[str, str, str, str]] = []
        self.write_error: BaseException | None = None
        self.read_value: Optional[str] = None
        self.read_error: BaseException | None = None

        self.cancel_calls: list[str] = []
        self.cancel_error: BaseException | None = None
        self.disconnect_on_cancel = False

    # Scanning

    async def start_scan(self, service_ids, on_advertisement) -> None:
        self.start_calls += 1
        self.scan_filters.append(list(service_ids))
        self._on_advertisement = on_advertisement
        self.scanning = True

    async def stop_scan(self) -> None:
        self.stop_calls += 1
        await asyncio.sleep(0)
        self.scanning = False
        self._on_advertisement = None

    def advertise(self, peripheral: DiscoveredPeripheral) -> None:
        if self._on_advertisement is not None:
            self._on_advertisement(peripheral)

    # Links

    async def connect(self, identity: str, *, timeout: float, mtu: int) -> None:
        self.connect_calls.append(identity)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected.add(identity)

    def subscribe_disconnect(self, identity: str, callback) -> Subscription:
        self.disconnect_callbacks[identity] = callback

        def release() -> None:
            if self.disconnect_callbacks.get(identity) is callback:
                del self.disconnect_callbacks[identity]

        return Subscription(release, label=f"disconnect:{identity}")

    def drop(self, identity: str) -> None:
        """Simulate the peripheral going away."""
        self.connected.discard(identity)
        callback = self.disconnect_callbacks.get(identity)
        if callback is not None:
            callback(identity)

    async def discover(self, identity: str) -> Mapping[str, frozenset[str]]:
        if self.discover_error is not None:
            raise self.discover_error
        return self.services

    async def write(self, identity, service_uuid, characteristic_uuid, value) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((identity, service_uuid, characteristic_uuid, value))

    async def read(self, identity, service_uuid, characteristic_uuid) -> Optional[str]:
        if self.read_error is not None:
            raise self.read_error
        return self.read_value

    async def cancel_connection(self, identity: str) -> None:
        self.cancel_calls.append(identity)
        if self.cancel_error is not None:
            raise self.cancel_error
        self.connected.discard(identity)
        if self.disconnect_on_cancel:
            self.drop(identity)


class CountingChecker:
    def __init__(self, answer=True) -> None:
        self.answer = answer
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.answer


def make_session(
    radio: FakeRadio | None = None,
    source: StaticAdapterSource | None = None,
    checker: CountingChecker | None = None,
    **config_overrides,
) -> tuple[Session, FakeRadio, StaticAdapterSource]:
    radio = radio or FakeRadio()
    source = source or StaticAdapterSource(AdapterState.POWERED_ON)
    options = dict(
        scan_timeout=1.0,
        connect_timeout=1.0,
        discover_timeout=1.0,
        disconnect_timeout=1.0,
        io_timeout=1.0,
    )
    options.update(config_overrides)
    session = Session(
        radio,
        AdapterMonitor(source),
        PermissionGate(checker or CountingChecker(), timeout=1.0),
        LinkConfig(**options),
    )
    return session, radio, source


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)

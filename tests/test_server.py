from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from bless import GATTAttributePermissions, GATTCharacteristicProperties

from ble_settings_link.adapter import AdapterMonitor, AdapterState, StaticAdapterSource
from ble_settings_link.client.session import SessionState
from ble_settings_link.config import CHARACTERISTIC_UUID, SERVICE_UUID
from ble_settings_link.frames import FrameError, transport_to_bytes
from ble_settings_link.server.server import SettingsGattServer, default_write_handler

from conftest import FakeRadio, eventually, make_session, settings_peripheral


class FakeBlessServer:
    def __init__(self, name: str, start_error: Exception | None = None) -> None:
        self.name = name
        self.start_error = start_error
        self.read_request_func = None
        self.write_request_func = None
        self.services: list[str] = []
        self.characteristics: list[tuple] = []
        self.started = False
        self.stopped = False

    async def add_new_service(self, uuid: str) -> None:
        self.services.append(uuid)

    async def add_new_characteristic(self, service, characteristic, properties, value, permissions) -> None:
        self.characteristics.append((service, characteristic, properties, value, permissions))

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def is_connected(self) -> bool:
        return False


class FakeWatcher:
    def __init__(self, on_connect, on_disconnect) -> None:
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.running = False

    async def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False


class Harness:
    def __init__(
        self,
        write_handler=None,
        reject_on_handler_error=False,
        state: AdapterState = AdapterState.POWERED_ON,
        start_error: Exception | None = None,
    ) -> None:
        self.start_error = start_error
        self.source = StaticAdapterSource(state)
        self.servers: list[FakeBlessServer] = []
        self.watchers: list[FakeWatcher] = []
        self.received: list[str] = []
        self.gatt = SettingsGattServer(
            write_handler=write_handler or self.received.append,
            adapter=AdapterMonitor(self.source),
            server_factory=self._make_server,
            watcher_factory=self._make_watcher,
            reject_on_handler_error=reject_on_handler_error,
        )

    def _make_server(self, name, loop):
        server = FakeBlessServer(name, self.start_error)
        self.servers.append(server)
        return server

    def _make_watcher(self, server, on_connect, on_disconnect):
        watcher = FakeWatcher(on_connect, on_disconnect)
        self.watchers.append(watcher)
        return watcher

    def write(self, value: bytes, uuid: str = CHARACTERISTIC_UUID):
        return self.servers[-1].write_request_func(SimpleNamespace(uuid=uuid), bytearray(value))


@pytest.mark.asyncio
async def test_advertises_write_only_characteristic_when_powered_on() -> None:
    harness = Harness()

    await harness.gatt.start()

    server = harness.servers[0]
    assert server.name == "MyRaspberryPiSettings"
    assert server.started
    assert server.services == [SERVICE_UUID]
    assert server.characteristics == [(
        SERVICE_UUID,
        CHARACTERISTIC_UUID,
        GATTCharacteristicProperties.write,
        None,
        GATTAttributePermissions.writeable,
    )]
    assert harness.gatt.session.advertising_active
    await harness.gatt.stop()
    assert server.stopped
    assert not harness.gatt.advertising


@pytest.mark.asyncio
async def test_does_not_advertise_while_adapter_off() -> None:
    harness = Harness(state=AdapterState.POWERED_OFF)

    await harness.gatt.start()

    assert harness.servers == []
    assert not harness.gatt.advertising
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_failed_start_stops_partially_registered_server() -> None:
    harness = Harness(start_error=OSError("advertisement registration failed"))

    await harness.gatt.start()

    server = harness.servers[0]
    assert server.services == [SERVICE_UUID]
    assert not server.started
    assert server.stopped
    assert not harness.gatt.advertising
    assert harness.gatt.server is None
    assert harness.watchers == []
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_write_is_decoded_and_acknowledged() -> None:
    harness = Harness()
    await harness.gatt.start()

    assert harness.write("ping".encode("utf-8")) is None
    assert harness.write('{"wifi": "on"}'.encode("utf-8")) is None

    assert harness.received == ["ping", '{"wifi": "on"}']
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_write_to_other_characteristic_is_ignored() -> None:
    harness = Harness()
    await harness.gatt.start()

    harness.write(b"ping", uuid="00002a00-0000-1000-8000-00805f9b34fb")

    assert harness.received == []
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_handler_failure_is_still_acknowledged() -> None:
    def handler(payload: str) -> None:
        raise ValueError("bad settings")

    harness = Harness(write_handler=handler)
    await harness.gatt.start()

    assert harness.write(b"ping") is None
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_strict_ack_rejects_handler_failure() -> None:
    def handler(payload: str) -> None:
        raise ValueError("bad settings")

    harness = Harness(write_handler=handler, reject_on_handler_error=True)
    await harness.gatt.start()

    with pytest.raises(ValueError, match="bad settings"):
        harness.write(b"ping")
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_undecodable_write_is_logged_unless_strict() -> None:
    lenient = Harness()
    await lenient.gatt.start()
    assert lenient.write(b"\xff\xfe") is None
    assert lenient.received == []
    await lenient.gatt.stop()

    strict = Harness(reject_on_handler_error=True)
    await strict.gatt.start()
    with pytest.raises(FrameError):
        strict.write(b"\xff\xfe")
    await strict.gatt.stop()


@pytest.mark.asyncio
async def test_async_handler_is_awaited() -> None:
    received = asyncio.Queue()

    async def handler(payload: str) -> None:
        await received.put(payload)

    harness = Harness(write_handler=handler)
    await harness.gatt.start()

    harness.write(b"ping")

    assert await asyncio.wait_for(received.get(), 1.0) == "ping"
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_advertising_restarts_when_power_returns() -> None:
    harness = Harness()
    await harness.gatt.start()
    first = harness.servers[0]

    harness.source.set_state(AdapterState.POWERED_OFF)
    await eventually(lambda: not harness.gatt.advertising)
    assert first.stopped

    harness.source.set_state(AdapterState.POWERED_ON)
    await eventually(lambda: harness.gatt.advertising)

    assert len(harness.servers) == 2
    assert harness.servers[1].started
    await harness.gatt.stop()


@pytest.mark.asyncio
async def test_connected_clients_are_tracked() -> None:
    harness = Harness()
    await harness.gatt.start()
    watcher = harness.watchers[0]
    assert watcher.running

    watcher.on_connect("AA:BB:CC:DD:EE:FF")
    watcher.on_connect("AA:BB:CC:DD:EE:FF")
    watcher.on_connect("11:22:33:44:55:66")
    assert harness.gatt.session.connected_clients == {"AA:BB:CC:DD:EE:FF", "11:22:33:44:55:66"}

    watcher.on_disconnect("AA:BB:CC:DD:EE:FF")
    assert harness.gatt.session.connected_clients == {"11:22:33:44:55:66"}

    harness.source.set_state(AdapterState.POWERED_OFF)
    await eventually(lambda: not harness.gatt.advertising)
    assert harness.gatt.session.connected_clients == set()
    assert not watcher.running
    await harness.gatt.stop()


def test_default_write_handler_accepts_text_and_json(caplog) -> None:
    with caplog.at_level("INFO"):
        default_write_handler('{"brightness": 80}')
        default_write_handler("hello")

    assert "Parsed JSON: {'brightness': 80}" in caplog.text
    assert "plain text" in caplog.text


class LoopbackRadio(FakeRadio):
    """Delivers writes to a GATT server's write callback as raw bytes."""

    def __init__(self, harness: Harness) -> None:
        super().__init__()
        self.harness = harness

    async def write(self, identity, service_uuid, characteristic_uuid, value) -> None:
        await super().write(identity, service_uuid, characteristic_uuid, value)
        server = self.harness.servers[-1]
        server.write_request_func(
            SimpleNamespace(uuid=characteristic_uuid.upper()),
            bytearray(transport_to_bytes(value)),
        )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        "ping",
        "héllo wörld ✓",
        '{"name": "居間", "mode": "🌙"}',
        "x" * 248,
        "é" * 124,
    ],
    ids=["ascii", "accented", "cjk-emoji-json", "max-ascii", "max-two-byte"],
)
async def test_payload_reaches_peripheral_handler(payload) -> None:
    harness = Harness()
    await harness.gatt.start()
    session, radio, _ = make_session(radio=LoopbackRadio(harness))
    await session.start()
    await session.wait_until_usable(1.0)
    await session.start_scan()
    radio.advertise(settings_peripheral())
    await session.wait_for(SessionState.READY, timeout=1.0)

    await session.send(payload)

    assert harness.received == [payload]
    await session.close()
    await harness.gatt.stop()

"""BlueZ D-Bus integration.

Linux-only helpers built on dbus_next:

- `BluezAdapterSource` reports adapter power state to an `AdapterMonitor`
- `bluez_permission_check` decides whether this process may use the adapter
- `BluezDeviceWatcher` reports remote devices connecting and disconnecting

Requirements:
    - Linux with BlueZ 5.x
    - bluetoothd running
"""

import logging
from typing import Any, Callable

from dbus_next import BusType, DBusError, Message, MessageType
from dbus_next.aio import MessageBus

from .adapter import AdapterState, StateHandler

logger = logging.getLogger(__name__)

# BlueZ D-Bus constants
BLUEZ_SERVICE = "org.bluez"
BLUEZ_ADAPTER_INTERFACE = "org.bluez.Adapter1"
BLUEZ_DEVICE_INTERFACE = "org.bluez.Device1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

# PowerState values (BlueZ >= 5.66) that mean the adapter is mid-transition
TRANSITIONAL_POWER_STATES = ("off-enabling", "on-disabling")

# Errors meaning BlueZ or the adapter object does not exist
MISSING_ERRORS = (
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.UnknownObject",
    "org.freedesktop.DBus.Error.NameHasNoOwner",
)
ACCESS_DENIED_ERROR = "org.freedesktop.DBus.Error.AccessDenied"


def adapter_path(adapter: str) -> str:
    """Return the D-Bus object path of a local adapter (e.g. "hci0")."""
    return f"/org/bluez/{adapter}"


def address_from_path(path: str) -> str | None:
    """Extract a device address from a BlueZ device path.

    "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF" -> "AA:BB:CC:DD:EE:FF"
    """
    leaf = path.rsplit("/", 1)[-1]
    if not leaf.startswith("dev_"):
        return None
    return leaf[4:].replace("_", ":")


def map_power_state(powered: bool, power_state: str | None = None) -> AdapterState:
    """Map BlueZ adapter properties to an AdapterState."""
    if power_state in TRANSITIONAL_POWER_STATES:
        return AdapterState.RESETTING
    return AdapterState.POWERED_ON if powered else AdapterState.POWERED_OFF


class BluezAdapterSource:
    """Adapter state source backed by org.bluez.Adapter1 properties."""

    def __init__(self, adapter: str = "hci0"):
        self._adapter = adapter
        self._path = adapter_path(adapter)
        self._bus: MessageBus | None = None
        self._properties: Any = None
        self._object_manager: Any = None
        self._emit: StateHandler | None = None
        self._powered = False
        self._power_state: str | None = None

    async def start(self, emit: StateHandler) -> None:
        """Connect to the system bus and begin reporting adapter state."""
        self._emit = emit
        logger.debug("[ADAPTER] Connecting to system D-Bus...")
        self._bus = await MessageBus(bus_type=BusType.SYSTEM).connect()

        try:
            root = await self._bus.introspect(BLUEZ_SERVICE, "/")
            root_proxy = self._bus.get_proxy_object(BLUEZ_SERVICE, "/", root)
            self._object_manager = root_proxy.get_interface(OBJECT_MANAGER_INTERFACE)
            self._object_manager.on_interfaces_added(self._on_interfaces_added)
            self._object_manager.on_interfaces_removed(self._on_interfaces_removed)
        except DBusError as e:
            if e.type in MISSING_ERRORS:
                logger.warning(f"[ADAPTER] BlueZ not available: {e.text}")
                emit(AdapterState.UNSUPPORTED)
                return
            raise

        await self._attach_adapter()

    async def stop(self) -> None:
        """Stop reporting and disconnect from D-Bus."""
        if self._properties is not None:
            self._properties.off_properties_changed(self._on_properties_changed)
        if self._object_manager is not None:
            self._object_manager.off_interfaces_added(self._on_interfaces_added)
            self._object_manager.off_interfaces_removed(self._on_interfaces_removed)
        if self._bus is not None:
            try:
                self._bus.disconnect()
            except Exception as e:
                logger.warning(f"[ADAPTER] Error disconnecting from D-Bus: {e}")
        self._bus = None
        self._properties = None
        self._object_manager = None
        self._emit = None

    async def _attach_adapter(self) -> None:
        try:
            introspection = await self._bus.introspect(BLUEZ_SERVICE, self._path)
        except DBusError as e:
            if e.type in MISSING_ERRORS:
                logger.warning(f"[ADAPTER] Adapter {self._adapter} not found")
                self._report(AdapterState.UNSUPPORTED)
                return
            raise

        proxy = self._bus.get_proxy_object(BLUEZ_SERVICE, self._path, introspection)
        self._properties = proxy.get_interface(PROPERTIES_INTERFACE)
        self._properties.on_properties_changed(self._on_properties_changed)

        powered = await self._properties.call_get(BLUEZ_ADAPTER_INTERFACE, "Powered")
        self._powered = bool(powered.value)
        try:
            power_state = await self._properties.call_get(
                BLUEZ_ADAPTER_INTERFACE, "PowerState"
            )
            self._power_state = power_state.value
        except DBusError:
            # Older BlueZ releases have no PowerState property
            self._power_state = None

        self._report(map_power_state(self._powered, self._power_state))

    def _report(self, state: AdapterState) -> None:
        if self._emit is not None:
            self._emit(state)

    def _on_properties_changed(
        self,
        interface: str,
        changed: dict[str, Any],
        invalidated: list[str],
    ) -> None:
        if interface != BLUEZ_ADAPTER_INTERFACE:
            return
        if "Powered" in changed:
            self._powered = bool(changed["Powered"].value)
        if "PowerState" in changed:
            self._power_state = changed["PowerState"].value
        if "Powered" in changed or "PowerState" in changed:
            self._report(map_power_state(self._powered, self._power_state))

    def _on_interfaces_added(self, path: str, interfaces: dict[str, Any]) -> None:
        if path == self._path and BLUEZ_ADAPTER_INTERFACE in interfaces:
            logger.info(f"[ADAPTER] Adapter {self._adapter} appeared")
            props = interfaces[BLUEZ_ADAPTER_INTERFACE]
            self._powered = bool(props["Powered"].value) if "Powered" in props else False
            self._report(map_power_state(self._powered, None))

    def _on_interfaces_removed(self, path: str, interfaces: list[str]) -> None:
        if path == self._path and BLUEZ_ADAPTER_INTERFACE in interfaces:
            logger.warning(f"[ADAPTER] Adapter {self._adapter} removed")
            self._report(AdapterState.UNSUPPORTED)


async def bluez_permission_check(adapter: str = "hci0") -> bool:
    """Check that this process may talk to the BlueZ adapter.

    Returns:
        True if the adapter object can be introspected, False if access is
        denied. Other D-Bus failures propagate so the caller can fail closed.
    """
    bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    try:
        await bus.introspect(BLUEZ_SERVICE, adapter_path(adapter))
        return True
    except DBusError as e:
        if e.type == ACCESS_DENIED_ERROR:
            logger.warning(f"[PERMISSION] D-Bus access denied: {e.text}")
            return False
        raise
    finally:
        bus.disconnect()


class BluezDeviceWatcher:
    """Reports remote devices connecting to and disconnecting from an adapter."""

    MATCH_RULE = (
        "type='signal',"
        f"sender='{BLUEZ_SERVICE}',"
        f"interface='{PROPERTIES_INTERFACE}',"
        "member='PropertiesChanged',"
        f"arg0='{BLUEZ_DEVICE_INTERFACE}'"
    )

    def __init__(
        self,
        on_connect: Callable[[str], None],
        on_disconnect: Callable[[str], None],
        adapter: str = "hci0",
    ):
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._prefix = adapter_path(adapter) + "/"
        self._bus: MessageBus | None = None

    async def start(self) -> None:
        """Subscribe to Device1 property changes."""
        self._bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        self._bus.add_message_handler(self._on_message)
        await self._bus.call(
            Message(
                destination="org.freedesktop.DBus",
                path="/org/freedesktop/DBus",
                interface="org.freedesktop.DBus",
                member="AddMatch",
                signature="s",
                body=[self.MATCH_RULE],
            )
        )
        logger.debug("[CLIENTS] Watching BlueZ device connections")

    async def stop(self) -> None:
        """Unsubscribe and disconnect from D-Bus."""
        if self._bus is None:
            return
        self._bus.remove_message_handler(self._on_message)
        try:
            self._bus.disconnect()
        except Exception as e:
            logger.warning(f"[CLIENTS] Error disconnecting from D-Bus: {e}")
        self._bus = None

    def _on_message(self, message: Message) -> None:
        if message.message_type != MessageType.SIGNAL:
            return
        if message.member != "PropertiesChanged" or not message.path:
            return
        if not message.path.startswith(self._prefix):
            return
        interface, changed = message.body[0], message.body[1]
        if interface != BLUEZ_DEVICE_INTERFACE or "Connected" not in changed:
            return

        address = address_from_path(message.path)
        if address is None:
            return
        if changed["Connected"].value:
            self._on_connect(address)
        else:
            self._on_disconnect(address)

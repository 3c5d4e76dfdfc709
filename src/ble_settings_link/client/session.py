"""
Central-side session state machine.

States:
    IDLE -> SCANNING -> CONNECTING -> DISCOVERING -> READY -> DISCONNECTING -> DISCONNECTED

IDLE and DISCONNECTED are equivalent rest states. Every event that can move
the session (user commands, scan matches, the scan timer, connect/discover
completions, unsolicited disconnects, adapter changes) is a message on one
queue consumed by a single task, so no two sources ever act on the same
state concurrently. Platform calls that take a while (connect, discover) run
in their own tasks and report back as messages tagged with an attempt
number; completions from a superseded attempt are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Mapping, Optional

from ..adapter import AdapterMonitor, AdapterState
from ..config import LinkConfig
from ..errors import (
    AdapterUnavailable,
    ErrorKind,
    NotConnected,
    PermissionDenied,
    ReadFailed,
    SessionBusy,
    WriteFailed,
    error_for,
)
from ..frames import CharacteristicFrame, FrameError
from ..subscriptions import HandleSlot, timer
from .permissions import PermissionGate, PermissionStatus
from .radio import DiscoveredPeripheral, RadioPlatform
from .scanner import Scanner

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session state machine states."""
    IDLE = auto()
    SCANNING = auto()
    CONNECTING = auto()
    DISCOVERING = auto()
    READY = auto()
    DISCONNECTING = auto()
    DISCONNECTED = auto()


REST_STATES = frozenset({SessionState.IDLE, SessionState.DISCONNECTED})
LINK_STATES = frozenset({
    SessionState.CONNECTING,
    SessionState.DISCOVERING,
    SessionState.READY,
    SessionState.DISCONNECTING,
})
ADAPTER_DOWN_STATES = frozenset({
    AdapterState.POWERED_OFF,
    AdapterState.UNSUPPORTED,
    AdapterState.RESETTING,
})


@dataclass(frozen=True)
class SessionStatus:
    """Snapshot published on every transition."""
    state: SessionState
    adapter_state: AdapterState
    permission: PermissionStatus
    target: Optional[str] = None
    target_name: Optional[str] = None
    last_error: Optional[ErrorKind] = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "status",
            "state": self.state.name.lower(),
            "adapter": self.adapter_state.value,
            "permission": self.permission.value,
            "target": self.target,
            "target_name": self.target_name,
            "error": self.last_error.value if self.last_error else None,
            "message": self.message,
        }


StatusListener = Callable[[SessionStatus], None]


# Messages consumed by the session task

@dataclass
class _Command:
    name: str
    args: tuple
    future: asyncio.Future


@dataclass
class _AdapterChanged:
    state: AdapterState


@dataclass
class _MatchFound:
    peripheral: DiscoveredPeripheral
    scan_epoch: int


@dataclass
class _ScanTimedOut:
    scan_epoch: int


@dataclass
class _Connected:
    identity: str
    attempt: int


@dataclass
class _ConnectFailed:
    identity: str
    attempt: int
    error: BaseException


@dataclass
class _Discovered:
    attempt: int
    services: Mapping[str, frozenset[str]] = field(default_factory=dict)


@dataclass
class _DiscoverFailed:
    attempt: int
    error: BaseException


@dataclass
class _LinkLost:
    identity: str
    attempt: int


@dataclass
class _Shutdown:
    future: asyncio.Future


class Session:
    """
    Owns at most one active or pending connection.

    The radio platform, adapter monitor and permission gate are injected so
    tests can substitute doubles.
    """

    def __init__(
        self,
        radio: RadioPlatform,
        adapter: AdapterMonitor,
        permissions: Optional[PermissionGate] = None,
        config: Optional[LinkConfig] = None,
        scanner: Optional[Scanner] = None,
    ):
        self.config = config or LinkConfig()
        self._radio = radio
        self._adapter = adapter
        self._permissions = permissions or PermissionGate()
        self.scanner = scanner or Scanner(radio)

        self._state = SessionState.IDLE
        self._target: Optional[DiscoveredPeripheral] = None
        self._last_error: Optional[ErrorKind] = None
        self._message = "Initializing Bluetooth..."
        self.last_received: Optional[str] = None

        # One live handle per resource kind
        self._scan_timer = HandleSlot("scan-timer")
        self._disconnect_subscription = HandleSlot("disconnect")

        self._scan_epoch = 0
        self._attempt = 0
        self._events: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[StatusListener] = []
        self._observing_adapter = False
        self._closed = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def target(self) -> Optional[str]:
        return self._target.identity if self._target else None

    @property
    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self._state,
            adapter_state=self._adapter.current_state(),
            permission=self._permissions.status,
            target=self.target,
            target_name=self._target.name if self._target else None,
            last_error=self._last_error,
            message=self._message,
        )

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def wait_for(self, *states: SessionState, timeout: Optional[float] = None) -> SessionStatus:
        """Wait until the session reaches one of `states`."""
        return await self._wait_status(lambda status: status.state in states, timeout)

    async def wait_until_usable(self, timeout: Optional[float] = None) -> SessionStatus:
        """Wait until the adapter is on and permission is resolved.

        Raises:
            AdapterUnavailable: Adapter did not power on in time
            PermissionDenied: Permission resolved to denied
        """
        def resolved(status: SessionStatus) -> bool:
            return (
                status.adapter_state is AdapterState.POWERED_ON
                and status.permission is not PermissionStatus.UNCHECKED
            )

        try:
            status = await self._wait_status(resolved, timeout)
        except asyncio.TimeoutError:
            status = self.status
            if status.adapter_state is not AdapterState.POWERED_ON:
                raise AdapterUnavailable(
                    f"Adapter is {status.adapter_state.value}"
                ) from None
            raise PermissionDenied("Permission check did not complete") from None

        if status.permission is not PermissionStatus.GRANTED:
            raise PermissionDenied("Bluetooth permissions denied")
        return status

    async def _wait_status(
        self, predicate: Callable[[SessionStatus], bool], timeout: Optional[float]
    ) -> SessionStatus:
        current = self.status
        if predicate(current):
            return current

        reached: asyncio.Future = asyncio.get_running_loop().create_future()

        def listener(status: SessionStatus) -> None:
            if predicate(status) and not reached.done():
                reached.set_result(status)

        remove = self.add_listener(listener)
        try:
            return await asyncio.wait_for(reached, timeout=timeout)
        finally:
            remove()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the session task and begin observing the adapter."""
        if self._worker is not None:
            return
        self._closed = False
        self._events = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        if not self._observing_adapter:
            self._adapter.on_state_change(self._on_adapter_state)
            self._observing_adapter = True
        await self._adapter.start()
        logger.info("[SESSION] Started")

    async def close(self) -> None:
        """Tear down any connection or scan and stop the session task."""
        if self._worker is None:
            return
        done = asyncio.get_running_loop().create_future()
        self._post(_Shutdown(done))
        await done
        await self._worker
        self._worker = None
        self._events = None
        await self._adapter.stop()
        logger.info("[SESSION] Closed")

    async def __aenter__(self) -> "Session":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def start_scan(self) -> None:
        """Start scanning for the target service. No-op while already scanning.

        Raises:
            AdapterUnavailable: Adapter is not powered on
            PermissionDenied: Scan/connect permission not granted
            SessionBusy: A connection is held or pending
        """
        await self._command("start_scan")

    async def connect(self, identity: str) -> None:
        """Connect to a peripheral from the scan results (manual selection)."""
        await self._command("connect", identity)

    async def disconnect(self) -> None:
        """Close the link (or stop the scan). Never leaves the session stuck."""
        await self._command("disconnect")

    async def open_link(self, timeout: Optional[float] = None) -> SessionStatus:
        """Scan, connect to the first match and wait until Ready.

        Raises:
            LinkError: The kind recorded when the attempt ended
        """
        if timeout is None:
            timeout = (
                self.config.scan_timeout
                + self.config.connect_timeout
                + self.config.discover_timeout
            )
        await self.start_scan()
        status = await self.wait_for(
            SessionState.READY,
            SessionState.IDLE,
            SessionState.DISCONNECTED,
            timeout=timeout,
        )
        if status.state is not SessionState.READY:
            raise error_for(status.last_error or ErrorKind.CONNECTION_FAILED, status.message)
        return status

    async def send(self, payload: str) -> None:
        """Write a payload to the data characteristic, once.

        Raises:
            NotConnected: Session is not Ready
            WriteFailed: Payload too large or write not acknowledged
        """
        identity = self._require_ready()
        frame = CharacteristicFrame(
            self.config.service_uuid, self.config.characteristic_uuid, payload
        )
        try:
            value = frame.build(self.config.max_payload)
        except FrameError as e:
            self._publish(f"Send error: {e}", ErrorKind.WRITE_FAILED)
            raise WriteFailed(str(e)) from e

        self._publish(f'Sending: "{payload}"')
        try:
            await asyncio.wait_for(
                self._radio.write(
                    identity, frame.service_uuid, frame.characteristic_uuid, value
                ),
                timeout=self.config.io_timeout,
            )
        except Exception as e:
            logger.error(f"[SESSION] Data send error: {e}")
            self._publish(f"Send error: {e}", ErrorKind.WRITE_FAILED)
            raise WriteFailed(f"Write to {frame.characteristic_uuid} failed: {e}") from e

        self._publish(f'Data "{payload}" sent successfully!')

    async def read(self) -> str:
        """Read and decode the data characteristic.

        Raises:
            NotConnected: Session is not Ready
            ReadFailed: Read error, no value set, or undecodable value
        """
        identity = self._require_ready()
        service_uuid = self.config.service_uuid
        characteristic_uuid = self.config.characteristic_uuid

        self._publish("Reading data...")
        try:
            value = await asyncio.wait_for(
                self._radio.read(identity, service_uuid, characteristic_uuid),
                timeout=self.config.io_timeout,
            )
            frame = CharacteristicFrame.parse(service_uuid, characteristic_uuid, value)
        except Exception as e:
            logger.error(f"[SESSION] Read error: {e}")
            self._publish(f"Read error: {e}", ErrorKind.READ_FAILED)
            raise ReadFailed(f"Read of {characteristic_uuid} failed: {e}") from e

        self.last_received = frame.payload
        self._publish(f"Received: {frame.payload}")
        return frame.payload

    def _require_ready(self) -> str:
        if self._state is not SessionState.READY or self._target is None:
            raise NotConnected(f"No device connected (state: {self._state.name})")
        return self._target.identity

    # ------------------------------------------------------------------
    # Message plumbing
    # ------------------------------------------------------------------

    def _post(self, event: Any) -> None:
        if self._events is None or self._closed:
            logger.debug(f"[SESSION] Dropping {type(event).__name__}, session not running")
            return
        self._events.put_nowait(event)

    async def _command(self, name: str, *args: Any) -> Any:
        if self._events is None or self._closed:
            raise RuntimeError("Session is not running")
        future = asyncio.get_running_loop().create_future()
        self._post(_Command(name, args, future))
        return await future

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_adapter_state(self, state: AdapterState) -> None:
        self._post(_AdapterChanged(state))

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            if isinstance(event, _Shutdown):
                self._closed = True
                try:
                    await self._teardown()
                finally:
                    if not event.future.done():
                        event.future.set_result(None)
                return

            if isinstance(event, _Command):
                await self._run_command(event)
                continue

            try:
                await self._dispatch(event)
            except Exception:
                logger.exception(f"[SESSION] Error handling {type(event).__name__}")

    async def _run_command(self, command: _Command) -> None:
        handler = getattr(self, f"_handle_{command.name}")
        try:
            result = await handler(*command.args)
        except Exception as e:
            if not command.future.done():
                command.future.set_exception(e)
        else:
            if not command.future.done():
                command.future.set_result(result)

    async def _dispatch(self, event: Any) -> None:
        if isinstance(event, _AdapterChanged):
            await self._handle_adapter_changed(event.state)
        elif isinstance(event, _MatchFound):
            await self._handle_match(event)
        elif isinstance(event, _ScanTimedOut):
            await self._handle_scan_timeout(event)
        elif isinstance(event, _Connected):
            await self._handle_connected(event)
        elif isinstance(event, _ConnectFailed):
            await self._handle_connect_failed(event)
        elif isinstance(event, _Discovered):
            await self._handle_discovered(event)
        elif isinstance(event, _DiscoverFailed):
            await self._handle_discover_failed(event)
        elif isinstance(event, _LinkLost):
            await self._handle_link_lost(event)
        else:
            logger.warning(f"[SESSION] Unknown event {event!r}")

    # ------------------------------------------------------------------
    # State changes and status
    # ------------------------------------------------------------------

    def _set_state(
        self,
        state: SessionState,
        message: str,
        error: Optional[ErrorKind] = None,
    ) -> None:
        if state is not self._state:
            logger.info(f"[SESSION] {self._state.name} -> {state.name}")
        self._state = state
        self._publish(message, error)

    def _publish(self, message: str, error: Optional[ErrorKind] = None) -> None:
        self._message = message
        self._last_error = error
        status = self.status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"[SESSION] Status listener failed: {e}")

    def _label(self) -> str:
        return self._target.label if self._target else "device"

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    def _check_ready_to_scan(self) -> None:
        if self._target is not None:
            self._publish(
                "Already connected. Disconnect before scanning.", ErrorKind.SESSION_BUSY
            )
            raise SessionBusy(f"Already holding {self._target.identity}")

        adapter_state = self._adapter.current_state()
        if adapter_state is not AdapterState.POWERED_ON:
            self._publish("Cannot scan: enable Bluetooth.", ErrorKind.ADAPTER_UNAVAILABLE)
            raise AdapterUnavailable(f"Adapter is {adapter_state.value}")

        if self._permissions.status is not PermissionStatus.GRANTED:
            self._publish("Cannot scan: permissions not granted.", ErrorKind.PERMISSION_DENIED)
            raise PermissionDenied(f"Permission is {self._permissions.status.value}")

    async def _handle_start_scan(self) -> None:
        if self._state is SessionState.SCANNING:
            logger.debug("[SESSION] Already scanning")
            return
        self._check_ready_to_scan()

        self._scan_epoch += 1
        epoch = self._scan_epoch
        try:
            await self.scanner.start(
                self.config.service_uuid,
                lambda peripheral: self._post(_MatchFound(peripheral, epoch)),
            )
        except Exception as e:
            logger.error(f"[SESSION] Scan error: {e}")
            self._set_state(SessionState.IDLE, f"Scan error: {e}", ErrorKind.ADAPTER_UNAVAILABLE)
            raise AdapterUnavailable(f"Scan failed to start: {e}") from e

        self._scan_timer.replace(
            timer(
                self.config.scan_timeout,
                lambda: self._post(_ScanTimedOut(epoch)),
                label="scan-timeout",
            )
        )
        self._set_state(
            SessionState.SCANNING,
            f'Scanning for devices (especially "{self.config.peripheral_name}")...',
        )

    async def _handle_connect(self, identity: str) -> None:
        if self._state not in REST_STATES and self._state is not SessionState.SCANNING:
            raise SessionBusy(f"Already {self._state.name.lower()}")
        self._check_ready_to_scan()

        peripheral = self.scanner.get(identity) or DiscoveredPeripheral(identity=identity)
        await self._begin_connect(peripheral)

    async def _handle_disconnect(self) -> None:
        if self._state is SessionState.SCANNING:
            self._scan_timer.release()
            await self._stop_scanner()
            self._set_state(SessionState.IDLE, "Scan stopped.")
            return

        if self._target is None:
            self._publish("Not connected to any device.")
            return

        label = self._label()
        identity = self._target.identity
        # In-flight connect/discover completions are now stale
        self._attempt += 1
        self._set_state(SessionState.DISCONNECTING, f"Disconnecting from {label}...")
        message = f"Disconnected from {label}"
        try:
            await asyncio.wait_for(
                self._radio.cancel_connection(identity),
                timeout=self.config.disconnect_timeout,
            )
        except Exception as e:
            logger.error(f"[SESSION] Failed to disconnect: {e}")
            message = f"Error disconnecting: {e}"
        finally:
            self._disconnect_subscription.release()
            self._target = None
            self._set_state(SessionState.DISCONNECTED, message)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _handle_adapter_changed(self, state: AdapterState) -> None:
        self._permissions.invalidate()

        if state is AdapterState.POWERED_ON:
            self._publish("Bluetooth is On. Requesting permissions...")
            status = await self._permissions.check()
            if status is PermissionStatus.GRANTED:
                self._publish("Permissions granted. Ready.")
            else:
                self._publish("Bluetooth permissions denied.", ErrorKind.PERMISSION_DENIED)
            return

        if state not in ADAPTER_DOWN_STATES:
            self._publish(f"Bluetooth state: {state.value}")
            return

        message = (
            "Please turn on Bluetooth"
            if state is AdapterState.POWERED_OFF
            else f"Bluetooth state: {state.value}"
        )
        self._scan_timer.release()
        await self._stop_scanner()

        if self._target is not None:
            identity = self._target.identity
            self._attempt += 1
            self._set_state(SessionState.DISCONNECTING, message)
            self._disconnect_subscription.release()
            await self._release_link(identity)
            self._target = None
            self._set_state(SessionState.DISCONNECTED, message, ErrorKind.ADAPTER_UNAVAILABLE)
        elif self._state is SessionState.SCANNING:
            self._set_state(SessionState.IDLE, message, ErrorKind.ADAPTER_UNAVAILABLE)
        else:
            self._publish(message, ErrorKind.ADAPTER_UNAVAILABLE)

        self.scanner.clear()

    async def _handle_match(self, event: _MatchFound) -> None:
        if self._state is not SessionState.SCANNING or event.scan_epoch != self._scan_epoch:
            logger.debug(f"[SESSION] Ignoring late match {event.peripheral.identity}")
            return

        peripheral = event.peripheral
        if not self.config.auto_connect:
            self._publish(f"Found: {peripheral.label}")
            return

        if peripheral.name != self.config.peripheral_name:
            logger.info(
                f"[SESSION] {peripheral.label} advertises the service "
                f"but not the name {self.config.peripheral_name!r}"
            )
        await self._begin_connect(peripheral)

    async def _handle_scan_timeout(self, event: _ScanTimedOut) -> None:
        if self._state is not SessionState.SCANNING or event.scan_epoch != self._scan_epoch:
            logger.debug("[SESSION] Ignoring stale scan timeout")
            return

        self._scan_timer.release()
        await self._stop_scanner()

        if self.scanner.peripherals and not self.config.auto_connect:
            self._set_state(SessionState.IDLE, "Scan finished. Select a device.")
        else:
            self._set_state(
                SessionState.IDLE,
                "Scan finished. No devices found.",
                ErrorKind.SCAN_TIMEOUT,
            )

    async def _begin_connect(self, peripheral: DiscoveredPeripheral) -> None:
        # Stop the scan in the same step as accepting the match
        self._scan_timer.release()
        await self._stop_scanner()

        self._target = peripheral
        self._attempt += 1
        attempt = self._attempt
        self._set_state(SessionState.CONNECTING, f"Connecting to {peripheral.label}...")
        self._spawn(self._connect_task(peripheral.identity, attempt))

    async def _connect_task(self, identity: str, attempt: int) -> None:
        try:
            await asyncio.wait_for(
                self._radio.connect(
                    identity, timeout=self.config.connect_timeout, mtu=self.config.mtu
                ),
                timeout=self.config.connect_timeout,
            )
        except Exception as e:
            self._post(_ConnectFailed(identity, attempt, e))
            return
        self._post(_Connected(identity, attempt))

    async def _handle_connected(self, event: _Connected) -> None:
        if event.attempt != self._attempt or self._state is not SessionState.CONNECTING:
            logger.info(f"[SESSION] Dropping stale connection to {event.identity}")
            if self.target != event.identity:
                await self._release_link(event.identity)
            return

        identity = event.identity
        attempt = event.attempt
        self._disconnect_subscription.replace(
            self._radio.subscribe_disconnect(
                identity, lambda ident: self._post(_LinkLost(ident, attempt))
            )
        )
        self._set_state(
            SessionState.DISCOVERING,
            f"Connected to {self._label()}. Discovering services...",
        )
        self._spawn(self._discover_task(identity, attempt))

    async def _handle_connect_failed(self, event: _ConnectFailed) -> None:
        if event.attempt != self._attempt or self._state is not SessionState.CONNECTING:
            logger.debug(f"[SESSION] Ignoring stale connect failure: {event.error}")
            return

        error = event.error
        reason = str(error) or type(error).__name__
        logger.error(f"[SESSION] Connection error: {reason}")
        self._disconnect_subscription.release()
        await self._release_link(event.identity)
        self._target = None
        self._attempt += 1
        self._set_state(
            SessionState.DISCONNECTED,
            f"Connection failed: {reason}",
            ErrorKind.CONNECTION_FAILED,
        )

    async def _discover_task(self, identity: str, attempt: int) -> None:
        try:
            services = await asyncio.wait_for(
                self._radio.discover(identity),
                timeout=self.config.discover_timeout,
            )
        except Exception as e:
            self._post(_DiscoverFailed(attempt, e))
            return
        self._post(_Discovered(attempt, services))

    async def _handle_discovered(self, event: _Discovered) -> None:
        if event.attempt != self._attempt or self._state is not SessionState.DISCOVERING:
            logger.debug("[SESSION] Ignoring stale discovery result")
            return

        characteristics = event.services.get(self.config.service_uuid)
        if characteristics is None:
            await self._abort_link(f"Service {self.config.service_uuid} not found")
            return
        if self.config.characteristic_uuid not in characteristics:
            await self._abort_link(
                f"Characteristic {self.config.characteristic_uuid} not found"
            )
            return

        self.scanner.clear()
        self._set_state(SessionState.READY, f"Ready to interact with {self._label()}.")

    async def _handle_discover_failed(self, event: _DiscoverFailed) -> None:
        if event.attempt != self._attempt or self._state is not SessionState.DISCOVERING:
            logger.debug(f"[SESSION] Ignoring stale discovery failure: {event.error}")
            return
        await self._abort_link(f"Discovery failed: {event.error or type(event.error).__name__}")

    async def _handle_link_lost(self, event: _LinkLost) -> None:
        if (
            self._target is None
            or self._target.identity != event.identity
            or event.attempt != self._attempt
            or self._state not in LINK_STATES
        ):
            logger.debug(f"[SESSION] Ignoring disconnect of {event.identity}")
            return

        label = self._label()
        was_ready = self._state is SessionState.READY
        logger.info(f"[SESSION] Device {label} disconnected")
        self._disconnect_subscription.release()
        self._target = None
        self._attempt += 1
        self._set_state(
            SessionState.DISCONNECTED,
            f"Disconnected from {label}",
            None if was_ready else ErrorKind.CONNECTION_FAILED,
        )

    # ------------------------------------------------------------------
    # Cleanup helpers
    # ------------------------------------------------------------------

    async def _abort_link(self, reason: str) -> None:
        logger.error(f"[SESSION] {reason}")
        identity = self._target.identity if self._target else None
        self._disconnect_subscription.release()
        self._target = None
        self._attempt += 1
        if identity is not None:
            await self._release_link(identity)
        self._set_state(SessionState.DISCONNECTED, reason, ErrorKind.DISCOVERY_FAILED)

    async def _release_link(self, identity: str) -> None:
        """Best-effort close; failures are logged only."""
        try:
            await asyncio.wait_for(
                self._radio.cancel_connection(identity),
                timeout=self.config.disconnect_timeout,
            )
        except Exception as e:
            logger.warning(f"[SESSION] Error cancelling connection to {identity}: {e}")

    async def _stop_scanner(self) -> None:
        try:
            await self.scanner.stop()
        except Exception as e:
            logger.warning(f"[SESSION] Error stopping scan: {e}")

    async def _teardown(self) -> None:
        self._scan_timer.release()
        await self._stop_scanner()
        if self._target is not None:
            identity = self._target.identity
            self._attempt += 1
            self._disconnect_subscription.release()
            await self._release_link(identity)
            self._target = None
            self._set_state(SessionState.DISCONNECTED, "Session closed.")
        elif self._state is SessionState.SCANNING:
            self._set_state(SessionState.IDLE, "Session closed.")
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

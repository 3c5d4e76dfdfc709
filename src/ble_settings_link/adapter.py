"""Adapter power-state monitoring.

The monitor turns whatever the platform reports about the local radio into
`AdapterState` values and forwards changes to a single durable observer.
"""

import logging
import sys
from enum import Enum
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class AdapterState(Enum):
    """Power state of the local Bluetooth adapter."""
    UNKNOWN = "unknown"
    UNSUPPORTED = "unsupported"
    POWERED_OFF = "powered_off"
    POWERED_ON = "powered_on"
    RESETTING = "resetting"


StateHandler = Callable[[AdapterState], None]


class AdapterSource(Protocol):
    """Protocol for platform sources of adapter state."""

    async def start(self, emit: StateHandler) -> None:
        """Begin reporting adapter states through `emit`."""
        ...

    async def stop(self) -> None:
        """Stop reporting and release platform resources."""
        ...


class StaticAdapterSource:
    """Adapter source that reports a fixed state until told otherwise.

    Used on platforms where the adapter cannot be observed (the radio stack
    reports problems on first use instead) and to drive the monitor in tests.
    """

    def __init__(self, state: AdapterState = AdapterState.POWERED_ON):
        self._state = state
        self._emit: StateHandler | None = None

    async def start(self, emit: StateHandler) -> None:
        self._emit = emit
        emit(self._state)

    async def stop(self) -> None:
        self._emit = None

    def set_state(self, state: AdapterState) -> None:
        """Report a new adapter state."""
        self._state = state
        if self._emit is not None:
            self._emit(state)


class AdapterMonitor:
    """Tracks the adapter state and notifies one observer of changes."""

    def __init__(self, source: AdapterSource):
        """Initialize the adapter monitor.

        Args:
            source: Platform source of adapter state
        """
        self._source = source
        self._state = AdapterState.UNKNOWN
        self._handler: StateHandler | None = None
        self._running = False

    def on_state_change(self, handler: StateHandler) -> None:
        """Register the observer. Only one observer may ever be registered."""
        if self._handler is not None:
            raise RuntimeError("Adapter state observer already registered")
        self._handler = handler

    def current_state(self) -> AdapterState:
        """Return the last known adapter state."""
        return self._state

    async def start(self) -> None:
        """Start observing the platform source."""
        if self._running:
            return
        self._running = True
        await self._source.start(self._on_source_state)
        logger.debug("[ADAPTER] Monitor started")

    async def stop(self) -> None:
        """Stop observing the platform source."""
        if not self._running:
            return
        self._running = False
        await self._source.stop()
        logger.debug("[ADAPTER] Monitor stopped")

    def _on_source_state(self, state: AdapterState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        logger.info(f"[ADAPTER] {previous.value} -> {state.value}")

        if self._handler is None:
            return
        try:
            self._handler(state)
        except Exception as e:
            logger.error(f"[ADAPTER] Observer failed handling {state.value}: {e}")


def platform_adapter_monitor(adapter: str = "hci0") -> AdapterMonitor:
    """Return an adapter monitor backed by the platform's adapter source."""
    if sys.platform == "linux":
        from .bluez import BluezAdapterSource

        return AdapterMonitor(BluezAdapterSource(adapter))
    return AdapterMonitor(StaticAdapterSource(AdapterState.POWERED_ON))

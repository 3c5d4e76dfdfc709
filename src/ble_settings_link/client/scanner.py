"""Filtered, deduplicated peripheral discovery."""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from .radio import DiscoveredPeripheral, RadioPlatform

logger = logging.getLogger(__name__)

FoundHandler = Callable[[DiscoveredPeripheral], None]


class Scanner:
    """
    Wraps the radio scan with a service filter and identity deduplication.

    At most one scan is active. `start()` while active and `stop()` while
    stopped are no-ops, and concurrent `stop()` calls share a single
    hardware stop.
    """

    def __init__(self, radio: RadioPlatform):
        self._radio = radio
        self._active = False
        self._service_filter: Optional[str] = None
        self._on_found: Optional[FoundHandler] = None
        self._seen: dict[str, DiscoveredPeripheral] = {}
        self._stopping: Optional[asyncio.Future] = None
        self._streams: list[asyncio.Queue] = []

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def peripherals(self) -> list[DiscoveredPeripheral]:
        """Peripherals found in the current pass, in discovery order."""
        return list(self._seen.values())

    def get(self, identity: str) -> Optional[DiscoveredPeripheral]:
        return self._seen.get(identity)

    def clear(self) -> None:
        """Forget the results of the last pass."""
        self._seen.clear()

    async def start(self, service_filter: str, on_found: Optional[FoundHandler] = None) -> bool:
        """Start a scan pass.

        Returns:
            True if a new pass started, False if one was already running
        """
        if self._active:
            logger.debug("[SCAN] Already scanning, ignoring start request")
            return False
        if self._stopping is not None:
            await asyncio.shield(self._stopping)

        self._service_filter = service_filter.lower()
        self._on_found = on_found
        self._seen = {}
        self._active = True
        try:
            await self._radio.start_scan([self._service_filter], self._on_advertisement)
        except Exception:
            self._active = False
            self._on_found = None
            self._end_streams()
            raise

        logger.info(f"[SCAN] Scanning for service {self._service_filter}")
        return True

    async def stop(self) -> None:
        """Stop the active pass. Safe to call from any source, any number of times."""
        if self._stopping is None:
            if not self._active:
                return
            self._active = False
            self._on_found = None
            self._end_streams()
            self._stopping = asyncio.ensure_future(self._radio.stop_scan())

        stopping = self._stopping
        try:
            await asyncio.shield(stopping)
        finally:
            if stopping.done() and self._stopping is stopping:
                self._stopping = None
                logger.info(f"[SCAN] Stopped ({len(self._seen)} peripheral(s) found)")

    async def results(self) -> AsyncIterator[DiscoveredPeripheral]:
        """Yield peripherals of the current pass until the scan stops."""
        queue: asyncio.Queue = asyncio.Queue()
        for peripheral in self._seen.values():
            queue.put_nowait(peripheral)
        if not self._active:
            queue.put_nowait(None)
        self._streams.append(queue)
        try:
            while True:
                peripheral = await queue.get()
                if peripheral is None:
                    return
                yield peripheral
        finally:
            self._streams.remove(queue)

    def _on_advertisement(self, peripheral: DiscoveredPeripheral) -> None:
        if not self._active:
            return
        if self._service_filter not in peripheral.service_ids:
            return
        if peripheral.identity in self._seen:
            return

        self._seen[peripheral.identity] = peripheral
        logger.info(f"[SCAN] Found: {peripheral.name or 'Unnamed'} (ID: {peripheral.identity})")

        for queue in self._streams:
            queue.put_nowait(peripheral)
        if self._on_found is not None:
            try:
                self._on_found(peripheral)
            except Exception as e:
                logger.error(f"[SCAN] Found handler failed: {e}")

    def _end_streams(self) -> None:
        for queue in self._streams:
            queue.put_nowait(None)

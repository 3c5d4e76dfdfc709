"""Scoped handles for timers and platform subscriptions.

A `Subscription` wraps a release action that runs at most once. A
`HandleSlot` holds at most one live handle of a given kind; putting a new
handle in the slot releases the previous one first.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class Subscription:
    """A releasable handle. `remove()` runs the release action exactly once."""

    def __init__(self, release: Callable[[], None] | None = None, label: str = ""):
        self._release = release
        self.label = label
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def remove(self) -> bool:
        """Release the handle.

        Returns:
            True if this call released it, False if it was already released
        """
        if not self._active:
            return False
        self._active = False
        release, self._release = self._release, None
        if release is not None:
            release()
        logger.debug(f"Released handle {self.label or self!r}")
        return True


class HandleSlot:
    """Holds at most one live handle of one resource kind."""

    def __init__(self, kind: str):
        self.kind = kind
        self._handle: Subscription | None = None

    @property
    def handle(self) -> Subscription | None:
        return self._handle

    def __bool__(self) -> bool:
        return self._handle is not None and self._handle.active

    def replace(self, handle: Subscription) -> None:
        """Install a new handle, releasing the one it supersedes."""
        previous, self._handle = self._handle, handle
        if previous is not None and previous is not handle:
            previous.remove()

    def release(self) -> bool:
        """Release the current handle, if any.

        Returns:
            True if a live handle was released by this call
        """
        handle, self._handle = self._handle, None
        if handle is None:
            return False
        return handle.remove()


def timer(
    delay: float,
    callback: Callable[[], Awaitable[None] | None],
    label: str = "timer",
) -> Subscription:
    """Schedule `callback` after `delay` seconds; the handle cancels it."""

    async def timeout_task() -> None:
        await asyncio.sleep(delay)
        result = callback()
        if asyncio.iscoroutine(result):
            await result

    task = asyncio.create_task(timeout_task())
    return Subscription(task.cancel, label=label)

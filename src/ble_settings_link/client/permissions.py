"""
Permission gate for scanning and connecting.

The gate asks the platform once per adapter-on epoch whether this process
may use the radio. Any ambiguous answer resolves to DENIED.
"""

import asyncio
import logging
import sys
from enum import Enum
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# Bound on a single platform permission check (seconds)
PERMISSION_TIMEOUT = 5.0

PermissionChecker = Callable[[], Awaitable[bool]]


class PermissionStatus(Enum):
    """Authorization to scan and connect."""
    UNCHECKED = "unchecked"
    GRANTED = "granted"
    DENIED = "denied"


async def grant_on_first_use() -> bool:
    """Checker for platforms that prompt the user on first radio use."""
    return True


def default_checker(adapter: str = "hci0") -> PermissionChecker:
    """Return the platform permission checker."""
    if sys.platform == "linux":
        from ..bluez import bluez_permission_check

        async def check() -> bool:
            return await bluez_permission_check(adapter)

        return check
    return grant_on_first_use


class PermissionGate:
    """Resolves and memoizes authorization per adapter-on epoch."""

    def __init__(
        self,
        checker: PermissionChecker | None = None,
        timeout: float = PERMISSION_TIMEOUT,
    ):
        """
        Initialize the permission gate.

        Args:
            checker: Async callable returning True when authorized
            timeout: Seconds to wait for the checker before denying
        """
        self._checker = checker or default_checker()
        self._timeout = timeout
        self._lock = asyncio.Lock()
        self._status = PermissionStatus.UNCHECKED
        self._epoch = 0
        self._checked_epoch: int | None = None

    @property
    def status(self) -> PermissionStatus:
        """Last resolved status for the current epoch."""
        return self._status

    def invalidate(self) -> None:
        """Start a new epoch; the next check() asks the platform again."""
        self._epoch += 1
        self._status = PermissionStatus.UNCHECKED
        self._checked_epoch = None

    async def check(self) -> PermissionStatus:
        """Resolve the permission status for the current epoch.

        Concurrent callers share one platform check.
        """
        async with self._lock:
            if self._checked_epoch == self._epoch:
                return self._status

            epoch = self._epoch
            status = await self._ask_platform()
            if epoch != self._epoch:
                # Adapter left PoweredOn while we were asking; result is stale
                logger.debug("[PERMISSION] Discarding result from previous epoch")
                return PermissionStatus.UNCHECKED

            self._status = status
            self._checked_epoch = epoch
            logger.info(f"[PERMISSION] Resolved: {status.value}")
            return status

    async def _ask_platform(self) -> PermissionStatus:
        try:
            granted = await asyncio.wait_for(self._checker(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error(f"[PERMISSION] Check timed out after {self._timeout}s")
            return PermissionStatus.DENIED
        except Exception as e:
            logger.error(f"[PERMISSION] Check failed: {e}")
            return PermissionStatus.DENIED

        if granted is True:
            return PermissionStatus.GRANTED
        if granted is not False:
            logger.warning(f"[PERMISSION] Ambiguous answer {granted!r}, denying")
        return PermissionStatus.DENIED

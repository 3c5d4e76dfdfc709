"""
BLE settings link.

A central that finds the settings peripheral, connects and writes UTF-8 text
to its data characteristic, and the peripheral that advertises it.
"""

from .adapter import AdapterMonitor, AdapterState, StaticAdapterSource
from .config import LinkConfig, LinkConfigError
from .errors import (
    AdapterUnavailable,
    ConnectionFailed,
    DiscoveryFailed,
    ErrorKind,
    LinkError,
    NotConnected,
    PermissionDenied,
    ReadFailed,
    ScanTimeout,
    SessionBusy,
    WriteFailed,
)
from .frames import CharacteristicFrame, FrameError

__version__ = "0.1.0"

__all__ = [
    "AdapterMonitor",
    "AdapterState",
    "AdapterUnavailable",
    "CharacteristicFrame",
    "ConnectionFailed",
    "DiscoveryFailed",
    "ErrorKind",
    "FrameError",
    "LinkConfig",
    "LinkConfigError",
    "LinkError",
    "NotConnected",
    "PermissionDenied",
    "ReadFailed",
    "ScanTimeout",
    "SessionBusy",
    "StaticAdapterSource",
    "WriteFailed",
]

"""Peripheral role: advertise the settings service and accept writes."""

from .connection_monitor import ConnectionMonitor
from .server import (
    AdvertiserSession,
    SettingsGattServer,
    default_write_handler,
)

__all__ = [
    "AdvertiserSession",
    "ConnectionMonitor",
    "SettingsGattServer",
    "default_write_handler",
]

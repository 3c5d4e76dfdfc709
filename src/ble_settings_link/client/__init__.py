"""
Central role of the settings link.

Scans for the settings peripheral, connects, discovers the data
characteristic and sends UTF-8 text to it.
"""

from .permissions import PermissionGate, PermissionStatus, grant_on_first_use
from .radio import BleakRadio, DiscoveredPeripheral, RadioPlatform
from .scanner import Scanner
from .session import Session, SessionState, SessionStatus

__all__ = [
    "BleakRadio",
    "DiscoveredPeripheral",
    "PermissionGate",
    "PermissionStatus",
    "RadioPlatform",
    "Scanner",
    "Session",
    "SessionState",
    "SessionStatus",
    "grant_on_first_use",
]

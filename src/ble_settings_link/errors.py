"""Error taxonomy for the settings link."""

from enum import Enum


class ErrorKind(Enum):
    """Externally observable error kinds, reported in session status."""
    ADAPTER_UNAVAILABLE = "adapter_unavailable"
    PERMISSION_DENIED = "permission_denied"
    SCAN_TIMEOUT = "scan_timeout"
    CONNECTION_FAILED = "connection_failed"
    DISCOVERY_FAILED = "discovery_failed"
    NOT_CONNECTED = "not_connected"
    WRITE_FAILED = "write_failed"
    READ_FAILED = "read_failed"
    SESSION_BUSY = "session_busy"


class LinkError(Exception):
    """Base error for the settings link."""

    kind: ErrorKind | None = None


class AdapterUnavailable(LinkError):
    """Raised when the radio is off, resetting or unsupported."""

    kind = ErrorKind.ADAPTER_UNAVAILABLE


class PermissionDenied(LinkError):
    """Raised when the process is not authorized to scan or connect."""

    kind = ErrorKind.PERMISSION_DENIED


class ScanTimeout(LinkError):
    """Raised when a scan pass ends without a matching peripheral."""

    kind = ErrorKind.SCAN_TIMEOUT


class ConnectionFailed(LinkError):
    """Raised when link establishment fails."""

    kind = ErrorKind.CONNECTION_FAILED


class DiscoveryFailed(LinkError):
    """Raised when the service or characteristic cannot be located."""

    kind = ErrorKind.DISCOVERY_FAILED


class NotConnected(LinkError):
    """Raised when send/read is attempted outside the Ready state."""

    kind = ErrorKind.NOT_CONNECTED


class WriteFailed(LinkError):
    """Raised when a characteristic write is not acknowledged."""

    kind = ErrorKind.WRITE_FAILED


class ReadFailed(LinkError):
    """Raised when a characteristic read fails or yields no value."""

    kind = ErrorKind.READ_FAILED


class SessionBusy(LinkError):
    """Raised when a scan or connect is requested while a target is held."""

    kind = ErrorKind.SESSION_BUSY


ERRORS_BY_KIND: dict[ErrorKind, type[LinkError]] = {
    cls.kind: cls
    for cls in (
        AdapterUnavailable,
        PermissionDenied,
        ScanTimeout,
        ConnectionFailed,
        DiscoveryFailed,
        NotConnected,
        WriteFailed,
        ReadFailed,
        SessionBusy,
    )
}


def error_for(kind: ErrorKind, message: str) -> LinkError:
    """Build the exception matching an error kind."""
    return ERRORS_BY_KIND.get(kind, LinkError)(message)

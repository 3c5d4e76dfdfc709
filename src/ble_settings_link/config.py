"""Shared link configuration.

The central and the peripheral agree on a fixed service UUID, a fixed
characteristic UUID and an advertised name. There is no negotiation
protocol: both sides are started with the same values.
"""

import re
from dataclasses import dataclass

# Advertised name of the peripheral (best-effort filter on the central side)
PERIPHERAL_NAME = "MyRaspberryPiSettings"

# GATT UUIDs (must match on both sides)
SERVICE_UUID = "11111111-2222-3333-4444-555555555555"
CHARACTERISTIC_UUID = "66666666-7777-8888-9999-000000000000"

# Timeouts (seconds)
SCAN_TIMEOUT = 10.0
CONNECT_TIMEOUT = 10.0
DISCOVER_TIMEOUT = 10.0
DISCONNECT_TIMEOUT = 5.0
IO_TIMEOUT = 5.0

# Fixed MTU request. The usable payload is MTU minus the 3-byte ATT header.
REQUESTED_MTU = 251
ATT_HEADER_SIZE = 3
MIN_MTU = 23
MAX_MTU = 517

DEFAULT_ADAPTER = "hci0"

UUID_PATTERN = re.compile(
    r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"
)


class LinkConfigError(ValueError):
    """Raised when link configuration is invalid."""

    pass


@dataclass
class LinkConfig:
    """Configuration shared by the session and the advertiser.

    Attributes:
        peripheral_name: Name the peripheral advertises under
        service_uuid: Service carrying the data characteristic
        characteristic_uuid: The single read/write data characteristic
        scan_timeout: Seconds a scan pass may run without a match
        connect_timeout: Bound on link establishment
        discover_timeout: Bound on service/characteristic discovery
        disconnect_timeout: Bound on a graceful close
        io_timeout: Bound on a single read or write
        mtu: Requested MTU, bounds the payload of a single write
        auto_connect: Connect to the first matching peripheral automatically
        adapter: Local adapter name (BlueZ only)
    """

    peripheral_name: str = PERIPHERAL_NAME
    service_uuid: str = SERVICE_UUID
    characteristic_uuid: str = CHARACTERISTIC_UUID
    scan_timeout: float = SCAN_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT
    discover_timeout: float = DISCOVER_TIMEOUT
    disconnect_timeout: float = DISCONNECT_TIMEOUT
    io_timeout: float = IO_TIMEOUT
    mtu: int = REQUESTED_MTU
    auto_connect: bool = True
    adapter: str = DEFAULT_ADAPTER

    def __post_init__(self) -> None:
        """Validate and normalize configuration after initialization."""
        validate_config(self)
        self.service_uuid = self.service_uuid.lower()
        self.characteristic_uuid = self.characteristic_uuid.lower()

    @property
    def max_payload(self) -> int:
        """Largest payload (in bytes) a single write can carry."""
        return self.mtu - ATT_HEADER_SIZE


def validate_config(config: LinkConfig) -> None:
    """Validate link configuration values.

    Args:
        config: LinkConfig instance to validate

    Raises:
        LinkConfigError: If any configuration value is invalid
    """
    for label, value in (
        ("service", config.service_uuid),
        ("characteristic", config.characteristic_uuid),
    ):
        if not UUID_PATTERN.match(value):
            raise LinkConfigError(
                f"Invalid {label} UUID: {value}. "
                "Expected format: XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX"
            )

    if not config.peripheral_name:
        raise LinkConfigError("Peripheral name must not be empty")

    for label in (
        "scan_timeout",
        "connect_timeout",
        "discover_timeout",
        "disconnect_timeout",
        "io_timeout",
    ):
        if getattr(config, label) <= 0:
            raise LinkConfigError(f"{label} must be positive, got {getattr(config, label)}")

    if not MIN_MTU <= config.mtu <= MAX_MTU:
        raise LinkConfigError(f"MTU must be {MIN_MTU}-{MAX_MTU}, got {config.mtu}")


def format_config_for_logging(config: LinkConfig) -> str:
    """Format configuration for multi-line log output."""
    lines = [
        f"Peripheral name: {config.peripheral_name}",
        f"Service UUID: {config.service_uuid}",
        f"Characteristic UUID: {config.characteristic_uuid}",
        f"Scan timeout: {config.scan_timeout:.1f}s",
        f"MTU: {config.mtu} (max payload {config.max_payload} bytes)",
    ]
    return "\n".join(lines)

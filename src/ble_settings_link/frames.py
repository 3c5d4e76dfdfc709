"""
Characteristic frame encoding.

Application payloads are UTF-8 text. At the characteristic I/O boundary the
payload travels as base64 text; the radio layer turns that back into raw
bytes for the air interface.

    application (str) --encode--> transport (base64 str) --radio--> bytes
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Optional


class FrameError(ValueError):
    """Raised when a payload cannot be encoded or decoded."""

    pass


@dataclass(frozen=True)
class CharacteristicFrame:
    """
    A single payload addressed to one (service, characteristic) pair.

    Frames are transient: one is built per send or read call.
    """
    service_uuid: str
    characteristic_uuid: str
    payload: str

    def build(self, max_payload: Optional[int] = None) -> str:
        """Encode the payload into its base64 transport form.

        Args:
            max_payload: Largest raw payload in bytes, if bounded

        Raises:
            FrameError: If the payload is too large for a single write
        """
        raw = self.payload.encode("utf-8")
        if max_payload is not None and len(raw) > max_payload:
            raise FrameError(
                f"Payload is {len(raw)} bytes, limit is {max_payload} bytes"
            )
        return base64.b64encode(raw).decode("ascii")

    @classmethod
    def parse(
        cls,
        service_uuid: str,
        characteristic_uuid: str,
        value: Optional[str],
    ) -> "CharacteristicFrame":
        """Decode a base64 transport value back into a frame.

        Raises:
            FrameError: If the value is absent, not base64, or not UTF-8
        """
        if not value:
            raise FrameError("Characteristic has no value")
        return cls(service_uuid, characteristic_uuid, decode_transport(value))


def encode_transport(data: bytes) -> str:
    """Base64-encode raw characteristic bytes."""
    return base64.b64encode(data).decode("ascii")


def decode_transport(value: str) -> str:
    """Decode a base64 transport value into UTF-8 text."""
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FrameError(f"Invalid base64 value: {e}") from e
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FrameError(f"Payload is not valid UTF-8: {e}") from e


def transport_to_bytes(value: str) -> bytes:
    """Turn a base64 transport value into the raw bytes written on air."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FrameError(f"Invalid base64 value: {e}") from e

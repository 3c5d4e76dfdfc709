import pytest

from ble_settings_link.config import CHARACTERISTIC_UUID, SERVICE_UUID
from ble_settings_link.frames import (
    CharacteristicFrame,
    FrameError,
    decode_transport,
    encode_transport,
    transport_to_bytes,
)


def test_build_encodes_utf8_as_base64() -> None:
    frame = CharacteristicFrame(SERVICE_UUID, CHARACTERISTIC_UUID, "ping")
    assert frame.build() == "cGluZw=="


def test_build_counts_bytes_not_characters() -> None:
    frame = CharacteristicFrame(SERVICE_UUID, CHARACTERISTIC_UUID, "é" * 10)
    frame.build(max_payload=20)
    with pytest.raises(FrameError):
        frame.build(max_payload=19)


def test_parse_decodes_transport_value() -> None:
    frame = CharacteristicFrame.parse(SERVICE_UUID, CHARACTERISTIC_UUID, "aGVsbG8gd29ybGQ=")
    assert frame.payload == "hello world"
    assert frame.characteristic_uuid == CHARACTERISTIC_UUID


@pytest.mark.parametrize("value", [None, ""])
def test_parse_rejects_missing_value(value) -> None:
    with pytest.raises(FrameError, match="no value"):
        CharacteristicFrame.parse(SERVICE_UUID, CHARACTERISTIC_UUID, value)


def test_parse_rejects_invalid_base64() -> None:
    with pytest.raises(FrameError, match="base64"):
        CharacteristicFrame.parse(SERVICE_UUID, CHARACTERISTIC_UUID, "not base64!")


def test_parse_rejects_non_utf8_payload() -> None:
    with pytest.raises(FrameError, match="UTF-8"):
        decode_transport(encode_transport(b"\xff\xfe"))


def test_transport_bytes_are_the_raw_payload() -> None:
    assert transport_to_bytes(encode_transport(b'{"wifi": true}')) == b'{"wifi": true}'
    with pytest.raises(FrameError):
        transport_to_bytes("%%%")

"""Tests for MBAP frame building and parsing."""

import pytest

from modbus_tcp_master.errors import FramingError
from modbus_tcp_master.protocol.framing import (
    MBAP_HEADER_SIZE,
    Frame,
    build_frame,
    parse_frame,
    parse_header,
)


def test_build_frame_header_layout():
    """Transaction ID, protocol ID, length and unit ID are big-endian."""
    frame = build_frame(0x1234, 0x11, 0x03, b"\x00\x6B\x00\x03")
    assert frame[0:2] == b"\x12\x34"  # transaction id
    assert frame[2:4] == b"\x00\x00"  # protocol id
    assert frame[4:6] == b"\x00\x06"  # length: unit + fc + 4 payload bytes
    assert frame[6] == 0x11  # unit id
    assert frame[7] == 0x03  # function code
    assert frame[8:] == b"\x00\x6B\x00\x03"


def test_build_frame_length_counts_everything_after_length_field():
    """Length equals the byte count that follows the length field."""
    frame = build_frame(1, 1, 0x10, bytes(20))
    declared = int.from_bytes(frame[4:6], "big")
    assert declared == len(frame) - 6


def test_parse_header():
    header = parse_header(bytes.fromhex("00 07 00 00 00 05 01"))
    assert header.transaction_id == 7
    assert header.protocol_id == 0
    assert header.length == 5
    assert header.unit_id == 1
    assert header.body_size == 4


def test_parse_header_short():
    """Fewer than 7 bytes is a header-stage framing error."""
    with pytest.raises(FramingError) as excinfo:
        parse_header(b"\x00\x01\x00")
    assert excinfo.value.stage == "header"


def test_parse_header_rejects_nonzero_protocol_id():
    with pytest.raises(FramingError):
        parse_header(bytes.fromhex("00 01 00 01 00 04 01"))


@pytest.mark.parametrize("length", [0, 1, 255, 0xFFFF])
def test_parse_header_rejects_impossible_length(length):
    """Lengths that cannot hold a function code or exceed an ADU are refused."""
    data = b"\x00\x01\x00\x00" + length.to_bytes(2, "big") + b"\x01"
    with pytest.raises(FramingError):
        parse_header(data)


def test_roundtrip_parse():
    """Build a frame and parse it back."""
    data = build_frame(42, 3, 0x06, b"\x00\x01\x12\x34")
    frame = parse_frame(data)
    assert frame.transaction_id == 42
    assert frame.unit_id == 3
    assert frame.function_code == 0x06
    assert frame.payload == b"\x00\x01\x12\x34"
    assert frame.to_bytes() == data


def test_parse_frame_length_mismatch():
    """A buffer that disagrees with its length field is a body-stage error."""
    data = build_frame(1, 1, 0x03, b"\x02\x00\x01")
    with pytest.raises(FramingError) as excinfo:
        parse_frame(data[:-1])
    assert excinfo.value.stage == "body"


def test_frame_exception_flag():
    assert Frame(1, 1, 0x83, b"\x02").is_exception
    assert not Frame(1, 1, 0x03, b"\x02\x00\x00").is_exception


def test_frame_length_property():
    frame = Frame(transaction_id=1, unit_id=1, function_code=0x01, payload=b"\x01\x05")
    assert frame.length == 4
    assert len(frame.to_bytes()) == MBAP_HEADER_SIZE + frame.length - 1


def test_frame_repr():
    """Frame repr should be readable."""
    r = repr(Frame(transaction_id=9, unit_id=1, function_code=0x0F, payload=b"\x00\x01"))
    assert "0x0F" in r
    assert "00 01" in r

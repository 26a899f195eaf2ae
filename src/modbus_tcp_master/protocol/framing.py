"""MBAP frame builder and parser for Modbus TCP.

Frame layout::

    +----------------+-------------+---------+---------+----------+------------------+
    | Transaction ID | Protocol ID | Length  | Unit ID | Function |     Payload      |
    | 2 bytes        | 2 bytes     | 2 bytes | 1 byte  | 1 byte   |  variable length |
    +----------------+-------------+---------+---------+----------+------------------+

- Transaction ID: chosen by the client, echoed by the server
- Protocol ID: always 0x0000 for Modbus
- Length: big-endian count of (unit id + function code + payload)
- All multi-byte fields are big-endian
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from ..errors import FramingError

MBAP_HEADER = struct.Struct(">HHHB")
MBAP_HEADER_SIZE = MBAP_HEADER.size  # 7
PROTOCOL_ID = 0x0000

# Bounds on a response's length field: unit id + function code at minimum,
# 260-byte ADU at most.
MIN_LENGTH = 2
MAX_LENGTH = 254


@dataclass
class Frame:
    """A parsed Modbus TCP frame."""

    transaction_id: int
    unit_id: int
    function_code: int
    payload: bytes
    protocol_id: int = PROTOCOL_ID

    @property
    def length(self) -> int:
        """Value of the MBAP length field for this frame."""
        return 2 + len(self.payload)

    @property
    def is_exception(self) -> bool:
        return bool(self.function_code & 0x80)

    def to_bytes(self) -> bytes:
        return build_frame(
            self.transaction_id, self.unit_id, self.function_code, self.payload
        )

    def __repr__(self) -> str:
        return (
            f"Frame(transaction_id={self.transaction_id}, unit_id={self.unit_id}, "
            f"function=0x{self.function_code:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


@dataclass(frozen=True)
class MBAPHeader:
    """The fixed 7-byte prefix of every Modbus TCP frame."""

    transaction_id: int
    protocol_id: int
    length: int
    unit_id: int

    @property
    def body_size(self) -> int:
        """Bytes that follow the header (function code + payload)."""
        return self.length - 1


def build_frame(
    transaction_id: int, unit_id: int, function_code: int, payload: bytes = b""
) -> bytes:
    """Build a complete Modbus TCP frame.

    Args:
        transaction_id: 16-bit transaction identifier.
        unit_id: Target unit (slave) identifier.
        function_code: Single-byte Modbus function code.
        payload: Function-specific bytes following the function code.

    Returns:
        MBAP header followed by the PDU, ready to write to the socket.
    """
    header = MBAP_HEADER.pack(transaction_id, PROTOCOL_ID, 2 + len(payload), unit_id)
    return header + bytes([function_code]) + payload


def parse_header(data: bytes) -> MBAPHeader:
    """Parse the 7-byte MBAP header and sanity-check its length field.

    Raises:
        FramingError: If fewer than 7 bytes are given, the protocol ID is not
            zero, or the declared length cannot hold a function code.
    """
    if len(data) < MBAP_HEADER_SIZE:
        raise FramingError(
            f"MBAP header needs {MBAP_HEADER_SIZE} bytes, got {len(data)}",
            stage="header",
        )

    transaction_id, protocol_id, length, unit_id = MBAP_HEADER.unpack_from(data)
    if protocol_id != PROTOCOL_ID:
        raise FramingError(f"Unexpected protocol ID {protocol_id:#06x}", stage="header")
    if not MIN_LENGTH <= length <= MAX_LENGTH:
        raise FramingError(
            f"MBAP length {length} outside {MIN_LENGTH}-{MAX_LENGTH}", stage="header"
        )
    return MBAPHeader(
        transaction_id=transaction_id,
        protocol_id=protocol_id,
        length=length,
        unit_id=unit_id,
    )


def parse_frame(data: bytes) -> Frame:
    """Parse a complete Modbus TCP frame (header + body).

    Raises:
        FramingError: If the header is invalid or the buffer does not hold
            exactly the number of bytes the length field declares.
    """
    header = parse_header(data)
    expected = MBAP_HEADER_SIZE + header.body_size
    if len(data) != expected:
        raise FramingError(
            f"Frame declares {expected} bytes but {len(data)} were given",
            stage="body",
        )

    return Frame(
        transaction_id=header.transaction_id,
        unit_id=header.unit_id,
        function_code=data[MBAP_HEADER_SIZE],
        payload=bytes(data[MBAP_HEADER_SIZE + 1 :]),
        protocol_id=header.protocol_id,
    )

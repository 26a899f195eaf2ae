"""Function code constants, protocol bounds and request builders.

Each builder validates its arguments against the limits of the Modbus
Application Protocol and returns a complete MBAP frame. Nothing here
touches the network, so an out-of-range request never reaches the wire.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import Sequence

from ..errors import ValidationError
from .framing import build_frame


class FunctionCode(IntEnum):
    """Supported Modbus function codes."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10


class ExceptionCode(IntEnum):
    """Exception codes a server may return."""

    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_DEVICE_BUSY = 0x06
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_DEVICE_FAILED = 0x0B


EXCEPTION_FLAG = 0x80

DEFAULT_PORT = 502
DEFAULT_UNIT_ID = 0x01

MAX_READ_BITS = 2000
MAX_READ_REGISTERS = 125
MAX_WRITE_COILS = 2000
MAX_WRITE_REGISTERS = 125

COIL_ON = 0xFF00
COIL_OFF = 0x0000

ADDRESS_SPACE = 0x10000

BIT_READS = (FunctionCode.READ_COILS, FunctionCode.READ_DISCRETE_INPUTS)
REGISTER_READS = (
    FunctionCode.READ_HOLDING_REGISTERS,
    FunctionCode.READ_INPUT_REGISTERS,
)

# Quantity limit per read function
READ_LIMITS: dict[FunctionCode, int] = {
    FunctionCode.READ_COILS: MAX_READ_BITS,
    FunctionCode.READ_DISCRETE_INPUTS: MAX_READ_BITS,
    FunctionCode.READ_HOLDING_REGISTERS: MAX_READ_REGISTERS,
    FunctionCode.READ_INPUT_REGISTERS: MAX_READ_REGISTERS,
}


def describe_function(code: int) -> str:
    """Readable name for a function code, tolerating unknown values."""
    try:
        return FunctionCode(code & ~EXCEPTION_FLAG).name
    except ValueError:
        return f"function 0x{code:02X}"


def describe_exception(code: int) -> str:
    """Readable name for an exception code, tolerating unknown values."""
    try:
        return ExceptionCode(code).name
    except ValueError:
        return "UNKNOWN"


# ─── VALIDATION ──────────────────────────────────────────────────────

def _check_u16(name: str, value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValidationError(f"{name} must be 0-65535, got {value}")


def check_unit_id(unit_id: int) -> None:
    if not 0 <= unit_id <= 0xFF:
        raise ValidationError(f"Unit ID must be 0-255, got {unit_id}")


def check_transaction_id(transaction_id: int) -> None:
    _check_u16("Transaction ID", transaction_id)


def check_quantity(quantity: int, maximum: int) -> None:
    """Reject quantities outside ``1..maximum``."""
    if not 1 <= quantity <= maximum:
        raise ValidationError(f"Quantity must be 1-{maximum}, got {quantity}")


def check_range(address: int, quantity: int) -> None:
    """Reject a block that starts outside, or runs past, the address space."""
    _check_u16("Address", address)
    if address + quantity > ADDRESS_SPACE:
        raise ValidationError(
            f"Address {address} + quantity {quantity} exceeds the 65536-entry address space"
        )


# ─── BIT PACKING ─────────────────────────────────────────────────────

def pack_bits(values: Sequence[bool]) -> bytes:
    """Pack booleans LSB-first into bytes; unused high bits stay 0."""
    packed = bytearray((len(values) + 7) // 8)
    for i, value in enumerate(values):
        if value:
            packed[i // 8] |= 1 << (i % 8)
    return bytes(packed)


def unpack_bits(data: bytes, count: int) -> list[bool]:
    """Extract ``count`` LSB-first bits, ignoring trailing padding."""
    return [bool(data[i // 8] & (1 << (i % 8))) for i in range(count)]


# ─── REQUEST BUILDERS ────────────────────────────────────────────────

def build_read_request(
    transaction_id: int,
    unit_id: int,
    function_code: FunctionCode,
    start_address: int,
    quantity: int,
) -> bytes:
    """Build a read request (function 0x01-0x04).

    Args:
        transaction_id: Caller-chosen transaction identifier.
        unit_id: Target unit identifier.
        function_code: One of the four read functions.
        start_address: First address to read (0-65535).
        quantity: Number of bits (1-2000) or registers (1-125).
    """
    if function_code not in READ_LIMITS:
        raise ValidationError(f"{describe_function(function_code)} is not a read function")
    check_transaction_id(transaction_id)
    check_unit_id(unit_id)
    check_quantity(quantity, READ_LIMITS[function_code])
    check_range(start_address, quantity)
    payload = struct.pack(">HH", start_address, quantity)
    return build_frame(transaction_id, unit_id, function_code, payload)


def build_write_single_coil(
    transaction_id: int, unit_id: int, address: int, value: bool
) -> bytes:
    """Build a Write Single Coil request (0x05).

    The value word is 0xFF00 for ON and 0x0000 for OFF; no other encoding
    is ever produced.
    """
    check_transaction_id(transaction_id)
    check_unit_id(unit_id)
    check_range(address, 1)
    payload = struct.pack(">HH", address, COIL_ON if value else COIL_OFF)
    return build_frame(transaction_id, unit_id, FunctionCode.WRITE_SINGLE_COIL, payload)


def build_write_single_register(
    transaction_id: int, unit_id: int, address: int, value: int
) -> bytes:
    """Build a Write Single Register request (0x06)."""
    check_transaction_id(transaction_id)
    check_unit_id(unit_id)
    check_range(address, 1)
    _check_u16("Register value", value)
    payload = struct.pack(">HH", address, value)
    return build_frame(
        transaction_id, unit_id, FunctionCode.WRITE_SINGLE_REGISTER, payload
    )


def build_write_multiple_coils(
    transaction_id: int, unit_id: int, start_address: int, values: Sequence[bool]
) -> bytes:
    """Build a Write Multiple Coils request (0x0F).

    Args:
        transaction_id: Caller-chosen transaction identifier.
        unit_id: Target unit identifier.
        start_address: Address of the first coil.
        values: 1-2000 coil states; coil ``i`` goes to bit ``i % 8`` of
            data byte ``i // 8``.
    """
    check_transaction_id(transaction_id)
    check_unit_id(unit_id)
    check_quantity(len(values), MAX_WRITE_COILS)
    check_range(start_address, len(values))
    data = pack_bits(values)
    payload = struct.pack(">HHB", start_address, len(values), len(data)) + data
    return build_frame(
        transaction_id, unit_id, FunctionCode.WRITE_MULTIPLE_COILS, payload
    )


def build_write_multiple_registers(
    transaction_id: int, unit_id: int, start_address: int, values: Sequence[int]
) -> bytes:
    """Build a Write Multiple Registers request (0x10).

    Args:
        transaction_id: Caller-chosen transaction identifier.
        unit_id: Target unit identifier.
        start_address: Address of the first register.
        values: 1-125 register values, each 0-65535.
    """
    check_transaction_id(transaction_id)
    check_unit_id(unit_id)
    check_quantity(len(values), MAX_WRITE_REGISTERS)
    check_range(start_address, len(values))
    for value in values:
        _check_u16("Register value", value)
    payload = struct.pack(
        f">HHB{len(values)}H", start_address, len(values), 2 * len(values), *values
    )
    return build_frame(
        transaction_id, unit_id, FunctionCode.WRITE_MULTIPLE_REGISTERS, payload
    )

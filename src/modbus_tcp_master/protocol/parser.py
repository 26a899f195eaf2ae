"""Response parsing and validation for Modbus TCP replies."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

from ..errors import AckMismatchError, FramingError, ProtocolExceptionError
from .framing import Frame
from .functions import (
    BIT_READS,
    COIL_OFF,
    COIL_ON,
    EXCEPTION_FLAG,
    REGISTER_READS,
    FunctionCode,
    describe_function,
    unpack_bits,
)

logger = logging.getLogger(__name__)


@dataclass
class WriteAck:
    """Echo fields of a write acknowledgement (0x05, 0x06, 0x0F, 0x10)."""

    function_code: int
    address: int
    value: int  # value word for single writes, quantity for multiple writes


def check_exception(frame: Frame, function_code: int) -> None:
    """Raise if ``frame`` is an exception response or answers another function.

    Raises:
        ProtocolExceptionError: If the high bit of the echoed function code is set.
        FramingError: If the echoed function code, exception flag aside, is not
            the requested one.
    """
    echoed = frame.function_code & ~EXCEPTION_FLAG
    if echoed != function_code:
        raise FramingError(
            f"Response is for {describe_function(frame.function_code)}, "
            f"expected {describe_function(function_code)}"
        )
    if frame.function_code & EXCEPTION_FLAG:
        if len(frame.payload) < 1:
            raise FramingError("Exception response without an exception code")
        raise ProtocolExceptionError(echoed, frame.payload[0])


def _read_data(frame: Frame, needed: int) -> bytes:
    """Return the data bytes after the byte-count field of a read response.

    The byte-count field is advisory; the data actually present in the frame
    has to cover ``needed`` bytes.
    """
    if len(frame.payload) < 1:
        raise FramingError("Read response without a byte count")

    byte_count = frame.payload[0]
    data = frame.payload[1:]
    if byte_count != len(data):
        logger.warning(
            "Byte count %d disagrees with %d data bytes present in %r",
            byte_count,
            len(data),
            frame,
        )
    if len(data) < needed:
        raise FramingError(
            f"Read response carries {len(data)} data bytes, {needed} needed"
        )
    return data


def parse_bits(frame: Frame, function_code: int, quantity: int) -> list[bool]:
    """Decode a Read Coils / Read Discrete Inputs response.

    Returns exactly ``quantity`` values; padding bits are ignored.
    """
    if function_code not in BIT_READS:
        raise ValueError(f"{describe_function(function_code)} does not return bits")
    check_exception(frame, function_code)
    data = _read_data(frame, (quantity + 7) // 8)
    return unpack_bits(data, quantity)


def parse_registers(frame: Frame, function_code: int, quantity: int) -> list[int]:
    """Decode a Read Holding / Input Registers response."""
    if function_code not in REGISTER_READS:
        raise ValueError(f"{describe_function(function_code)} does not return registers")
    check_exception(frame, function_code)
    data = _read_data(frame, 2 * quantity)
    return list(struct.unpack_from(f">{quantity}H", data))


def parse_write_ack(frame: Frame, function_code: int) -> WriteAck:
    """Decode the address/value echo of a write acknowledgement."""
    check_exception(frame, function_code)
    if len(frame.payload) < 4:
        raise FramingError(
            f"Write acknowledgement needs 4 payload bytes, got {len(frame.payload)}"
        )
    address, value = struct.unpack_from(">HH", frame.payload)
    return WriteAck(function_code=frame.function_code, address=address, value=value)


def _verify_echo(ack: WriteAck, address: int, value: int, field: str) -> bool:
    if ack.address != address:
        raise AckMismatchError("address", address, ack.address)
    if ack.value != value:
        raise AckMismatchError(field, value, ack.value)
    return True


def verify_write_single_coil(frame: Frame, address: int, value: bool) -> bool:
    """Check a Write Single Coil echo against the request."""
    ack = parse_write_ack(frame, FunctionCode.WRITE_SINGLE_COIL)
    return _verify_echo(ack, address, COIL_ON if value else COIL_OFF, "value")


def verify_write_single_register(frame: Frame, address: int, value: int) -> bool:
    """Check a Write Single Register echo against the request."""
    ack = parse_write_ack(frame, FunctionCode.WRITE_SINGLE_REGISTER)
    return _verify_echo(ack, address, value, "value")


def verify_write_multiple(
    frame: Frame, function_code: int, start_address: int, quantity: int
) -> bool:
    """Check a Write Multiple Coils / Registers echo against the request."""
    ack = parse_write_ack(frame, function_code)
    return _verify_echo(ack, start_address, quantity, "quantity")

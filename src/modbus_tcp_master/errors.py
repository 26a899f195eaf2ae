"""Error taxonomy and the result value returned by the master.

The protocol and transport layers raise :class:`ModbusError` subclasses.
:class:`~modbus_tcp_master.master.ModbusMaster` turns each of them into a
failed :class:`Result` so callers can branch on :attr:`Result.kind`::

    result = await master.read_coils(1, 0, 8)
    if result.ok:
        print(result.value)
    elif result.kind is ErrorKind.PROTOCOL_EXCEPTION:
        print("server refused:", result.error.exception_name)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure categories reported by the master."""

    VALIDATION = "validation"
    CONNECTION = "connection"
    FRAMING = "framing"
    TRANSACTION_MISMATCH = "transaction_mismatch"
    PROTOCOL_EXCEPTION = "protocol_exception"
    ACK_MISMATCH = "ack_mismatch"
    CANCELLED = "cancelled"


class ModbusError(Exception):
    """Base class for every failure raised by this package."""

    kind: ErrorKind


class ValidationError(ModbusError, ValueError):
    """A quantity, address or value is outside protocol bounds.

    Raised before any I/O takes place.
    """

    kind = ErrorKind.VALIDATION


class ModbusConnectionError(ModbusError, ConnectionError):
    """Not connected, connect failed, or the socket broke mid-exchange."""

    kind = ErrorKind.CONNECTION


class FramingError(ModbusError):
    """A response frame was short or malformed.

    Attributes:
        stage: Which read failed (``"header"``, ``"body"``) or ``"decode"``
            when the bytes arrived but did not form a valid response.
    """

    kind = ErrorKind.FRAMING

    def __init__(self, message: str, stage: str = "decode") -> None:
        super().__init__(message)
        self.stage = stage


class TransactionMismatchError(ModbusError):
    """The response belongs to a different transaction than the request."""

    kind = ErrorKind.TRANSACTION_MISMATCH

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            f"Transaction ID mismatch: expected {expected}, received {received}"
        )
        self.expected = expected
        self.received = received


class ProtocolExceptionError(ModbusError):
    """The server answered with a well-formed exception response."""

    kind = ErrorKind.PROTOCOL_EXCEPTION

    def __init__(self, function_code: int, exception_code: int) -> None:
        # protocol.functions imports this module
        from .protocol.functions import describe_exception, describe_function

        self.function_code = function_code
        self.exception_code = exception_code
        self.exception_name = describe_exception(exception_code)
        super().__init__(
            f"Modbus exception {exception_code:#04x} ({self.exception_name}) "
            f"for {describe_function(function_code)}"
        )


class AckMismatchError(ModbusError):
    """A write acknowledgement did not echo what was written."""

    kind = ErrorKind.ACK_MISMATCH

    def __init__(self, field: str, expected: int, received: int) -> None:
        super().__init__(
            f"Write acknowledgement {field} mismatch: "
            f"expected {expected:#06x}, received {received:#06x}"
        )
        self.field = field
        self.expected = expected
        self.received = received


class OperationCancelledError(ModbusError):
    """The operation timed out while waiting for the session or for I/O."""

    kind = ErrorKind.CANCELLED


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a master operation: a value or a :class:`ModbusError`."""

    value: T | None = None
    error: ModbusError | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: ModbusError) -> Result[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        """The failure kind, or ``None`` for a successful result."""
        return None if self.error is None else self.error.kind

    def unwrap(self) -> T:
        """Return the value, re-raising the stored error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def __repr__(self) -> str:
        if self.error is None:
            return f"Result.success({self.value!r})"
        return f"Result.failure({self.error.kind.value}: {self.error})"

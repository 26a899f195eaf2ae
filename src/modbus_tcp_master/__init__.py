"""Modbus TCP master: MBAP framing, request/response correlation and an asyncio client."""

from .config import Endpoint
from .errors import (
    AckMismatchError,
    ErrorKind,
    FramingError,
    ModbusConnectionError,
    ModbusError,
    OperationCancelledError,
    ProtocolExceptionError,
    Result,
    TransactionMismatchError,
    ValidationError,
)
from .master import ModbusMaster
from .protocol.functions import ExceptionCode, FunctionCode

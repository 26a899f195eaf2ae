"""Modbus TCP master: the eight core read/write operations.

Every operation returns a :class:`~modbus_tcp_master.errors.Result` instead
of raising, so callers branch on the failure kind::

    async with ModbusMaster("192.168.0.10") as master:
        result = await master.read_holding_registers(1, 0, 10)
        if result.ok:
            print(result.value)
        else:
            print(result.kind, result.error)

Transaction IDs are supplied by the caller; the master only checks that
each response echoes the ID of its request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence, TypeVar

from .config import DEFAULT_TIMEOUT_S, Endpoint
from .errors import (
    ModbusError,
    OperationCancelledError,
    Result,
    TransactionMismatchError,
)
from .protocol import functions, parser
from .protocol.correlator import check_transaction
from .protocol.framing import Frame, parse_frame
from .protocol.functions import DEFAULT_PORT, DEFAULT_UNIT_ID, FunctionCode
from .transport.tcp_session import TcpSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ModbusMaster:
    """Client for one Modbus TCP server.

    Args:
        host: Server address.
        port: TCP port (default 502).
        unit_id: Unit identifier placed in every request (default 1).
        timeout: Default per-operation timeout in seconds.
        session: Pre-built session; mostly useful for tests.
    """

    def __init__(
        self,
        host: str = "",
        port: int = DEFAULT_PORT,
        unit_id: int = DEFAULT_UNIT_ID,
        timeout: float = DEFAULT_TIMEOUT_S,
        session: TcpSession | None = None,
    ) -> None:
        if session is None:
            session = TcpSession(
                Endpoint(host=host, port=port, unit_id=unit_id, timeout=timeout)
            )
        self._session = session

    @classmethod
    def from_endpoint(cls, endpoint: Endpoint) -> ModbusMaster:
        return cls(session=TcpSession(endpoint))

    @property
    def endpoint(self) -> Endpoint:
        return self._session.endpoint

    @property
    def unit_id(self) -> int:
        return self._session.endpoint.unit_id

    @property
    def connected(self) -> bool:
        return self._session.connected

    @property
    def session(self) -> TcpSession:
        return self._session

    # ─── CONNECTION ──────────────────────────────────────────────────

    async def connect(self) -> Result[bool]:
        """Connect to the server. Already-connected masters succeed immediately."""
        try:
            await self._session.connect()
        except ModbusError as exc:
            return Result.failure(exc)
        return Result.success(True)

    async def disconnect(self) -> None:
        """Close the connection; never raises."""
        await self._session.disconnect()

    async def __aenter__(self) -> ModbusMaster:
        await self._session.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # ─── READS ───────────────────────────────────────────────────────

    async def read_coils(
        self,
        transaction_id: int,
        start_address: int,
        quantity: int,
        timeout: float | None = None,
    ) -> Result[list[bool]]:
        """Read 1-2000 coils (0x01)."""
        return await self._read_bits(
            FunctionCode.READ_COILS, transaction_id, start_address, quantity, timeout
        )

    async def read_discrete_inputs(
        self,
        transaction_id: int,
        start_address: int,
        quantity: int,
        timeout: float | None = None,
    ) -> Result[list[bool]]:
        """Read 1-2000 discrete inputs (0x02)."""
        return await self._read_bits(
            FunctionCode.READ_DISCRETE_INPUTS,
            transaction_id,
            start_address,
            quantity,
            timeout,
        )

    async def read_holding_registers(
        self,
        transaction_id: int,
        start_address: int,
        quantity: int,
        timeout: float | None = None,
    ) -> Result[list[int]]:
        """Read 1-125 holding registers (0x03)."""
        return await self._read_registers(
            FunctionCode.READ_HOLDING_REGISTERS,
            transaction_id,
            start_address,
            quantity,
            timeout,
        )

    async def read_input_registers(
        self,
        transaction_id: int,
        start_address: int,
        quantity: int,
        timeout: float | None = None,
    ) -> Result[list[int]]:
        """Read 1-125 input registers (0x04)."""
        return await self._read_registers(
            FunctionCode.READ_INPUT_REGISTERS,
            transaction_id,
            start_address,
            quantity,
            timeout,
        )

    # ─── WRITES ──────────────────────────────────────────────────────

    async def write_single_coil(
        self,
        transaction_id: int,
        address: int,
        value: bool,
        timeout: float | None = None,
    ) -> Result[bool]:
        """Switch one coil ON or OFF (0x05)."""
        return await self._run(
            transaction_id,
            lambda: functions.build_write_single_coil(
                transaction_id, self.unit_id, address, value
            ),
            lambda frame: parser.verify_write_single_coil(frame, address, value),
            timeout,
        )

    async def write_single_register(
        self,
        transaction_id: int,
        address: int,
        value: int,
        timeout: float | None = None,
    ) -> Result[bool]:
        """Write one 16-bit holding register (0x06)."""
        return await self._run(
            transaction_id,
            lambda: functions.build_write_single_register(
                transaction_id, self.unit_id, address, value
            ),
            lambda frame: parser.verify_write_single_register(frame, address, value),
            timeout,
        )

    async def write_multiple_coils(
        self,
        transaction_id: int,
        start_address: int,
        values: Sequence[bool],
        timeout: float | None = None,
    ) -> Result[bool]:
        """Write 1-2000 consecutive coils (0x0F)."""
        return await self._run(
            transaction_id,
            lambda: functions.build_write_multiple_coils(
                transaction_id, self.unit_id, start_address, values
            ),
            lambda frame: parser.verify_write_multiple(
                frame, FunctionCode.WRITE_MULTIPLE_COILS, start_address, len(values)
            ),
            timeout,
        )

    async def write_multiple_registers(
        self,
        transaction_id: int,
        start_address: int,
        values: Sequence[int],
        timeout: float | None = None,
    ) -> Result[bool]:
        """Write 1-125 consecutive holding registers (0x10)."""
        return await self._run(
            transaction_id,
            lambda: functions.build_write_multiple_registers(
                transaction_id, self.unit_id, start_address, values
            ),
            lambda frame: parser.verify_write_multiple(
                frame,
                FunctionCode.WRITE_MULTIPLE_REGISTERS,
                start_address,
                len(values),
            ),
            timeout,
        )

    # ─── INTERNALS ───────────────────────────────────────────────────

    async def _read_bits(
        self,
        function_code: FunctionCode,
        transaction_id: int,
        start_address: int,
        quantity: int,
        timeout: float | None,
    ) -> Result[list[bool]]:
        return await self._run(
            transaction_id,
            lambda: functions.build_read_request(
                transaction_id, self.unit_id, function_code, start_address, quantity
            ),
            lambda frame: parser.parse_bits(frame, function_code, quantity),
            timeout,
        )

    async def _read_registers(
        self,
        function_code: FunctionCode,
        transaction_id: int,
        start_address: int,
        quantity: int,
        timeout: float | None,
    ) -> Result[list[int]]:
        return await self._run(
            transaction_id,
            lambda: functions.build_read_request(
                transaction_id, self.unit_id, function_code, start_address, quantity
            ),
            lambda frame: parser.parse_registers(frame, function_code, quantity),
            timeout,
        )

    async def _run(
        self,
        transaction_id: int,
        build: Callable[[], bytes],
        decode: Callable[[Frame], T],
        timeout: float | None,
    ) -> Result[T]:
        """Build, exchange, correlate and decode one request.

        Validation happens inside ``build``, before the session is touched.
        """
        try:
            request = build()
        except ModbusError as exc:
            return Result.failure(exc)

        if timeout is None:
            timeout = self.endpoint.timeout

        try:
            response = await asyncio.wait_for(
                self._session.exchange(request), timeout=timeout
            )
            try:
                check_transaction(transaction_id, response)
            except TransactionMismatchError as exc:
                self._session.invalidate(str(exc))
                raise
            return Result.success(decode(parse_frame(response)))
        except asyncio.TimeoutError:
            logger.warning(
                "Transaction %d to %s timed out after %ss",
                transaction_id,
                self.endpoint,
                timeout,
            )
            return Result.failure(
                OperationCancelledError(
                    f"Transaction {transaction_id} timed out after {timeout}s"
                )
            )
        except ModbusError as exc:
            logger.debug("Transaction %d failed: %s", transaction_id, exc)
            return Result.failure(exc)

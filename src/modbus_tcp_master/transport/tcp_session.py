"""TCP session to a Modbus server.

The session owns one asyncio stream pair and performs framed request /
response exchanges over it, one at a time::

    session = TcpSession(Endpoint("192.168.0.10"))
    await session.connect()
    response = await session.exchange(request_bytes)
    await session.disconnect()

Modbus TCP is strictly half-duplex: a second request must not be written
until the previous response has been read completely. ``exchange`` holds an
``asyncio.Lock`` for the whole write-then-read cycle, so concurrent callers
queue behind it.
"""

from __future__ import annotations

import asyncio
import logging
import socket

from ..config import Endpoint
from ..errors import FramingError, ModbusConnectionError
from ..protocol.framing import MBAP_HEADER_SIZE, parse_header

logger = logging.getLogger(__name__)


class TcpSession:
    """Manages the TCP connection to one Modbus server."""

    def __init__(self, endpoint: Endpoint) -> None:
        self._endpoint = endpoint
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()
        self._desync_reason: str | None = None

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def desynchronized(self) -> bool:
        """True once the byte stream can no longer be trusted."""
        return self._desync_reason is not None

    @property
    def busy(self) -> bool:
        """True while an exchange holds the session."""
        return self._lock.locked()

    async def connect(self) -> None:
        """Open the TCP connection and disable Nagle's algorithm.

        Does nothing if already connected. Concurrent calls share a single
        connection attempt.

        Raises:
            ModbusConnectionError: If the server cannot be reached within
                the endpoint timeout.
        """
        async with self._connect_lock:
            if not self.connected:
                await self._open()

    async def _open(self) -> None:
        host, port = self._endpoint.host, self._endpoint.port
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._endpoint.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Timeout connecting to %s", self._endpoint)
            raise ModbusConnectionError(
                f"Timeout connecting to {host}:{port} after {self._endpoint.timeout}s"
            ) from exc
        except OSError as exc:
            logger.error("Connection to %s failed: %s", self._endpoint, exc)
            raise ModbusConnectionError(
                f"Could not connect to {host}:{port}: {exc}"
            ) from exc

        sock = writer.get_extra_info("socket")
        if sock is not None:
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError as exc:
                writer.close()
                raise ModbusConnectionError(
                    f"Could not configure socket to {host}:{port}: {exc}"
                ) from exc

        self._reader = reader
        self._writer = writer
        self._desync_reason = None
        logger.info("Connected to %s", self._endpoint)

    async def disconnect(self) -> None:
        """Close the connection. Safe to call when not connected; never raises."""
        async with self._connect_lock:
            writer = self._writer
            self._reader = None
            self._writer = None
            self._desync_reason = None
            if writer is None:
                return

            try:
                writer.close()
                await asyncio.wait_for(writer.wait_closed(), timeout=self._endpoint.timeout)
            except (OSError, asyncio.TimeoutError) as exc:
                logger.warning("Error closing connection to %s: %s", self._endpoint, exc)
            logger.info("Disconnected from %s", self._endpoint)

    def invalidate(self, reason: str) -> None:
        """Mark the stream as desynchronized until the next reconnect."""
        if self._desync_reason is None:
            logger.warning("Session to %s desynchronized: %s", self._endpoint, reason)
            self._desync_reason = reason

    async def exchange(self, request: bytes) -> bytes:
        """Write one request frame and read back exactly one response frame.

        Args:
            request: A complete MBAP frame.

        Returns:
            The response frame, MBAP header included.

        Raises:
            ModbusConnectionError: If not connected, the session is
                desynchronized, or the socket fails mid-exchange.
            FramingError: If the header or body arrives short, or the header
                declares an impossible length.
        """
        self._ensure_usable()

        async with self._lock:
            # the connection may have changed while waiting for the lock
            self._ensure_usable()
            reader, writer = self._reader, self._writer
            try:
                logger.debug("TX %s", request.hex(" "))
                writer.write(request)
                await writer.drain()

                header_bytes = await self._read_exactly(reader, MBAP_HEADER_SIZE, "header")
                header = parse_header(header_bytes)
                body = await self._read_exactly(reader, header.body_size, "body")
            except FramingError as exc:
                self.invalidate(str(exc))
                raise
            except asyncio.CancelledError:
                self.invalidate("exchange cancelled during I/O")
                raise
            except OSError as exc:
                self.invalidate(f"socket error: {exc}")
                raise ModbusConnectionError(
                    f"Connection to {self._endpoint.host}:{self._endpoint.port} "
                    f"failed mid-exchange: {exc}"
                ) from exc

        response = header_bytes + body
        logger.debug("RX %s", response.hex(" "))
        return response

    def _ensure_usable(self) -> None:
        if not self.connected:
            raise ModbusConnectionError(f"Not connected to {self._endpoint}")
        if self._desync_reason is not None:
            raise ModbusConnectionError(
                f"Session to {self._endpoint} is desynchronized "
                f"({self._desync_reason}); disconnect and reconnect"
            )

    @staticmethod
    async def _read_exactly(
        reader: asyncio.StreamReader, size: int, stage: str
    ) -> bytes:
        try:
            return await reader.readexactly(size)
        except asyncio.IncompleteReadError as exc:
            raise FramingError(
                f"Short {stage}: expected {size} bytes, got {len(exc.partial)}",
                stage=stage,
            ) from exc

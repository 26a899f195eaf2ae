"""Tests for the TCP session: connection lifecycle and framed exchanges."""

from __future__ import annotations

import asyncio
import socket
from unittest.mock import MagicMock

import pytest

from modbus_tcp_master.config import Endpoint
from modbus_tcp_master.errors import FramingError, ModbusConnectionError
from modbus_tcp_master.transport.tcp_session import TcpSession

READ_COILS_REQUEST = bytes.fromhex("00 01 00 00 00 06 01 01 00 00 00 08")


def _session() -> TcpSession:
    return TcpSession(Endpoint("plc.local", timeout=0.5))


def test_connect_sets_nodelay(fake_server):
    """Nagle's algorithm is disabled on the connected socket."""
    sock = MagicMock()
    server = fake_server(sock=sock)
    session = _session()

    asyncio.run(session.connect())

    assert session.connected
    assert server.connections == 1
    sock.setsockopt.assert_called_once_with(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)


def test_connect_is_idempotent(fake_server):
    server = fake_server()
    session = _session()

    async def scenario():
        await session.connect()
        await session.connect()

    asyncio.run(scenario())
    assert server.connections == 1


def test_concurrent_connects_open_one_connection(fake_server):
    """Racing connect calls share one socket instead of orphaning one."""
    server = fake_server()
    session = _session()

    async def scenario():
        await asyncio.gather(session.connect(), session.connect())

    asyncio.run(scenario())
    assert server.connections == 1
    assert session.connected
    assert not server.writer.closed


def test_connect_failure(monkeypatch):
    """A refused connection raises and leaves the session disconnected."""

    async def refuse(host, port, **kwargs):
        raise ConnectionRefusedError(111, "Connection refused")

    monkeypatch.setattr(asyncio, "open_connection", refuse)
    session = _session()

    with pytest.raises(ModbusConnectionError):
        asyncio.run(session.connect())
    assert not session.connected


def test_connect_timeout(monkeypatch):
    async def hang(host, port, **kwargs):
        await asyncio.sleep(10)

    monkeypatch.setattr(asyncio, "open_connection", hang)
    session = TcpSession(Endpoint("plc.local", timeout=0.05))

    with pytest.raises(ModbusConnectionError, match="Timeout"):
        asyncio.run(session.connect())
    assert not session.connected


def test_disconnect_when_not_connected():
    """Disconnecting an idle session is a no-op."""
    session = _session()
    asyncio.run(session.disconnect())
    assert not session.connected


def test_disconnect_closes_writer(fake_server):
    server = fake_server()
    session = _session()

    async def scenario():
        await session.connect()
        await session.disconnect()

    asyncio.run(scenario())
    assert server.writer.closed
    assert not session.connected


def test_exchange_requires_connection():
    with pytest.raises(ModbusConnectionError):
        asyncio.run(_session().exchange(READ_COILS_REQUEST))


def test_exchange_reads_header_then_body(fake_server):
    """Exactly 7 header bytes, then length - 1 body bytes, are read."""
    server = fake_server(lambda req: bytes.fromhex("00 01 00 00 00 04 01 01 01 FF"))
    session = _session()

    async def scenario():
        await session.connect()
        return await session.exchange(READ_COILS_REQUEST)

    response = asyncio.run(scenario())

    assert response == bytes.fromhex("00 01 00 00 00 04 01 01 01 FF")
    assert server.writes == [READ_COILS_REQUEST]
    reads = [event[1] for event in server.events if event[0] == "read"]
    assert reads == [7, 3]


def test_exchange_leaves_trailing_bytes_unread(fake_server):
    """Bytes beyond the declared length stay in the stream."""
    server = fake_server(
        lambda req: bytes.fromhex("00 01 00 00 00 04 01 01 01 FF") + b"\xAA\xBB"
    )
    session = _session()

    async def scenario():
        await session.connect()
        return await session.exchange(READ_COILS_REQUEST)

    assert asyncio.run(scenario())[-1] == 0xFF
    assert server.events[-1] == ("read", 3, b"\x01\x01\xFF")


def test_short_header(fake_server):
    """A truncated header is a header-stage framing error."""
    fake_server(lambda req: b"\x00\x01\x00")
    session = _session()

    async def scenario():
        await session.connect()
        await session.exchange(READ_COILS_REQUEST)

    with pytest.raises(FramingError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.stage == "header"
    assert session.desynchronized


def test_short_body(fake_server):
    """A body shorter than the length field declares is a body-stage error."""
    fake_server(lambda req: bytes.fromhex("00 01 00 00 00 06 01 01 01"))
    session = _session()

    async def scenario():
        await session.connect()
        await session.exchange(READ_COILS_REQUEST)

    with pytest.raises(FramingError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.stage == "body"


def test_desynchronized_session_refuses_until_reconnect(fake_server):
    """After a framing error the session must be reconnected."""
    replies = [b"\x00\x01\x00", bytes.fromhex("00 01 00 00 00 04 01 01 01 FF")]
    fake_server(lambda req: replies.pop(0))
    session = _session()

    async def scenario():
        await session.connect()
        with pytest.raises(FramingError):
            await session.exchange(READ_COILS_REQUEST)
        with pytest.raises(ModbusConnectionError, match="desynchronized"):
            await session.exchange(READ_COILS_REQUEST)
        await session.disconnect()
        await session.connect()
        return await session.exchange(READ_COILS_REQUEST)

    assert asyncio.run(scenario())[-1] == 0xFF
    assert not session.desynchronized


def test_socket_error_mid_exchange(fake_server):
    def broken(req):
        raise BrokenPipeError(32, "Broken pipe")

    fake_server(broken)
    session = _session()

    async def scenario():
        await session.connect()
        await session.exchange(READ_COILS_REQUEST)

    with pytest.raises(ModbusConnectionError):
        asyncio.run(scenario())
    assert session.desynchronized


def test_concurrent_exchanges_do_not_interleave(fake_server):
    """The second request is written only after the first response is read."""
    server = fake_server(lambda req: req[:2] + bytes.fromhex("00 00 00 04 01 01 01 FF"))
    session = _session()
    first = READ_COILS_REQUEST
    second = b"\x00\x02" + READ_COILS_REQUEST[2:]

    async def scenario():
        await session.connect()
        return await asyncio.gather(session.exchange(first), session.exchange(second))

    responses = asyncio.run(scenario())

    assert [r[:2] for r in responses] == [b"\x00\x01", b"\x00\x02"]
    kinds = [event[0] for event in server.events]
    assert kinds == ["write", "read", "read", "write", "read", "read"]

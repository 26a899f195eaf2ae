"""Shared fixtures: in-memory stand-ins for asyncio TCP streams."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest


class FakeReader:
    """StreamReader stand-in fed by the fake server."""

    def __init__(self, events: list) -> None:
        self._buffer = bytearray()
        self._events = events
        self.eof = False

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)

    async def readexactly(self, n: int) -> bytes:
        # yield to the loop so an unguarded second writer would get a chance to run
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        if len(self._buffer) < n:
            partial = bytes(self._buffer)
            self._buffer.clear()
            self._events.append(("read", n, partial))
            raise asyncio.IncompleteReadError(partial, n)
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        self._events.append(("read", n, data))
        return data


class FakeWriter:
    """StreamWriter stand-in that hands each request to a responder."""

    def __init__(
        self,
        reader: FakeReader,
        events: list,
        responder: Callable[[bytes], bytes],
        sock=None,
    ) -> None:
        self._reader = reader
        self._events = events
        self._responder = responder
        self._sock = sock
        self.closed = False
        self.written: list[bytes] = []

    def write(self, data: bytes) -> None:
        self._events.append(("write", bytes(data)))
        self.written.append(bytes(data))
        self._reader.feed(self._responder(bytes(data)))

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def get_extra_info(self, name: str, default=None):
        if name == "socket":
            return self._sock
        return default

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class FakeServer:
    """Scripted Modbus server reachable through ``asyncio.open_connection``."""

    def __init__(self, responder: Callable[[bytes], bytes], sock=None) -> None:
        self.events: list = []
        self.responder = responder
        self.sock = sock
        self.connections = 0
        self.writer: FakeWriter | None = None

    async def open_connection(self, host, port, **kwargs):
        self.connections += 1
        # the handshake takes a loop iteration, as a real connect would
        await asyncio.sleep(0)
        reader = FakeReader(self.events)
        self.writer = FakeWriter(reader, self.events, self.responder, self.sock)
        return reader, self.writer

    @property
    def writes(self) -> list[bytes]:
        return [event[1] for event in self.events if event[0] == "write"]


def echo_responder(request: bytes) -> bytes:
    """Answer every request with a plausible, well-formed response."""
    tid = request[:2]
    unit_id = request[6]
    function_code = request[7]
    if function_code in (0x01, 0x02):
        quantity = int.from_bytes(request[10:12], "big")
        data = bytes([0xFF] * ((quantity + 7) // 8))
        pdu = bytes([function_code, len(data)]) + data
    elif function_code in (0x03, 0x04):
        quantity = int.from_bytes(request[10:12], "big")
        data = b"".join(i.to_bytes(2, "big") for i in range(quantity))
        pdu = bytes([function_code, len(data)]) + data
    else:
        # write acks echo address and value/quantity
        pdu = request[7:12]
    return tid + b"\x00\x00" + (len(pdu) + 1).to_bytes(2, "big") + bytes([unit_id]) + pdu


@pytest.fixture
def fake_server(monkeypatch):
    """Install a FakeServer in place of ``asyncio.open_connection``.

    Returns a factory taking a responder; the default echoes well-formed
    responses.
    """

    def install(responder: Callable[[bytes], bytes] = echo_responder, sock=None) -> FakeServer:
        server = FakeServer(responder, sock)
        monkeypatch.setattr(asyncio, "open_connection", server.open_connection)
        return server

    return install

"""Transport layer: the asyncio TCP session."""

from .tcp_session import TcpSession

"""Transaction ID correlation between a request and its response."""

from __future__ import annotations

from ..errors import FramingError, TransactionMismatchError


def response_transaction_id(response: bytes) -> int:
    """Read the leading big-endian transaction ID of a raw response."""
    if len(response) < 2:
        raise FramingError("Response too short to carry a transaction ID")
    return int.from_bytes(response[:2], "big")


def check_transaction(expected: int, response: bytes) -> None:
    """Verify ``response`` answers the pending transaction ``expected``.

    Only one request is ever in flight on a session, so a single equality
    check is enough. It runs before any payload is decoded.

    Raises:
        TransactionMismatchError: If the echoed ID differs.
    """
    received = response_transaction_id(response)
    if received != expected:
        raise TransactionMismatchError(expected, received)

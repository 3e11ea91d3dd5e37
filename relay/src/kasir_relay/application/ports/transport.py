"""Port describing the transport a terminal session writes to."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol


class SessionTransport(Protocol):
    """A bidirectional, message-framed connection to one terminal."""

    async def accept(self) -> None:
        """Complete the transport-level handshake."""

    async def send_text(self, data: str) -> None:
        """Write one text frame; raise ``TransportWriteError`` on failure."""

    async def ping(self, on_pong: Callable[[], None]) -> bool:
        """Send a protocol-level ping and call ``on_pong`` once the peer answers it.

        Return ``False`` without sending anything when the underlying server
        gives no access to protocol pings; raise ``TransportWriteError`` when
        the ping cannot be written.
        """

    async def close(self, code: int, reason: str = "") -> None:
        """Close the connection with ``code``; closing twice must be harmless."""


__all__ = ["SessionTransport"]

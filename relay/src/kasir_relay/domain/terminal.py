"""Terminal session lifecycle primitives."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from kasir_relay.domain.message import utc_now

if TYPE_CHECKING:
    from kasir_relay.application.ports.transport import SessionTransport

KasirId = str


class SessionState(str, Enum):
    """Lifecycle states for a terminal connection."""

    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    REGISTERED = "registered"
    CLOSING = "closing"
    CLOSED = "closed"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CONNECTING: frozenset({SessionState.AUTHENTICATING, SessionState.CLOSED}),
    SessionState.AUTHENTICATING: frozenset({SessionState.REGISTERED, SessionState.CLOSED}),
    SessionState.REGISTERED: frozenset({SessionState.CLOSING, SessionState.CLOSED}),
    SessionState.CLOSING: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


@dataclass(eq=False, slots=True)
class TerminalSession:
    """One live transport connection owned by a terminal.

    Sessions compare by identity: two sessions for the same ``kasir_id`` are
    different sessions. ``alive`` records whether the most recent liveness
    probe was acknowledged.
    """

    kasir_id: KasirId
    transport: SessionTransport
    state: SessionState = SessionState.CONNECTING
    alive: bool = True
    connected_at: datetime = field(default_factory=utc_now)
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.REGISTERED

    @property
    def is_closing(self) -> bool:
        return self.state in (SessionState.CLOSING, SessionState.CLOSED)

    def transition(self, target: SessionState) -> None:
        """Move to ``target``; raise ``ValueError`` for transitions the lifecycle forbids."""
        if target not in _TRANSITIONS[self.state]:
            raise ValueError(f"invalid session transition {self.state.value} -> {target.value}")
        self.state = target

    def mark_alive(self) -> None:
        self.alive = True

    async def send(self, payload: str) -> None:
        """Write one frame; writes to the same session never interleave."""
        async with self.write_lock:
            await self.transport.send_text(payload)

    async def ping(self) -> bool:
        """Send a protocol-level ping whose pong marks the session alive.

        Returns ``False`` when the transport has no protocol pings.
        """
        async with self.write_lock:
            return await self.transport.ping(self.mark_alive)


__all__ = ["KasirId", "SessionState", "TerminalSession"]

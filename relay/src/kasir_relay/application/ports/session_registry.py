"""Port describing the live terminal session registry."""

from __future__ import annotations

from typing import Protocol

from kasir_relay.domain.terminal import KasirId, TerminalSession


class SessionRegistryPort(Protocol):
    """Maps each terminal to at most one live session."""

    def register(self, kasir_id: KasirId, session: TerminalSession) -> TerminalSession | None:
        """Insert or replace the session for ``kasir_id``; return the superseded one."""

    def lookup(self, kasir_id: KasirId) -> TerminalSession | None:
        """Return the session currently registered for ``kasir_id``."""

    def remove(self, kasir_id: KasirId, session: TerminalSession) -> bool:
        """Drop the mapping only if ``session`` is still the registered one."""

    def list_connected(self) -> list[KasirId]:
        """Return identifiers whose registered session is open."""

    def sessions(self) -> list[TerminalSession]:
        """Return a snapshot of every registered session."""


__all__ = ["SessionRegistryPort"]

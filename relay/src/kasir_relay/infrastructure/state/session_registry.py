"""In-memory terminal session registry."""

from __future__ import annotations

from threading import Lock

from kasir_relay.application.ports.session_registry import SessionRegistryPort
from kasir_relay.domain.terminal import KasirId, TerminalSession


class InMemorySessionRegistry(SessionRegistryPort):
    """Holds live sessions for the lifetime of the process.

    Every operation runs under one lock so no caller observes a partially
    updated mapping, whether it runs on the event loop or in a worker thread.
    """

    def __init__(self) -> None:
        self._sessions: dict[KasirId, TerminalSession] = {}
        self._lock = Lock()

    def register(self, kasir_id: KasirId, session: TerminalSession) -> TerminalSession | None:
        with self._lock:
            previous = self._sessions.get(kasir_id)
            self._sessions[kasir_id] = session
        if previous is session:
            return None
        return previous

    def lookup(self, kasir_id: KasirId) -> TerminalSession | None:
        with self._lock:
            return self._sessions.get(kasir_id)

    def remove(self, kasir_id: KasirId, session: TerminalSession) -> bool:
        with self._lock:
            if self._sessions.get(kasir_id) is not session:
                return False
            del self._sessions[kasir_id]
            return True

    def list_connected(self) -> list[KasirId]:
        with self._lock:
            return [kasir_id for kasir_id, session in self._sessions.items() if session.is_open]

    def sessions(self) -> list[TerminalSession]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["InMemorySessionRegistry"]

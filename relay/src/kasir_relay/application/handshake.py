"""Terminal session lifecycle: handshake, inbound frames and teardown."""

from __future__ import annotations

import asyncio
import json
import logging

from kasir_relay.application.credentials import CredentialVerifier
from kasir_relay.application.ports.session_registry import SessionRegistryPort
from kasir_relay.application.ports.transport import SessionTransport
from kasir_relay.domain.exceptions import (
    AuthRejectedError,
    MalformedInboundMessageError,
    RejectReason,
    TransportWriteError,
)
from kasir_relay.domain.message import MessageKind, OutboundMessage
from kasir_relay.domain.terminal import SessionState, TerminalSession

logger = logging.getLogger("kasir_relay.handshake")

CLOSE_INTERNAL_ERROR = 1011
CLOSE_LIVENESS_TIMEOUT = 4008
CLOSE_SUPERSEDED = 4009

_LOGGED_FRAME_LIMIT = 512


class SessionLifecycle:
    """Drives a terminal connection from accept to registration and back out.

    Every state change and registry mutation for one session happens before
    the first ``await`` of the step that triggers it, so events for the same
    session cannot interleave on the event loop.
    """

    def __init__(
        self,
        *,
        registry: SessionRegistryPort,
        verifier: CredentialVerifier,
        close_superseded: bool = True,
        send_timeout_seconds: float = 5.0,
    ) -> None:
        self._registry = registry
        self._verifier = verifier
        self._close_superseded = close_superseded
        self._send_timeout = send_timeout_seconds

    async def open(
        self,
        transport: SessionTransport,
        kasir_id: str | None,
        secret: str | None,
    ) -> TerminalSession | None:
        """Run the handshake; return the registered session, or ``None`` when rejected."""
        session = TerminalSession(kasir_id=kasir_id or "", transport=transport)
        await transport.accept()
        session.transition(SessionState.AUTHENTICATING)

        try:
            self._authenticate(kasir_id, secret)
        except AuthRejectedError as exc:
            session.transition(SessionState.CLOSED)
            logger.warning(
                "connection rejected",
                extra={
                    "data": {
                        "kasir_id": kasir_id,
                        "reason": exc.reason.name.lower(),
                        "code": exc.reason.code,
                    }
                },
            )
            try:
                await asyncio.wait_for(transport.close(exc.reason.code, exc.reason.text), timeout=self._send_timeout)
            except TimeoutError:
                logger.warning("rejection close timed out", extra={"data": {"kasir_id": kasir_id}})
            return None

        previous = self._registry.register(session.kasir_id, session)
        session.transition(SessionState.REGISTERED)
        logger.info(
            "kasir connected",
            extra={"data": {"kasir_id": session.kasir_id, "superseded": previous is not None}},
        )

        if previous is not None:
            await self._retire(previous)

        welcome = OutboundMessage(
            MessageKind.CONNECTED,
            {"message": f"Welcome Kasir {session.kasir_id}", "kasir_id": session.kasir_id},
        )
        try:
            await asyncio.wait_for(session.send(welcome.encode()), timeout=self._send_timeout)
        except (TransportWriteError, TimeoutError) as exc:
            logger.warning(
                "welcome message failed",
                extra={"data": {"kasir_id": session.kasir_id, "error": repr(exc)}},
            )
            await self.close(session, reason="welcome failed", code=CLOSE_INTERNAL_ERROR)
            return None
        return session

    def receive(self, session: TerminalSession, raw: str | bytes) -> None:
        """Handle one inbound frame; malformed frames are logged and dropped."""
        if not session.is_open:
            return
        try:
            message = _parse_inbound(raw)
        except MalformedInboundMessageError as exc:
            logger.info(
                "malformed message from kasir",
                extra={"data": {"kasir_id": session.kasir_id, "error": str(exc), "raw": _preview(raw)}},
            )
            return

        if message.get("type") == MessageKind.PONG.value:
            session.mark_alive()
            return
        logger.info("message from kasir", extra={"data": {"kasir_id": session.kasir_id, "message": message}})

    async def close(
        self,
        session: TerminalSession,
        *,
        reason: str,
        code: int | None = None,
    ) -> None:
        """Tear the session down; safe to call from every close, error and timeout path.

        The registry entry is removed only if it still points at ``session``,
        so a stale connection closing late cannot evict its replacement. When
        ``code`` is given the transport is closed with it as well.
        """
        if session.is_closing:
            return
        removed = False
        if session.is_open:
            session.transition(SessionState.CLOSING)
            removed = self._registry.remove(session.kasir_id, session)
        try:
            if code is not None:
                await self._close_transport(session, code, reason)
        finally:
            session.transition(SessionState.CLOSED)
            logger.info(
                "kasir disconnected",
                extra={"data": {"kasir_id": session.kasir_id, "reason": reason, "deregistered": removed}},
            )

    async def terminate(self, session: TerminalSession) -> None:
        """Evict a session that stopped answering liveness probes."""
        await self.close(session, reason="liveness probe timeout", code=CLOSE_LIVENESS_TIMEOUT)

    async def _close_transport(self, session: TerminalSession, code: int, reason: str) -> None:
        try:
            await asyncio.wait_for(session.transport.close(code, reason), timeout=self._send_timeout)
        except TimeoutError:
            logger.warning(
                "transport close timed out",
                extra={"data": {"kasir_id": session.kasir_id, "code": code}},
            )

    def _authenticate(self, kasir_id: str | None, secret: str | None) -> None:
        if not kasir_id:
            raise AuthRejectedError(RejectReason.MISSING_ID)
        if not self._verifier.is_allowed(kasir_id):
            raise AuthRejectedError(RejectReason.NOT_ALLOWED, kasir_id)
        if not self._verifier.verify(kasir_id, secret):
            raise AuthRejectedError(RejectReason.INVALID_SECRET, kasir_id)

    async def _retire(self, previous: TerminalSession) -> None:
        if not self._close_superseded:
            logger.info(
                "superseded session left to its own close path",
                extra={"data": {"kasir_id": previous.kasir_id}},
            )
            return
        await self.close(previous, reason="superseded by a newer connection", code=CLOSE_SUPERSEDED)


def _parse_inbound(raw: str | bytes) -> dict[str, object]:
    try:
        decoded = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedInboundMessageError(f"invalid JSON: {exc}") from exc
    if not isinstance(decoded, dict):
        raise MalformedInboundMessageError("message must be a JSON object")
    return decoded


def _preview(raw: str | bytes) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if len(text) <= _LOGGED_FRAME_LIMIT:
        return text
    return text[:_LOGGED_FRAME_LIMIT] + "... (truncated)"


__all__ = [
    "CLOSE_INTERNAL_ERROR",
    "CLOSE_LIVENESS_TIMEOUT",
    "CLOSE_SUPERSEDED",
    "SessionLifecycle",
]

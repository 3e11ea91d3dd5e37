"""Periodic dead-peer detection for registered terminal sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from kasir_relay.application.handshake import SessionLifecycle
from kasir_relay.application.ports.session_registry import SessionRegistryPort
from kasir_relay.domain.exceptions import TransportWriteError
from kasir_relay.domain.message import MessageKind, OutboundMessage, iso_timestamp, utc_now
from kasir_relay.domain.terminal import KasirId, TerminalSession

logger = logging.getLogger("kasir_relay.liveness")


@dataclass(frozen=True, slots=True)
class LivenessReport:
    """Outcome of one monitor tick."""

    probed: tuple[KasirId, ...]
    evicted: tuple[KasirId, ...]


class LivenessMonitor:
    """Pings every open session each period and evicts the ones that stayed silent.

    A session whose ``alive`` flag is still false when the next tick comes
    round missed the previous probe and is terminated. Otherwise the flag is
    cleared and a new probe goes out. A tick never waits for a pong.

    The probe is a protocol-level ping when the transport supports one, so
    any standards-compliant client stays connected without help. Otherwise a
    JSON ``{"type": "ping"}`` frame is sent and ``{"type": "pong"}`` answers it.
    """

    worker_name = "kasir-liveness-monitor"

    def __init__(
        self,
        *,
        registry: SessionRegistryPort,
        lifecycle: SessionLifecycle,
        interval_seconds: float = 30.0,
        send_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._registry = registry
        self._lifecycle = lifecycle
        self._interval = interval_seconds
        self._send_timeout = send_timeout_seconds
        self._clock = clock
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        task = self._task
        return bool(task is not None and not task.done())

    def start(self) -> None:
        """Start the periodic task on the running loop (idempotent)."""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.worker_name)

    async def stop(self, *, timeout: float = 5.0) -> None:
        """Signal the task to stop; cancel it if it does not finish in time."""
        task = self._task
        if task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except TimeoutError:
            logger.warning("liveness monitor did not stop in time; cancelled")
        finally:
            self._task = None

    async def tick(self) -> LivenessReport:
        to_evict: list[TerminalSession] = []
        to_probe: list[TerminalSession] = []
        for session in self._registry.sessions():
            if not session.is_open:
                continue
            if not session.alive:
                to_evict.append(session)
                continue
            session.alive = False
            to_probe.append(session)

        await asyncio.gather(
            *(self._lifecycle.terminate(session) for session in to_evict),
            *(self._probe(session) for session in to_probe),
        )

        evicted = tuple(session.kasir_id for session in to_evict)
        if evicted:
            logger.info("evicted unresponsive sessions", extra={"data": {"kasir_ids": list(evicted)}})
        return LivenessReport(
            probed=tuple(session.kasir_id for session in to_probe),
            evicted=evicted,
        )

    async def _probe(self, session: TerminalSession) -> None:
        try:
            await asyncio.wait_for(self._send_probe(session), timeout=self._send_timeout)
        except (TransportWriteError, TimeoutError) as exc:
            # The session stays registered; the next tick evicts it if no pong arrives.
            logger.debug(
                "liveness probe not sent",
                extra={"data": {"kasir_id": session.kasir_id, "error": repr(exc)}},
            )

    async def _send_probe(self, session: TerminalSession) -> None:
        if await session.ping():
            return
        probe = OutboundMessage(MessageKind.PING, timestamp=iso_timestamp(self._clock()))
        await session.send(probe.encode())

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except TimeoutError:
                pass
            else:
                break
            try:
                await self.tick()
            except Exception:
                logger.exception("liveness tick failed")


__all__ = ["LivenessMonitor", "LivenessReport"]

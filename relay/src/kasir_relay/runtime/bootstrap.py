"""Runtime wiring for the relay service."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from kasir_relay.application.credentials import CredentialVerifier
from kasir_relay.application.delivery import NotificationGateway
from kasir_relay.application.handshake import SessionLifecycle
from kasir_relay.application.liveness import LivenessMonitor
from kasir_relay.infrastructure.http.routes import RelayControlDeps, TerminalSocketDeps
from kasir_relay.infrastructure.state.session_registry import InMemorySessionRegistry
from kasir_relay.runtime.settings import Settings

logger = logging.getLogger("kasir_relay.runtime")


@dataclass(frozen=True, slots=True)
class RuntimeContext:
    """Components shared by the HTTP surface, the socket endpoint and the monitor.

    One context is built per process; the registry it owns is the only
    terminal-to-session mapping.
    """

    settings: Settings
    session_registry: InMemorySessionRegistry
    verifier: CredentialVerifier
    lifecycle: SessionLifecycle
    gateway: NotificationGateway
    liveness_monitor: LivenessMonitor
    control_deps_provider: Callable[[], RelayControlDeps]
    socket_deps_provider: Callable[[], TerminalSocketDeps]


def build_runtime(settings: Settings | None = None) -> RuntimeContext:
    """Construct the runtime context from ``settings`` (loaded from env when omitted)."""
    resolved = settings or Settings.load()

    registry = InMemorySessionRegistry()
    verifier = CredentialVerifier(
        allowed_ids=resolved.allowed_kasir_ids,
        secret_digest=resolved.secret_sha256,
    )
    lifecycle = SessionLifecycle(
        registry=registry,
        verifier=verifier,
        close_superseded=resolved.close_superseded,
        send_timeout_seconds=resolved.send_timeout_seconds,
    )
    gateway = NotificationGateway(registry=registry, send_timeout_seconds=resolved.send_timeout_seconds)
    monitor = LivenessMonitor(
        registry=registry,
        lifecycle=lifecycle,
        interval_seconds=resolved.probe_interval_seconds,
        send_timeout_seconds=resolved.probe_send_timeout_seconds,
    )

    control_deps = RelayControlDeps(gateway=gateway)
    socket_deps = TerminalSocketDeps(lifecycle=lifecycle)

    if resolved.allowed_kasir_ids is None:
        logger.warning("no kasir allow-list configured; any kasir_id may connect")
    if resolved.secret_sha256 is None:
        logger.warning("no kasir secret digest configured; connections are not authenticated")

    return RuntimeContext(
        settings=resolved,
        session_registry=registry,
        verifier=verifier,
        lifecycle=lifecycle,
        gateway=gateway,
        liveness_monitor=monitor,
        control_deps_provider=lambda: control_deps,
        socket_deps_provider=lambda: socket_deps,
    )


__all__ = ["RuntimeContext", "build_runtime"]

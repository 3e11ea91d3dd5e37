"""Entrypoint for running the kasir relay under uvicorn."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kasir_commons.observability.logging import shutdown_logging
from kasir_commons.observability.tracing import configure_tracing
from kasir_relay.infrastructure.http.middleware import request_logging_middleware
from kasir_relay.infrastructure.http.routes import (
    add_control_routes,
    add_error_handlers,
    add_terminal_routes,
)
from kasir_relay.infrastructure.observability.logging import (
    enable_cloud_logging,
    init_logging,
)
from kasir_relay.runtime.bootstrap import RuntimeContext, build_runtime
from kasir_relay.runtime.settings import Settings

init_logging()
configure_tracing(service_name="kasir-relay")
_settings = Settings.load()
_observability = _settings.observability
if _observability.enable_cloud_logging:
    enable_cloud_logging(
        gcp_project=_observability.gcp_project_id,
        cloud_log_name=_observability.cloud_log_name,
        cloud_log_labels=_observability.labels_for("kasir-relay"),
    )

_runtime = build_runtime(_settings)

MONITOR_STOP_TIMEOUT_SECONDS = 5.0


def _lifespan_for(
    runtime: RuntimeContext,
    *,
    flush_logs: bool,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        runtime.liveness_monitor.start()
        try:
            yield
        finally:
            await runtime.liveness_monitor.stop(timeout=MONITOR_STOP_TIMEOUT_SECONDS)
            if flush_logs:
                shutdown_logging()

    return lifespan


def create_app(runtime: RuntimeContext | None = None) -> FastAPI:
    """Build the relay app; the process-wide runtime is used when none is given."""
    resolved = runtime or _runtime
    app = FastAPI(
        title="Kasir Relay",
        version="0.1.0",
        lifespan=_lifespan_for(resolved, flush_logs=runtime is None),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=resolved.settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_logging_middleware)

    add_control_routes(app, resolved.control_deps_provider)
    add_terminal_routes(app, resolved.socket_deps_provider)
    add_error_handlers(app)

    return app


app = create_app()


def main(*, host: str | None = None, port: int | None = None) -> None:
    import uvicorn

    config = uvicorn.Config(
        app,
        host=host or _runtime.settings.listen_host,
        port=port or _runtime.settings.port,
        ws="websockets",
        # logging already setup
        log_config=None,
    )
    uvicorn.Server(config).run()


__all__ = ["app", "create_app", "main"]

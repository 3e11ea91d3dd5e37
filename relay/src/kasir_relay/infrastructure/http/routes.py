"""HTTP control surface and terminal WebSocket endpoint for the relay."""

from __future__ import annotations

import json
import logging
from functools import cache
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request, Response, WebSocket
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from kasir_relay.application.delivery import NotificationGateway
from kasir_relay.application.handshake import CLOSE_INTERNAL_ERROR, SessionLifecycle
from kasir_relay.domain.exceptions import DeliveryFailedError, NotConnectedError
from kasir_relay.domain.message import iso_timestamp, utc_now
from kasir_relay.infrastructure.http.schemas import (
    ClientListResponse,
    ClientStatusResponse,
    HealthResponse,
    SendPaymentSuccessRequest,
    SendPaymentSuccessResponse,
    SendQrRequest,
    SendQrResponse,
)
from kasir_relay.infrastructure.transport.websocket import WebSocketTransport

logger = logging.getLogger("kasir_relay.http")

_FORM_CONTENT_TYPES = frozenset({"application/x-www-form-urlencoded", "multipart/form-data"})

_RequestT = TypeVar("_RequestT", bound=BaseModel)


@dataclass(frozen=True)
class RelayControlDeps:
    gateway: NotificationGateway


@dataclass(frozen=True)
class TerminalSocketDeps:
    lifecycle: SessionLifecycle


def add_control_routes(
    app: FastAPI,
    control_deps_provider: Callable[[], RelayControlDeps],
) -> None:
    def get_control_deps() -> RelayControlDeps:
        return control_deps_provider()

    @app.post(
        "/send-qr",
        response_model=SendQrResponse,
        description="Push a QR payment code to a connected kasir. Accepts a JSON or form-encoded body.",
        openapi_extra=_request_body_doc(SendQrRequest),
    )
    async def send_qr(
        request: Request,
        deps: RelayControlDeps = Depends(get_control_deps),  # noqa: B008
    ) -> SendQrResponse:
        payload = await _read_payload(request, SendQrRequest)
        kasir_id = _require(payload.kasir_id, "kasir_id")
        qr_string = _require(payload.qr_string, "qr_string")
        text = payload.text or ""

        await _deliver(deps.gateway.send_qr(kasir_id, qr_string, text))
        return SendQrResponse(
            success=True,
            message=f"QR string sent to Kasir {kasir_id}",
            kasir_id=kasir_id,
            qr_string=qr_string,
            text=text,
        )

    @app.post(
        "/send-payment-success",
        response_model=SendPaymentSuccessResponse,
        description="Notify a connected kasir that a QR payment completed. Accepts a JSON or form-encoded body.",
        openapi_extra=_request_body_doc(SendPaymentSuccessRequest),
    )
    async def send_payment_success(
        request: Request,
        deps: RelayControlDeps = Depends(get_control_deps),  # noqa: B008
    ) -> SendPaymentSuccessResponse:
        payload = await _read_payload(request, SendPaymentSuccessRequest)
        kasir_id = _require(payload.kasir_id, "kasir_id")
        qr_string = _require(payload.qr_string, "qr_string")

        await _deliver(deps.gateway.send_payment_success(kasir_id, qr_string, payload.status))
        return SendPaymentSuccessResponse(
            success=True,
            message=f"Payment success sent to Kasir {kasir_id}",
            kasir_id=kasir_id,
            qr_string=qr_string,
            status=payload.status,
        )

    @app.get(
        "/clients",
        response_model=ClientListResponse,
        description="List kasir terminals with an open session.",
    )
    def list_clients(
        deps: RelayControlDeps = Depends(get_control_deps),  # noqa: B008
    ) -> ClientListResponse:
        clients = deps.gateway.list_connected()
        return ClientListResponse(success=True, count=len(clients), clients=clients)

    @app.get(
        "/client/{kasir_id}",
        response_model=ClientStatusResponse,
        description="Report whether one kasir terminal is connected.",
    )
    def client_status(
        kasir_id: str,
        deps: RelayControlDeps = Depends(get_control_deps),  # noqa: B008
    ) -> ClientStatusResponse:
        return ClientStatusResponse(
            success=True,
            kasir_id=kasir_id,
            connected=deps.gateway.is_connected(kasir_id),
        )

    @app.get("/health", response_model=HealthResponse, description="Process liveness check.")
    def health() -> HealthResponse:
        return HealthResponse(success=True, status="running", timestamp=iso_timestamp(utc_now()))

    @app.get("/favicon.ico", include_in_schema=False)
    def favicon() -> Response:
        return Response(status_code=204)


def add_terminal_routes(
    app: FastAPI,
    socket_deps_provider: Callable[[], TerminalSocketDeps],
) -> None:
    def get_socket_deps() -> TerminalSocketDeps:
        return socket_deps_provider()

    @app.websocket("/")
    async def terminal_socket(
        websocket: WebSocket,
        kasir_id: str | None = None,
        secret: str | None = None,
        deps: TerminalSocketDeps = Depends(get_socket_deps),  # noqa: B008
    ) -> None:
        lifecycle = deps.lifecycle
        transport = WebSocketTransport(websocket)
        if not transport.supports_ping:
            _warn_json_liveness()
        session = await lifecycle.open(transport, kasir_id, secret)
        if session is None:
            return

        reason = "transport closed"
        close_code: int | None = None
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    reason = f"transport closed (code {frame.get('code')})"
                    break
                raw = frame.get("text")
                lifecycle.receive(session, raw if raw is not None else frame.get("bytes") or b"")
        except Exception:
            logger.exception("terminal socket failed", extra={"data": {"kasir_id": session.kasir_id}})
            reason = "transport error"
            close_code = CLOSE_INTERNAL_ERROR
        finally:
            await lifecycle.close(session, reason=reason, code=close_code)


def add_error_handlers(app: FastAPI) -> None:
    """Render every HTTP failure as ``{"success": false, "error": ...}``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "invalid request body",
                "details": jsonable_encoder(exc.errors()),
            },
        )


# --- Helpers ---


async def _read_payload(request: Request, model: type[_RequestT]) -> _RequestT:
    """Build ``model`` from a JSON or form-encoded body; an empty body yields the defaults."""
    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    raw: object
    if content_type in _FORM_CONTENT_TYPES:
        form = await request.form()
        raw = {key: value for key, value in form.items() if isinstance(value, str)}
    else:
        body = await request.body()
        if not body.strip():
            raw = {}
        else:
            try:
                raw = json.loads(body)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail="invalid request body") from exc
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="invalid request body")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


def _request_body_doc(model: type[BaseModel]) -> dict[str, Any]:
    schema = model.model_json_schema()
    return {
        "requestBody": {
            "required": False,
            "content": {
                "application/json": {"schema": schema},
                "application/x-www-form-urlencoded": {"schema": schema},
            },
        }
    }


@cache
def _warn_json_liveness() -> None:
    logger.warning(
        "server gives no access to protocol pings; liveness uses JSON ping frames. "
        "Run uvicorn with ws=\"websockets\" so clients that only answer protocol pings stay connected."
    )


def _require(value: str | None, name: str) -> str:
    if not value:
        raise HTTPException(status_code=400, detail=f"{name} is required")
    return value


async def _deliver(delivery: Any) -> None:
    try:
        await delivery
    except NotConnectedError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DeliveryFailedError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


__all__ = [
    "RelayControlDeps",
    "TerminalSocketDeps",
    "add_control_routes",
    "add_error_handlers",
    "add_terminal_routes",
]

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

from fastapi import Request

logger = logging.getLogger("kasir_relay.http")

_BODY_LOG_LIMIT = 1024


async def request_logging_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Any]],
) -> Any:
    request_id = request.headers.get("x-request-id") or uuid4().hex
    base = {
        "request_id": request_id,
        "request_line": _format_request_line(request),
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
    }

    body = _truncate_body(await request.body())
    logger.info("request_received", extra={"data": {**base, "body": body}})

    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed", extra={"data": base})
        raise

    logger.info(
        "request_completed",
        extra={
            "data": {
                **base,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        },
    )
    response.headers.setdefault("x-request-id", request_id)
    return response


def _format_request_line(request: Request) -> str:
    query = request.url.query
    if query:
        return f"{request.method} {request.url.path}?{query}"
    return f"{request.method} {request.url.path}"


def _truncate_body(body: bytes, limit: int = _BODY_LOG_LIMIT) -> str:
    if not body:
        return ""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return f"<binary data: {len(body)} bytes>"
    if len(text) <= limit:
        return text
    return text[:limit] + "... (truncated)"


__all__ = ["request_logging_middleware"]

"""Starlette/FastAPI WebSocket adapter for the session transport port."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from functools import partial
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosed

from kasir_relay.application.ports.transport import SessionTransport
from kasir_relay.domain.exceptions import TransportWriteError

logger = logging.getLogger("kasir_relay.transport")


class WebSocketTransport(SessionTransport):
    """Wraps one accepted FastAPI ``WebSocket``.

    Protocol-level pings go through the ``websockets`` server protocol that
    uvicorn runs the connection on. Under any other ASGI server (or the test
    client) ``ping`` reports that it is unsupported.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._protocol = _server_protocol(websocket)

    @property
    def client(self) -> str | None:
        client = self._websocket.client
        if client is None:
            return None
        return f"{client.host}:{client.port}"

    @property
    def supports_ping(self) -> bool:
        return self._protocol is not None

    async def accept(self) -> None:
        await self._websocket.accept()

    async def send_text(self, data: str) -> None:
        try:
            await self._websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TransportWriteError(f"websocket write failed: {exc!r}") from exc

    async def ping(self, on_pong: Callable[[], None]) -> bool:
        if self._protocol is None:
            return False
        try:
            pong_waiter = await self._protocol.ping()
        except (ConnectionClosed, RuntimeError, OSError) as exc:
            raise TransportWriteError(f"websocket ping failed: {exc!r}") from exc
        asyncio.ensure_future(pong_waiter).add_done_callback(partial(_acknowledge, on_pong))
        return True

    async def close(self, code: int, reason: str = "") -> None:
        if self._websocket.application_state is WebSocketState.DISCONNECTED:
            return
        try:
            await self._websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as exc:
            # Peer already gone; the close frame has nowhere to go.
            logger.debug("websocket close ignored", extra={"data": {"code": code, "error": repr(exc)}})


def _server_protocol(websocket: WebSocket) -> Any | None:
    # uvicorn's websockets implementation hands the app bound methods of its
    # protocol object as the ASGI receive callable.
    receive = getattr(websocket, "_receive", None)
    protocol = getattr(receive, "__self__", None)
    ping = getattr(protocol, "ping", None)
    if ping is None or not inspect.iscoroutinefunction(ping):
        return None
    return protocol


def _acknowledge(on_pong: Callable[[], None], pong_waiter: asyncio.Future[Any]) -> None:
    if pong_waiter.cancelled() or pong_waiter.exception() is not None:
        return
    on_pong()


__all__ = ["WebSocketTransport"]

from __future__ import annotations

import asyncio
from typing import Any, cast

import pytest
from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosedError

from kasir_relay.domain.exceptions import TransportWriteError
from kasir_relay.infrastructure.transport.websocket import WebSocketTransport

pytestmark = pytest.mark.anyio("asyncio")


class StubServerProtocol:
    """Stands in for the server protocol object whose methods uvicorn hands the app."""

    def __init__(self, *, ping_error: Exception | None = None) -> None:
        self.pong_waiters: list[asyncio.Future[float]] = []
        self._ping_error = ping_error

    async def ping(self) -> asyncio.Future[float]:
        if self._ping_error is not None:
            raise self._ping_error
        waiter: asyncio.Future[float] = asyncio.get_running_loop().create_future()
        self.pong_waiters.append(waiter)
        return waiter

    async def asgi_receive(self) -> dict[str, Any]:
        return {"type": "websocket.receive", "text": ""}


class StubWebSocket:
    def __init__(
        self,
        *,
        send_error: Exception | None = None,
        close_error: Exception | None = None,
        protocol: StubServerProtocol | None = None,
    ) -> None:
        if protocol is not None:
            self._receive = protocol.asgi_receive
        self.application_state = WebSocketState.CONNECTED
        self.client = None
        self.sent: list[str] = []
        self.closed: list[tuple[int, str]] = []
        self._send_error = send_error
        self._close_error = close_error

    async def accept(self) -> None:
        return None

    async def send_text(self, data: str) -> None:
        if self._send_error is not None:
            raise self._send_error
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self._close_error is not None:
            raise self._close_error
        self.closed.append((code, reason or ""))
        self.application_state = WebSocketState.DISCONNECTED


def _transport(stub: Any) -> WebSocketTransport:
    return WebSocketTransport(cast(WebSocket, stub))


async def test_send_text_writes_frame() -> None:
    stub = StubWebSocket()

    await _transport(stub).send_text("hello")

    assert stub.sent == ["hello"]


@pytest.mark.parametrize(
    "error",
    [WebSocketDisconnect(code=1006), RuntimeError("closed"), OSError("broken pipe")],
)
async def test_send_failures_become_transport_write_errors(error: Exception) -> None:
    with pytest.raises(TransportWriteError):
        await _transport(StubWebSocket(send_error=error)).send_text("hello")


async def test_close_is_idempotent() -> None:
    stub = StubWebSocket()
    transport = _transport(stub)

    await transport.close(4009, "superseded")
    await transport.close(4009, "superseded")

    assert stub.closed == [(4009, "superseded")]


async def test_close_on_dead_peer_is_ignored() -> None:
    await _transport(StubWebSocket(close_error=RuntimeError("already closed"))).close(1011)


async def test_ping_uses_server_protocol_and_reports_pong() -> None:
    protocol = StubServerProtocol()
    transport = _transport(StubWebSocket(protocol=protocol))
    pongs: list[str] = []

    assert transport.supports_ping
    assert await transport.ping(lambda: pongs.append("pong")) is True
    assert pongs == []

    protocol.pong_waiters[0].set_result(0.01)
    await asyncio.sleep(0)

    assert pongs == ["pong"]


async def test_unanswered_ping_never_reports_pong() -> None:
    protocol = StubServerProtocol()
    transport = _transport(StubWebSocket(protocol=protocol))
    pongs: list[str] = []

    await transport.ping(lambda: pongs.append("pong"))
    protocol.pong_waiters[0].set_exception(ConnectionClosedError(None, None))
    await asyncio.sleep(0)

    assert pongs == []


async def test_ping_without_server_protocol_is_unsupported() -> None:
    transport = _transport(StubWebSocket())

    assert not transport.supports_ping
    assert await transport.ping(lambda: None) is False


@pytest.mark.parametrize("error", [RuntimeError("already waiting for a pong"), OSError("broken pipe")])
async def test_ping_failures_become_transport_write_errors(error: Exception) -> None:
    transport = _transport(StubWebSocket(protocol=StubServerProtocol(ping_error=error)))

    with pytest.raises(TransportWriteError):
        await transport.ping(lambda: None)

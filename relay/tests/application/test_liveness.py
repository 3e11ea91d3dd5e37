from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from kasir_relay.application.handshake import CLOSE_LIVENESS_TIMEOUT
from kasir_relay.application.liveness import LivenessMonitor
from relay.tests.fixtures.fakes import FakeTransport, make_lifecycle

pytestmark = pytest.mark.anyio("asyncio")

_NOW = datetime(2025, 3, 1, 8, 0, 0, tzinfo=UTC)


def _monitor(lifecycle, registry, **kwargs) -> LivenessMonitor:
    return LivenessMonitor(registry=registry, lifecycle=lifecycle, clock=lambda: _NOW, **kwargs)


async def test_tick_probes_alive_sessions_and_clears_flag() -> None:
    lifecycle, registry = make_lifecycle()
    transport = FakeTransport()
    session = await lifecycle.open(transport, "5", None)
    assert session is not None

    report = await _monitor(lifecycle, registry).tick()

    assert report.probed == ("5",)
    assert report.evicted == ()
    assert session.alive is False
    assert transport.messages[-1] == {"type": "ping", "timestamp": "2025-03-01T08:00:00.000Z"}


async def test_silent_session_is_evicted_on_next_tick() -> None:
    lifecycle, registry = make_lifecycle()
    transport = FakeTransport()
    await lifecycle.open(transport, "5", None)
    monitor = _monitor(lifecycle, registry)

    await monitor.tick()
    report = await monitor.tick()

    assert report.evicted == ("5",)
    assert transport.close_code == CLOSE_LIVENESS_TIMEOUT
    assert registry.lookup("5") is None


async def test_pong_between_ticks_keeps_session() -> None:
    lifecycle, registry = make_lifecycle()
    session = await lifecycle.open(FakeTransport(), "5", None)
    assert session is not None
    monitor = _monitor(lifecycle, registry)

    await monitor.tick()
    lifecycle.receive(session, '{"type":"pong"}')
    report = await monitor.tick()

    assert report.evicted == ()
    assert registry.lookup("5") is session


async def test_unresponsive_peer_does_not_block_other_probes() -> None:
    lifecycle, registry = make_lifecycle()
    stuck = FakeTransport()
    healthy = FakeTransport()
    await lifecycle.open(stuck, "1", None)
    await lifecycle.open(healthy, "2", None)
    stuck.hang_writes = True
    monitor = _monitor(lifecycle, registry, send_timeout_seconds=0.05)

    report = await monitor.tick()

    assert sorted(report.probed) == ["1", "2"]
    assert healthy.messages[-1]["type"] == "ping"
    assert registry.lookup("1") is not None


async def test_failed_probe_write_leaves_session_for_next_tick() -> None:
    lifecycle, registry = make_lifecycle()
    transport = FakeTransport()
    await lifecycle.open(transport, "5", None)
    transport.fail_writes = True
    monitor = _monitor(lifecycle, registry)

    await monitor.tick()
    assert registry.lookup("5") is not None

    report = await monitor.tick()
    assert report.evicted == ("5",)


async def test_start_and_stop_run_periodic_ticks() -> None:
    lifecycle, registry = make_lifecycle()
    transport = FakeTransport()
    await lifecycle.open(transport, "5", None)
    monitor = _monitor(lifecycle, registry, interval_seconds=0.01)

    monitor.start()
    assert monitor.running
    for _ in range(100):
        if registry.lookup("5") is None:
            break
        await asyncio.sleep(0.01)
    await monitor.stop(timeout=1.0)

    assert not monitor.running
    assert transport.close_code == CLOSE_LIVENESS_TIMEOUT


def test_interval_must_be_positive() -> None:
    lifecycle, registry = make_lifecycle()

    with pytest.raises(ValueError):
        LivenessMonitor(registry=registry, lifecycle=lifecycle, interval_seconds=0)


async def test_client_answering_protocol_pings_stays_connected() -> None:
    lifecycle, registry = make_lifecycle()
    transport = FakeTransport(protocol_pings=True)
    session = await lifecycle.open(transport, "5", None)
    assert session is not None
    monitor = _monitor(lifecycle, registry)

    for _ in range(4):
        report = await monitor.tick()
        await asyncio.sleep(0)
        assert report.evicted == ()

    assert transport.pings == 4
    assert [message["type"] for message in transport.messages] == ["connected"]
    assert registry.lookup("5") is session
    assert transport.closes == []


async def test_missing_protocol_pong_evicts_session() -> None:
    lifecycle, registry = make_lifecycle()
    transport = FakeTransport(protocol_pings=True, answer_pings=False)
    await lifecycle.open(transport, "5", None)
    monitor = _monitor(lifecycle, registry)

    await monitor.tick()
    await asyncio.sleep(0)
    report = await monitor.tick()

    assert report.evicted == ("5",)
    assert transport.close_code == CLOSE_LIVENESS_TIMEOUT
    assert registry.lookup("5") is None


async def test_json_pong_still_counts_when_protocol_pings_are_used() -> None:
    lifecycle, registry = make_lifecycle()
    transport = FakeTransport(protocol_pings=True, answer_pings=False)
    session = await lifecycle.open(transport, "5", None)
    assert session is not None
    monitor = _monitor(lifecycle, registry)

    await monitor.tick()
    lifecycle.receive(session, '{"type":"pong"}')
    report = await monitor.tick()

    assert report.evicted == ()
    assert registry.lookup("5") is session


async def test_evictions_in_one_tick_run_concurrently() -> None:
    lifecycle, registry = make_lifecycle(close_timeout=0.2)
    transports = [FakeTransport() for _ in range(3)]
    for index, transport in enumerate(transports):
        await lifecycle.open(transport, str(index), None)
        transport.hang_closes = True
    monitor = _monitor(lifecycle, registry)
    await monitor.tick()

    loop = asyncio.get_running_loop()
    started = loop.time()
    report = await monitor.tick()
    elapsed = loop.time() - started

    assert sorted(report.evicted) == ["0", "1", "2"]
    assert elapsed < 0.5
    assert registry.list_connected() == []
    assert all(transport.close_code == CLOSE_LIVENESS_TIMEOUT for transport in transports)

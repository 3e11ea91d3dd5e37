from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from kasir_relay.domain.terminal import SessionState, TerminalSession
from kasir_relay.infrastructure.state.session_registry import InMemorySessionRegistry
from relay.tests.fixtures.fakes import FakeTransport, registered_session


def test_register_returns_previous_session() -> None:
    registry = InMemorySessionRegistry()
    first = registered_session("3")
    second = registered_session("3")

    assert registry.register("3", first) is None
    assert registry.register("3", second) is first
    assert registry.lookup("3") is second
    assert len(registry) == 1


def test_reregistering_same_session_reports_no_previous() -> None:
    registry = InMemorySessionRegistry()
    session = registered_session("3")
    registry.register("3", session)

    assert registry.register("3", session) is None


def test_remove_only_drops_matching_session() -> None:
    registry = InMemorySessionRegistry()
    stale = registered_session("3")
    current = registered_session("3")
    registry.register("3", stale)
    registry.register("3", current)

    assert registry.remove("3", stale) is False
    assert registry.lookup("3") is current
    assert registry.remove("3", current) is True
    assert registry.lookup("3") is None


def test_remove_unknown_id_is_noop() -> None:
    registry = InMemorySessionRegistry()

    assert registry.remove("missing", registered_session("missing")) is False


def test_list_connected_skips_sessions_that_are_not_open() -> None:
    registry = InMemorySessionRegistry()
    registry.register("1", registered_session("1"))
    pending = TerminalSession(kasir_id="2", transport=FakeTransport())
    pending.transition(SessionState.AUTHENTICATING)
    registry.register("2", pending)
    registry.register("3", registered_session("3"))

    assert sorted(registry.list_connected()) == ["1", "3"]
    assert len(registry.sessions()) == 3


def test_sessions_returns_snapshot() -> None:
    registry = InMemorySessionRegistry()
    registry.register("1", registered_session("1"))

    snapshot = registry.sessions()
    registry.register("2", registered_session("2"))

    assert len(snapshot) == 1


def test_concurrent_register_and_remove_keep_mapping_consistent() -> None:
    registry = InMemorySessionRegistry()
    kept = {str(index): registered_session(str(index)) for index in range(8)}
    valid_ids = set(kept) | {f"tmp-{index}" for index in range(8)}
    stop = threading.Event()
    torn: list[list[str]] = []

    def churn(index: int) -> None:
        kasir_id = str(index)
        for _ in range(300):
            temporary = registered_session(f"tmp-{index}")
            registry.register(f"tmp-{index}", temporary)
            registry.register(kasir_id, registered_session(kasir_id))
            registry.remove(f"tmp-{index}", temporary)
        registry.register(kasir_id, kept[kasir_id])

    def observe() -> None:
        while not stop.is_set():
            snapshot = registry.list_connected()
            if len(snapshot) != len(set(snapshot)) or not set(snapshot) <= valid_ids:
                torn.append(snapshot)

    observer = threading.Thread(target=observe)
    observer.start()
    try:
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(churn, range(8)))
    finally:
        stop.set()
        observer.join()

    assert torn == []
    assert sorted(registry.list_connected(), key=int) == [str(index) for index in range(8)]
    assert all(registry.lookup(kasir_id) is session for kasir_id, session in kept.items())
    assert len(registry) == 8


def test_concurrent_stale_removals_never_evict_replacement() -> None:
    registry = InMemorySessionRegistry()
    current = registered_session("3")
    stale = [registered_session("3") for _ in range(50)]
    registry.register("3", current)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda session: registry.remove("3", session), stale))

    assert results == [False] * 50
    assert registry.lookup("3") is current

from __future__ import annotations

import threading

import pytest

from call_bridge.app.engine.registry import SessionRegistry
from call_bridge.app.engine.types import SessionOverrides, SessionState
from call_bridge.app.errors import SessionAlreadyExists, SessionCapacityExceeded, SessionNotFound


def test_create_registers_initializing_session_with_metadata() -> None:
    registry = SessionRegistry()

    session = registry.create("CA1", {"from": "+15551234567"}, SessionOverrides(voice="verse"))

    assert session.state is SessionState.INITIALIZING
    assert session.metadata == {"from": "+15551234567"}
    assert session.overrides.voice == "verse"
    assert registry.get("CA1") is session
    assert len(registry) == 1


def test_create_rejects_live_duplicate() -> None:
    registry = SessionRegistry()
    registry.create("CA1")

    with pytest.raises(SessionAlreadyExists):
        registry.create("CA1")


def test_create_replaces_closed_session() -> None:
    registry = SessionRegistry()
    first = registry.create("CA1")
    first.transition(SessionState.CLOSED)

    second = registry.create("CA1")

    assert second is not first
    assert registry.get("CA1") is second


def test_create_enforces_capacity_on_live_sessions_only() -> None:
    registry = SessionRegistry(max_sessions=1)
    first = registry.create("CA1")

    with pytest.raises(SessionCapacityExceeded) as excinfo:
        registry.create("CA2")
    assert excinfo.value.limit == 1

    first.transition(SessionState.CLOSED)
    assert registry.create("CA2").call_id == "CA2"


def test_get_unknown_raises_not_found() -> None:
    with pytest.raises(SessionNotFound):
        SessionRegistry().get("missing")


def test_list_returns_detached_snapshots() -> None:
    registry = SessionRegistry()
    session = registry.create("CA1", {"from": "+1"})

    snapshots = registry.list()
    session.metadata["from"] = "+2"
    session.transition(SessionState.CONNECTING)

    assert [snapshot.call_id for snapshot in snapshots] == ["CA1"]
    assert snapshots[0].metadata == {"from": "+1"}
    assert snapshots[0].state is SessionState.INITIALIZING


def test_remove_with_expected_skips_newer_session() -> None:
    registry = SessionRegistry()
    stale = registry.create("CA1")
    stale.transition(SessionState.CLOSED)
    fresh = registry.create("CA1")

    assert registry.remove("CA1", expected=stale) is False
    assert registry.get("CA1") is fresh
    assert registry.remove("CA1", expected=fresh) is True
    assert registry.remove("CA1") is False


def test_concurrent_creates_register_each_call_once() -> None:
    registry = SessionRegistry()
    errors: list[Exception] = []

    def worker(index: int) -> None:
        try:
            registry.create(f"CA{index % 10}")
        except SessionAlreadyExists as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(50)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(registry) == 10
    assert len(errors) == 40

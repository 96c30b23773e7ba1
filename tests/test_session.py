from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from page_agent.models import ChatMessage, GeneratedAction  # noqa: E402
from page_agent.session import Session, SessionStore  # noqa: E402


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def _store(max_sessions: int = 3, idle_timeout: float = 10_000) -> SessionStore:
    return SessionStore(max_sessions=max_sessions, idle_timeout=idle_timeout, clock=FakeClock())


def test_get_or_create_reuses_session_per_surface() -> None:
    store = _store()

    first = store.get_or_create("tab-1")
    again = store.get_or_create("tab-1")

    assert first is again
    assert again.last_activity_at > again.created_at
    assert store.get("tab-2") is None


def test_cap_evicts_oldest_by_last_activity() -> None:
    store = _store(max_sessions=3)
    for surface in ("tab-1", "tab-2", "tab-3"):
        store.get_or_create(surface)
    store.get("tab-1")

    store.get_or_create("tab-4")

    assert len(store) == 3
    assert "tab-2" not in store
    assert all(surface in store for surface in ("tab-1", "tab-3", "tab-4"))


def test_cap_evicts_exactly_the_excess() -> None:
    store = _store(max_sessions=5)
    for index in range(5):
        store.get_or_create(f"tab-{index}")
    store.max_sessions = 2

    evicted = store.cleanup()

    assert evicted == ["tab-0", "tab-1", "tab-2"]
    assert len(store) == 2


def test_idle_sessions_are_evicted_on_creation() -> None:
    store = _store(max_sessions=10, idle_timeout=3)
    store.get_or_create("stale")
    store.get_or_create("fresh")

    store.get_or_create("new")

    assert "stale" not in store
    assert "fresh" in store
    assert "new" in store


@pytest.mark.asyncio
async def test_sessions_with_command_in_flight_are_never_evicted() -> None:
    store = _store(max_sessions=2)
    busy = store.get_or_create("busy")
    store.get_or_create("idle")
    await busy.lock.acquire()
    try:
        store.get_or_create("newest")
    finally:
        busy.lock.release()

    assert "busy" in store
    assert "idle" not in store


def test_remove_drops_session() -> None:
    store = _store()
    store.get_or_create("tab-1")

    store.remove("tab-1")
    store.remove("tab-1")

    assert "tab-1" not in store


def test_message_history_is_trimmed_to_last_fifty() -> None:
    session = Session(surface_id="tab-1")
    for index in range(101):
        session.add_message(ChatMessage(role="user", content=str(index)))

    assert len(session.messages) == 50
    assert session.messages[0].content == "51"
    assert session.messages[-1].content == "100"


def test_action_history_is_trimmed_to_last_thirty() -> None:
    session = Session(surface_id="tab-1")
    for index in range(51):
        session.record_action(GeneratedAction(kind="click", target=f"el-{index}"), success=index % 2 == 0)

    assert len(session.action_history) == 30
    assert session.action_history[0].target == "el-21"
    assert session.recent_actions(2)[-1].target == "el-50"


@pytest.mark.asyncio
async def test_session_with_queued_command_survives_lock_handoff() -> None:
    store = _store(max_sessions=1)
    session = store.get_or_create("tab-a")
    entered = []

    async def queued_command() -> None:
        async with session.claim():
            entered.append(session.surface_id)

    await session.lock.acquire()
    waiter = asyncio.create_task(queued_command())
    await asyncio.sleep(0)
    assert session.in_flight == 1
    session.lock.release()
    store.get_or_create("tab-b")

    assert "tab-a" in store
    await waiter
    assert entered == ["tab-a"]
    assert session.in_flight == 0
    assert not session.busy

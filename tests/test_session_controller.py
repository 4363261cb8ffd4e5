"""Tests for session create/switch/delete and the active-session invariant."""
from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from conftest import RecordingRpc
from lloro.engine.errors import SessionNotFoundError, TransportError
from lloro.engine.session_controller import SessionLifecycleController
from lloro.engine.status import BackendState, BackendStatus
from lloro.shared.models.message import MessageRole
from lloro.shared.models.session import PinnedContext
from lloro.shared.services.persistence import STORE_KEY, SessionStore
from lloro.shared.services.storage import MemoryStorage


@pytest.mark.asyncio
async def test_start_on_empty_storage_creates_one_active_session(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)

    handle = await controller.start()

    assert len(store) == 1
    assert handle.session_id == store.current_session_id
    assert handle.session.messages == []


@pytest.mark.asyncio
async def test_new_session_becomes_active_and_is_initialized(store: SessionStore, rpc: RecordingRpc) -> None:
    status = BackendStatus()
    controller = SessionLifecycleController(store, rpc, status=status)
    await controller.start()

    session = await controller.new_session("gemini-pro")

    assert controller.active.session is session
    assert controller.is_initialized(session.id)
    assert rpc.calls == [("InitSession", {"model": "gemini-pro"})]
    assert status.state is BackendState.ONLINE
    assert status.text == "gemini-pro"


@pytest.mark.asyncio
async def test_init_failure_keeps_session_but_flags_it(store: SessionStore, storage: MemoryStorage,
                                                       rpc: RecordingRpc) -> None:
    rpc.failures["InitSession"] = TransportError("InitSession", "connection refused")
    status = BackendStatus()
    controller = SessionLifecycleController(store, rpc, status=status)

    session = await controller.new_session("gemini-pro")

    assert store.current_session_id == session.id
    assert not controller.is_initialized(session.id)
    assert controller.describe_session(session.id).initialized is False
    assert status.text == "Init failed"
    raw = await storage.get(STORE_KEY)
    assert session.id in raw["sessions"]

    # Selecting a model again retries the initialization.
    del rpc.failures["InitSession"]
    await controller.select_model("gemini-ultra")
    assert controller.is_initialized(session.id)
    assert session.model == "gemini-ultra"


@pytest.mark.asyncio
async def test_backend_reported_model_is_stored(store: SessionStore, rpc: RecordingRpc) -> None:
    async def rewrite(method, params):
        if method == "InitSession":
            params["model"] = "gemini-3-flash-preview"

    rpc.on_call = rewrite
    controller = SessionLifecycleController(store, rpc)

    session = await controller.new_session("")

    assert session.model == "gemini-3-flash-preview"


@pytest.mark.asyncio
async def test_switch_session_sets_active_and_bumps_activity(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    first = await controller.new_session()
    await controller.new_session()
    before = first.last_active_at

    switched = await controller.switch_session(first.id)

    assert switched is first
    assert store.current_session_id == first.id
    assert first.last_active_at >= before


@pytest.mark.asyncio
async def test_switch_to_unknown_session_fails(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    await controller.start()
    current = store.current_session_id

    with pytest.raises(SessionNotFoundError):
        await controller.switch_session("does-not-exist")
    assert store.current_session_id == current


@pytest.mark.asyncio
async def test_deleting_only_session_creates_a_fresh_active_one(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    only = await controller.new_session("gemini-pro")
    only.add_message(MessageRole.USER, "hello")

    replacement = await controller.delete_session(only.id)

    assert len(store) == 1
    assert replacement.id != only.id
    assert store.current_session_id == replacement.id
    assert replacement.messages == []
    assert replacement.pinned_tabs == {}
    assert replacement.model == "gemini-pro"
    assert rpc.calls[-1] == ("InitSession", {"model": "gemini-pro"})


@pytest.mark.asyncio
async def test_deleting_non_active_session_keeps_current(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    other = await controller.new_session()
    active = await controller.new_session()

    result = await controller.delete_session(other.id)

    assert result is active
    assert store.current_session_id == active.id
    assert other.id not in store


@pytest.mark.asyncio
async def test_deleting_active_session_switches_to_most_recent(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    older = await controller.new_session()
    newer = await controller.new_session()
    active = await controller.new_session()
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    older.last_active_at = base
    newer.last_active_at = base + timedelta(hours=1)

    result = await controller.delete_session(active.id)

    assert result is newer
    assert store.current_session_id == newer.id


@pytest.mark.asyncio
async def test_delete_tie_goes_to_earliest_inserted(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    first = await controller.new_session()
    second = await controller.new_session()
    active = await controller.new_session()
    stamp = datetime(2026, 1, 1, tzinfo=timezone.utc)
    first.last_active_at = second.last_active_at = stamp

    result = await controller.delete_session(active.id)

    assert result is first


@pytest.mark.asyncio
async def test_delete_unknown_session_fails(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    await controller.start()

    with pytest.raises(SessionNotFoundError):
        await controller.delete_session("nope")
    assert len(store) == 1


@pytest.mark.asyncio
async def test_current_pointer_stays_valid_through_random_operations(rpc: RecordingRpc) -> None:
    storage = MemoryStorage()
    store = SessionStore(storage)
    controller = SessionLifecycleController(store, rpc)
    await controller.start()
    rng = random.Random(1234)

    for _ in range(200):
        op = rng.choice(["new", "switch", "delete", "delete"])
        ids = list(store.state.sessions)
        if op == "new" or not ids:
            await controller.new_session()
        elif op == "switch":
            await controller.switch_session(rng.choice(ids))
        else:
            await controller.delete_session(rng.choice(ids))

        assert store.state.sessions
        assert store.current_session_id in store.state.sessions
        raw = await storage.get(STORE_KEY)
        assert raw["currentSessionId"] in raw["sessions"]


@pytest.mark.asyncio
async def test_describe_session_counts_messages_and_pins(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    session = await controller.new_session("gemini-pro")
    session.add_message(MessageRole.USER, "Explain the borrow checker in simple terms please")
    session.add_message(MessageRole.ASSISTANT, "Sure.")
    session.pinned_tabs["https://a"] = PinnedContext("https://a", "A", "x")

    summary = controller.describe_session(session.id)

    assert summary.message_count == 2
    assert summary.pinned_count == 1
    assert summary.active is True
    assert summary.model == "gemini-pro"
    assert summary.title == "Explain the borrow checker in simple terms..."

    with pytest.raises(SessionNotFoundError):
        controller.describe_session("missing")


@pytest.mark.asyncio
async def test_list_sessions_is_most_recent_first(store: SessionStore, rpc: RecordingRpc) -> None:
    controller = SessionLifecycleController(store, rpc)
    a = await controller.new_session()
    b = await controller.new_session()
    await controller.switch_session(a.id)

    listed = [s.session_id for s in controller.list_sessions()]

    assert listed[0] == a.id
    assert b.id in listed

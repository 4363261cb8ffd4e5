"""Tests for context pinning and the pinned-context state machine."""
from __future__ import annotations

import asyncio

import pytest

from lloro.adapters.content import ContentProvider, PageContent, StaticContentProvider, TabHandle
from lloro.engine.config import DeliveryPolicy
from lloro.engine.errors import ExtractionFailedError, SessionNotFoundError
from lloro.engine.lifecycle import VALID_TRANSITIONS, transition, validate_transition
from lloro.engine.pinning import ContextPinning, format_context_bundle
from lloro.shared.models.session import PinnedContext, PinState
from lloro.shared.services.persistence import STORE_KEY, SessionStore
from lloro.shared.services.storage import MemoryStorage


@pytest.mark.asyncio
async def test_pinning_same_url_twice_keeps_one_record(store: SessionStore, provider: StaticContentProvider) -> None:
    provider.add_page("https://a", "A", "hello")
    pinning = ContextPinning(store, provider)
    session = await store.ensure_active_session()

    first = await pinning.pin(session, "https://a")
    second = await pinning.pin(session, TabHandle(url="https://a"))

    assert second is first
    assert list(session.pinned_tabs) == ["https://a"]
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_pin_persists_pending_context(store: SessionStore, storage: MemoryStorage,
                                            provider: StaticContentProvider) -> None:
    provider.add_page("https://a", "A", "hello")
    pinning = ContextPinning(store, provider)
    session = await store.ensure_active_session()

    ctx = await pinning.pin(session, "https://a")

    assert ctx.pending and not ctx.sent
    raw = await storage.get(STORE_KEY)
    assert raw["sessions"][session.id]["pinnedTabs"]["https://a"]["content"] == "hello"


@pytest.mark.asyncio
async def test_extraction_failure_leaves_url_unpinned(store: SessionStore, provider: StaticContentProvider) -> None:
    pinning = ContextPinning(store, provider)
    session = await store.ensure_active_session()

    with pytest.raises(ExtractionFailedError) as exc_info:
        await pinning.pin(session, "https://missing")

    assert exc_info.value.url == "https://missing"
    assert session.pinned_tabs == {}

    # A later attempt can still succeed.
    provider.add_page("https://missing", "Back", "now it works")
    ctx = await pinning.pin(session, "https://missing")
    assert ctx.title == "Back"


@pytest.mark.asyncio
async def test_blank_content_counts_as_extraction_failure(store: SessionStore, provider: StaticContentProvider) -> None:
    provider.add_page("https://blank", "Blank", "   \n")
    pinning = ContextPinning(store, provider)
    session = await store.ensure_active_session()

    with pytest.raises(ExtractionFailedError):
        await pinning.pin(session, "https://blank")
    assert not pinning.is_pinned(session, "https://blank")


@pytest.mark.asyncio
async def test_pin_without_known_url_uses_extracted_url(store: SessionStore) -> None:
    class TabOnlyProvider(ContentProvider):
        async def extract(self, tab: TabHandle) -> PageContent | None:
            return PageContent(title="T", content="body", url="https://resolved")

    pinning = ContextPinning(store, TabOnlyProvider())
    session = await store.ensure_active_session()

    ctx = await pinning.pin(session, TabHandle(url=None, tab_id=7))

    assert ctx.source_url == "https://resolved"
    assert pinning.is_pinned(session, "https://resolved")


@pytest.mark.asyncio
async def test_concurrent_pins_of_same_url_create_one_record(store: SessionStore) -> None:
    release = asyncio.Event()

    class SlowProvider(ContentProvider):
        def __init__(self) -> None:
            self.calls = 0

        async def extract(self, tab: TabHandle) -> PageContent | None:
            self.calls += 1
            await release.wait()
            return PageContent(title="A", content=f"call {self.calls}", url=tab.url)

    pinning = ContextPinning(store, SlowProvider())
    session = await store.ensure_active_session()

    first = asyncio.create_task(pinning.pin(session, "https://a"))
    second = asyncio.create_task(pinning.pin(session, "https://a"))
    await asyncio.sleep(0)
    release.set()
    a, b = await asyncio.gather(first, second)

    assert a is b
    assert len(session.pinned_tabs) == 1


@pytest.mark.asyncio
async def test_pin_into_deleted_session_is_rejected(store: SessionStore, provider: StaticContentProvider) -> None:
    provider.add_page("https://a", "A", "hello")
    pinning = ContextPinning(store, provider)
    session = await store.ensure_active_session()
    store.remove(session.id)
    store.set_active(None)

    with pytest.raises(SessionNotFoundError):
        await pinning.pin(session, "https://a")
    assert session.pinned_tabs == {}


@pytest.mark.asyncio
async def test_collect_pending_returns_pin_order_once(store: SessionStore, provider: StaticContentProvider) -> None:
    for url, title in (("https://z", "Z"), ("https://a", "A"), ("https://m", "M")):
        provider.add_page(url, title, f"content of {title}")
    pinning = ContextPinning(store, provider, policy=DeliveryPolicy.AT_MOST_ONCE)
    session = await store.ensure_active_session()
    for url in ("https://z", "https://a", "https://m"):
        await pinning.pin(session, url)

    collected = pinning.collect_pending(session)

    assert [c.source_url for c in collected] == ["https://z", "https://a", "https://m"]
    assert all(c.sent for c in collected)
    assert pinning.collect_pending(session) == []


@pytest.mark.asyncio
async def test_sent_flag_never_reverts(store: SessionStore, provider: StaticContentProvider) -> None:
    provider.add_page("https://a", "A", "hello")
    pinning = ContextPinning(store, provider)
    session = await store.ensure_active_session()
    ctx = await pinning.pin(session, "https://a")

    collected = pinning.collect_pending(session)
    pinning.confirm_delivery(collected)
    assert ctx.sent

    pinning.release(collected)
    await pinning.pin(session, "https://a")
    assert ctx.sent
    with pytest.raises(ValueError):
        transition(ctx, PinState.PENDING)


@pytest.mark.asyncio
async def test_confirmed_policy_stages_in_flight_then_releases(store: SessionStore,
                                                              provider: StaticContentProvider) -> None:
    provider.add_page("https://a", "A", "hello")
    pinning = ContextPinning(store, provider, policy=DeliveryPolicy.CONFIRMED)
    session = await store.ensure_active_session()
    ctx = await pinning.pin(session, "https://a")

    collected = pinning.collect_pending(session)
    assert ctx.state is PinState.IN_FLIGHT
    assert pinning.collect_pending(session) == []

    pinning.release(collected)
    assert ctx.state is PinState.PENDING
    assert pinning.collect_pending(session) == [ctx]


def test_transition_table_has_no_way_back_from_sent() -> None:
    assert VALID_TRANSITIONS[PinState.SENT] == set()
    validate_transition(PinState.PENDING, PinState.IN_FLIGHT)
    validate_transition(PinState.IN_FLIGHT, PinState.PENDING)
    with pytest.raises(ValueError, match="terminal"):
        validate_transition(PinState.SENT, PinState.IN_FLIGHT)


def test_context_bundle_format() -> None:
    a = PinnedContext("https://a", "A", "hello")
    b = PinnedContext("https://b", "B", "world")

    assert format_context_bundle([]) == ""
    assert format_context_bundle([a]) == "## A\nURL: https://a\n\nhello"
    assert format_context_bundle([a, b]) == (
        "## A\nURL: https://a\n\nhello\n\n---\n\n## B\nURL: https://b\n\nworld"
    )

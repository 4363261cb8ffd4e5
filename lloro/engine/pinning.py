"""Context pinning: attach a tab's content to a session, deliver it once.

Per (session, url):

    Unpinned -> Pinned(pending) -> Pinned(sent)

A URL is pinned at most once per session and never unpinned. Pending
contexts leave the pending state only through ``collect_pending``.
"""
from __future__ import annotations

import logging

from lloro.adapters.content import ContentProvider, TabHandle
from lloro.shared.models.session import PinnedContext, PinState, Session
from lloro.shared.services.persistence import SessionStore

from .config import DeliveryPolicy
from .errors import ExtractionFailedError, SessionNotFoundError
from .lifecycle import transition

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


def format_context_block(ctx: PinnedContext) -> str:
    return f"## {ctx.title}\nURL: {ctx.source_url}\n\n{ctx.content}"


def format_context_bundle(contexts: list[PinnedContext]) -> str:
    """Serialize collected contexts for the Chat ``context`` parameter."""
    return CONTEXT_SEPARATOR.join(format_context_block(ctx) for ctx in contexts)


class ContextPinning:
    """Pins tab content into sessions and hands pending content to chat turns."""

    def __init__(
        self,
        store: SessionStore,
        provider: ContentProvider,
        policy: DeliveryPolicy = DeliveryPolicy.CONFIRMED,
    ) -> None:
        self._store = store
        self._provider = provider
        self._policy = policy

    @property
    def policy(self) -> DeliveryPolicy:
        return self._policy

    @staticmethod
    def is_pinned(session: Session, url: str) -> bool:
        return url in session.pinned_tabs

    async def pin(self, session: Session, tab: TabHandle | str) -> PinnedContext:
        """Pin a tab's content into session.

        Already pinned: returns the existing record without calling the
        provider. Extraction failure raises ExtractionFailedError and leaves
        the URL unpinned.
        """
        if isinstance(tab, str):
            tab = TabHandle(url=tab)

        if tab.url is not None:
            existing = session.pinned_tabs.get(tab.url)
            if existing is not None:
                logger.debug("Pin of %s in session %s is a no-op", tab.url, session.id)
                return existing

        page = await self._provider.extract(tab)
        if page is None or not page.content.strip():
            logger.info("Extraction failed for %s", tab.url)
            raise ExtractionFailedError(tab.url)

        url = tab.url or page.url
        # Another pin of the same URL may have finished while extracting.
        existing = session.pinned_tabs.get(url)
        if existing is not None:
            return existing
        if session.id not in self._store:
            raise SessionNotFoundError(session.id)

        ctx = PinnedContext(
            source_url=url,
            title=page.title or url,
            content=page.content,
        )
        session.pinned_tabs[url] = ctx
        await self._store.commit(session)
        logger.info(
            "Pinned %s in session %s (content length=%d)",
            url, session.id, len(ctx.content),
        )
        return ctx

    def collect_pending(self, session: Session) -> list[PinnedContext]:
        """Take every pending context, in pin order, for one outgoing turn.

        Under CONFIRMED the contexts move to in-flight and must be settled
        with ``confirm_delivery`` or ``release``. Under AT_MOST_ONCE they are
        sent as of now. The caller persists the result before calling out.
        """
        collected = session.pending_contexts()
        target = (
            PinState.IN_FLIGHT
            if self._policy is DeliveryPolicy.CONFIRMED
            else PinState.SENT
        )
        for ctx in collected:
            transition(ctx, target)
        if collected:
            logger.debug(
                "Collected %d pinned context(s) from session %s as %s",
                len(collected), session.id, target.value,
            )
        return collected

    @staticmethod
    def confirm_delivery(contexts: list[PinnedContext]) -> None:
        """The Chat call carrying these contexts succeeded."""
        for ctx in contexts:
            if ctx.state is PinState.IN_FLIGHT:
                transition(ctx, PinState.SENT)

    @staticmethod
    def release(contexts: list[PinnedContext]) -> None:
        """The Chat call failed; offer in-flight contexts again next turn."""
        for ctx in contexts:
            if ctx.state is PinState.IN_FLIGHT:
                transition(ctx, PinState.PENDING)

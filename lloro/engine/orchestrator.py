"""Chat turn orchestration: user message + pending page context -> one Chat call.

Turn sequence:
    1. reject empty text and concurrent sends for the same session
    2. append the user message, persist
    3. optionally pin the active tab
    4. collect pending contexts, persist their new state
    5. Chat{message, context}
    6. success: append the assistant reply, finalize deliveries, persist
       failure (any exception, cancellation too): release staged
       contexts, re-raise; no assistant message is stored

Under DeliveryPolicy.AT_MOST_ONCE step 4 marks contexts sent before the
call. If the call then fails that content is not delivered and will not
be offered again. Only non-duplication is guaranteed under that policy.
"""
from __future__ import annotations

import logging

from lloro.adapters.content import ActiveTabResolver, TabHandle
from lloro.shared.models.message import MessageRole
from lloro.shared.models.session import Session
from lloro.shared.services.persistence import SessionStore
from lloro.shared.services.preferences import UserPreferences

from .config import DeliveryPolicy
from .errors import (
    EmptyMessageError,
    ExtractionFailedError,
    RpcError,
    TransportError,
    TurnInFlightError,
)
from .pinning import ContextPinning, format_context_bundle
from .rpc_client import RpcClient
from .status import BackendState, BackendStatus

logger = logging.getLogger(__name__)


class ChatTurnOrchestrator:
    """Runs chat turns, at most one at a time per session."""

    def __init__(
        self,
        store: SessionStore,
        rpc: RpcClient,
        pinning: ContextPinning,
        *,
        status: BackendStatus | None = None,
        preferences: UserPreferences | None = None,
        tab_resolver: ActiveTabResolver | None = None,
    ) -> None:
        self._store = store
        self._rpc = rpc
        self._pinning = pinning
        self._status = status or BackendStatus()
        self._preferences = preferences or UserPreferences()
        self._tab_resolver = tab_resolver
        self._in_flight: set[str] = set()

    @property
    def status(self) -> BackendStatus:
        return self._status

    def is_in_flight(self, session_id: str) -> bool:
        return session_id in self._in_flight

    async def send_turn(self, session: Session, user_text: str) -> str:
        """Send one user message in session and return the assistant's reply."""
        text = (user_text or "").strip()
        if not text:
            raise EmptyMessageError()
        # Raises SessionNotFoundError for sessions the store no longer owns.
        self._store.get(session.id)
        if session.id in self._in_flight:
            raise TurnInFlightError(session.id)

        self._in_flight.add(session.id)
        try:
            return await self._run_turn(session, text)
        finally:
            self._in_flight.discard(session.id)

    async def _run_turn(self, session: Session, text: str) -> str:
        session.add_message(MessageRole.USER, text)
        await self._store.commit(session)

        if self._preferences.auto_pin_active_tab:
            await self._auto_pin(session)

        collected = self._pinning.collect_pending(session)
        context = format_context_bundle(collected)
        if collected:
            await self._store.persist()

        logger.info(
            "Chat turn in session %s (message length=%d, contexts=%d, context length=%d)",
            session.id, len(text), len(collected), len(context),
        )
        self._status.set(BackendState.WORKING, "Waiting for response...")
        try:
            reply = await self._rpc.chat(text, context)
        except BaseException as exc:
            # Cancellation included: in-flight contexts must not outlive the call.
            self._on_failure(exc)
            if self._pinning.policy is DeliveryPolicy.CONFIRMED and collected:
                self._pinning.release(collected)
                await self._store.persist()
            raise

        self._pinning.confirm_delivery(collected)
        session.add_message(MessageRole.ASSISTANT, reply)
        await self._store.commit(session)
        self._status.set(BackendState.ONLINE, session.model or "Ready")
        logger.info("Chat turn in session %s completed (reply length=%d)", session.id, len(reply))
        return reply

    async def _auto_pin(self, session: Session) -> None:
        if self._tab_resolver is None:
            return
        url = await self._tab_resolver.current_tab_url()
        if not url or self._pinning.is_pinned(session, url):
            return
        self._status.set(BackendState.WORKING, "Extracting page...")
        try:
            await self._pinning.pin(session, TabHandle(url=url))
        except ExtractionFailedError:
            logger.warning("Auto-pin of %s failed; sending without it", url)

    def _on_failure(self, exc: BaseException) -> None:
        if isinstance(exc, RpcError):
            logger.warning("Chat call failed: %s", exc)
        else:
            logger.warning("Chat call aborted: %s", type(exc).__name__)
        if isinstance(exc, TransportError):
            self._status.set(BackendState.OFFLINE, "Backend offline")
        else:
            self._status.set(BackendState.ERROR, "Error")

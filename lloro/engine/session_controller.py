"""Session lifecycle: create, switch and delete sessions.

After every operation the store satisfies: when any session exists, the
current session id names one of them.
"""
from __future__ import annotations

import logging

from lloro.shared.models.session import Session, SessionSummary
from lloro.shared.services.persistence import SessionStore
from lloro.shared.services.session_naming import session_title

from .errors import RpcError
from .rpc_client import RpcClient
from .status import BackendState, BackendStatus

logger = logging.getLogger(__name__)


class ActiveSessionHandle:
    """Explicit reference to whichever session is active in a store."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    @property
    def session_id(self) -> str | None:
        return self._store.current_session_id

    @property
    def session(self) -> Session:
        sid = self._store.current_session_id
        if sid is None:
            raise LookupError("No active session; call ensure_active_session first")
        return self._store.get(sid)


class SessionLifecycleController:
    def __init__(
        self,
        store: SessionStore,
        rpc: RpcClient,
        *,
        status: BackendStatus | None = None,
    ) -> None:
        self._store = store
        self._rpc = rpc
        self._status = status or BackendStatus()
        self._uninitialized: set[str] = set()
        self._handle = ActiveSessionHandle(store)

    @property
    def active(self) -> ActiveSessionHandle:
        return self._handle

    @property
    def store(self) -> SessionStore:
        return self._store

    def is_initialized(self, session_id: str) -> bool:
        return session_id not in self._uninitialized

    async def start(self) -> ActiveSessionHandle:
        """Load persisted sessions and make sure one is active."""
        await self._store.load()
        await self._store.ensure_active_session()
        return self._handle

    async def new_session(self, model: str | None = None) -> Session:
        """Create an empty session, make it active, then initialize the backend."""
        session = Session(model=model or self._store.default_model)
        self._store.add(session)
        await self._store.persist()
        logger.info("New session %s (model=%s)", session.id, session.model)
        await self._initialize(session)
        return session

    async def switch_session(self, session_id: str) -> Session:
        session = self._store.get(session_id)
        self._store.set_active(session_id)
        await self._store.commit(session)
        logger.info("Switched to session %s", session_id)
        return session

    async def delete_session(self, session_id: str) -> Session:
        """Delete a session and return whichever session is active afterwards."""
        was_active = self._store.current_session_id == session_id
        removed = self._store.remove(session_id)
        self._uninitialized.discard(session_id)
        logger.info(
            "Deleted session %s (messages=%d, pinned=%d)",
            session_id, removed.message_count, removed.pinned_count,
        )

        if not was_active:
            await self._store.persist()
            return self._handle.session

        replacement = self._store.most_recent()
        if replacement is None:
            self._store.set_active(None)
            return await self.new_session(removed.model)

        self._store.set_active(replacement.id)
        await self._store.commit(replacement)
        logger.info("Session %s is now active", replacement.id)
        return replacement

    async def select_model(self, model: str) -> Session:
        """Re-initialize the active session with model.

        Also the retry path for a session whose InitSession failed.
        """
        session = await self._store.ensure_active_session(model)
        session.model = model
        await self._store.commit(session)
        await self._initialize(session)
        return session

    def describe_session(self, session_id: str) -> SessionSummary:
        session = self._store.get(session_id)
        return SessionSummary(
            session_id=session.id,
            title=session_title(session),
            model=session.model,
            message_count=session.message_count,
            pinned_count=session.pinned_count,
            created_at=session.created_at,
            last_active_at=session.last_active_at,
            active=session.id == self._store.current_session_id,
            initialized=self.is_initialized(session.id),
        )

    def list_sessions(self) -> list[SessionSummary]:
        return [self.describe_session(s.id) for s in self._store.list_sessions()]

    async def _initialize(self, session: Session) -> None:
        model = session.model or self._store.default_model
        self._status.set(BackendState.CONNECTING, "Initializing...")
        try:
            reported = await self._rpc.init_session(model)
        except RpcError as exc:
            self._uninitialized.add(session.id)
            self._status.set(BackendState.OFFLINE, "Init failed")
            logger.warning("InitSession failed for session %s: %s", session.id, exc)
            return

        self._uninitialized.discard(session.id)
        self._status.set(BackendState.ONLINE, reported)
        if session.id in self._store and reported != session.model:
            session.model = reported
            await self._store.commit(session)

"""Session persistence: the in-memory session store and its durable snapshot.

Storage layout (one key-value record):
    lloro_sessions -> {"currentSessionId": "...", "sessions": {id: session}}

A legacy single-session record under ``lloro_session`` is migrated into
this layout by ``SessionStore.migrate_legacy`` before anything else is read.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from lloro.engine.config import DEFAULT_MODEL
from lloro.engine.errors import SessionNotFoundError
from lloro.shared.models.message import Message, MessageRole
from lloro.shared.models.session import PinnedContext, PinState, Session, StoreState
from lloro.shared.services.migration import (
    LEGACY_SESSION_KEY,
    MigrationOutcome,
    legacy_record_to_session,
)
from lloro.shared.services.storage import KeyValueStorage

logger = logging.getLogger(__name__)

STORE_KEY = "lloro_sessions"


class SessionStore:
    """Owns every session and the active-session pointer.

    All mutation goes through this object and every mutation is followed by
    ``persist`` (or ``commit``), which writes the whole snapshot at once.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        default_model: str = DEFAULT_MODEL,
    ) -> None:
        self._storage = storage
        self._default_model = default_model
        self._state = StoreState()

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def default_model(self) -> str:
        return self._default_model

    @property
    def current_session_id(self) -> str | None:
        return self._state.current_session_id

    @property
    def active(self) -> Session | None:
        """The active session, or None. Never creates one."""
        sid = self._state.current_session_id
        if sid is None:
            return None
        return self._state.sessions.get(sid)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._state.sessions

    def __len__(self) -> int:
        return len(self._state.sessions)

    # ── Startup ──

    async def load(self) -> StoreState:
        """Read durable storage once at startup, migrating legacy data first."""
        outcome = await self.migrate_legacy()
        raw = await self._storage.get(STORE_KEY)
        self._state = _dict_to_store(raw) if raw else StoreState()

        reset = self._reset_stale_deliveries()
        repaired = self._repair_current_pointer()
        if reset or repaired:
            await self.persist()

        logger.info(
            "Session store loaded: sessions=%d current=%s migration=%s",
            len(self._state.sessions),
            self._state.current_session_id,
            outcome.value,
        )
        return self._state

    async def migrate_legacy(self) -> MigrationOutcome:
        """Fold the legacy single-session record into the store, then erase it.

        Presence check, write of the migrated store, delete of the legacy
        key, in that order. If the delete never happens the next run finds
        the migrated session already present and adds nothing.
        """
        legacy = await self._storage.get(LEGACY_SESSION_KEY)
        if legacy is None:
            return MigrationOutcome.NOT_NEEDED

        if not isinstance(legacy, dict):
            logger.warning(
                "Legacy session record has unexpected type %s; discarding",
                type(legacy).__name__,
            )
            await self._storage.remove(LEGACY_SESSION_KEY)
            return MigrationOutcome.DISCARDED

        raw = await self._storage.get(STORE_KEY)
        state = _dict_to_store(raw) if raw else StoreState()
        session = legacy_record_to_session(legacy, self._default_model)

        if session.id in state.sessions:
            outcome = MigrationOutcome.ALREADY_MIGRATED
        else:
            state.sessions[session.id] = session
            if not state.is_consistent() or state.current_session_id is None:
                state.current_session_id = session.id
            await self._storage.set(STORE_KEY, _store_to_dict(state))
            outcome = MigrationOutcome.MIGRATED
            logger.info(
                "Migrated legacy session into %s (messages=%d pinned=%d)",
                session.id, session.message_count, session.pinned_count,
            )

        await self._storage.remove(LEGACY_SESSION_KEY)
        return outcome

    def _reset_stale_deliveries(self) -> bool:
        """Return in-flight contexts left by an interrupted turn to pending."""
        any_reset = False
        for session in self._state.sessions.values():
            for ctx in session.pinned_tabs.values():
                if ctx.state is PinState.IN_FLIGHT:
                    logger.info(
                        "Resetting interrupted delivery of %s in session %s",
                        ctx.source_url, session.id,
                    )
                    ctx.state = PinState.PENDING
                    any_reset = True
        return any_reset

    def _repair_current_pointer(self) -> bool:
        if self._state.is_consistent():
            return False
        replacement = self.most_recent()
        logger.warning(
            "Current session %s is missing; switching to %s",
            self._state.current_session_id,
            replacement.id if replacement else None,
        )
        self._state.current_session_id = replacement.id if replacement else None
        return True

    # ── Persistence ──

    async def persist(self) -> None:
        """Write the full store snapshot."""
        if not self._state.is_consistent():
            raise ValueError(
                f"Refusing to persist store with dangling current session "
                f"{self._state.current_session_id}"
            )
        await self._storage.set(STORE_KEY, _store_to_dict(self._state))
        logger.debug("Session store persisted (sessions=%d)", len(self._state.sessions))

    async def commit(self, session: Session) -> None:
        """Record activity on session and persist."""
        session.touch()
        await self.persist()

    # ── Queries and mutations ──

    def get(self, session_id: str) -> Session:
        session = self._state.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list[Session]:
        """Sessions ordered by last activity, most recent first."""
        return sorted(
            self._state.sessions.values(),
            key=lambda s: s.last_active_at,
            reverse=True,
        )

    def most_recent(self) -> Session | None:
        """Session with the greatest last_active_at; ties go to the earliest inserted."""
        if not self._state.sessions:
            return None
        return max(self._state.sessions.values(), key=lambda s: s.last_active_at)

    def add(self, session: Session, *, activate: bool = True) -> None:
        self._state.sessions[session.id] = session
        if activate or self._state.current_session_id is None:
            self._state.current_session_id = session.id

    def remove(self, session_id: str) -> Session:
        """Drop a session. Callers restore the current pointer before persisting."""
        session = self._state.sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def set_active(self, session_id: str | None) -> None:
        if session_id is not None and session_id not in self._state.sessions:
            raise SessionNotFoundError(session_id)
        self._state.current_session_id = session_id

    async def ensure_active_session(self, model: str | None = None) -> Session:
        """Return the active session, creating and persisting one if there is none."""
        session = self.active
        if session is not None:
            return session
        session = Session(model=model or self._default_model)
        self.add(session)
        await self.persist()
        logger.info("Created session %s (no active session)", session.id)
        return session


def _ensure_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (assume UTC if naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return _ensure_aware(datetime.fromisoformat(value))


def _store_to_dict(state: StoreState) -> dict[str, Any]:
    return {
        "currentSessionId": state.current_session_id,
        "sessions": {
            sid: _session_to_dict(session)
            for sid, session in state.sessions.items()
        },
    }


def _dict_to_store(data: dict[str, Any]) -> StoreState:
    state = StoreState(current_session_id=data.get("currentSessionId"))
    for sid, raw in (data.get("sessions") or {}).items():
        try:
            session = _dict_to_session(raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable session %s: %s", sid, exc)
            continue
        session.id = sid
        state.sessions[sid] = session
    return state


def _session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "model": session.model,
        "createdAt": session.created_at.isoformat(),
        "lastActiveAt": session.last_active_at.isoformat(),
        "messages": [_message_to_dict(m) for m in session.messages],
        "pinnedTabs": {
            url: _pinned_to_dict(ctx)
            for url, ctx in session.pinned_tabs.items()
        },
    }


def _dict_to_session(data: dict[str, Any]) -> Session:
    return Session(
        id=data["id"],
        model=data.get("model"),
        created_at=_parse_timestamp(data.get("createdAt")),
        last_active_at=_parse_timestamp(data.get("lastActiveAt")),
        messages=[_dict_to_message(m) for m in data.get("messages", [])],
        pinned_tabs={
            url: _dict_to_pinned(url, ctx)
            for url, ctx in (data.get("pinnedTabs") or {}).items()
        },
    )


def _message_to_dict(msg: Message) -> dict[str, Any]:
    return {
        "role": msg.role.value,
        "text": msg.text,
        "timestamp": msg.timestamp.isoformat(),
    }


def _dict_to_message(data: dict[str, Any]) -> Message:
    return Message(
        role=MessageRole(data["role"]),
        text=data["text"],
        timestamp=_parse_timestamp(data.get("timestamp")),
    )


def _pinned_to_dict(ctx: PinnedContext) -> dict[str, Any]:
    return {
        "sourceUrl": ctx.source_url,
        "title": ctx.title,
        "content": ctx.content,
        "pinnedAt": ctx.pinned_at.isoformat(),
        "sent": ctx.sent,
        "state": ctx.state.value,
    }


def _dict_to_pinned(url: str, data: dict[str, Any]) -> PinnedContext:
    if "state" in data:
        state = PinState(data["state"])
    else:
        state = PinState.SENT if data.get("sent") else PinState.PENDING
    return PinnedContext(
        source_url=data.get("sourceUrl") or url,
        title=data.get("title") or url,
        content=data.get("content") or "",
        pinned_at=_parse_timestamp(data.get("pinnedAt")),
        state=state,
    )

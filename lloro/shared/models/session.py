"""Session state: message log, pinned page contexts and the session store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import uuid

from lloro.shared.models.message import Message, MessageRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PinState(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SENT = "sent"


@dataclass
class PinnedContext:
    """Extracted page content attached to a session.

    ``title`` and ``content`` never change after creation. ``state`` only
    moves through the transitions in ``lloro.engine.lifecycle``.
    """

    source_url: str
    title: str
    content: str
    pinned_at: datetime = field(default_factory=_utcnow)
    state: PinState = PinState.PENDING

    @property
    def sent(self) -> bool:
        return self.state is PinState.SENT

    @property
    def pending(self) -> bool:
        return self.state is PinState.PENDING


@dataclass
class Session:
    """One isolated conversation with its own messages, pins and model."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: list[Message] = field(default_factory=list)
    # Insertion ordered: pin order is delivery order.
    pinned_tabs: dict[str, PinnedContext] = field(default_factory=dict)
    model: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_active_at: datetime = field(default_factory=_utcnow)

    def add_message(self, role: MessageRole, text: str) -> Message:
        msg = Message(role=role, text=text)
        self.messages.append(msg)
        return msg

    def touch(self) -> None:
        self.last_active_at = _utcnow()

    def pending_contexts(self) -> list[PinnedContext]:
        return [ctx for ctx in self.pinned_tabs.values() if ctx.pending]

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def pinned_count(self) -> int:
        return len(self.pinned_tabs)


@dataclass
class StoreState:
    """All sessions plus the pointer to the active one."""

    current_session_id: str | None = None
    sessions: dict[str, Session] = field(default_factory=dict)

    def is_consistent(self) -> bool:
        if not self.sessions:
            return True
        return self.current_session_id in self.sessions


@dataclass
class SessionSummary:
    """Read-only description of a session, used for listing and delete prompts."""

    session_id: str
    title: str
    model: str | None
    message_count: int
    pinned_count: int
    created_at: datetime
    last_active_at: datetime
    active: bool = False
    initialized: bool = True

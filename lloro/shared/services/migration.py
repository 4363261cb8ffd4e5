"""One-time upgrade of the legacy single-session record.

Before multi-session support the extension kept exactly one conversation
under the ``lloro_session`` key:

    {"messages": [{"type": "user", "text": "..."}, ...],
     "contextUrl": "https://...", "contextTitle": "...", "model": "..."}

The record is mapped into one ``Session``. The page content itself was
never stored, so the page becomes a pinned context already marked sent.
The session id is derived from the record, so migrating the same record
twice yields the same id and the store can detect the repeat.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from lloro.shared.models.message import Message, MessageRole
from lloro.shared.models.session import PinnedContext, PinState, Session

logger = logging.getLogger(__name__)

LEGACY_SESSION_KEY = "lloro_session"

_LEGACY_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "lloro:legacy-session")
_CARRIED_ROLES = {role.value: role for role in MessageRole}


class MigrationOutcome(Enum):
    NOT_NEEDED = "not_needed"
    MIGRATED = "migrated"
    # Record was already folded into the store by an earlier run whose
    # delete step never happened.
    ALREADY_MIGRATED = "already_migrated"
    DISCARDED = "discarded"


def legacy_session_id(record: dict[str, Any]) -> str:
    canonical = json.dumps(record, sort_keys=True, default=str)
    return str(uuid.uuid5(_LEGACY_NAMESPACE, canonical))


def legacy_record_to_session(record: dict[str, Any], default_model: str | None) -> Session:
    """Build the multi-session representation of a legacy record."""
    now = datetime.now(timezone.utc)
    session = Session(
        id=legacy_session_id(record),
        model=record.get("model") or default_model,
        created_at=now,
        last_active_at=now,
    )

    skipped = 0
    for raw in record.get("messages") or []:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        role = _CARRIED_ROLES.get(raw.get("type") or raw.get("role"))
        text = raw.get("text")
        if role is None or not isinstance(text, str):
            skipped += 1
            continue
        session.messages.append(Message(role=role, text=text, timestamp=now))

    context_url = record.get("contextUrl")
    if context_url:
        session.pinned_tabs[context_url] = PinnedContext(
            source_url=context_url,
            title=record.get("contextTitle") or context_url,
            content="",
            pinned_at=now,
            state=PinState.SENT,
        )

    if skipped:
        logger.info("Legacy migration skipped %d non-chat message(s)", skipped)
    return session

"""Derive short display titles for sessions from their first user message.

Titles are never persisted; they are recomputed whenever a session is
listed, so they always reflect the current message log.
"""
from __future__ import annotations

import re

from lloro.shared.models.message import MessageRole
from lloro.shared.models.session import Session

DEFAULT_SESSION_TITLE = "New chat"
_MAX_TITLE_WORDS = 7
_MAX_TITLE_CHARS = 60


def session_title(session: Session) -> str:
    """Title for list views: the opening user message, shortened."""
    for msg in session.messages:
        if msg.role is MessageRole.USER:
            return fallback_session_title(msg.text)
    return DEFAULT_SESSION_TITLE


def fallback_session_title(user_message: str) -> str:
    """Stable title built from the first few words of a prompt."""
    words = re.findall(r"\S+", user_message or "")
    if not words:
        return DEFAULT_SESSION_TITLE
    title = " ".join(words[:_MAX_TITLE_WORDS])
    if len(words) > _MAX_TITLE_WORDS:
        title += "..."
    if len(title) > _MAX_TITLE_CHARS:
        title = title[:_MAX_TITLE_CHARS - 3].rstrip() + "..."
    return title


def summarize_text(text: str, max_words: int = 30) -> str:
    """Compact one-line preview of a message."""
    collapsed = " ".join((text or "").strip().split())
    if not collapsed:
        return ""
    words = collapsed.split(" ")
    if len(words) <= max_words:
        return collapsed
    return " ".join(words[:max_words]).rstrip() + "..."

"""User preferences: persistent settings stored in ~/.lloro/preferences.json.

Settings are global rather than per-session since they describe how the
user likes to work, not what a conversation contains.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from lloro.engine.config import LLORO_HOME
from lloro.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

PREFS_PATH = LLORO_HOME / "preferences.json"


@dataclass
class UserPreferences:
    """User preference settings.

    Attributes:
        auto_pin_active_tab: Pin the active tab into the session before each
            message is sent. Already pinned pages are not extracted again.
    """

    auto_pin_active_tab: bool = False

    def validate(self) -> None:
        """Ensure all values are within allowed ranges."""
        if not isinstance(self.auto_pin_active_tab, bool):
            self.auto_pin_active_tab = False

    def save(self, path: Path | None = None) -> None:
        """Persist preferences to disk."""
        target = path or PREFS_PATH
        try:
            atomic_write_json(target, asdict(self))
        except OSError:
            logger.warning("Failed to save preferences to %s", target, exc_info=True)

    @classmethod
    def load(cls, path: Path | None = None) -> UserPreferences:
        """Load preferences from disk, returning defaults if missing/corrupt."""
        target = path or PREFS_PATH
        try:
            if target.exists():
                data = json.loads(target.read_text())
                prefs = cls(**{
                    k: v for k, v in data.items()
                    if k in cls.__dataclass_fields__
                })
                prefs.validate()
                logger.debug("Loaded preferences from %s", target)
                return prefs
            else:
                logger.debug("Preferences file not found at %s; using defaults", target)
        except (OSError, ValueError, TypeError, AttributeError):
            logger.warning("Failed to load preferences from %s; using defaults", target)
        return cls()

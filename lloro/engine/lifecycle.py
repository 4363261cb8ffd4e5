"""Pinned-context delivery state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    (unpinned) ──pin──> PENDING ──┬──────────────> SENT
                           ▲      │                  ▲
                           │      └──> IN_FLIGHT ────┘
                           └─────────────┘  (call failed)

There is no way back to unpinned and SENT is terminal.
"""
from __future__ import annotations

import logging

from lloro.shared.models.session import PinnedContext, PinState

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[PinState, set[PinState]] = {
    PinState.PENDING: {
        PinState.IN_FLIGHT,
        PinState.SENT,
    },
    PinState.IN_FLIGHT: {
        PinState.SENT,
        PinState.PENDING,
    },
    PinState.SENT: set(),
}


def validate_transition(current: PinState, target: PinState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid pin transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )


def transition(context: PinnedContext, target: PinState) -> None:
    validate_transition(context.state, target)
    logger.debug(
        "Pinned context %s: %s -> %s",
        context.source_url, context.state.value, target.value,
    )
    context.state = target

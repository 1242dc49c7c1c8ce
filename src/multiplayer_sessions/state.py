"""Session lifecycle state machine."""

from __future__ import annotations

from enum import Enum

from .exceptions import SessionStateError


class SessionState(str, Enum):
    """Finite state machine for a session's lifecycle."""

    ACTIVE = "ACTIVE"
    ENDED = "ENDED"
    ARCHIVED = "ARCHIVED"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.ACTIVE: frozenset({SessionState.ENDED}),
    SessionState.ENDED: frozenset({SessionState.ARCHIVED}),
    SessionState.ARCHIVED: frozenset(),
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    """Return True when ``current`` may move to ``target``."""
    return target in _TRANSITIONS[current]


def ensure_transition(current: SessionState, target: SessionState) -> SessionState:
    """Validate a transition and return the target state."""
    if not can_transition(current, target):
        raise SessionStateError(
            f"Illegal session transition {current.value} -> {target.value}."
        )
    return target

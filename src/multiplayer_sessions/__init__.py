"""Top-level package for multiplayer-sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .async_registry import AsyncSessionRegistry
    from .config import load_config
    from .deferred import Deferred, DeferredState
    from .events import EventBus, FieldChange, Subscription
    from .exceptions import (
        ConfigValidationError,
        DeferredPendingError,
        InvalidArgumentError,
        MultiplayerSessionError,
        SessionAlreadyExistsError,
        SessionNotFoundError,
        SessionPreconditionError,
        SessionStateError,
        UnauthorizedError,
    )
    from .models import JoinResult, JoinStatus, MatchmakingPreferences, Session
    from .recorder import RecordedSession, deep_clone
    from .registry import SessionRegistry
    from .state import SessionState

_EXPORTS: dict[str, str] = {
    "AsyncSessionRegistry": ".async_registry",
    "load_config": ".config",
    "Deferred": ".deferred",
    "DeferredState": ".deferred",
    "EventBus": ".events",
    "FieldChange": ".events",
    "Subscription": ".events",
    "ConfigValidationError": ".exceptions",
    "DeferredPendingError": ".exceptions",
    "InvalidArgumentError": ".exceptions",
    "MultiplayerSessionError": ".exceptions",
    "SessionAlreadyExistsError": ".exceptions",
    "SessionNotFoundError": ".exceptions",
    "SessionPreconditionError": ".exceptions",
    "SessionStateError": ".exceptions",
    "UnauthorizedError": ".exceptions",
    "JoinResult": ".models",
    "JoinStatus": ".models",
    "MatchmakingPreferences": ".models",
    "Session": ".models",
    "RecordedSession": ".recorder",
    "deep_clone": ".recorder",
    "SessionRegistry": ".registry",
    "SessionState": ".state",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import symbols so importing the package stays cheap."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    return getattr(import_module(module_name, __name__), name)

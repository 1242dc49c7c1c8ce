"""Domain exception hierarchy for the multiplayer session registry."""

from __future__ import annotations


class MultiplayerSessionError(RuntimeError):
    """Base class for all domain-level session errors."""


class InvalidArgumentError(MultiplayerSessionError, ValueError):
    """Raised when a required argument is missing or malformed."""


class SessionAlreadyExistsError(MultiplayerSessionError):
    """Raised when creating a session whose ID is already live."""


class SessionNotFoundError(MultiplayerSessionError, LookupError):
    """Raised when an operation references an unknown session ID."""


class UnauthorizedError(MultiplayerSessionError):
    """Raised when a mutating operation runs without authority."""


class SessionPreconditionError(MultiplayerSessionError):
    """Raised when a registry-wide precondition does not hold."""


class SessionStateError(MultiplayerSessionError):
    """Raised on an illegal session lifecycle transition."""


class DeferredPendingError(MultiplayerSessionError):
    """Raised when reading the result of an unsettled deferred computation."""


class ConfigValidationError(MultiplayerSessionError):
    """Raised when configuration cannot be validated safely."""

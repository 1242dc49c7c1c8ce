"""Change tracking for recorded session snapshots.

``RecordedSession`` wraps a plain session-shaped mapping. Every write made
through ``set`` is compared against a private deep copy of the record taken
at wrap time, reported as a ``FieldChange`` and then applied to the real
record.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, MutableMapping
import logging
import time
from typing import Any

from .events.domain import FieldChange
from .exceptions import InvalidArgumentError

LOGGER = logging.getLogger(__name__)

ChangeCallback = Callable[[FieldChange], Any]

_MISSING = object()


def deep_clone(value: Any) -> Any:
    """Recursively copy nested dicts, lists, tuples and sets.

    Anything else (scalars, participant handles) is kept by reference.
    There is no cycle detection; cyclic payloads recurse forever.
    """
    if isinstance(value, Mapping):
        return {deep_clone(key): deep_clone(item) for key, item in value.items()}
    if isinstance(value, list):
        return [deep_clone(item) for item in value]
    if isinstance(value, tuple):
        return tuple(deep_clone(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return type(value)(deep_clone(item) for item in value)
    return value


def _split(path: str) -> list[str]:
    parts = path.split(".")
    if not path or any(not part for part in parts):
        raise KeyError(f"Invalid field path {path!r}.")
    return parts


def _lookup(record: Mapping[str, Any], parts: list[str], default: Any) -> Any:
    current: Any = record
    for part in parts:
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def _container_for(record: MutableMapping[str, Any], parts: list[str]) -> MutableMapping[str, Any]:
    current: Any = record
    for part in parts[:-1]:
        if part not in current:
            raise KeyError(f"No field {part!r} in recorded session.")
        current = current[part]
        if not isinstance(current, MutableMapping):
            raise TypeError(f"Field {part!r} is not a mapping.")
    return current


def log_field_change(change: FieldChange) -> None:
    LOGGER.info(
        f"Session {change.session_id}: {change.field} changed from "
        f"{change.old_value!r} to {change.new_value!r}",
        extra={
            "event": "session.field.changed",
            "session_id": change.session_id,
            "field": change.field,
        },
    )


class RecordedSession:
    """Observable wrapper around a session-shaped record."""

    def __init__(
        self,
        record: MutableMapping[str, Any],
        on_change: ChangeCallback | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not isinstance(record, MutableMapping):
            raise InvalidArgumentError("Recorded session must be a mutable mapping.")
        if record.get("session_id") is None:
            raise InvalidArgumentError("Session record must have a session_id field.")
        self._record = record
        self._original: dict[str, Any] = deep_clone(record)
        self._on_change = on_change or log_field_change
        self._clock = clock
        self._changes: list[FieldChange] = []

    @property
    def session_id(self) -> str:
        return self._record["session_id"]

    @property
    def record(self) -> MutableMapping[str, Any]:
        """The wrapped record; writes through it bypass tracking."""
        return self._record

    @property
    def original(self) -> dict[str, Any]:
        """A fresh copy of the private snapshot."""
        return deep_clone(self._original)

    @property
    def changes(self) -> list[FieldChange]:
        return list(self._changes)

    def get(self, path: str, default: Any = None) -> Any:
        """Read a (dotted) field from the live record."""
        return _lookup(self._record, _split(path), default)

    def set(self, path: str, value: Any) -> FieldChange:
        """Write a (dotted) field, reporting the old and new values."""
        parts = _split(path)
        container = _container_for(self._record, parts)

        old_value = _lookup(self._original, parts, None)
        change = FieldChange(
            session_id=self.session_id,
            field=path,
            old_value=old_value,
            new_value=value,
            timestamp=self._clock(),
        )
        self._changes.append(change)
        self._on_change(change)

        self._store_original(parts, value)
        container[parts[-1]] = value
        return change

    def _store_original(self, parts: list[str], value: Any) -> None:
        current = self._original
        for part in parts[:-1]:
            nested = current.get(part, _MISSING)
            if not isinstance(nested, dict):
                nested = {}
                current[part] = nested
            current = nested
        current[parts[-1]] = deep_clone(value)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        try:
            return _lookup(self._record, _split(path), _MISSING) is not _MISSING
        except KeyError:
            return False

    def __repr__(self) -> str:
        return f"RecordedSession({self.session_id!r}, changes={len(self._changes)})"

"""Single-assignment deferred computation with chained continuations.

A ``Deferred`` runs its producer immediately with ``resolve``/``reject``
callables. The first call settles it for good; later calls are ignored.
Continuations registered with ``then``/``catch`` run once it settles, or
straight away if it already has. Nothing is scheduled on an event loop.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
import logging
from typing import Any, Generic, TypeVar

from .exceptions import DeferredPendingError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class DeferredState(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class Deferred(Generic[T]):
    """Promise-like value settled exactly once."""

    def __init__(
        self,
        producer: Callable[[Callable[[T], None], Callable[[BaseException], None]], Any]
        | None = None,
    ) -> None:
        self._state = DeferredState.PENDING
        self._value: Any = None
        self._error: BaseException | None = None
        self._callbacks: list[Callable[[], None]] = []
        if producer is None:
            return
        try:
            producer(self._resolve, self._reject)
        except Exception as exc:
            self._reject(exc)

    @classmethod
    def resolved(cls, value: T) -> Deferred[T]:
        deferred: Deferred[T] = cls()
        deferred._resolve(value)
        return deferred

    @classmethod
    def rejected(cls, error: BaseException) -> Deferred[Any]:
        deferred: Deferred[Any] = cls()
        deferred._reject(error)
        return deferred

    @property
    def state(self) -> DeferredState:
        return self._state

    @property
    def settled(self) -> bool:
        return self._state is not DeferredState.PENDING

    def result(self) -> T:
        """Return the resolved value or raise the rejection error."""
        if self._state is DeferredState.RESOLVED:
            return self._value
        if self._state is DeferredState.REJECTED:
            assert self._error is not None
            raise self._error
        raise DeferredPendingError("Deferred computation has not settled yet.")

    def then(self, on_success: Callable[[T], Any]) -> Deferred[Any]:
        """Chain ``on_success`` onto a successful settlement.

        Rejections pass through untouched to the returned Deferred.
        """
        chained: Deferred[Any] = Deferred()

        def _run() -> None:
            if self._state is DeferredState.REJECTED:
                assert self._error is not None
                chained._reject(self._error)
                return
            try:
                chained._resolve(on_success(self._value))
            except Exception as exc:
                chained._reject(exc)

        self._when_settled(_run)
        return chained

    def catch(self, on_failure: Callable[[BaseException], Any]) -> Deferred[Any]:
        """Chain ``on_failure`` onto a rejection; successes pass through."""
        chained: Deferred[Any] = Deferred()

        def _run() -> None:
            if self._state is DeferredState.RESOLVED:
                chained._resolve(self._value)
                return
            assert self._error is not None
            try:
                chained._resolve(on_failure(self._error))
            except Exception as exc:
                chained._reject(exc)

        self._when_settled(_run)
        return chained

    def _when_settled(self, callback: Callable[[], None]) -> None:
        if self.settled:
            callback()
        else:
            self._callbacks.append(callback)

    def _resolve(self, value: T) -> None:
        if self.settled:
            LOGGER.debug("Ignoring resolve on an already settled deferred")
            return
        self._state = DeferredState.RESOLVED
        self._value = value
        self._flush()

    def _reject(self, error: BaseException) -> None:
        if self.settled:
            LOGGER.debug("Ignoring reject on an already settled deferred")
            return
        self._state = DeferredState.REJECTED
        self._error = error
        self._flush()

    def _flush(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def __repr__(self) -> str:
        return f"Deferred({self._state.value})"

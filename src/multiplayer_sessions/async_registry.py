"""Lock-protected registry facade for concurrent asyncio callers."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, MutableMapping
from typing import Any

from .deferred import Deferred
from .models import JoinResult, MatchmakingPreferences, Participant, Session
from .recorder import RecordedSession
from .registry import SessionRegistry


class AsyncSessionRegistry:
    """Serialize every mutating registry call under one async lock.

    Capacity and emptiness checks run in the same critical section as the
    participant list mutation, so concurrent joins cannot overfill a session.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry
        self._lock = asyncio.Lock()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def get_session(self, session_id: str) -> Session | None:
        return self._registry.get_session(session_id)

    @property
    def session_count(self) -> int:
        return self._registry.session_count

    async def create_session(
        self,
        session_id: str,
        participants: list[Participant] | tuple[Participant, ...],
        max_capacity: int,
        life: int,
        data: Mapping[str, Any],
        matchmaking_preferences: MatchmakingPreferences | Mapping[str, Any],
    ) -> Session:
        async with self._lock:
            return self._registry.create_session(
                session_id,
                participants,
                max_capacity,
                life,
                data,
                matchmaking_preferences,
            )

    async def join_session(
        self, participant_or_participants: Any, session_id: str
    ) -> JoinResult:
        async with self._lock:
            return self._registry.join_session(participant_or_participants, session_id)

    async def leave_session(
        self, participant_or_participants: Any, session_id: str
    ) -> list[Participant]:
        async with self._lock:
            return self._registry.leave_session(participant_or_participants, session_id)

    async def update_session(
        self, session_id: str, updates: Mapping[str, Any]
    ) -> list[str]:
        async with self._lock:
            return self._registry.update_session(session_id, updates)

    async def end_session(self, session_id: str) -> Session | None:
        """End a session and return the settled result."""
        async with self._lock:
            return self._registry.end_session(session_id).result()

    async def kill_all_sessions(self) -> list[Session]:
        async with self._lock:
            deferred: Deferred[list[Session]] = self._registry.kill_all_sessions()
            return deferred.result()

    async def record_session(
        self, session_like: Session | MutableMapping[str, Any]
    ) -> RecordedSession:
        async with self._lock:
            return self._registry.record_session(session_like)

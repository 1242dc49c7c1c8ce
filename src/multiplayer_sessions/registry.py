"""In-process registry of multiplayer sessions.

Owns the live session map and the archive, validates every mutating call
against two injected host predicates and announces lifecycle changes on
per-kind event buses:

- ``on_session_created(session)``
- ``on_player_joined(session, participant)``
- ``on_player_left(session, participant)``
- ``on_session_ended(session)``
- ``on_session_changed(change)`` for sessions wrapped by ``record_session``

Usage:
    registry = SessionRegistry(is_participant=lambda p: isinstance(p, Player))
    registry.on_player_joined.subscribe(lambda session, player: ...)
    registry.create_session("lobby", [alice], 4, 1800, {"map": "Castle"},
                            {"game_mode": "ffa"})
    registry.join_session([bob, carol], "lobby")
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, MutableMapping
import dataclasses
import logging
import time
from typing import Any

from .config import RegistryConfig
from .deferred import Deferred
from .events.bus import EventBus
from .events.domain import FieldChange
from .exceptions import (
    InvalidArgumentError,
    SessionAlreadyExistsError,
    SessionNotFoundError,
    SessionPreconditionError,
    UnauthorizedError,
)
from .models import (
    READ_ONLY_FIELDS,
    JoinResult,
    JoinStatus,
    MatchmakingPreferences,
    Participant,
    Session,
    coerce_preferences,
)
from .recorder import RecordedSession, log_field_change
from .state import SessionState, ensure_transition

LOGGER = logging.getLogger(__name__)

SESSION_FIELDS = frozenset(f.name for f in dataclasses.fields(Session))


def _as_batch(participant_or_participants: Any) -> list[Participant]:
    if isinstance(participant_or_participants, (list, tuple)):
        return list(participant_or_participants)
    return [participant_or_participants]


def _require(value: Any, name: str, expected: str) -> None:
    if value is None:
        raise InvalidArgumentError(
            f"Invalid argument `{name}`, got `None` expected `{expected}`."
        )


def _validate_life(life: Any) -> int:
    if isinstance(life, bool) or not isinstance(life, int) or life < 0:
        raise InvalidArgumentError("life must be a non-negative integer of seconds.")
    return life


def _validate_data(data: Any) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidArgumentError("data must be a mapping of string keys.")
    return dict(data)


class SessionRegistry:
    """Create, track, mutate and end multiplayer sessions.

    Not thread-safe: every call is expected from one serialized context.
    Wrap it in ``AsyncSessionRegistry`` when several tasks share it.
    """

    def __init__(
        self,
        is_participant: Callable[[Any], bool],
        has_authority: Callable[[], bool] = lambda: True,
        clock: Callable[[], float] = time.time,
        config: RegistryConfig | None = None,
    ) -> None:
        self._is_participant = is_participant
        self._has_authority = has_authority
        self._clock = clock
        self.config = config or RegistryConfig()

        self._sessions: dict[str, Session] = {}
        self._archived: dict[str, Session] = {}
        self._recorded: dict[str, RecordedSession] = {}

        self.on_session_created = EventBus("session.created")
        self.on_player_joined = EventBus("session.player_joined")
        self.on_player_left = EventBus("session.player_left")
        self.on_session_ended = EventBus("session.ended")
        self.on_session_changed = EventBus("session.changed")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def live_sessions(self) -> dict[str, Session]:
        return dict(self._sessions)

    @property
    def archived_sessions(self) -> dict[str, Session]:
        return dict(self._archived)

    @property
    def recorded_sessions(self) -> dict[str, RecordedSession]:
        return dict(self._recorded)

    def get_session(self, session_id: str) -> Session | None:
        """Return the live session with ``session_id`` or ``None``."""
        return self._sessions.get(session_id)

    def get_archived_session(self, session_id: str) -> Session | None:
        return self._archived.get(session_id)

    def expired_sessions(self, now: float | None = None) -> list[Session]:
        """Live sessions whose advisory ``life`` has run out.

        Nothing ends them automatically; callers decide what to do.
        """
        current = self._clock() if now is None else now
        return [s for s in self._sessions.values() if s.is_expired(current)]

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    def _require_authority(self, operation: str) -> None:
        if not self._has_authority():
            raise UnauthorizedError(
                f"`{operation}` can only be called from the authoritative context."
            )

    def _require_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Couldn't find session {session_id!r}.")
        return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def create_session(
        self,
        session_id: str,
        participants: list[Participant] | tuple[Participant, ...],
        max_capacity: int,
        life: int,
        data: Mapping[str, Any],
        matchmaking_preferences: MatchmakingPreferences | Mapping[str, Any],
    ) -> Session:
        """Register a new session and announce it on ``on_session_created``.

        Raises:
            InvalidArgumentError: an argument is missing or malformed.
            SessionAlreadyExistsError: ``session_id`` is already live.
            UnauthorizedError: the caller lacks authority.
        """
        _require(session_id, "session_id", "str")
        _require(participants, "participants", "list[Participant]")
        _require(max_capacity, "max_capacity", "int")
        _require(life, "life", "int")
        _require(data, "data", "dict")
        _require(
            matchmaking_preferences, "matchmaking_preferences", "MatchmakingPreferences"
        )

        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidArgumentError("session_id must be a non-empty string.")
        if (
            isinstance(max_capacity, bool)
            or not isinstance(max_capacity, int)
            or max_capacity < 1
        ):
            raise InvalidArgumentError("max_capacity must be a positive integer.")
        if max_capacity > self.config.max_capacity_limit:
            raise InvalidArgumentError(
                f"max_capacity {max_capacity} exceeds the configured limit "
                f"of {self.config.max_capacity_limit}."
            )
        if not isinstance(participants, (list, tuple)):
            raise InvalidArgumentError("participants must be a list of participants.")
        members = list(participants)
        if len(members) > max_capacity:
            raise InvalidArgumentError(
                f"{len(members)} initial participants exceed max_capacity {max_capacity}."
            )
        if not all(self._is_participant(member) for member in members):
            raise InvalidArgumentError("participants contains a non-participant object.")
        life = _validate_life(life)
        payload = _validate_data(data)
        preferences = coerce_preferences(matchmaking_preferences)

        if session_id in self._sessions:
            raise SessionAlreadyExistsError(f"SessionID {session_id!r} was already registered.")
        self._require_authority("create_session")

        session = Session(
            session_id=session_id,
            participants=members,
            max_capacity=max_capacity,
            start_time=self._clock(),
            life=life,
            data=payload,
            matchmaking_preferences=preferences,
        )
        self._sessions[session_id] = session
        LOGGER.info(
            "session.created",
            extra={
                "event": "session.created",
                "session_id": session_id,
                "participants": len(members),
                "max_capacity": max_capacity,
            },
        )
        self.on_session_created.publish(session)
        return session

    def join_session(
        self, participant_or_participants: Any, session_id: str
    ) -> JoinResult:
        """Admit one participant or an ordered batch into a session.

        Admission stops at the first invalid candidate or once the session is
        full, so a batch may be admitted only partially. Neither condition
        raises; both are logged and reported through the returned result.
        """
        session = self._require_session(session_id)
        self._require_authority("join_session")

        candidates = _as_batch(participant_or_participants)
        result = JoinResult()

        if session.is_full:
            LOGGER.warning(
                "session.join.full",
                extra={"event": "session.join.full", "session_id": session_id},
            )
            result.rejected = candidates
            result.status = JoinStatus.FULL
            return result

        for index, participant in enumerate(candidates):
            if not self._is_participant(participant):
                LOGGER.warning(
                    "session.join.invalid_participant",
                    extra={
                        "event": "session.join.invalid_participant",
                        "session_id": session_id,
                    },
                )
                result.rejected = candidates[index:]
                result.status = JoinStatus.INVALID_PARTICIPANT
                return result

            if session.is_full:
                LOGGER.warning(
                    "session.join.full",
                    extra={"event": "session.join.full", "session_id": session_id},
                )
                result.rejected = candidates[index:]
                result.status = JoinStatus.FULL
                return result

            session.participants.append(participant)
            result.admitted.append(participant)
            self.on_player_joined.publish(session, participant)

        return result

    def leave_session(
        self, participant_or_participants: Any, session_id: str
    ) -> list[Participant]:
        """Remove one participant or a batch; an emptied session ends.

        Returns the participants that were actually removed.
        """
        session = self._require_session(session_id)
        self._require_authority("leave_session")

        removed: list[Participant] = []
        for participant in _as_batch(participant_or_participants):
            for index in range(len(session.participants) - 1, -1, -1):
                if session.participants[index] == participant:
                    del session.participants[index]
                    removed.append(participant)
                    self.on_player_left.publish(session, participant)
                    break

            if not session.participants:
                self.end_session(session_id)

        return removed

    def update_session(self, session_id: str, updates: Mapping[str, Any]) -> list[str]:
        """Overwrite existing, writable session fields.

        Unknown keys and read-only fields are logged and skipped, never
        added. Returns the skipped keys.
        """
        session = self._require_session(session_id)
        self._require_authority("update_session")
        if not isinstance(updates, Mapping):
            raise InvalidArgumentError("updates must be a mapping of field -> value.")

        accepted: dict[str, Any] = {}
        skipped: list[str] = []
        for key, value in updates.items():
            if key not in SESSION_FIELDS:
                LOGGER.warning(
                    f"Attempted to update an unrecognized session attribute: {key}",
                    extra={
                        "event": "session.update.unrecognized_attribute",
                        "session_id": session_id,
                        "attribute": str(key),
                    },
                )
                skipped.append(key)
                continue
            if key in READ_ONLY_FIELDS:
                LOGGER.warning(
                    f"Attempted to update a read-only session attribute: {key}",
                    extra={
                        "event": "session.update.read_only_attribute",
                        "session_id": session_id,
                        "attribute": key,
                    },
                )
                skipped.append(key)
                continue
            accepted[key] = self._validate_update(key, value)

        for key, value in accepted.items():
            setattr(session, key, value)
        if accepted:
            LOGGER.info(
                "session.updated",
                extra={
                    "event": "session.updated",
                    "session_id": session_id,
                    "fields": sorted(accepted),
                },
            )
        return skipped

    @staticmethod
    def _validate_update(key: str, value: Any) -> Any:
        if key == "life":
            return _validate_life(value)
        if key == "data":
            return _validate_data(value)
        if key == "matchmaking_preferences":
            return None if value is None else coerce_preferences(value)
        return value

    def end_session(self, session_id: str) -> Deferred[Session | None]:
        """End a live session, announce it and move it into the archive.

        Ending an already archived session is a no-op. Existence of a live
        session is rechecked through ``get_session`` when the Deferred runs;
        if it vanished by then the chain logs a warning and resolves with
        ``None`` instead of raising.
        """
        if session_id not in self._sessions:
            archived = self._archived.get(session_id)
            if archived is None:
                raise SessionNotFoundError(f"Couldn't find session {session_id!r}.")
            return self._already_ended(archived)
        if not self._sessions[session_id].is_active:
            # Re-entrant call from an on_session_ended listener.
            return self._already_ended(self._sessions[session_id])

        def _recheck(
            resolve: Callable[[Session], None], reject: Callable[[BaseException], None]
        ) -> None:
            session = self.get_session(session_id)
            if session is not None and session.is_active:
                resolve(session)
            else:
                reject(SessionNotFoundError(f"Session {session_id!r} was not found."))

        return (
            Deferred(_recheck)
            .then(self._finish_session)
            .catch(lambda error: self._report_end_failure(session_id, error))
        )

    @staticmethod
    def _already_ended(session: Session) -> Deferred[Session | None]:
        LOGGER.debug(
            "session.end.already_ended",
            extra={
                "event": "session.end.already_ended",
                "session_id": session.session_id,
            },
        )
        return Deferred.resolved(session)

    def _finish_session(self, session: Session) -> Session:
        session.end_time = self._clock()
        session.state = ensure_transition(session.state, SessionState.ENDED)
        LOGGER.info(
            "session.ended",
            extra={
                "event": "session.ended",
                "session_id": session.session_id,
                "duration_seconds": session.end_time - session.start_time,
            },
        )
        self.on_session_ended.publish(session)
        self._archive(session)
        return session

    def _archive(self, session: Session) -> None:
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
        session.state = ensure_transition(session.state, SessionState.ARCHIVED)
        self._archived[session.session_id] = session

    @staticmethod
    def _report_end_failure(session_id: str, error: BaseException) -> None:
        if not isinstance(error, SessionNotFoundError):
            raise error
        LOGGER.warning(
            "Unexpected error, session was not found.",
            extra={"event": "session.end.not_found", "session_id": session_id},
        )
        return None

    def kill_all_sessions(self) -> Deferred[list[Session]]:
        """End and archive every live session.

        The guard only lets this run while no session is live, so in
        practice it ends nothing and any live session makes it raise.
        """
        if len(self._sessions) > 0:
            raise SessionPreconditionError(
                f"kill_all_sessions requires an empty registry, "
                f"{len(self._sessions)} session(s) are live."
            )

        def _end_all(
            resolve: Callable[[list[Session]], None], reject: Callable[[BaseException], None]
        ) -> None:
            ended: list[Session] = []
            for session in list(self._sessions.values()):
                ended.append(self._finish_session(session))
            resolve(ended)

        return Deferred(_end_all)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def record_session(
        self, session_like: Session | MutableMapping[str, Any]
    ) -> RecordedSession:
        """Wrap a session-shaped record so field writes are reported.

        Changes are published on ``on_session_changed``. A mapping is wrapped
        in place, so writes land in the caller's record. A ``Session`` is
        first converted with ``to_record()``: the wrapped record is a detached
        copy and writes through it never reach the session or the live map.
        """
        record = (
            session_like.to_record()
            if isinstance(session_like, Session)
            else session_like
        )
        recorded = RecordedSession(
            record, on_change=self._publish_change, clock=self._clock
        )
        self._recorded[recorded.session_id] = recorded
        return recorded

    def _publish_change(self, change: FieldChange) -> None:
        if self.config.log_field_changes:
            log_field_change(change)
        self.on_session_changed.publish(change)

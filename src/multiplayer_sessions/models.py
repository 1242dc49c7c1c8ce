"""Session data model: sessions, participants and matchmaking hints."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import InvalidArgumentError
from .state import SessionState

# Opaque host-owned identity handle; the registry never copies or destroys it.
Participant = Any

# Fields that may never be written through ``update_session``.
READ_ONLY_FIELDS = frozenset(
    {"session_id", "participants", "max_capacity", "start_time", "end_time", "state"}
)


class MatchmakingPreferences(BaseModel):
    """Matchmaking hint stored alongside a session. Never evaluated."""

    model_config = ConfigDict(frozen=True)
    preferred_region: str | None = None
    game_mode: str
    skill_level: float | None = Field(default=None, ge=0)

    @field_validator("game_mode", mode="before")
    @classmethod
    def _validate_game_mode(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("game_mode must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("game_mode must not be empty.")
        return normalized

    @field_validator("preferred_region", mode="before")
    @classmethod
    def _normalize_region(cls, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("preferred_region must be a string.")
        return value.strip() or None


def coerce_preferences(value: Any) -> MatchmakingPreferences:
    """Validate a preferences model or mapping, raising InvalidArgumentError."""
    if isinstance(value, MatchmakingPreferences):
        return value
    if not isinstance(value, Mapping):
        raise InvalidArgumentError(
            f"Invalid argument, got `{type(value).__name__}` expected "
            "`MatchmakingPreferences`."
        )
    try:
        return MatchmakingPreferences.model_validate(dict(value))
    except ValidationError as exc:
        raise InvalidArgumentError(f"Invalid matchmaking preferences: {exc}") from exc


@dataclass
class Session:
    """A named, capacity-bounded group of participants."""

    session_id: str
    participants: list[Participant]
    max_capacity: int
    start_time: float
    life: int
    data: dict[str, Any] = field(default_factory=dict)
    matchmaking_preferences: MatchmakingPreferences | None = None
    end_time: float | None = None
    state: SessionState = SessionState.ACTIVE

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def free_slots(self) -> int:
        return max(0, self.max_capacity - len(self.participants))

    @property
    def is_full(self) -> bool:
        return len(self.participants) >= self.max_capacity

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def expires_at(self) -> float:
        """Advisory expiry time; nothing enforces it."""
        return self.start_time + self.life

    def is_expired(self, now: float) -> bool:
        """Return True once ``life`` seconds have passed since ``start_time``.

        ``now`` must come from the same clock that stamped ``start_time``.
        """
        return now >= self.expires_at

    def to_record(self) -> dict[str, Any]:
        """Return a plain dict view suitable for ``record_session``.

        Participants are kept by reference; containers are fresh copies.
        """
        preferences = (
            self.matchmaking_preferences.model_dump()
            if self.matchmaking_preferences is not None
            else None
        )
        return {
            "session_id": self.session_id,
            "participants": list(self.participants),
            "max_capacity": self.max_capacity,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "life": self.life,
            "data": dict(self.data),
            "matchmaking_preferences": preferences,
            "state": self.state.value,
        }


class JoinStatus(str, Enum):
    """Why a join call stopped admitting candidates."""

    OK = "ok"
    FULL = "full"
    INVALID_PARTICIPANT = "invalid_participant"


@dataclass
class JoinResult:
    """Outcome of a join call: who got in and who was turned away."""

    admitted: list[Participant] = field(default_factory=list)
    rejected: list[Participant] = field(default_factory=list)
    status: JoinStatus = JoinStatus.OK

    @property
    def ok(self) -> bool:
        return self.status is JoinStatus.OK

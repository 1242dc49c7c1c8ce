"""Tests for the session registry lifecycle, membership and events."""

from __future__ import annotations

import dataclasses
import random
import unittest
from unittest.mock import patch

from multiplayer_sessions.config import RegistryConfig
from multiplayer_sessions.deferred import DeferredState
from multiplayer_sessions.events.domain import FieldChange
from multiplayer_sessions.exceptions import (
    InvalidArgumentError,
    SessionAlreadyExistsError,
    SessionNotFoundError,
    SessionPreconditionError,
    UnauthorizedError,
)
from multiplayer_sessions.models import JoinStatus, MatchmakingPreferences, Session
from multiplayer_sessions.registry import SESSION_FIELDS, SessionRegistry
from multiplayer_sessions.state import SessionState


class Player:
    """Minimal participant handle with identity equality."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"Player({self.name})"


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


PREFS = {"preferred_region": "Europe", "game_mode": "Fun", "skill_level": 1}


class RegistryTestCase(unittest.TestCase):
    """Shared fixture: one registry per test with recorded events."""

    def setUp(self) -> None:
        self.clock = FakeClock()
        self.authority = True
        self.registry = SessionRegistry(
            is_participant=lambda value: isinstance(value, Player),
            has_authority=lambda: self.authority,
            clock=self.clock,
        )
        self.events: list[tuple] = []
        self.registry.on_session_created.subscribe(
            lambda session: self.events.append(("created", session.session_id))
        )
        self.registry.on_player_joined.subscribe(
            lambda session, player: self.events.append(("joined", player.name))
        )
        self.registry.on_player_left.subscribe(
            lambda session, player: self.events.append(("left", player.name))
        )
        self.registry.on_session_ended.subscribe(
            lambda session: self.events.append(("ended", session.session_id))
        )

    def create(self, session_id: str = "S1", players=None, capacity: int = 2, **kw):
        return self.registry.create_session(
            session_id,
            players if players is not None else [Player("A")],
            capacity,
            kw.pop("life", 1800),
            kw.pop("data", {"map": "Castle"}),
            kw.pop("prefs", PREFS),
        )

    def kinds(self, kind: str) -> list[tuple]:
        return [event for event in self.events if event[0] == kind]


class CreateSessionTests(RegistryTestCase):
    def test_create_builds_session_and_fires_created(self) -> None:
        alice = Player("A")
        session = self.create(players=[alice], capacity=4)

        self.assertEqual(session.session_id, "S1")
        self.assertEqual(session.participants, [alice])
        self.assertEqual(session.max_capacity, 4)
        self.assertEqual(session.start_time, 1_000.0)
        self.assertIsNone(session.end_time)
        self.assertEqual(session.life, 1800)
        self.assertEqual(session.data, {"map": "Castle"})
        self.assertIsInstance(session.matchmaking_preferences, MatchmakingPreferences)
        self.assertEqual(session.matchmaking_preferences.game_mode, "Fun")
        self.assertIs(session.state, SessionState.ACTIVE)
        self.assertIs(self.registry.get_session("S1"), session)
        self.assertEqual(self.events, [("created", "S1")])

    def test_create_copies_caller_containers(self) -> None:
        players = [Player("A")]
        data = {"map": "Castle"}
        session = self.create(players=players, data=data)
        players.append(Player("B"))
        data["map"] = "Forest"
        self.assertEqual(len(session.participants), 1)
        self.assertEqual(session.data["map"], "Castle")

    def test_duplicate_id_fails_second_time(self) -> None:
        first = self.create()
        with self.assertRaises(SessionAlreadyExistsError):
            self.create(players=[Player("B")])
        self.assertIs(self.registry.get_session("S1"), first)
        self.assertEqual(len(self.kinds("created")), 1)

    def test_missing_arguments_raise_invalid_argument(self) -> None:
        valid = ["S1", [Player("A")], 2, 1800, {}, PREFS]
        for index in range(len(valid)):
            arguments = list(valid)
            arguments[index] = None
            with self.subTest(missing=index):
                with self.assertRaises(InvalidArgumentError):
                    self.registry.create_session(*arguments)
        self.assertEqual(self.registry.session_count, 0)
        self.assertEqual(self.events, [])

    def test_malformed_arguments_raise_invalid_argument(self) -> None:
        cases = [
            ("", [], 2, 10, {}, PREFS),
            ("S1", [], 0, 10, {}, PREFS),
            ("S1", [], True, 10, {}, PREFS),
            ("S1", [], 2, -1, {}, PREFS),
            ("S1", [], 2, 10, ["not", "a", "map"], PREFS),
            ("S1", [Player("A"), Player("B"), Player("C")], 2, 10, {}, PREFS),
            ("S1", ["not a player"], 2, 10, {}, PREFS),
            ("S1", [], 2, 10, {}, {"game_mode": ""}),
        ]
        for arguments in cases:
            with self.subTest(arguments=arguments):
                with self.assertRaises(InvalidArgumentError):
                    self.registry.create_session(*arguments)
        self.assertEqual(self.registry.session_count, 0)

    def test_capacity_above_configured_limit_is_rejected(self) -> None:
        registry = SessionRegistry(
            is_participant=lambda value: isinstance(value, Player),
            config=RegistryConfig(max_capacity_limit=4),
        )
        with self.assertRaises(InvalidArgumentError):
            registry.create_session("big", [], 5, 60, {}, PREFS)
        registry.create_session("ok", [], 4, 60, {}, PREFS)
        self.assertIn("ok", registry)

    def test_create_without_authority_is_unauthorized(self) -> None:
        self.authority = False
        with self.assertRaises(UnauthorizedError):
            self.create()
        self.assertNotIn("S1", self.registry)
        self.assertEqual(self.events, [])


class JoinSessionTests(RegistryTestCase):
    def test_join_single_participant(self) -> None:
        session = self.create(capacity=3)
        bob = Player("B")
        result = self.registry.join_session(bob, "S1")

        self.assertTrue(result.ok)
        self.assertEqual(result.admitted, [bob])
        self.assertEqual(session.participants[-1], bob)
        self.assertEqual(self.kinds("joined"), [("joined", "B")])

    def test_batch_partial_admission_stops_when_full(self) -> None:
        session = self.create(capacity=2)
        a, b, c = Player("A2"), Player("B"), Player("C")
        result = self.registry.join_session([a, b, c], "S1")

        self.assertEqual(result.admitted, [a])
        self.assertEqual(result.rejected, [b, c])
        self.assertIs(result.status, JoinStatus.FULL)
        self.assertEqual(len(session.participants), 2)
        self.assertEqual(self.kinds("joined"), [("joined", "A2")])

    def test_join_full_session_admits_nobody(self) -> None:
        self.create(players=[Player("A"), Player("B")], capacity=2)
        with self.assertLogs("multiplayer_sessions.registry", level="WARNING") as logs:
            result = self.registry.join_session(Player("C"), "S1")
        self.assertIs(result.status, JoinStatus.FULL)
        self.assertEqual(result.admitted, [])
        self.assertEqual(self.kinds("joined"), [])
        self.assertTrue(any("session.join.full" in line for line in logs.output))

    def test_invalid_participant_aborts_rest_of_batch(self) -> None:
        session = self.create(capacity=5)
        a, b = Player("A2"), Player("B")
        result = self.registry.join_session((a, "impostor", b), "S1")

        self.assertIs(result.status, JoinStatus.INVALID_PARTICIPANT)
        self.assertEqual(result.admitted, [a])
        self.assertEqual(result.rejected, ["impostor", b])
        self.assertNotIn(b, session.participants)

    def test_join_unknown_session_raises_not_found(self) -> None:
        with self.assertRaises(SessionNotFoundError):
            self.registry.join_session(Player("A"), "missing")

    def test_join_without_authority_is_unauthorized(self) -> None:
        session = self.create(capacity=3)
        self.authority = False
        with self.assertRaises(UnauthorizedError):
            self.registry.join_session(Player("B"), "S1")
        self.assertEqual(len(session.participants), 1)


class LeaveSessionTests(RegistryTestCase):
    def test_leave_removes_one_match_per_candidate(self) -> None:
        a = Player("A")
        session = self.create(players=[a], capacity=3)
        self.registry.join_session(a, "S1")
        self.assertEqual(session.participants, [a, a])

        removed = self.registry.leave_session(a, "S1")
        self.assertEqual(removed, [a])
        self.assertEqual(session.participants, [a])
        self.assertEqual(self.kinds("left"), [("left", "A")])
        self.assertIn("S1", self.registry)

    def test_leave_non_member_is_silent(self) -> None:
        session = self.create()
        removed = self.registry.leave_session(Player("ghost"), "S1")
        self.assertEqual(removed, [])
        self.assertEqual(len(session.participants), 1)
        self.assertEqual(self.kinds("left"), [])

    def test_last_leave_auto_ends_exactly_once(self) -> None:
        a = Player("A")
        session = self.create(players=[a])
        self.clock.advance(42)

        self.registry.leave_session([a, a], "S1")
        self.registry.end_session("S1")

        self.assertEqual(self.kinds("ended"), [("ended", "S1")])
        self.assertNotIn("S1", self.registry)
        self.assertIs(self.registry.get_archived_session("S1"), session)
        self.assertIs(session.state, SessionState.ARCHIVED)
        self.assertEqual(session.end_time, 1_042.0)

    def test_leave_archived_session_raises_not_found(self) -> None:
        a = Player("A")
        self.create(players=[a])
        self.registry.leave_session(a, "S1")
        with self.assertRaises(SessionNotFoundError):
            self.registry.leave_session(a, "S1")

    def test_leave_without_authority_is_unauthorized(self) -> None:
        a = Player("A")
        session = self.create(players=[a])
        self.authority = False
        with self.assertRaises(UnauthorizedError):
            self.registry.leave_session(a, "S1")
        self.assertEqual(session.participants, [a])

    def test_capacity_invariant_holds_over_random_operations(self) -> None:
        rng = random.Random(1234)
        pool = [Player(f"P{i}") for i in range(6)]
        session = self.create(players=[pool[0]], capacity=3)

        for _ in range(200):
            if "S1" not in self.registry:
                break
            batch = rng.sample(pool, rng.randint(1, 4))
            if rng.random() < 0.6:
                self.registry.join_session(batch, "S1")
            else:
                self.registry.leave_session(batch, "S1")
            self.assertGreaterEqual(len(session.participants), 0)
            self.assertLessEqual(len(session.participants), session.max_capacity)


class UpdateSessionTests(RegistryTestCase):
    def test_unknown_field_is_skipped_and_not_introduced(self) -> None:
        session = self.create()
        with self.assertLogs("multiplayer_sessions.registry", level="WARNING"):
            skipped = self.registry.update_session("S1", {"unknown_field": 5})
        self.assertEqual(skipped, ["unknown_field"])
        self.assertFalse(hasattr(session, "unknown_field"))
        self.assertEqual(session.data, {"map": "Castle"})

    def test_existing_fields_are_overwritten(self) -> None:
        session = self.create()
        skipped = self.registry.update_session(
            "S1",
            {
                "data": {"map": "Forest"},
                "life": 60,
                "matchmaking_preferences": {"game_mode": "Ranked"},
                "bogus": True,
            },
        )
        self.assertEqual(skipped, ["bogus"])
        self.assertEqual(session.data, {"map": "Forest"})
        self.assertEqual(session.life, 60)
        self.assertEqual(session.matchmaking_preferences.game_mode, "Ranked")

    def test_read_only_fields_are_skipped(self) -> None:
        session = self.create()
        skipped = self.registry.update_session(
            "S1", {"session_id": "other", "max_capacity": 99, "end_time": 5.0}
        )
        self.assertEqual(sorted(skipped), ["end_time", "max_capacity", "session_id"])
        self.assertEqual(session.session_id, "S1")
        self.assertEqual(session.max_capacity, 2)
        self.assertIsNone(session.end_time)

    def test_invalid_value_aborts_before_any_write(self) -> None:
        session = self.create()
        with self.assertRaises(InvalidArgumentError):
            self.registry.update_session("S1", {"data": {"map": "Forest"}, "life": -5})
        self.assertEqual(session.data, {"map": "Castle"})
        self.assertEqual(session.life, 1800)

    def test_writable_fields_follow_session_dataclass(self) -> None:
        names = {f.name for f in dataclasses.fields(Session)}
        self.assertEqual(SESSION_FIELDS, names)
        self.assertIn("data", SESSION_FIELDS)
        self.assertNotIn("is_full", SESSION_FIELDS)

    def test_update_requires_known_session_and_authority(self) -> None:
        with self.assertRaises(SessionNotFoundError):
            self.registry.update_session("missing", {"life": 1})
        self.create()
        self.authority = False
        with self.assertRaises(UnauthorizedError):
            self.registry.update_session("S1", {"life": 1})


class EndSessionTests(RegistryTestCase):
    def test_end_session_resolves_with_session(self) -> None:
        session = self.create()
        self.clock.advance(5)
        deferred = self.registry.end_session("S1")

        self.assertIs(deferred.state, DeferredState.RESOLVED)
        self.assertIs(deferred.result(), session)
        self.assertEqual(session.end_time, 1_005.0)
        self.assertEqual(self.registry.session_count, 0)
        self.assertIn("S1", self.registry.archived_sessions)

    def test_end_unknown_session_raises_not_found(self) -> None:
        with self.assertRaises(SessionNotFoundError):
            self.registry.end_session("missing")

    def test_end_is_idempotent(self) -> None:
        session = self.create()
        self.registry.end_session("S1")
        end_time = session.end_time
        self.clock.advance(100)

        again = self.registry.end_session("S1")
        self.assertIs(again.result(), session)
        self.assertEqual(session.end_time, end_time)
        self.assertEqual(len(self.kinds("ended")), 1)

    def test_end_resolves_none_when_session_vanishes_before_recheck(self) -> None:
        session = self.create()
        with patch.object(self.registry, "get_session", return_value=None):
            with self.assertLogs(
                "multiplayer_sessions.registry", level="WARNING"
            ) as logs:
                deferred = self.registry.end_session("S1")

        self.assertIs(deferred.state, DeferredState.RESOLVED)
        self.assertIsNone(deferred.result())
        self.assertEqual(
            [getattr(record, "event", None) for record in logs.records],
            ["session.end.not_found"],
        )
        self.assertEqual(self.kinds("ended"), [])
        self.assertIs(session.state, SessionState.ACTIVE)
        self.assertIsNone(session.end_time)

    def test_end_from_ended_listener_does_not_recurse(self) -> None:
        self.create()
        self.registry.on_session_ended.subscribe(
            lambda session: self.registry.end_session(session.session_id)
        )
        self.registry.end_session("S1")
        self.assertEqual(len(self.kinds("ended")), 1)

    def test_end_does_not_require_authority(self) -> None:
        self.create()
        self.authority = False
        self.registry.end_session("S1")
        self.assertNotIn("S1", self.registry)

    def test_session_id_can_be_reused_after_ending(self) -> None:
        self.create()
        self.registry.end_session("S1")
        second = self.create(players=[Player("B")])
        self.assertIs(self.registry.get_session("S1"), second)


class KillAllSessionsTests(RegistryTestCase):
    """The guard only admits an empty registry; this pins that behavior."""

    def test_kill_all_refuses_when_sessions_are_live(self) -> None:
        self.create("S1")
        self.create("S2")
        with self.assertRaises(SessionPreconditionError):
            self.registry.kill_all_sessions()
        self.assertEqual(self.registry.session_count, 2)
        self.assertEqual(self.kinds("ended"), [])

    def test_kill_all_on_empty_registry_is_a_no_op(self) -> None:
        deferred = self.registry.kill_all_sessions()
        self.assertEqual(deferred.result(), [])
        self.assertEqual(self.kinds("ended"), [])


class QueryTests(RegistryTestCase):
    def test_expired_sessions_are_reported_not_ended(self) -> None:
        self.create("short", life=10)
        self.create("long", life=1000)
        self.clock.advance(11)

        expired = self.registry.expired_sessions()
        self.assertEqual([s.session_id for s in expired], ["short"])
        self.assertIn("short", self.registry)

    def test_live_sessions_is_a_copy(self) -> None:
        self.create()
        snapshot = self.registry.live_sessions
        snapshot.clear()
        self.assertEqual(len(self.registry), 1)


class RecordSessionTests(RegistryTestCase):
    def test_recorded_session_reports_field_change(self) -> None:
        session = self.create()
        changes: list[FieldChange] = []
        self.registry.on_session_changed.subscribe(changes.append)

        recorded = self.registry.record_session(session)
        recorded.set("data.map", "Forest")

        self.assertEqual(len(changes), 1)
        self.assertEqual(changes[0].session_id, "S1")
        self.assertEqual(changes[0].field, "data.map")
        self.assertEqual(changes[0].old_value, "Castle")
        self.assertEqual(changes[0].new_value, "Forest")
        self.assertEqual(recorded.get("data.map"), "Forest")
        self.assertIs(self.registry.recorded_sessions["S1"], recorded)

    def test_recording_a_session_wraps_a_detached_copy(self) -> None:
        session = self.create()
        recorded = self.registry.record_session(session)

        recorded.set("data.map", "Forest")
        recorded.set("life", 5)

        self.assertIsNot(recorded.record["data"], session.data)
        self.assertEqual(session.data["map"], "Castle")
        self.assertEqual(session.life, 1800)
        self.assertIs(self.registry.get_session("S1"), session)

    def test_field_changes_are_logged_when_enabled(self) -> None:
        recorded = self.registry.record_session(self.create())
        with self.assertLogs("multiplayer_sessions.recorder", level="INFO") as logs:
            recorded.set("data.map", "Forest")
        self.assertIn("data.map changed from 'Castle' to 'Forest'", logs.output[0])

    def test_field_change_logging_can_be_disabled(self) -> None:
        registry = SessionRegistry(
            is_participant=lambda value: isinstance(value, Player),
            config=RegistryConfig(log_field_changes=False),
        )
        changes: list[FieldChange] = []
        registry.on_session_changed.subscribe(changes.append)
        recorded = registry.record_session({"session_id": "S1", "life": 10})

        with self.assertNoLogs("multiplayer_sessions.recorder", level="INFO"):
            recorded.set("life", 20)
        self.assertEqual(len(changes), 1)

    def test_record_plain_mapping(self) -> None:
        record = {"session_id": "archived-1", "data": {"map": "Castle"}}
        recorded = self.registry.record_session(record)
        recorded.set("data.map", "Forest")
        self.assertEqual(record["data"]["map"], "Forest")

    def test_record_requires_session_id(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self.registry.record_session({"data": {}})


class EndToEndScenarioTests(RegistryTestCase):
    def test_two_seat_session_lifecycle(self) -> None:
        a, b, c = Player("A"), Player("B"), Player("C")
        session = self.create("S1", players=[a], capacity=2)

        self.assertTrue(self.registry.join_session(b, "S1").ok)
        self.assertIs(self.registry.join_session(c, "S1").status, JoinStatus.FULL)

        self.registry.leave_session(a, "S1")
        self.assertIn("S1", self.registry)
        self.assertEqual(session.participants, [b])

        self.registry.leave_session(b, "S1")
        self.assertNotIn("S1", self.registry)
        self.assertEqual(
            self.events,
            [
                ("created", "S1"),
                ("joined", "B"),
                ("left", "A"),
                ("left", "B"),
                ("ended", "S1"),
            ],
        )

    def test_failing_listener_does_not_break_operation(self) -> None:
        def explode(session, player) -> None:
            raise RuntimeError("listener bug")

        self.registry.on_player_joined.subscribe(explode)
        session = self.create(capacity=3)
        with self.assertLogs("multiplayer_sessions.events.bus", level="ERROR"):
            result = self.registry.join_session(Player("B"), "S1")
        self.assertTrue(result.ok)
        self.assertEqual(len(session.participants), 2)


if __name__ == "__main__":
    unittest.main()

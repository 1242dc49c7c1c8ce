"""CLI entrypoint: run a small session lifecycle demonstration."""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path

from .config import load_config, registry_config
from .logging_utils import configure_logging
from .models import Session
from .registry import SessionRegistry


@dataclass(eq=False)
class DemoPlayer:
    """Stand-in for a host-supplied player handle."""

    name: str


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multiplayer-sessions",
        description="Demonstrate the multiplayer session registry lifecycle",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML config file",
    )
    return parser


def _wire_handlers(registry: SessionRegistry) -> None:
    def on_created(session: Session) -> None:
        print(f"Session created: {session.session_id}")

    def on_joined(session: Session, player: DemoPlayer) -> None:
        print(f"Player {player.name} joined the session {session.session_id}")

    def on_left(session: Session, player: DemoPlayer) -> None:
        print(f"Player {player.name} left the session {session.session_id}")

    def on_ended(session: Session) -> None:
        print(f"Session ended: {session.session_id}")

    registry.on_session_created.subscribe(on_created)
    registry.on_player_joined.subscribe(on_joined)
    registry.on_player_left.subscribe(on_left)
    registry.on_session_ended.subscribe(on_ended)


def run_demo(registry: SessionRegistry, life: int) -> None:
    """Create a session, let players come and go, and end it."""
    alice, bob, charlie = DemoPlayer("Alice"), DemoPlayer("Bob"), DemoPlayer("Charlie")
    session_id = "SessionDemo"

    registry.create_session(
        session_id,
        [alice],
        3,
        life,
        {"map": "Castle", "mode": "Hide and Seek"},
        {"preferred_region": "Europe", "game_mode": "Fun", "skill_level": 1},
    )
    registry.join_session(bob, session_id)
    registry.join_session(charlie, session_id)

    session = registry.get_session(session_id)
    if session is not None:
        for player in session.participants:
            print(f"- Player: {player.name}")

    registry.leave_session([bob, charlie], session_id)
    registry.end_session(session_id)


def main(argv: Sequence[str] | None = None) -> None:
    """Load configuration, set up logging and run the demo."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("multiplayer-sessions")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"multiplayer-sessions {version}")
        return

    config = load_config(args.config)
    configure_logging(config["logging"])
    settings = registry_config(config)

    registry = SessionRegistry(
        is_participant=lambda value: isinstance(value, DemoPlayer),
        config=settings,
    )
    _wire_handlers(registry)
    run_demo(registry, settings.default_life_seconds)


if __name__ == "__main__":
    main()

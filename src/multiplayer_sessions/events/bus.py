"""Per-kind event bus for session lifecycle notifications.

Usage:
    created = EventBus("session.created")

    def on_created(session):
        print(f"Session created: {session.session_id}")

    subscription = created.subscribe(on_created)
    created.publish(session)
    subscription.disconnect()
"""

from __future__ import annotations

from collections.abc import Callable
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Subscription:
    """Handle returned by ``EventBus.subscribe``."""

    __slots__ = ("_bus", "listener", "connected")

    def __init__(self, bus: EventBus, listener: Listener) -> None:
        self._bus = bus
        self.listener = listener
        self.connected = True

    def disconnect(self) -> None:
        """Stop receiving events. Safe to call repeatedly or mid-dispatch."""
        if not self.connected:
            return
        self.connected = False
        self._bus._remove(self)


class EventBus:
    """Synchronous publish/subscribe channel for a single event kind.

    Listeners run in subscription order with the same payload. The listener
    list is copied before dispatch, so a listener may disconnect itself or
    others while an event is being delivered.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscriptions: list[Subscription] = []

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, listener: Listener) -> Subscription:
        """Subscribe ``listener`` and return its disconnect handle."""
        if not callable(listener):
            raise TypeError(f"Listener for {self.name} must be callable.")
        subscription = Subscription(self, listener)
        self._subscriptions.append(subscription)
        LOGGER.debug(f"Subscribed to event: {self.name}")
        return subscription

    def once(self, listener: Listener) -> Subscription:
        """Subscribe a listener that disconnects after its first delivery."""
        subscription: Subscription

        def _fire_once(*payload: Any) -> Any:
            subscription.disconnect()
            return listener(*payload)

        subscription = self.subscribe(_fire_once)
        return subscription

    def publish(self, *payload: Any) -> None:
        """Deliver ``payload`` to every currently connected listener."""
        subscriptions = list(self._subscriptions)
        if not subscriptions:
            LOGGER.debug(f"No subscribers for event: {self.name}")
            return

        for subscription in subscriptions:
            if not subscription.connected:
                continue
            try:
                subscription.listener(*payload)
            except Exception as e:
                LOGGER.error(
                    f"Event handler failed for {self.name}: {e}",
                    extra={
                        "event": "bus.handler.failed",
                        "bus": self.name,
                        "error_type": type(e).__name__,
                    },
                )

    def clear(self) -> None:
        """Disconnect every listener."""
        for subscription in list(self._subscriptions):
            subscription.disconnect()

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
            LOGGER.debug(f"Unsubscribed from event: {self.name}")
        except ValueError:
            pass

"""
Event Bus — in-memory pub/sub for connector lifecycle events.

The IntegrationManager publishes events (connector.created,
connector.connected, action.failed, ...) and any component can
subscribe without importing the manager.

Thread-safe: publishers may run on any thread. Subscribers run
synchronously on the publisher's thread; a failing subscriber is
logged and never affects the publisher or other subscribers.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


# Event types published by the IntegrationManager
CONNECTOR_CREATED = "connector.created"
CONNECTOR_UPDATED = "connector.updated"
CONNECTOR_DELETED = "connector.deleted"
CONNECTOR_CONNECTING = "connector.connecting"
CONNECTOR_CONNECTED = "connector.connected"
CONNECTOR_DISCONNECTED = "connector.disconnected"
CONNECTOR_ERROR = "connector.error"
CONNECTOR_TESTED = "connector.tested"
ACTION_EXECUTED = "action.executed"
ACTION_FAILED = "action.failed"


@dataclass
class Event:
    """A single lifecycle event."""
    type: str
    payload: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


# Type alias for subscriber callbacks
Subscriber = Callable[[Event], None]


class EventBus:
    """Simple in-memory pub/sub event bus."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._global_subscribers: list[Subscriber] = []

    def subscribe(self, event_type: str, callback: Subscriber) -> None:
        """Subscribe to a specific event type."""
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def subscribe_all(self, callback: Subscriber) -> None:
        """Subscribe to all events."""
        with self._lock:
            self._global_subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        """Remove ``callback`` from every subscription it holds."""
        with self._lock:
            if callback in self._global_subscribers:
                self._global_subscribers.remove(callback)
            for callbacks in self._subscribers.values():
                if callback in callbacks:
                    callbacks.remove(callback)

    def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        with self._lock:
            callbacks = list(self._global_subscribers)
            callbacks.extend(self._subscribers.get(event.type, []))

        for cb in callbacks:
            try:
                cb(event)
            except Exception as exc:
                logger.error("Event subscriber error for %s: %s", event.type, exc)

    def emit(self, event_type: str, **payload) -> Event:
        """Build and publish an event. Returns the event."""
        event = Event(type=event_type, payload=payload)
        self.publish(event)
        return event

"""
Subscription registry — topic (or filter) to a single handler.

First registration wins; a topic is never replaced or removed for the
lifetime of the registry.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, Optional

from mqtt_service_core.topics import is_wildcard, matches, validate_filter

logger = logging.getLogger(__name__)

Handler = Callable[[str], None]


class SubscriptionRegistry:
    """
    Mutated only while services register handlers; lookups afterwards are
    read-only. Writes are serialized with a lock so late registration from
    another thread stays safe.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._filters: list[str] = []
        self._lock = threading.Lock()

    def add(self, topic: str, handler: Handler) -> bool:
        """Store handler for topic. Returns False if the topic is already registered."""
        validate_filter(topic)
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            if topic in self._handlers:
                logger.warning("Topic already registered, keeping first handler: %s", topic)
                return False
            self._handlers[topic] = handler
            if is_wildcard(topic):
                self._filters.append(topic)
            return True

    def discard(self, topic: str) -> None:
        """Undo an add() whose broker subscription failed."""
        with self._lock:
            self._handlers.pop(topic, None)
            if topic in self._filters:
                self._filters.remove(topic)

    def lookup(self, topic: str) -> Optional[Handler]:
        """Exact match first, then wildcard filters in registration order."""
        handler = self._handlers.get(topic)
        if handler is not None:
            return handler
        for topic_filter in list(self._filters):
            if matches(topic_filter, topic):
                return self._handlers.get(topic_filter)
        return None

    def __contains__(self, topic: object) -> bool:
        return topic in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._handlers))

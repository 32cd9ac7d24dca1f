"""
Topic names for MQTT Service Core.

Well-known packet topics: LOG, TRANSACTION, TRANSACTION_AUTH.
Services may register any further topic or MQTT filter (+ and # wildcards).
"""

from __future__ import annotations

from paho.mqtt.client import topic_matches_sub

LOG = "LOG"
TRANSACTION = "TRANSACTION"
TRANSACTION_AUTH = "TRANSACTION_AUTH"

_MAX_TOPIC_BYTES = 65535


class TopicError(ValueError):
    """Raised when a topic name or filter is malformed."""


def _validate_common(topic: str) -> str:
    if not isinstance(topic, str) or not topic:
        raise TopicError("topic must be a non-empty string")
    if "\x00" in topic:
        raise TopicError(f"topic {topic!r} contains a null character")
    if len(topic.encode("utf-8")) > _MAX_TOPIC_BYTES:
        raise TopicError("topic exceeds 65535 bytes")
    return topic


def validate_topic(topic: str) -> str:
    """Validate a concrete topic name (publish side: no wildcards)."""
    _validate_common(topic)
    if "+" in topic or "#" in topic:
        raise TopicError(f"topic {topic!r} must not contain wildcards")
    return topic


def validate_filter(topic_filter: str) -> str:
    """Validate a subscription filter; '+' must fill a level, '#' must be last."""
    _validate_common(topic_filter)
    levels = topic_filter.split("/")
    for i, level in enumerate(levels):
        if "#" in level and (level != "#" or i != len(levels) - 1):
            raise TopicError(f"filter {topic_filter!r}: '#' must be the last level on its own")
        if "+" in level and level != "+":
            raise TopicError(f"filter {topic_filter!r}: '+' must occupy a whole level")
    return topic_filter


def is_wildcard(topic_filter: str) -> bool:
    return "+" in topic_filter or "#" in topic_filter


def matches(topic_filter: str, topic: str) -> bool:
    """True if a concrete topic matches a subscription filter."""
    if not is_wildcard(topic_filter):
        return topic_filter == topic
    return topic_matches_sub(topic_filter, topic)

"""
MqttService — base class for bus-connected services.

A service connects on construction, registers topic handlers, dispatches
inbound messages to them on the broker client's delivery thread, and publishes
typed packets. Handler failures never escape dispatch: each one becomes a
single Warning LogPacket on the LOG topic.
"""

from __future__ import annotations

import functools
import logging
import traceback
from typing import Any, Optional

from mqtt_service_core.config import ServiceConfig
from mqtt_service_core.connection import QOS_EXACTLY_ONCE, ConnectionManager
from mqtt_service_core.packets import LogLevel, LogPacket, Packet, serialize
from mqtt_service_core.registry import Handler, SubscriptionRegistry
from mqtt_service_core.topics import LOG, validate_topic

logger = logging.getLogger(__name__)


def _close_on_failure(init):
    @functools.wraps(init)
    def wrapper(self, *args, **kwargs):
        try:
            init(self, *args, **kwargs)
        except BaseException:
            self.close()
            raise

    return wrapper


class MqttService:
    """
    Subclasses set `name` (also used as the MQTT client id) and register their
    handlers in __init__ after calling super().__init__(config).

    Use close() or a with-block to release the broker connection. If a
    subclass __init__ raises, the connection is released before the error
    propagates.
    """

    name: str = ""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        # a subclass __init__ that raises after connecting must not leak the session
        if "__init__" in cls.__dict__:
            cls.__init__ = _close_on_failure(cls.__dict__["__init__"])

    def __init__(self, config: ServiceConfig, *, connection: Optional[ConnectionManager] = None) -> None:
        if not self.name:
            raise TypeError(f"{type(self).__name__} must define a non-empty name")
        self.config = config
        self.subscriptions = SubscriptionRegistry()
        self.connection = connection or ConnectionManager(
            username=config.mqtt_username,
            password=config.mqtt_password,
        )
        self.connection.add_listener(self._on_message)
        # BusConnectionError propagates: construction aborts
        self.connection.connect(config.broker_address, self.name)
        self._closed = False
        logger.info("%s service connected to %s", self.name, config.broker_address)

    # -------------------------
    # Publisher & Logger
    # -------------------------
    def publish(self, topic: str, packet: Packet, retain: bool = False) -> Any:
        """Serialize packet and publish it to topic with exactly-once delivery."""
        validate_topic(topic)
        return self.connection.publish_raw(topic, serialize(packet), QOS_EXACTLY_ONCE, retain)

    def publish_packet(self, packet: Packet, retain: bool = False) -> Any:
        """Publish packet to its own topic."""
        return self.publish(packet.topic, packet, retain=retain)

    def log(self, level: LogLevel, message: str, stack_trace: str = "") -> Any:
        return self.publish(LOG, LogPacket(level=level, message=message, stack_trace=stack_trace))

    # -------------------------
    # Subscription & dispatch
    # -------------------------
    def subscribe(self, topic: str, handler: Handler) -> bool:
        """
        Register handler for topic and subscribe at the broker.

        Returns False, keeping the existing handler, if topic is already
        registered. SubscribeError propagates and leaves topic unregistered.
        """
        if not self.subscriptions.add(topic, handler):
            return False
        try:
            self.connection.subscribe_raw(topic, QOS_EXACTLY_ONCE)
        except Exception:
            self.subscriptions.discard(topic)
            raise
        return True

    def dispatch(self, topic: str, raw: bytes | str) -> None:
        handler = self.subscriptions.lookup(topic)
        if handler is None:
            return
        try:
            message = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
            handler(message)
        except Exception as exc:
            self._report_handler_failure(topic, exc)

    def _report_handler_failure(self, topic: str, exc: Exception) -> None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        try:
            self.log(LogLevel.Warning, str(exc), stack)
        except Exception:
            logger.exception("Failed to publish handler failure for topic=%s", topic)

    def _on_message(self, topic: str, payload: bytes) -> None:
        self.dispatch(topic, payload)

    # -------------------------
    # Lifecycle
    # -------------------------
    def close(self) -> None:
        """Release the broker connection. Safe to call more than once."""
        if getattr(self, "_closed", True):
            return
        self._closed = True
        self.connection.disconnect()
        logger.info("%s service stopped", self.name)

    def __enter__(self) -> "MqttService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

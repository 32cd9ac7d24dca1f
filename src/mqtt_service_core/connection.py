"""
Broker connection for MQTT Service Core.

Owns a single paho-mqtt client: connect/disconnect lifecycle, raw publish and
subscribe, and fan-out of inbound messages to listeners. Inbound messages are
delivered on paho's network thread (loop_start).
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

QOS_AT_MOST_ONCE = 0
QOS_AT_LEAST_ONCE = 1
QOS_EXACTLY_ONCE = 2

DEFAULT_PORT = 1883

Listener = Callable[[str, bytes], None]


class BusConnectionError(ConnectionError):
    """Raised when the broker cannot be reached or the address is malformed."""


class PublishError(RuntimeError):
    """Raised when a publish is rejected or the connection is not established."""


class SubscribeError(RuntimeError):
    """Raised when a subscribe is rejected or the connection is not established."""


def parse_address(address: str) -> tuple[str, int]:
    """
    Split "host", "host:port" or "[v6]:port" into (host, port). Port defaults to 1883.
    Raises BusConnectionError on a malformed address.
    """
    if not isinstance(address, str) or not address.strip():
        raise BusConnectionError("broker address must be a non-empty string")
    address = address.strip()

    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        if rest and not rest.startswith(":"):
            raise BusConnectionError(f"invalid broker address: {address!r}")
        port_raw = rest[1:]
    elif address.count(":") == 1:
        host, port_raw = address.split(":")
    else:
        # bare host name, IPv4 or IPv6 literal
        host, port_raw = address, ""

    if not host or any(c.isspace() for c in host):
        raise BusConnectionError(f"invalid broker address: {address!r}")
    if not port_raw:
        return host, DEFAULT_PORT
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise BusConnectionError(f"invalid broker port in {address!r}") from exc
    if not (1 <= port <= 65535):
        raise BusConnectionError(f"broker port out of range: {port}")
    return host, port


class ConnectionManager:
    """
    Single broker connection.

    connect() blocks until the broker acknowledges the session (or the timeout
    expires) and must succeed before publish_raw()/subscribe_raw(). Topics
    subscribed through this manager are re-subscribed after a reconnect.
    """

    def __init__(
        self,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        connect_timeout_s: float = 5.0,
    ) -> None:
        self.username = username
        self.password = password
        self.keepalive = keepalive
        self.connect_timeout_s = connect_timeout_s

        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.client_id: Optional[str] = None

        self._client: Optional[mqtt.Client] = None
        self._listeners: list[Listener] = []
        self._subscriptions: dict[str, int] = {}
        self._lock = threading.Lock()

        self._connack = threading.Event()
        self._connack_rc: Any = None

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def connect(self, address: str, client_id: str) -> None:
        """
        Connect to the broker at address ("host" or "host:port") as client_id.

        Raises BusConnectionError if the address is malformed, the broker is
        unreachable, refuses the session, or does not answer within
        connect_timeout_s.
        """
        if self._client is not None:
            raise BusConnectionError("already connected")
        host, port = parse_address(address)
        self.host = host
        self.port = port
        self.client_id = client_id

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        if self.username:
            client.username_pw_set(self.username, self.password)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._connack.clear()
        self._connack_rc = None
        try:
            client.connect(host, port, keepalive=self.keepalive)
        except (OSError, ValueError) as exc:
            raise BusConnectionError(f"cannot connect to broker at {host}:{port}: {exc}") from exc

        self._client = client
        client.loop_start()
        logger.info("Connecting to MQTT broker %s:%s as %s", host, port, client_id)

        if not self._connack.wait(timeout=self.connect_timeout_s):
            self.disconnect()
            raise BusConnectionError(
                f"no answer from broker at {host}:{port} after {self.connect_timeout_s}s"
            )
        if self._connack_rc != 0:
            rc = self._connack_rc
            self.disconnect()
            raise BusConnectionError(f"broker at {host}:{port} refused connection: {rc}")

    def disconnect(self) -> None:
        """Stop the network loop and close the session. Later calls are no-ops."""
        if not self._client:
            return
        try:
            self._client.loop_stop()
            self._client.disconnect()
            logger.info("Disconnected from MQTT broker")
        finally:
            self._client = None
            self._connack.clear()

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    def publish_raw(
        self, topic: str, payload: bytes, qos: int = QOS_EXACTLY_ONCE, retain: bool = False
    ) -> Any:
        if not self._client:
            raise PublishError(f"cannot publish to {topic}: not connected")
        info = self._client.publish(topic, payload=payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        return info

    def subscribe_raw(self, topic: str, qos: int = QOS_EXACTLY_ONCE) -> None:
        if not self._client:
            raise SubscribeError(f"cannot subscribe to {topic}: not connected")
        result, _mid = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeError(f"subscribe to {topic} failed: {mqtt.error_string(result)}")
        with self._lock:
            self._subscriptions[topic] = qos
        logger.info("Subscribed: %s", topic)

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.disconnect()

    def _on_connect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None
    ) -> None:
        self._connack_rc = reason_code
        self._connack.set()
        if reason_code != 0:
            logger.error("MQTT connect failed rc=%s", reason_code)
            return
        logger.info("Connected to MQTT broker as %s", self.client_id)

        # Iterate over a copy to avoid RuntimeError if topics are added concurrently
        with self._lock:
            subscriptions = list(self._subscriptions.items())
        for topic, qos in subscriptions:
            client.subscribe(topic, qos=qos)
            logger.debug("Re-subscribed: %s", topic)

    def _on_disconnect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None
    ) -> None:
        if reason_code != 0:
            logger.warning("Unexpected disconnect rc=%s", reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(msg.topic, msg.payload)
            except Exception:
                logger.exception("Inbound listener failed for topic=%s", msg.topic)

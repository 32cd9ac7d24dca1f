from __future__ import annotations

import socket
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from mqtt_service_core.connection import (
    BusConnectionError,
    ConnectionManager,
    PublishError,
    SubscribeError,
    parse_address,
)


class FakeMQTTMessage:
    def __init__(self, topic: str, payload: bytes):
        self.topic = topic
        self.payload = payload


@pytest.mark.parametrize(
    "address,expected",
    [
        ("127.0.0.1", ("127.0.0.1", 1883)),
        ("broker.local:8883", ("broker.local", 8883)),
        ("  10.0.0.1:1884 ", ("10.0.0.1", 1884)),
        ("[::1]:1883", ("::1", 1883)),
        ("::1", ("::1", 1883)),
    ],
)
def test_parse_address(address, expected):
    assert parse_address(address) == expected


@pytest.mark.parametrize("address", ["", "   ", ":1883", "host:port", "host:0", "host:70000", "bad host:1", "[::1]x"])
def test_parse_address_malformed(address):
    with pytest.raises(BusConnectionError):
        parse_address(address)


def test_bus_connection_error_is_connection_error():
    assert issubclass(BusConnectionError, ConnectionError)


def test_connect_creates_client_and_starts_loop(fake_paho_client):
    cm = ConnectionManager()
    cm.connect("broker.local:1884", "Billing")

    args, kwargs = fake_paho_client.ctor_calls[0]
    assert kwargs["client_id"] == "Billing"
    assert kwargs["protocol"] == mqtt.MQTTv311
    fake_paho_client.connect.assert_called_once_with("broker.local", 1884, keepalive=60)
    fake_paho_client.loop_start.assert_called_once()
    fake_paho_client.username_pw_set.assert_not_called()
    assert cm.is_connected()


def test_connect_sets_credentials_when_given(fake_paho_client):
    cm = ConnectionManager(username="svc", password="pw")
    cm.connect("127.0.0.1", "svc")
    fake_paho_client.username_pw_set.assert_called_once_with("svc", "pw")


def test_connect_unreachable_raises(fake_paho_client):
    fake_paho_client.connect.side_effect = ConnectionRefusedError(111, "Connection refused")
    cm = ConnectionManager()
    with pytest.raises(BusConnectionError, match="cannot connect"):
        cm.connect("127.0.0.1", "svc")
    assert not cm.is_connected()


def test_connect_unknown_host_raises(fake_paho_client):
    fake_paho_client.connect.side_effect = socket.gaierror(-2, "Name or service not known")
    with pytest.raises(BusConnectionError):
        ConnectionManager().connect("nowhere.invalid", "svc")


def test_connect_malformed_address_never_creates_client(fake_paho_client):
    with pytest.raises(BusConnectionError):
        ConnectionManager().connect("host:notaport", "svc")
    assert fake_paho_client.ctor_calls == []


def test_connect_refused_by_broker_raises_and_releases(fake_paho_client):
    fake_paho_client.loop_start.side_effect = lambda: fake_paho_client.on_connect(
        fake_paho_client, None, {}, 5, None
    )
    cm = ConnectionManager()
    with pytest.raises(BusConnectionError, match="refused"):
        cm.connect("127.0.0.1", "svc")
    fake_paho_client.loop_stop.assert_called_once()
    fake_paho_client.disconnect.assert_called_once()


def test_connect_times_out_without_connack(fake_paho_client):
    fake_paho_client.loop_start.side_effect = None
    cm = ConnectionManager(connect_timeout_s=0.01)
    with pytest.raises(BusConnectionError, match="no answer"):
        cm.connect("127.0.0.1", "svc")
    fake_paho_client.disconnect.assert_called_once()


def test_connect_twice_raises(fake_paho_client):
    cm = ConnectionManager()
    cm.connect("127.0.0.1", "svc")
    with pytest.raises(BusConnectionError, match="already connected"):
        cm.connect("127.0.0.1", "svc")


def test_disconnect_stops_loop_once(fake_paho_client):
    cm = ConnectionManager()
    cm.connect("127.0.0.1", "svc")
    cm.disconnect()
    cm.disconnect()
    fake_paho_client.loop_stop.assert_called_once()
    fake_paho_client.disconnect.assert_called_once()
    assert not cm.is_connected()


def test_context_manager_releases_connection(fake_paho_client):
    with pytest.raises(RuntimeError):
        with ConnectionManager() as cm:
            cm.connect("127.0.0.1", "svc")
            raise RuntimeError("boom")
    fake_paho_client.disconnect.assert_called_once()


def test_publish_raw_uses_given_qos_and_retain(fake_paho_client):
    cm = ConnectionManager()
    cm.connect("127.0.0.1", "svc")
    cm.publish_raw("LOG", b"{}", 2, True)
    fake_paho_client.publish.assert_called_once_with("LOG", payload=b"{}", qos=2, retain=True)


def test_publish_raw_defaults_to_exactly_once(fake_paho_client):
    cm = ConnectionManager()
    cm.connect("127.0.0.1", "svc")
    cm.publish_raw("LOG", b"{}")
    assert fake_paho_client.publish.call_args.kwargs["qos"] == 2
    assert fake_paho_client.publish.call_args.kwargs["retain"] is False


def test_publish_without_connection_raises():
    with pytest.raises(PublishError, match="not connected"):
        ConnectionManager().publish_raw("LOG", b"{}")


def test_publish_rejected_raises(fake_paho_client):
    fake_paho_client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)
    cm = ConnectionManager()
    cm.connect("127.0.0.1", "svc")
    with pytest.raises(PublishError):
        cm.publish_raw("LOG", b"{}")


def test_subscribe_without_connection_raises():
    with pytest.raises(SubscribeError, match="not connected"):
        ConnectionManager().subscribe_raw("PING")


def test_subscribe_rejected_raises(fake_paho_client):
    fake_paho_client.subscribe.return_value = (mqtt.MQTT_ERR_NO_CONN, None)
    cm = ConnectionManager()
    cm.connect("127.0.0.1", "svc")
    with pytest.raises(SubscribeError):
        cm.subscribe_raw("PING")


def test_reconnect_resubscribes_known_topics(fake_paho_client):
    cm = ConnectionManager()
    cm.connect("127.0.0.1", "svc")
    cm.subscribe_raw("PING")
    cm.subscribe_raw("TRANSACTION", 1)
    fake_paho_client.subscribe.reset_mock()

    fake_paho_client.on_connect(fake_paho_client, None, {}, 0, None)

    fake_paho_client.subscribe.assert_any_call("PING", qos=2)
    fake_paho_client.subscribe.assert_any_call("TRANSACTION", qos=1)
    assert fake_paho_client.subscribe.call_count == 2


def test_inbound_messages_fan_out_to_listeners(fake_paho_client):
    cm = ConnectionManager()
    seen_a, seen_b = [], []
    cm.add_listener(lambda t, p: seen_a.append((t, p)))
    cm.add_listener(lambda t, p: seen_b.append((t, p)))
    cm.connect("127.0.0.1", "svc")

    fake_paho_client.on_message(fake_paho_client, None, FakeMQTTMessage("PING", b"hello"))

    assert seen_a == [("PING", b"hello")]
    assert seen_b == [("PING", b"hello")]


def test_failing_listener_does_not_stop_others(fake_paho_client):
    cm = ConnectionManager()
    seen = []

    def bad(topic, payload):
        raise RuntimeError("listener broke")

    cm.add_listener(bad)
    cm.add_listener(lambda t, p: seen.append(t))
    cm.connect("127.0.0.1", "svc")

    fake_paho_client.on_message(fake_paho_client, None, FakeMQTTMessage("PING", b"x"))
    assert seen == ["PING"]

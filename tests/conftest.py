"""
Pytest configuration and shared fixtures
"""
import json
import os
import sys
import pytest
from unittest.mock import MagicMock

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from mqtt_service_core.config import ServiceConfig


class FakeMQTTMessage:
    def __init__(self, topic: str, payload: bytes):
        self.topic = topic
        self.payload = payload


@pytest.fixture
def fake_paho_client(monkeypatch):
    """
    Patch paho.mqtt.client.Client to return a controllable fake.

    loop_start() immediately acknowledges the session by calling the
    on_connect callback the connection manager installed.
    """
    fake = MagicMock()
    fake.is_connected.return_value = True
    fake.publish.return_value = MagicMock(rc=0)
    fake.subscribe.return_value = (0, 1)

    def _loop_start():
        fake.on_connect(fake, None, {}, 0, None)

    fake.loop_start.side_effect = _loop_start
    fake.ctor_calls = []

    def _ctor(*args, **kwargs):
        fake.ctor_calls.append((args, kwargs))
        return fake

    monkeypatch.setattr("paho.mqtt.client.Client", _ctor)
    return fake


@pytest.fixture
def service_config():
    return ServiceConfig(mqtt_ip="10.0.0.5", mqtt_port=1883)


@pytest.fixture
def deliver(fake_paho_client):
    """Simulate the broker delivering a message on the paho network thread."""

    def _deliver(topic: str, payload: bytes) -> None:
        fake_paho_client.on_message(fake_paho_client, None, FakeMQTTMessage(topic, payload))

    return _deliver


@pytest.fixture
def published(fake_paho_client):
    """Return the list of (topic, decoded payload, qos, retain) publishes so far."""

    def _published(topic: str | None = None) -> list[tuple[str, dict, int, bool]]:
        out = []
        for call in fake_paho_client.publish.call_args_list:
            t = call.args[0]
            if topic is not None and t != topic:
                continue
            payload = call.kwargs["payload"]
            out.append((t, json.loads(payload.decode("utf-8")), call.kwargs["qos"], call.kwargs["retain"]))
        return out

    return _published

"""Unit tests for the realtime queue feed.

Tests MQTTQueueFeed and NoOpBroadcaster implementations.
Tests in TestMQTTQueueFeedLive require an MQTT broker on localhost:1883.
"""

import json
import socket
from unittest.mock import MagicMock, patch
from uuid import uuid4

import paho.mqtt.client as mqtt
import pytest

from saleshub_automation.broadcast import (
    MQTTQueueFeed,
    NoOpBroadcaster,
    QueueChange,
    get_broadcaster,
    shutdown_broadcaster,
)


# ============================================================================
# Helper Functions
# ============================================================================

def is_mqtt_running(host="localhost", port=1883, timeout=2):
    """Check if MQTT broker is reachable on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def skip_if_no_mqtt():
    if not is_mqtt_running():
        pytest.skip("MQTT broker not running on localhost:1883")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_topic():
    """Generate unique test topic for each test."""
    return f"test/queue/{uuid4()}"


@pytest.fixture
def change():
    return QueueChange("joined", "user_a", queue_length=2, process_type="ROM Generator")


@pytest.fixture
def paho_client():
    """Patch paho's Client so MQTTQueueFeed talks to a mock."""
    with patch("saleshub_automation.broadcast.mqtt.Client") as client_cls:
        client = MagicMock()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
        client_cls.return_value = client
        yield client


@pytest.fixture(autouse=True)
def reset_global_broadcaster():
    shutdown_broadcaster()
    yield
    shutdown_broadcaster()


# ============================================================================
# QueueChange
# ============================================================================

class TestQueueChange:
    def test_payload_format(self, change):
        payload = change.to_payload()

        assert payload["eventType"] == "joined"
        assert payload["userId"] == "user_a"
        assert payload["queueLength"] == 2
        assert payload["processType"] == "ROM Generator"
        assert isinstance(payload["timestamp"], int)

    def test_payload_omits_missing_process_type(self):
        payload = QueueChange("left", "user_a", queue_length=0).to_payload()

        assert "processType" not in payload


# ============================================================================
# NoOpBroadcaster Tests (Always Run)
# ============================================================================

class TestNoOpBroadcaster:
    def test_connect(self):
        assert NoOpBroadcaster().connect() is True

    def test_disconnect(self):
        NoOpBroadcaster().disconnect()  # Should not raise

    def test_publish_change(self, change):
        assert NoOpBroadcaster().publish_change(change) is True


# ============================================================================
# MQTTQueueFeed with a mocked client
# ============================================================================

class TestMQTTQueueFeed:
    def test_topics(self):
        feed = MQTTQueueFeed("localhost", 1883, "saleshub/queue/")

        assert feed.events_topic == "saleshub/queue/events"
        assert feed.length_topic == "saleshub/queue/length"

    def test_connect(self, paho_client):
        feed = MQTTQueueFeed("broker.local", 1884, "saleshub/queue")

        assert feed.connect() is True
        assert feed.connected is True
        paho_client.connect.assert_called_once_with("broker.local", 1884, keepalive=60)
        paho_client.loop_start.assert_called_once()

    def test_connect_failure(self, paho_client):
        paho_client.connect.side_effect = ConnectionRefusedError("refused")
        feed = MQTTQueueFeed("broker.local", 1883, "saleshub/queue")

        assert feed.connect() is False
        assert feed.connected is False

    def test_publish_without_connection(self, change):
        feed = MQTTQueueFeed("localhost", 1883, "saleshub/queue")

        assert feed.publish_change(change) is False

    def test_publish_change(self, paho_client, change):
        feed = MQTTQueueFeed("localhost", 1883, "saleshub/queue")
        _ = feed.connect()

        assert feed.publish_change(change) is True

        event_call, length_call = paho_client.publish.call_args_list
        assert event_call.args[0] == "saleshub/queue/events"
        assert json.loads(event_call.args[1])["userId"] == "user_a"
        assert length_call.args == ("saleshub/queue/length", "2")
        assert length_call.kwargs["retain"] is True

    def test_publish_reports_broker_error(self, paho_client, change):
        paho_client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)
        feed = MQTTQueueFeed("localhost", 1883, "saleshub/queue")
        _ = feed.connect()

        assert feed.publish_change(change) is False

    def test_unexpected_disconnect(self, paho_client):
        feed = MQTTQueueFeed("localhost", 1883, "saleshub/queue")
        _ = feed.connect()

        feed._on_disconnect(paho_client, None, 7)

        assert feed.connected is False

    def test_disconnect(self, paho_client):
        feed = MQTTQueueFeed("localhost", 1883, "saleshub/queue")
        _ = feed.connect()

        feed.disconnect()

        paho_client.loop_stop.assert_called_once()
        paho_client.disconnect.assert_called_once()
        assert feed.client is None
        assert feed.connected is False


# ============================================================================
# MQTTQueueFeed against a live broker (skipped when unavailable)
# ============================================================================

class TestMQTTQueueFeedLive:
    def test_publish_change(self, test_topic, change):
        skip_if_no_mqtt()
        feed = MQTTQueueFeed("localhost", 1883, test_topic)
        try:
            assert feed.connect() is True
            assert feed.publish_change(change) is True
        finally:
            feed.disconnect()


# ============================================================================
# Global broadcaster
# ============================================================================

class TestGlobalBroadcaster:
    def test_get_broadcaster_noop(self):
        broadcaster = get_broadcaster("none", "localhost", 1883, "saleshub/queue")

        assert isinstance(broadcaster, NoOpBroadcaster)

    def test_get_broadcaster_mqtt(self, paho_client):
        broadcaster = get_broadcaster("mqtt", "localhost", 1883, "saleshub/queue")

        assert isinstance(broadcaster, MQTTQueueFeed)
        paho_client.connect.assert_called_once()

    def test_get_broadcaster_singleton(self):
        first = get_broadcaster("none", "localhost", 1883, "saleshub/queue")
        second = get_broadcaster("mqtt", "localhost", 1883, "other/topic")

        assert first is second

    def test_shutdown_broadcaster(self):
        first = get_broadcaster("none", "localhost", 1883, "saleshub/queue")
        shutdown_broadcaster()
        second = get_broadcaster("none", "localhost", 1883, "saleshub/queue")

        assert first is not second

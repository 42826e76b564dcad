"""Realtime queue feed over MQTT.

Each queue change is published to ``<topic>/events``. The current queue
length is also kept as a retained message on ``<topic>/length`` so a client
that subscribes late sees it without waiting for the next change.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import paho.mqtt.client as mqtt

from .timeutils import now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueChange:
    """One queue mutation: ``joined``, ``left`` or ``purged``."""

    event_type: str
    user_id: str
    queue_length: int
    process_type: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "eventType": self.event_type,
            "userId": self.user_id,
            "queueLength": self.queue_length,
            "timestamp": now_ms(),
        }
        if self.process_type is not None:
            payload["processType"] = self.process_type
        return payload


class Broadcaster(Protocol):
    def connect(self) -> bool: ...

    def disconnect(self) -> None: ...

    def publish_change(self, change: QueueChange) -> bool: ...


class MQTTQueueFeed:
    """Publishes queue changes to an MQTT broker."""

    def __init__(self, broker: str, port: int, topic: str):
        self.broker = broker
        self.port = port
        self.topic = topic.rstrip("/")
        self.client: Optional[mqtt.Client] = None
        self.connected = False

    @property
    def events_topic(self) -> str:
        return f"{self.topic}/events"

    @property
    def length_topic(self) -> str:
        return f"{self.topic}/length"

    def connect(self) -> bool:
        try:
            self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION1)
            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect
            self.client.connect(self.broker, self.port, keepalive=60)
            self.client.loop_start()
            self.connected = True
            logger.info(f"Queue feed connected to {self.broker}:{self.port} ({self.topic})")
            return True
        except Exception as e:
            logger.warning(f"Queue feed could not reach MQTT broker {self.broker}:{self.port}: {e}")
            return False

    def disconnect(self) -> None:
        if self.client:
            self.client.loop_stop()
            self.client.disconnect()
            self.client = None
        self.connected = False

    def publish_change(self, change: QueueChange) -> bool:
        """Publish the event and refresh the retained queue length."""
        if not self.connected or not self.client:
            return False
        try:
            event = self.client.publish(self.events_topic, json.dumps(change.to_payload()), qos=1)
            length = self.client.publish(self.length_topic, str(change.queue_length), qos=1, retain=True)
            return event.rc == mqtt.MQTT_ERR_SUCCESS and length.rc == mqtt.MQTT_ERR_SUCCESS
        except Exception as e:
            logger.error(f"Error publishing queue change {change.event_type}: {e}")
            return False

    def _on_connect(self, client, userdata, flags, rc):
        self.connected = (rc == 0)

    def _on_disconnect(self, client, userdata, rc):
        if rc != 0:
            logger.warning(f"Queue feed lost its broker connection (rc={rc})")
        self.connected = False


class NoOpBroadcaster:
    """Feed used when BROADCAST_TYPE is not ``mqtt``; every publish succeeds."""

    def connect(self) -> bool:
        return True

    def disconnect(self) -> None:
        pass

    def publish_change(self, change: QueueChange) -> bool:
        return True


_broadcaster: Optional[Broadcaster] = None


def get_broadcaster(broadcast_type: str, broker: str, port: int, topic: str) -> Broadcaster:
    """Get or create the process-wide queue feed."""
    global _broadcaster
    if _broadcaster is not None:
        return _broadcaster

    if broadcast_type == "mqtt":
        _broadcaster = MQTTQueueFeed(broker, port, topic)
    else:
        _broadcaster = NoOpBroadcaster()
    _ = _broadcaster.connect()

    return _broadcaster


def shutdown_broadcaster() -> None:
    global _broadcaster
    if _broadcaster:
        _broadcaster.disconnect()
        _broadcaster = None

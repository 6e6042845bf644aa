"""
MQTT publishing of orchestration events.

MqttResultBridge listens on the message bus and forwards:
- intent.result -> {version}/home_orchestrator/intent/{intent_id}/result
- circuit.state -> {version}/home_orchestrator/backend/{backend_id}/circuit

Payload: the bus message payload plus { timestamp: int } (milliseconds).
"""

import json
import logging
import time
from typing import Any, Dict, Optional, Protocol

import paho.mqtt.client as mqtt

from home_orchestrator.config.mqtt_topics import MQTTTopicConfig, get_mqtt_config
from home_orchestrator.core.models.message import (
    CIRCUIT_STATE_TYPE,
    INTENT_RESULT_TYPE,
    BusMessage,
)
from home_orchestrator.services.message_bus import MessageBus, Subscription

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    """Anything that can publish a payload to a topic."""

    def publish(self, topic: str, payload: str, qos: int = 0) -> Any:
        ...


class MqttClient:
    """MQTT client wrapper for publishing orchestration events."""

    def __init__(self, broker_url: str = "localhost", port: int = 1883):
        """
        Initialize MQTT client.

        Args:
            broker_url: MQTT broker hostname/IP
            port: MQTT broker port (default 1883)
        """
        self.broker_url = broker_url
        self.port = port
        self.client: Optional[mqtt.Client] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Connect to MQTT broker."""
        if self.client is not None and self._connected:
            return  # Already connected

        try:
            self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect

            logger.info(f"Connecting to MQTT broker at {self.broker_url}:{self.port}")
            self.client.connect(self.broker_url, self.port, keepalive=60)
            self.client.loop_start()  # Start network loop in background thread

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            self.client = None
            self._connected = False

    def disconnect(self) -> None:
        """Disconnect from MQTT broker."""
        if self.client is not None:
            self.client.loop_stop()
            self.client.disconnect()
            self.client = None
            self._connected = False
            logger.info("Disconnected from MQTT broker")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when connected to MQTT broker."""
        if not reason_code.is_failure:
            self._connected = True
            logger.info("Successfully connected to MQTT broker")
        else:
            self._connected = False
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when disconnected from MQTT broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    def publish(self, topic: str, payload: str, qos: int = 0) -> bool:
        """
        Publish a payload.

        Returns:
            True if published successfully, False otherwise
        """
        if not self._connected or self.client is None:
            logger.warning(f"Cannot publish to {topic}: not connected to MQTT broker")
            return False

        try:
            result = self.client.publish(topic, payload, qos=qos)
            if result.rc == mqtt.MQTT_ERR_SUCCESS:
                logger.debug(f"Published to {topic}")
                return True
            logger.error(f"Failed to publish to {topic}: {result.rc}")
            return False

        except Exception as e:
            logger.error(f"Error publishing to {topic}: {e}")
            return False


class MqttResultBridge:
    """Forwards intent results and circuit transitions from the bus to MQTT."""

    def __init__(
        self,
        bus: MessageBus,
        client: Publisher,
        topics: Optional[MQTTTopicConfig] = None,
        qos: int = 1,
    ):
        self.bus = bus
        self.client = client
        self.topics = topics or get_mqtt_config()
        self.qos = qos
        self._subscriptions: list[Subscription] = []

    def start(self) -> None:
        """Subscribe to the bus."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self.bus.subscribe(INTENT_RESULT_TYPE, self._on_intent_result),
            self.bus.subscribe(CIRCUIT_STATE_TYPE, self._on_circuit_state),
        ]
        logger.info("MQTT result bridge started")

    def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

    def _on_intent_result(self, message: BusMessage) -> None:
        intent_id = message.payload.get("intent_id") or message.correlation_id or "unknown"
        self._forward(self.topics.intent_result(intent_id), message.payload)

    def _on_circuit_state(self, message: BusMessage) -> None:
        backend_id = message.payload.get("backend_id", "unknown")
        self._forward(self.topics.circuit_state(backend_id), message.payload)

    def _forward(self, topic: str, data: Dict[str, Any]) -> None:
        payload = dict(data)
        payload["timestamp"] = int(time.time() * 1000)  # Milliseconds
        self.client.publish(topic, json.dumps(payload, default=str), qos=self.qos)

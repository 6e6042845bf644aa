"""Recording MQTT publisher for bridge tests without a live broker."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PublishedMessage:
    topic: str
    payload: str
    qos: int


def topic_matches(topic: str, pattern: str) -> bool:
    """Match a topic against an MQTT filter with + (one level) and # (rest) wildcards."""
    regex = "^" + re.escape(pattern).replace(r"\+", "[^/]+").replace(r"\#", ".*") + "$"
    return re.match(regex, topic) is not None


@dataclass
class RecordingPublisher:
    """Stands in for MqttClient and keeps every publish in order."""

    published: list[PublishedMessage] = field(default_factory=list)

    def publish(self, topic: str, payload: str, qos: int = 0) -> bool:
        self.published.append(PublishedMessage(topic, payload, qos))
        return True

    def payloads_for(self, pattern: str) -> list[dict[str, Any]]:
        """Decoded JSON payloads published to topics matching the filter."""
        return [json.loads(m.payload) for m in self.published if topic_matches(m.topic, pattern)]

"""MQTT topic layout with versioning support.

Topics:
    {version}/{base_prefix}/intent/{intent_id}/result
    {version}/{base_prefix}/backend/{backend_id}/circuit
"""

from dataclasses import dataclass
import os


@dataclass
class MQTTTopicConfig:
    """Configuration for MQTT topics with versioning support."""

    version: str = "v1"
    base_prefix: str = "home_orchestrator"

    def __post_init__(self):
        # Load from environment
        self.version = os.getenv("MQTT_TOPIC_VERSION", self.version)
        self.base_prefix = os.getenv("MQTT_BASE_PREFIX", self.base_prefix)

    def _base(self) -> str:
        return f"{self.version}/{self.base_prefix}"

    def intent_result(self, intent_id: str) -> str:
        """Aggregated result of one intent."""
        return f"{self._base()}/intent/{intent_id}/result"

    def circuit_state(self, backend_id: str) -> str:
        """Circuit breaker transitions of one backend."""
        return f"{self._base()}/backend/{backend_id}/circuit"

    def subscribe_intent_results(self) -> str:
        return f"{self._base()}/intent/+/result"

    def subscribe_circuits(self) -> str:
        return f"{self._base()}/backend/+/circuit"


# Singleton instance
_mqtt_config: MQTTTopicConfig | None = None


def get_mqtt_config() -> MQTTTopicConfig:
    """Get global MQTT topic configuration, creating it if necessary."""
    global _mqtt_config
    if _mqtt_config is None:
        _mqtt_config = MQTTTopicConfig()
    return _mqtt_config

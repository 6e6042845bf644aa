"""Configuration: environment settings and MQTT topic layout."""

from home_orchestrator.config.mqtt_topics import MQTTTopicConfig, get_mqtt_config
from home_orchestrator.config.settings import Settings, get_settings

__all__ = ["MQTTTopicConfig", "Settings", "get_mqtt_config", "get_settings"]

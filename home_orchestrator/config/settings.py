"""Runtime configuration loaded from environment variables and .env."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed orchestrator settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Home Orchestrator"
    log_level: str = "INFO"

    # Concurrency and deadlines
    max_concurrent_calls: int = Field(default=20, ge=1)
    max_concurrent_steps: int = Field(default=20, ge=1)
    default_deadline_ms: float = Field(default=5000.0, gt=0)
    latency_bound_deadline_ms: float = Field(default=1500.0, gt=0)

    # Circuit breaker
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_recovery_timeout: float = Field(default=60.0, ge=0)
    breaker_window: int = Field(default=20, ge=1)
    breaker_health_probe_enabled: bool = True

    # Retry of transient backend errors
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.1, ge=0)
    retry_max_delay: float = Field(default=2.0, ge=0)

    # Routing score weights
    routing_weight_capability: float = 0.4
    routing_weight_cost: float = 0.2
    routing_weight_latency: float = 0.2
    routing_weight_success: float = 0.2

    local_only_default: bool = False
    audit_log_path: str | None = None

    # MQTT
    mqtt_enabled: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883

    # Backends
    ollama_enabled: bool = False
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "qwen2.5:3b"
    ollama_timeout: float = 30.0

    openai_enabled: bool = False
    openai_base_url: str = "https://api.openai.com/v1"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout: float = 30.0
    openai_cost_per_call: float = 0.01

    ha_enabled: bool = False
    ha_base_url: str = "http://homeassistant.local:8123"
    ha_token: str | None = None
    ha_timeout: float = 10.0

    mock_backends_enabled: bool = True

    @property
    def default_timeout(self) -> float:
        """Default request deadline in seconds."""
        return self.default_deadline_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build and cache Settings."""
    return Settings()

"""Tests for settings and the composition root."""

from __future__ import annotations

import pytest

from home_orchestrator.adapters.homeassistant import HomeAssistantAdapter
from home_orchestrator.adapters.llm import OllamaAdapter
from home_orchestrator.adapters.mock import MockBackend
from home_orchestrator.config.settings import Settings
from home_orchestrator.container import build_container, default_adapters
from home_orchestrator.core.models.intent import Intent
from home_orchestrator.core.models.result import OverallStatus
from tests.mocks.mqtt_client import RecordingPublisher


class TestSettings:
    """Tests for Settings."""

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test settings are read from environment variables."""
        monkeypatch.setenv("DEFAULT_DEADLINE_MS", "2500")
        monkeypatch.setenv("BREAKER_FAILURE_THRESHOLD", "7")

        settings = Settings(_env_file=None)

        assert settings.default_deadline_ms == 2500
        assert settings.default_timeout == 2.5
        assert settings.breaker_failure_threshold == 7

    def test_invalid_values_rejected(self) -> None:
        """Test out-of-range values fail validation."""
        with pytest.raises(ValueError):
            Settings(_env_file=None, breaker_failure_threshold=0)


class TestDefaultAdapters:
    """Tests for adapter selection from settings."""

    def test_mock_backends(self) -> None:
        """Test mock backends are registered when enabled."""
        adapters = default_adapters(Settings(_env_file=None, mock_backends_enabled=True))

        assert [a.describe().backend_id for a in adapters] == [
            "mock_devices",
            "mock_local_model",
            "mock_reasoning",
        ]

    def test_real_backends(self) -> None:
        """Test enabled real backends come first, in priority order."""
        settings = Settings(
            _env_file=None,
            mock_backends_enabled=False,
            ha_enabled=True,
            ha_token="token",
            ollama_enabled=True,
        )

        adapters = default_adapters(settings)

        assert [type(a) for a in adapters] == [HomeAssistantAdapter, OllamaAdapter]

    def test_home_assistant_needs_token(self) -> None:
        """Test enabling Home Assistant without a token fails at startup."""
        with pytest.raises(ValueError):
            default_adapters(Settings(_env_file=None, mock_backends_enabled=False, ha_enabled=True))


class TestContainer:
    """Tests for OrchestrationContainer lifecycle."""

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, test_settings: Settings, lights: MockBackend) -> None:
        """Test backends are connected on start and disconnected on shutdown."""
        container = build_container(test_settings, adapters=[lights])

        await container.start()
        assert lights.connected
        assert container.registry.is_healthy("lights")

        await container.shutdown()
        assert not lights.connected
        assert not container.started

    @pytest.mark.asyncio
    async def test_register_after_start(self, test_settings: Settings, lights: MockBackend) -> None:
        """Test backends registered at runtime receive requests at once."""
        container = build_container(test_settings, adapters=[])
        await container.start()
        container.register(lights)

        result = await container.orchestrator.process_intent(Intent(payload={"domain": "light.turn_on"}))
        await container.shutdown()

        assert result.status == OverallStatus.SUCCESS
        assert lights.actions == ["light.turn_on"]

    @pytest.mark.asyncio
    async def test_mqtt_bridge_publishes_results(self, test_settings: Settings, lights: MockBackend) -> None:
        """Test intent results reach MQTT when the bridge is enabled."""
        container = build_container(test_settings.model_copy(update={"mqtt_enabled": True}), adapters=[lights])
        mqtt = RecordingPublisher()
        container.mqtt_client = None
        container.mqtt_bridge.client = mqtt
        await container.start()

        intent = Intent(payload={"domain": "light.turn_on"})
        await container.orchestrator.process_intent(intent)
        await container.bus.drain()
        await container.shutdown()

        payloads = mqtt.payloads_for(f"+/+/intent/{intent.intent_id}/result")
        assert payloads[0]["status"] == "success"

"""Pytest configuration and shared fixtures for Home Orchestrator tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from home_orchestrator.adapters.mock import MockBackend
from home_orchestrator.config.settings import Settings
from home_orchestrator.container import OrchestrationContainer, build_container
from home_orchestrator.core.models.capability import BackendKind, PrivacyClass
from home_orchestrator.core.registry.capability_registry import CapabilityRegistry
from home_orchestrator.services.circuit_breaker import CircuitBreakerBoard
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Fixture providing a fake clock."""
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    """Fixture providing settings tuned for fast tests.

    Returns:
        Settings without mock backends, MQTT or retry delays
    """
    return Settings(
        log_level="DEBUG",
        mock_backends_enabled=False,
        mqtt_enabled=False,
        default_deadline_ms=2000.0,
        breaker_failure_threshold=3,
        breaker_recovery_timeout=60.0,
        retry_max_attempts=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        audit_log_path=None,
    )


@pytest.fixture
def lights() -> MockBackend:
    """Fixture providing a local device-control backend."""
    return MockBackend(
        "lights",
        ["light.turn_on", "light.turn_off"],
        latency_ms=50,
        kind=BackendKind.DEVICE_CONTROL,
    )


@pytest.fixture
def local_model() -> MockBackend:
    """Fixture providing a local model backend."""
    return MockBackend(
        "local_model",
        ["text.generate", "text.summarize"],
        latency_ms=800,
        kind=BackendKind.LOCAL_MODEL,
    )


@pytest.fixture
def remote_reasoning() -> MockBackend:
    """Fixture providing a remote reasoning backend."""
    return MockBackend(
        "remote_reasoning",
        ["text.generate", "text.summarize", "reasoning"],
        cost_per_call=0.02,
        latency_ms=1500,
        privacy_class=PrivacyClass.MAY_LEAVE_DEVICE,
        kind=BackendKind.REMOTE_REASONING,
    )


@pytest.fixture
def registry(lights: MockBackend, local_model: MockBackend, remote_reasoning: MockBackend) -> CapabilityRegistry:
    """Fixture providing a registry with the three standard backends."""
    registry = CapabilityRegistry()
    registry.register(lights)
    registry.register(local_model)
    registry.register(remote_reasoning)
    return registry


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerBoard:
    """Fixture providing breakers driven by the fake clock."""
    return CircuitBreakerBoard(failure_threshold=3, recovery_timeout=30.0, clock=clock)


@pytest.fixture
def make_container(test_settings: Settings) -> Callable[..., OrchestrationContainer]:
    """Fixture providing a factory for containers over given backends."""

    def factory(*adapters: Any, **overrides: Any) -> OrchestrationContainer:
        settings = test_settings.model_copy(update=overrides) if overrides else test_settings
        return build_container(settings, adapters=list(adapters))

    return factory

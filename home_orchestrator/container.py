"""Composition root.

Builds every component once at startup and owns them explicitly; there are
no module-level singletons for the registry, bus or breakers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from home_orchestrator.adapters.homeassistant import HomeAssistantAdapter
from home_orchestrator.adapters.llm import OllamaAdapter, OpenAIReasoningAdapter
from home_orchestrator.adapters.mock import MockBackend
from home_orchestrator.config.settings import Settings, get_settings
from home_orchestrator.core.interfaces.backend import BackendAdapter
from home_orchestrator.core.interfaces.collaborators import ContextStore, IntentDecomposer
from home_orchestrator.core.models.capability import BackendKind, PrivacyClass
from home_orchestrator.core.registry.capability_registry import CapabilityRegistry
from home_orchestrator.services.audit_log import AuditLog
from home_orchestrator.services.circuit_breaker import CircuitBreakerBoard
from home_orchestrator.services.context_store import InMemoryContextStore
from home_orchestrator.services.decomposition import PayloadPlanDecomposer
from home_orchestrator.services.dispatcher import BackendDispatcher
from home_orchestrator.services.message_bus import MessageBus
from home_orchestrator.services.mqtt_bridge import MqttClient, MqttResultBridge
from home_orchestrator.services.orchestrator import Orchestrator
from home_orchestrator.services.retry import RetryPolicy
from home_orchestrator.services.router import IntelligenceRouter, RoutingWeights
from home_orchestrator.services.workflow import WorkflowCoordinator

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationContainer:
    """All orchestration components for one process."""

    settings: Settings
    registry: CapabilityRegistry
    breakers: CircuitBreakerBoard
    bus: MessageBus
    dispatcher: BackendDispatcher
    router: IntelligenceRouter
    audit_log: AuditLog
    coordinator: WorkflowCoordinator
    decomposer: IntentDecomposer
    context_store: ContextStore
    orchestrator: Orchestrator
    mqtt_client: MqttClient | None = None
    mqtt_bridge: MqttResultBridge | None = None
    started: bool = field(default=False, init=False)

    def register(self, adapter: BackendAdapter) -> None:
        """Register a backend; it receives requests at once if already started."""
        self.registry.register(adapter)
        if self.started:
            self.dispatcher.attach(adapter.describe().backend_id)

    async def start(self) -> None:
        """Connect backends and start delivering requests."""
        if self.started:
            return

        for backend_id in self.registry.list_backends():
            adapter = self.registry.get_adapter(backend_id)
            try:
                connected = await adapter.connect()
            except Exception as e:
                logger.warning(f"Backend '{backend_id}' failed to connect: {e}")
                connected = False
            self.registry.mark_health(backend_id, connected)

        self.dispatcher.attach_all()

        if self.mqtt_client is not None:
            self.mqtt_client.connect()
        if self.mqtt_bridge is not None:
            self.mqtt_bridge.start()

        self.started = True
        logger.info(
            f"Orchestration container started with {len(self.registry)} backends: "
            f"{', '.join(self.registry.list_backends())}"
        )

    async def shutdown(self) -> None:
        """Stop delivery, drain handlers and disconnect backends."""
        if not self.started:
            return

        if self.mqtt_bridge is not None:
            self.mqtt_bridge.stop()
        self.dispatcher.detach_all()
        await self.bus.drain()
        await self.bus.close()

        for backend_id in self.registry.list_backends():
            try:
                await self.registry.get_adapter(backend_id).disconnect()
            except Exception as e:
                logger.warning(f"Backend '{backend_id}' failed to disconnect: {e}")

        if self.mqtt_client is not None:
            self.mqtt_client.disconnect()

        self.started = False
        logger.info("Orchestration container stopped")


def default_adapters(settings: Settings) -> list[BackendAdapter]:
    """Backends enabled by settings."""
    adapters: list[BackendAdapter] = []

    if settings.ha_enabled:
        adapters.append(
            HomeAssistantAdapter(
                base_url=settings.ha_base_url,
                token=settings.ha_token,
                timeout=settings.ha_timeout,
            )
        )
    if settings.ollama_enabled:
        adapters.append(
            OllamaAdapter(
                base_url=settings.ollama_base_url,
                model=settings.ollama_model,
                timeout=settings.ollama_timeout,
            )
        )
    if settings.openai_enabled:
        adapters.append(
            OpenAIReasoningAdapter(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                model=settings.openai_model,
                cost_per_call=settings.openai_cost_per_call,
                timeout=settings.openai_timeout,
            )
        )

    if settings.mock_backends_enabled:
        adapters.extend(
            [
                MockBackend(
                    "mock_devices",
                    ["light.turn_on", "light.turn_off", "scene.turn_on", "state.get"],
                    latency_ms=50,
                    kind=BackendKind.DEVICE_CONTROL,
                ),
                MockBackend(
                    "mock_local_model",
                    ["text.generate", "intent.classify"],
                    latency_ms=400,
                    kind=BackendKind.LOCAL_MODEL,
                ),
                MockBackend(
                    "mock_reasoning",
                    ["text.generate", "plan.create", "reasoning"],
                    cost_per_call=0.01,
                    latency_ms=1200,
                    privacy_class=PrivacyClass.MAY_LEAVE_DEVICE,
                    kind=BackendKind.REMOTE_REASONING,
                ),
            ]
        )
    return adapters


def build_container(
    settings: Settings | None = None,
    adapters: Iterable[BackendAdapter] | None = None,
    decomposer: IntentDecomposer | None = None,
    context_store: ContextStore | None = None,
) -> OrchestrationContainer:
    """Wire all components from settings.

    Args:
        settings: Settings (defaults to get_settings())
        adapters: Backends to register in priority order (defaults to
            default_adapters(settings))
        decomposer: Intent decomposer (defaults to PayloadPlanDecomposer)
        context_store: Context store (defaults to InMemoryContextStore)
    """
    settings = settings or get_settings()

    registry = CapabilityRegistry()
    for adapter in adapters if adapters is not None else default_adapters(settings):
        registry.register(adapter)

    bus = MessageBus()
    breakers = CircuitBreakerBoard(
        failure_threshold=settings.breaker_failure_threshold,
        recovery_timeout=settings.breaker_recovery_timeout,
        window=settings.breaker_window,
    )
    dispatcher = BackendDispatcher(
        bus,
        registry,
        breakers,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        max_concurrent_calls=settings.max_concurrent_calls,
        default_timeout=settings.default_timeout,
        health_probe_enabled=settings.breaker_health_probe_enabled,
    )
    router = IntelligenceRouter(
        registry,
        breakers,
        weights=RoutingWeights(
            capability=settings.routing_weight_capability,
            cost=settings.routing_weight_cost,
            latency=settings.routing_weight_latency,
            success=settings.routing_weight_success,
        ),
    )
    audit_log = AuditLog(path=settings.audit_log_path)
    coordinator = WorkflowCoordinator(
        audit_log=audit_log,
        max_concurrent_steps=settings.max_concurrent_steps,
    )
    decomposer = decomposer or PayloadPlanDecomposer(
        latency_bound_deadline_ms=settings.latency_bound_deadline_ms
    )
    context_store = context_store or InMemoryContextStore()
    orchestrator = Orchestrator(
        router,
        bus,
        coordinator,
        decomposer,
        context_store,
        default_deadline_ms=settings.default_deadline_ms,
        local_only_default=settings.local_only_default,
    )

    mqtt_client = None
    mqtt_bridge = None
    if settings.mqtt_enabled:
        mqtt_client = MqttClient(settings.mqtt_host, settings.mqtt_port)
        mqtt_bridge = MqttResultBridge(bus, mqtt_client)

    return OrchestrationContainer(
        settings=settings,
        registry=registry,
        breakers=breakers,
        bus=bus,
        dispatcher=dispatcher,
        router=router,
        audit_log=audit_log,
        coordinator=coordinator,
        decomposer=decomposer,
        context_store=context_store,
        orchestrator=orchestrator,
        mqtt_client=mqtt_client,
        mqtt_bridge=mqtt_bridge,
    )

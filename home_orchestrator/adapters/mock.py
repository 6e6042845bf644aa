"""Mock backend adapter implementation.

Provides a fully-functional in-process backend for testing and
development without real models or devices.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from home_orchestrator.core.errors import ErrorKind
from home_orchestrator.core.models.capability import (
    BackendKind,
    CapabilityDescriptor,
    PrivacyClass,
)
from home_orchestrator.core.models.message import AgentRequest, AgentResponse, ResponseStatus

logger = logging.getLogger(__name__)

ActionHandler = Callable[[dict[str, Any]], dict[str, Any]]
Outcome = BaseException | ResponseStatus


class MockBackend:
    """Mock execution backend with configurable behavior.

    - Declared capabilities, cost, latency and privacy class
    - Simulated delay per call
    - Scripted outcomes: queued exceptions or response statuses consumed one
      per call, before falling back to success
    - Persistent per-action failures
    - Health flag and a log of every request received

    Example:
        >>> backend = MockBackend("lights", ["light.turn_on"], delay_ms=20)
        >>> backend.script(TransientBackendError("flaky"))
        >>> await backend.invoke(request, deadline)  # raises, then succeeds next time
    """

    def __init__(
        self,
        backend_id: str,
        capabilities: Iterable[str] = (),
        *,
        substitutes: Mapping[str, Sequence[str]] | None = None,
        cost_per_call: float = 0.0,
        latency_ms: float = 0.0,
        privacy_class: PrivacyClass = PrivacyClass.LOCAL_ONLY,
        kind: BackendKind = BackendKind.OTHER,
        delay_ms: float = 0.0,
        healthy: bool = True,
        handlers: Mapping[str, ActionHandler] | None = None,
    ) -> None:
        """Initialize mock backend.

        Args:
            backend_id: Registry id
            capabilities: Declared capabilities
            substitutes: Capability -> declared capabilities that can stand in for it
            cost_per_call: Declared cost
            latency_ms: Declared latency (used by routing)
            privacy_class: Declared privacy class
            kind: Declared backend kind
            delay_ms: Actual simulated delay per call
            healthy: Initial health_check() answer
            handlers: Action -> function computing the response data
        """
        self.descriptor = CapabilityDescriptor(
            backend_id=backend_id,
            capabilities=frozenset(capabilities),
            substitutes={k: tuple(v) for k, v in (substitutes or {}).items()},
            cost_per_call=cost_per_call,
            latency_ms=latency_ms,
            privacy_class=privacy_class,
            kind=kind,
        )
        self.delay_ms = delay_ms
        self.healthy = healthy
        self.handlers = dict(handlers or {})
        self.calls: list[AgentRequest] = []
        self.health_checks = 0
        self.connected = False
        self._scripted: deque[Outcome] = deque()
        self._action_failures: dict[str, Outcome] = {}

    @property
    def backend_id(self) -> str:
        return self.descriptor.backend_id

    @property
    def actions(self) -> list[str | None]:
        """Actions received, in call order."""
        return [request.action for request in self.calls]

    def describe(self) -> CapabilityDescriptor:
        return self.descriptor

    async def connect(self) -> bool:
        self.connected = True
        logger.info(f"MockBackend '{self.backend_id}' connected")
        return True

    async def disconnect(self) -> None:
        self.connected = False
        logger.info(f"MockBackend '{self.backend_id}' disconnected")

    async def health_check(self) -> bool:
        self.health_checks += 1
        return self.healthy

    def script(self, *outcomes: Outcome) -> MockBackend:
        """Queue outcomes for the next calls (exceptions are raised)."""
        self._scripted.extend(outcomes)
        return self

    def fail_action(self, action: str, outcome: Outcome = ResponseStatus.FAILED) -> MockBackend:
        """Make every call of an action fail with the given outcome."""
        self._action_failures[action] = outcome
        return self

    def clear_failures(self) -> None:
        self._scripted.clear()
        self._action_failures.clear()

    async def invoke(self, request: AgentRequest, deadline: float) -> AgentResponse:
        self.calls.append(request)
        if self.delay_ms:
            await asyncio.sleep(self.delay_ms / 1000.0)

        action = request.action or ""
        outcome = self._action_failures.get(action)
        if outcome is None and self._scripted:
            outcome = self._scripted.popleft()
        if outcome is not None:
            return self._apply(request, outcome)

        handler = self.handlers.get(action)
        if handler is not None:
            data = handler(request.parameters)
        else:
            data = {"backend_id": self.backend_id, "action": action, "parameters": request.parameters}
        return request.reply(ResponseStatus.SUCCESS, data=data)

    def _apply(self, request: AgentRequest, outcome: Outcome) -> AgentResponse:
        if isinstance(outcome, BaseException):
            logger.warning(f"MockBackend '{self.backend_id}' simulated error: {outcome!r}")
            raise outcome

        kind = {
            ResponseStatus.TIMEOUT: ErrorKind.TIMEOUT,
            ResponseStatus.NOT_SUPPORTED: ErrorKind.CAPABILITY_NOT_SUPPORTED,
        }.get(outcome, ErrorKind.BACKEND_ERROR)
        return request.reply(
            outcome,
            error_message=f"Simulated {outcome.value} for '{request.action}'",
            error_kind=kind if outcome not in (ResponseStatus.SUCCESS, ResponseStatus.PARTIAL_SUCCESS) else None,
        )

    def __repr__(self) -> str:
        return f"<MockBackend(backend_id='{self.backend_id}')>"

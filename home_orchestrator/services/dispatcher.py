"""Delivers bus requests to backend adapters.

One bus subscription per registered backend. Each request is executed
under the backend's circuit breaker, with transient errors retried before
they count as a breaker failure, and bounded by a shared worker pool.
The outcome is always answered over the bus, errors included.
"""

from __future__ import annotations

import asyncio
import logging
import time

from home_orchestrator.core.errors import (
    BackendUnavailableError,
    CapabilityNotSupportedError,
    ErrorKind,
    OrchestrationError,
    RequestTimeoutError,
)
from home_orchestrator.core.interfaces.backend import BackendAdapter
from home_orchestrator.core.models.message import (
    CIRCUIT_STATE_TYPE,
    REQUEST_TYPE,
    AgentRequest,
    AgentResponse,
    BusMessage,
    MessagePriority,
    ResponseStatus,
)
from home_orchestrator.core.registry.capability_registry import CapabilityRegistry
from home_orchestrator.services.circuit_breaker import (
    CircuitBreakerBoard,
    CircuitBreakerOpen,
    CircuitState,
)
from home_orchestrator.services.message_bus import MessageBus, Subscription
from home_orchestrator.services.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

DEADLINE_HEADER = "x-deadline"


def deadline_header(deadline: float) -> dict[str, str]:
    """Header carrying an absolute deadline (unix seconds)."""
    return {DEADLINE_HEADER: f"{deadline:.6f}"}


class BackendDispatcher:
    """Bridges the message bus to backend adapters."""

    def __init__(
        self,
        bus: MessageBus,
        registry: CapabilityRegistry,
        breakers: CircuitBreakerBoard,
        retry_policy: RetryPolicy | None = None,
        max_concurrent_calls: int = 20,
        default_timeout: float = 5.0,
        health_probe_enabled: bool = True,
    ) -> None:
        """Initialize dispatcher.

        Args:
            bus: Message bus to listen on
            registry: Registry resolving backend ids to adapters
            breakers: Per-backend circuit breakers
            retry_policy: Backoff policy for transient errors
            max_concurrent_calls: Worker pool size for backend calls
            default_timeout: Seconds allowed when a request carries no deadline
            health_probe_enabled: Run the adapter health check before a breaker probe
        """
        self.bus = bus
        self.registry = registry
        self.breakers = breakers
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_timeout = default_timeout
        self.health_probe_enabled = health_probe_enabled
        self.max_concurrent_calls = max_concurrent_calls
        self._semaphore = asyncio.Semaphore(max_concurrent_calls)
        self._subscriptions: dict[str, Subscription] = {}
        self._in_flight = 0

        if breakers.on_state_change is None:
            breakers.on_state_change = self._on_circuit_change

    def attach(self, backend_id: str) -> Subscription:
        """Start handling requests addressed to a backend."""
        if backend_id in self._subscriptions:
            return self._subscriptions[backend_id]

        adapter = self.registry.get_adapter(backend_id)
        self.breakers.get(
            backend_id,
            health_probe=adapter.health_check if self.health_probe_enabled else None,
        )
        subscription = self.bus.subscribe(
            REQUEST_TYPE,
            self._handle,
            predicate=lambda message: message.recipient_id == backend_id,
        )
        self._subscriptions[backend_id] = subscription
        logger.info(f"Dispatcher attached to backend: {backend_id}")
        return subscription

    def attach_all(self) -> None:
        """Attach every registered backend."""
        for backend_id in self.registry.list_backends():
            self.attach(backend_id)

    def detach(self, backend_id: str) -> None:
        subscription = self._subscriptions.pop(backend_id, None)
        if subscription is not None:
            subscription.unsubscribe()

    def detach_all(self) -> None:
        for backend_id in list(self._subscriptions):
            self.detach(backend_id)

    @property
    def in_flight(self) -> int:
        """Backend calls currently holding a worker slot."""
        return self._in_flight

    async def _handle(self, message: BusMessage) -> None:
        if not isinstance(message, AgentRequest):
            logger.warning(f"Ignoring non-request message {message.message_id}")
            return
        response = await self.execute(message)
        self.bus.respond(response)

    async def execute(self, request: AgentRequest) -> AgentResponse:
        """Execute a request against its recipient backend.

        Never raises for backend-level problems: every outcome becomes a
        response with a status and error kind.
        """
        backend_id = request.recipient_id
        deadline = self._deadline_of(request)

        try:
            adapter = self.registry.get_adapter(backend_id)
        except BackendUnavailableError as e:
            return self._error_reply(request, ResponseStatus.FAILED, e)

        breaker = self.breakers.get(backend_id)

        async with self._semaphore:
            self._in_flight += 1
            start = time.perf_counter()
            try:
                response = await breaker.call(
                    self._invoke,
                    adapter,
                    request,
                    deadline,
                    probe_timeout=deadline - time.time(),
                )
                self.registry.mark_health(backend_id, True)
            except CircuitBreakerOpen as e:
                if e.health_failed:
                    self.registry.mark_health(backend_id, False)
                logger.info(f"[{backend_id}] Rejected by circuit breaker: {e.message}")
                return self._error_reply(request, ResponseStatus.FAILED, e)
            except RequestTimeoutError as e:
                return self._error_reply(request, ResponseStatus.TIMEOUT, e)
            except CapabilityNotSupportedError as e:
                return self._error_reply(request, ResponseStatus.NOT_SUPPORTED, e)
            except OrchestrationError as e:
                logger.warning(f"[{backend_id}] Invocation failed: {e}")
                return self._error_reply(request, ResponseStatus.FAILED, e)
            except Exception as e:
                logger.error(f"[{backend_id}] Unexpected adapter error: {e}", exc_info=True)
                return request.reply(
                    ResponseStatus.FAILED,
                    error_message=str(e),
                    error_kind=ErrorKind.BACKEND_ERROR,
                )
            finally:
                self._in_flight -= 1

        logger.debug(
            f"[{backend_id}] {request.action} -> {response.status.value} "
            f"({(time.perf_counter() - start) * 1000:.1f}ms)"
        )
        return response.model_copy(
            update={
                "correlation_id": request.correlation_id,
                "sender_id": backend_id,
                "recipient_id": request.sender_id,
            }
        )

    async def _invoke(
        self,
        adapter: BackendAdapter,
        request: AgentRequest,
        deadline: float,
    ) -> AgentResponse:
        """Invoke the adapter with retries, bounded by the request deadline."""
        remaining = deadline - time.time()
        if remaining <= 0:
            raise RequestTimeoutError("Deadline already passed", backend=request.recipient_id)
        try:
            return await asyncio.wait_for(
                call_with_retry(self.retry_policy, adapter.invoke, request, deadline),
                timeout=remaining,
            )
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"Backend did not answer within {remaining:.3f}s",
                backend=request.recipient_id,
            ) from None

    def _deadline_of(self, request: AgentRequest) -> float:
        raw = request.headers.get(DEADLINE_HEADER)
        if raw is not None:
            try:
                return float(raw)
            except ValueError:
                logger.warning(f"Invalid deadline header: {raw!r}")
        return time.time() + self.default_timeout

    def _error_reply(
        self,
        request: AgentRequest,
        status: ResponseStatus,
        error: OrchestrationError,
    ) -> AgentResponse:
        return request.reply(status, error_message=error.message, error_kind=error.kind)

    def _on_circuit_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        """Publish circuit transitions for observers (e.g. the MQTT bridge)."""
        try:
            self.bus.publish(
                BusMessage(
                    message_type=CIRCUIT_STATE_TYPE,
                    sender_id="dispatcher",
                    priority=MessagePriority.HIGH,
                    payload={"backend_id": name, "from": old.value, "to": new.value},
                )
            )
        except RuntimeError:
            logger.debug(f"[{name}] Circuit change outside event loop not published")

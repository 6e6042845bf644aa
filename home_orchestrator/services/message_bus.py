"""In-process message bus.

Provides fire-and-forget publish/subscribe plus correlated request/response
with timeout. All inter-component communication goes through it.

Delivery:
- publish() starts one task per matching subscription, in subscription
  order. A failing handler is logged and never affects the publisher or
  other handlers.
- send() registers a waiter keyed by correlation id, publishes the request
  and waits for respond() to resolve it. Exactly one response is delivered
  per waiter; duplicates and late responses are dropped and recorded as
  anomalies.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from home_orchestrator.core.errors import RequestTimeoutError, RequestValidationError
from home_orchestrator.core.models.message import AgentRequest, AgentResponse, BusMessage

logger = logging.getLogger(__name__)

Handler = Callable[[BusMessage], Awaitable[None] | None]
Predicate = Callable[[BusMessage], bool]


@dataclass(eq=False)
class Subscription:
    """Disposable subscription returned by MessageBus.subscribe()."""

    message_type: str
    handler: Handler
    predicate: Predicate | None = None
    subscription_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    active: bool = True
    _bus: MessageBus | None = field(default=None, repr=False)

    def matches(self, message: BusMessage) -> bool:
        """Check if this subscription wants the message."""
        if not self.active or message.message_type != self.message_type:
            return False
        return self.predicate is None or self.predicate(message)

    def unsubscribe(self) -> None:
        """Stop receiving messages. Safe to call more than once."""
        if self.active and self._bus is not None:
            self._bus._remove(self)
        self.active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


@dataclass
class BusMetrics:
    """Counters for bus activity."""

    published: int = 0
    delivered: int = 0
    handler_errors: int = 0
    requests: int = 0
    responses: int = 0
    timeouts: int = 0
    anomalies: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class MessageBus:
    """Publish/subscribe bus with correlated request/response.

    Example:
        >>> bus = MessageBus()
        >>> sub = bus.subscribe("agent.request", handler, predicate=lambda m: m.recipient_id == "lights")
        >>> response = await bus.send(AgentRequest(recipient_id="lights", payload={...}), timeout=2.0)
        >>> sub.unsubscribe()
    """

    def __init__(self, retired_capacity: int = 4096, anomaly_capacity: int = 500) -> None:
        """Initialize bus.

        Args:
            retired_capacity: How many finished correlation ids to remember
                (used to tell late responses from unknown ones)
            anomaly_capacity: How many anomaly records to keep
        """
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._pending: dict[str, asyncio.Future[AgentResponse]] = {}
        self._retired: OrderedDict[str, None] = OrderedDict()
        self._retired_capacity = retired_capacity
        self._tasks: set[asyncio.Task[None]] = set()
        self.anomalies: deque[dict[str, Any]] = deque(maxlen=anomaly_capacity)
        self.metrics = BusMetrics()

    def subscribe(
        self,
        message_type: str,
        handler: Handler,
        predicate: Predicate | None = None,
    ) -> Subscription:
        """Subscribe a handler to a message type.

        Args:
            message_type: Message type to receive (e.g. 'agent.request')
            handler: Sync or async callable receiving the message
            predicate: Optional filter; the handler only sees messages it accepts

        Returns:
            Disposable subscription
        """
        subscription = Subscription(
            message_type=message_type,
            handler=handler,
            predicate=predicate,
            _bus=self,
        )
        self._subscriptions.setdefault(message_type, []).append(subscription)
        logger.debug(
            f"Subscribed to '{message_type}' (id={subscription.subscription_id[:8]})"
        )
        return subscription

    def subscriber_count(self, message_type: str) -> int:
        return len(self._subscriptions.get(message_type, []))

    def publish(self, message: BusMessage) -> int:
        """Deliver a message to all matching subscribers, fire-and-forget.

        Must be called from within a running event loop.

        Args:
            message: Message to deliver

        Returns:
            Number of handlers scheduled
        """
        self.metrics.published += 1
        matching = [
            sub for sub in self._subscriptions.get(message.message_type, [])
            if sub.matches(message)
        ]
        for subscription in matching:
            task = asyncio.create_task(
                self._deliver(subscription, message),
                name=f"bus-{message.message_type}-{message.message_id[:8]}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if not matching:
            logger.debug(f"No subscribers for '{message.message_type}'")
        return len(matching)

    async def send(self, request: AgentRequest, timeout: float) -> AgentResponse:
        """Publish a request and wait for its correlated response.

        Args:
            request: Request to send; a correlation id is assigned if absent
            timeout: Seconds to wait for the response

        Returns:
            The first response carrying the request's correlation id

        Raises:
            RequestTimeoutError: If no response arrives within timeout
            RequestValidationError: If timeout is not positive or the
                correlation id is already pending
        """
        if timeout <= 0:
            raise RequestValidationError(f"Timeout must be positive, got {timeout}")

        if request.correlation_id is None:
            request = request.model_copy(update={"correlation_id": uuid.uuid4().hex})
        elif request.correlation_id in self._pending:
            raise RequestValidationError(
                f"Correlation id '{request.correlation_id}' is already pending"
            )

        correlation_id = request.correlation_id
        future: asyncio.Future[AgentResponse] = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        self.metrics.requests += 1
        start = time.perf_counter()

        try:
            self.publish(request)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self.metrics.timeouts += 1
            logger.warning(
                f"Request {correlation_id[:8]} to '{request.recipient_id}' timed out "
                f"after {(time.perf_counter() - start) * 1000:.0f}ms"
            )
            raise RequestTimeoutError(
                f"No response within {timeout:.3f}s",
                backend=request.recipient_id,
            ) from None
        finally:
            self._pending.pop(correlation_id, None)
            self._retire(correlation_id)

    def respond(self, response: AgentResponse) -> bool:
        """Deliver a response to its waiting sender.

        Args:
            response: Response carrying the request's correlation id

        Returns:
            True if the response resolved a waiter, False if it was dropped
        """
        correlation_id = response.correlation_id
        if correlation_id is None:
            self._record_anomaly("uncorrelated", response)
            return False

        future = self._pending.get(correlation_id)
        if future is None:
            kind = "late" if correlation_id in self._retired else "unknown"
            self._record_anomaly(kind, response)
            return False

        if future.done():
            self._record_anomaly("duplicate", response)
            return False

        future.set_result(response)
        self.metrics.responses += 1
        self.publish(response)
        return True

    def is_pending(self, correlation_id: str) -> bool:
        return correlation_id in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until all in-flight handler tasks finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel pending waiters and in-flight handlers."""
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._subscriptions.clear()
        logger.info("Message bus closed")

    async def _deliver(self, subscription: Subscription, message: BusMessage) -> None:
        """Run one handler, isolating its failures."""
        try:
            result = subscription.handler(message)
            if inspect.isawaitable(result):
                await result
            self.metrics.delivered += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.handler_errors += 1
            logger.error(
                f"Handler for '{message.message_type}' failed "
                f"(subscription={subscription.subscription_id[:8]}): {e}",
                exc_info=True,
            )

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.message_type, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
            logger.debug(f"Unsubscribed {subscription.subscription_id[:8]}")

    def _retire(self, correlation_id: str) -> None:
        self._retired[correlation_id] = None
        self._retired.move_to_end(correlation_id)
        while len(self._retired) > self._retired_capacity:
            self._retired.popitem(last=False)

    def _record_anomaly(self, kind: str, response: AgentResponse) -> None:
        self.metrics.anomalies += 1
        record = {
            "kind": kind,
            "correlation_id": response.correlation_id,
            "sender_id": response.sender_id,
            "status": response.status.value,
            "timestamp": time.time(),
        }
        self.anomalies.append(record)
        logger.warning(
            f"Dropped {kind} response from '{response.sender_id}' "
            f"(correlation_id={response.correlation_id})"
        )

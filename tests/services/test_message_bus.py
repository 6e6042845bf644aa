"""Tests for MessageBus."""

from __future__ import annotations

import asyncio
import time

import pytest

from home_orchestrator.core.errors import RequestTimeoutError, RequestValidationError
from home_orchestrator.core.models.message import (
    REQUEST_TYPE,
    RESPONSE_TYPE,
    AgentRequest,
    AgentResponse,
    BusMessage,
    ResponseStatus,
)
from home_orchestrator.services.message_bus import MessageBus
from tests.helpers import make_request


@pytest.fixture
def bus() -> MessageBus:
    """Fixture providing an empty bus."""
    return MessageBus()


def auto_responder(bus: MessageBus, backend_id: str, **data):
    """Subscribe a handler answering every request for backend_id."""

    async def handler(message: BusMessage) -> None:
        assert isinstance(message, AgentRequest)
        bus.respond(message.reply(ResponseStatus.SUCCESS, data={"echo": message.action, **data}))

    return bus.subscribe(REQUEST_TYPE, handler, predicate=lambda m: m.recipient_id == backend_id)


class TestPublish:
    """Tests for fire-and-forget publish."""

    @pytest.mark.asyncio
    async def test_handlers_start_in_subscription_order(self, bus: MessageBus) -> None:
        """Test handlers are started in subscription order."""
        seen = []
        bus.subscribe("event", lambda m: seen.append("first"))
        bus.subscribe("event", lambda m: seen.append("second"))
        bus.subscribe("other", lambda m: seen.append("other"))

        assert bus.publish(BusMessage(message_type="event")) == 2
        await bus.drain()

        assert seen == ["first", "second"]

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, bus: MessageBus) -> None:
        """Test a raising handler affects neither publisher nor other handlers."""
        seen = []

        async def broken(message: BusMessage) -> None:
            raise RuntimeError("handler bug")

        bus.subscribe("event", broken)
        bus.subscribe("event", lambda m: seen.append(m.message_id))

        message = BusMessage(message_type="event")
        bus.publish(message)
        await bus.drain()

        assert seen == [message.message_id]
        assert bus.metrics.handler_errors == 1

    @pytest.mark.asyncio
    async def test_predicate_filters_messages(self, bus: MessageBus) -> None:
        """Test reactive rules only see messages their predicate accepts."""
        seen = []
        bus.subscribe("event", lambda m: seen.append(m.payload["n"]), predicate=lambda m: m.payload["n"] > 1)

        for n in range(4):
            bus.publish(BusMessage(message_type="event", payload={"n": n}))
        await bus.drain()

        assert seen == [2, 3]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus: MessageBus) -> None:
        """Test disposed subscriptions stop receiving messages."""
        seen = []
        with bus.subscribe("event", lambda m: seen.append(1)):
            bus.publish(BusMessage(message_type="event"))
            await bus.drain()

        bus.publish(BusMessage(message_type="event"))
        await bus.drain()

        assert seen == [1]
        assert bus.subscriber_count("event") == 0


class TestSendRespond:
    """Tests for correlated request/response."""

    @pytest.mark.asyncio
    async def test_send_returns_correlated_response(self, bus: MessageBus) -> None:
        """Test send resolves with the matching response."""
        auto_responder(bus, "lights")

        response = await bus.send(make_request("lights", "light.turn_on"), timeout=1.0)

        assert response.status == ResponseStatus.SUCCESS
        assert response.data == {"echo": "light.turn_on"}
        assert response.correlation_id is not None
        assert bus.pending_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_sends_are_not_mixed_up(self, bus: MessageBus) -> None:
        """Test concurrent requests each get their own response."""
        auto_responder(bus, "a", backend="a")
        auto_responder(bus, "b", backend="b")

        responses = await asyncio.gather(
            *(bus.send(make_request(target, "ping"), timeout=1.0) for target in ["a", "b", "a", "b"])
        )

        assert [r.data["backend"] for r in responses] == ["a", "b", "a", "b"]

    @pytest.mark.asyncio
    async def test_at_most_one_response_delivered(self, bus: MessageBus) -> None:
        """Test duplicates are dropped and recorded as anomalies."""
        responses_seen = []
        bus.subscribe(RESPONSE_TYPE, lambda m: responses_seen.append(m))

        async def double_responder(message: BusMessage) -> None:
            first = message.reply(ResponseStatus.SUCCESS, data={"n": 1})
            second = message.reply(ResponseStatus.SUCCESS, data={"n": 2})
            assert bus.respond(first) is True
            assert bus.respond(second) is False

        bus.subscribe(REQUEST_TYPE, double_responder)

        response = await bus.send(make_request("lights", "light.turn_on"), timeout=1.0)
        await bus.drain()

        assert response.data == {"n": 1}
        assert len(responses_seen) == 1
        assert [a["kind"] for a in bus.anomalies] == ["duplicate"]

    @pytest.mark.asyncio
    async def test_late_response_is_dropped(self, bus: MessageBus) -> None:
        """Test responses arriving after the timeout are dropped."""
        captured: list[AgentRequest] = []
        bus.subscribe(REQUEST_TYPE, lambda m: captured.append(m))

        with pytest.raises(RequestTimeoutError):
            await bus.send(make_request("lights", "light.turn_on"), timeout=0.05)

        late = captured[0].reply(ResponseStatus.SUCCESS)
        assert bus.respond(late) is False
        assert bus.anomalies[-1]["kind"] == "late"
        assert not bus.is_pending(captured[0].correlation_id)

    @pytest.mark.asyncio
    async def test_unknown_and_uncorrelated_responses(self, bus: MessageBus) -> None:
        """Test responses nobody waits for are dropped."""
        assert bus.respond(AgentResponse(correlation_id="nobody")) is False
        assert bus.respond(AgentResponse()) is False
        assert [a["kind"] for a in bus.anomalies] == ["unknown", "uncorrelated"]
        assert bus.metrics.anomalies == 2

    @pytest.mark.asyncio
    async def test_timeout_within_deadline(self, bus: MessageBus) -> None:
        """Test a silent backend times out within the deadline plus 50ms."""
        bus.subscribe(REQUEST_TYPE, lambda m: None)

        start = time.monotonic()
        with pytest.raises(RequestTimeoutError):
            await bus.send(make_request("silent", "ping"), timeout=0.2)
        elapsed = time.monotonic() - start

        assert 0.2 - 0.05 <= elapsed <= 0.2 + 0.05
        assert bus.metrics.timeouts == 1
        assert bus.pending_count == 0

    @pytest.mark.asyncio
    async def test_duplicate_pending_correlation_id_rejected(self, bus: MessageBus) -> None:
        """Test a caller-supplied correlation id cannot be reused while pending."""
        bus.subscribe(REQUEST_TYPE, lambda m: None)
        request = make_request("silent", "ping").model_copy(update={"correlation_id": "fixed"})

        first = asyncio.create_task(bus.send(request, timeout=0.5))
        await asyncio.sleep(0)

        with pytest.raises(RequestValidationError):
            await bus.send(request, timeout=0.5)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert not bus.is_pending("fixed")

    @pytest.mark.asyncio
    async def test_non_positive_timeout_rejected(self, bus: MessageBus) -> None:
        """Test invalid timeouts are rejected."""
        with pytest.raises(RequestValidationError):
            await bus.send(make_request("lights", "ping"), timeout=0)

    @pytest.mark.asyncio
    async def test_close_cancels_waiters(self, bus: MessageBus) -> None:
        """Test close() cancels pending sends."""
        bus.subscribe(REQUEST_TYPE, lambda m: None)
        pending = asyncio.create_task(bus.send(make_request("silent", "ping"), timeout=5.0))
        await asyncio.sleep(0)

        await bus.close()

        with pytest.raises(asyncio.CancelledError):
            await pending

"""Tests for the chat completion adapters."""

from __future__ import annotations

import json
import time

import httpx
import pytest

from home_orchestrator.core.errors import (
    BackendInvocationError,
    ErrorKind,
    RequestTimeoutError,
    TransientBackendError,
)
from home_orchestrator.core.models.capability import PrivacyClass
from home_orchestrator.core.models.message import ResponseStatus
from home_orchestrator.adapters.llm import OllamaAdapter, OpenAIReasoningAdapter
from tests.helpers import make_request


def completion(content: str, model: str = "qwen2.5:3b") -> dict:
    return {"model": model, "choices": [{"message": {"role": "assistant", "content": content}}]}


def deadline(seconds: float = 5.0) -> float:
    return time.time() + seconds


class Recorder:
    """httpx.MockTransport handler recording requests."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestOllamaAdapter:
    """Tests for OllamaAdapter."""

    def test_descriptor(self) -> None:
        """Test the local model declares itself local-only and free."""
        descriptor = OllamaAdapter().describe()

        assert descriptor.backend_id == "ollama"
        assert descriptor.privacy_class == PrivacyClass.LOCAL_ONLY
        assert descriptor.cost_per_call == 0.0
        assert descriptor.has_capability("text.generate")

    @pytest.mark.asyncio
    async def test_generate(self) -> None:
        """Test a prompt becomes a chat completion call."""
        recorder = Recorder(httpx.Response(200, json=completion("Lights are on.")))
        adapter = OllamaAdapter(transport=httpx.MockTransport(recorder))

        response = await adapter.invoke(
            make_request("ollama", "text.generate", prompt="Status?", system="Be brief"),
            deadline(),
        )

        assert response.status == ResponseStatus.SUCCESS
        assert response.data == {"content": "Lights are on.", "model": "qwen2.5:3b"}
        sent = recorder.requests[0]
        assert sent.url.path == "/v1/chat/completions"
        body = json.loads(sent.content)
        assert body["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Status?"},
        ]
        assert body["stream"] is False
        await adapter.disconnect()

    @pytest.mark.asyncio
    async def test_undeclared_action(self) -> None:
        """Test undeclared actions answer NotSupported without an HTTP call."""
        recorder = Recorder(httpx.Response(200, json=completion("x")))
        adapter = OllamaAdapter(transport=httpx.MockTransport(recorder))

        response = await adapter.invoke(make_request("ollama", "image.generate", prompt="cat"), deadline())

        assert response.status == ResponseStatus.NOT_SUPPORTED
        assert response.error_kind == ErrorKind.CAPABILITY_NOT_SUPPORTED
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_missing_prompt(self) -> None:
        """Test requests without prompt or messages fail validation."""
        adapter = OllamaAdapter(transport=httpx.MockTransport(Recorder(httpx.Response(200))))

        response = await adapter.invoke(make_request("ollama", "text.generate"), deadline())

        assert response.status == ResponseStatus.FAILED
        assert response.error_kind == ErrorKind.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self) -> None:
        """Test 5xx answers raise retryable errors."""
        adapter = OllamaAdapter(
            transport=httpx.MockTransport(Recorder(httpx.Response(503, text="loading model")))
        )

        with pytest.raises(TransientBackendError):
            await adapter.invoke(make_request("ollama", "text.generate", prompt="hi"), deadline())

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self) -> None:
        """Test transport failures raise retryable errors."""
        adapter = OllamaAdapter(transport=httpx.MockTransport(Recorder(httpx.ConnectError("refused"))))

        with pytest.raises(TransientBackendError):
            await adapter.invoke(make_request("ollama", "text.generate", prompt="hi"), deadline())

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Test HTTP timeouts raise RequestTimeoutError."""
        adapter = OllamaAdapter(transport=httpx.MockTransport(Recorder(httpx.ReadTimeout("slow"))))

        with pytest.raises(RequestTimeoutError):
            await adapter.invoke(make_request("ollama", "text.generate", prompt="hi"), deadline())

    @pytest.mark.asyncio
    async def test_passed_deadline(self) -> None:
        """Test no call is made once the deadline passed."""
        recorder = Recorder(httpx.Response(200, json=completion("late")))
        adapter = OllamaAdapter(transport=httpx.MockTransport(recorder))

        with pytest.raises(RequestTimeoutError):
            await adapter.invoke(make_request("ollama", "text.generate", prompt="hi"), time.time() - 1)
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_empty_choices(self) -> None:
        """Test completions without choices are backend errors."""
        adapter = OllamaAdapter(
            transport=httpx.MockTransport(Recorder(httpx.Response(200, json={"choices": []})))
        )

        with pytest.raises(BackendInvocationError, match="No choices"):
            await adapter.invoke(make_request("ollama", "text.generate", prompt="hi"), deadline())

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        """Test health checks hit the tags endpoint."""
        recorder = Recorder(httpx.Response(200, json={"models": []}))
        adapter = OllamaAdapter(transport=httpx.MockTransport(recorder))

        assert await adapter.connect() is True
        assert recorder.requests[0].url.path == "/api/tags"

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self) -> None:
        """Test unreachable servers are unhealthy."""
        adapter = OllamaAdapter(transport=httpx.MockTransport(Recorder(httpx.ConnectError("refused"))))

        assert await adapter.health_check() is False


class TestOpenAIReasoningAdapter:
    """Tests for OpenAIReasoningAdapter."""

    def test_requires_api_key(self) -> None:
        """Test the adapter refuses to start without an API key."""
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            OpenAIReasoningAdapter(api_key=None)

    def test_descriptor(self) -> None:
        """Test the remote service declares reasoning and may leave the device."""
        descriptor = OpenAIReasoningAdapter(api_key="sk-test").describe()

        assert descriptor.privacy_class == PrivacyClass.MAY_LEAVE_DEVICE
        assert descriptor.supports_reasoning
        assert descriptor.cost_per_call > 0

    @pytest.mark.asyncio
    async def test_messages_and_auth(self) -> None:
        """Test chat history is sent as-is with the bearer token."""
        recorder = Recorder(httpx.Response(200, json=completion("Plan ready.", model="gpt-4o-mini")))
        adapter = OpenAIReasoningAdapter(api_key="sk-test", transport=httpx.MockTransport(recorder))
        history = [{"role": "user", "content": "Plan my evening"}]

        response = await adapter.invoke(make_request("openai", "reasoning", messages=history), deadline())

        assert response.data["content"] == "Plan ready."
        sent = recorder.requests[0]
        assert sent.headers["Authorization"] == "Bearer sk-test"
        assert sent.url.path == "/v1/chat/completions"
        assert json.loads(sent.content)["messages"] == history

    @pytest.mark.asyncio
    async def test_unauthorized(self) -> None:
        """Test rejected credentials answer Unauthorized."""
        adapter = OpenAIReasoningAdapter(
            api_key="sk-bad",
            transport=httpx.MockTransport(Recorder(httpx.Response(401, json={"error": "invalid key"}))),
        )

        response = await adapter.invoke(make_request("openai", "reasoning", prompt="hi"), deadline())

        assert response.status == ResponseStatus.UNAUTHORIZED

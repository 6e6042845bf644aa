"""Language model backends speaking the chat completions API.

OllamaAdapter runs on-device and never lets data leave the home.
OpenAIReasoningAdapter is a remote reasoning service: more capable, costlier,
and only eligible for subtasks that are not privacy-sensitive.

Request parameters:
    prompt: User message (required unless messages is given)
    messages: Full chat history, used as-is
    system: Optional system prompt
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from home_orchestrator.adapters.http import HttpBackendAdapter
from home_orchestrator.core.errors import BackendInvocationError, ErrorKind
from home_orchestrator.core.models.capability import (
    REASONING_CAPABILITY,
    BackendKind,
    CapabilityDescriptor,
    PrivacyClass,
)
from home_orchestrator.core.models.message import AgentRequest, AgentResponse, ResponseStatus

logger = logging.getLogger(__name__)

OLLAMA_CAPABILITIES = ("text.generate", "intent.classify", "text.summarize")
OPENAI_CAPABILITIES = ("text.generate", "text.summarize", "plan.create", REASONING_CAPABILITY)


class ChatCompletionAdapter(HttpBackendAdapter):
    """Backend invoking a chat completions endpoint."""

    completions_path = "/chat/completions"
    temperature = 0.1

    def __init__(
        self,
        descriptor: CapabilityDescriptor,
        base_url: str,
        model: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(descriptor, base_url, timeout=timeout, headers=headers, transport=transport)
        self.model = model

    async def invoke(self, request: AgentRequest, deadline: float) -> AgentResponse:
        """Run one chat completion.

        Args:
            request: Request whose action is one of the declared capabilities
            deadline: Absolute deadline (unix seconds)

        Returns:
            Response with {"content", "model"} on success
        """
        if not self.descriptor.has_capability(request.action or ""):
            return self._unsupported(request)

        messages = self._messages(request.parameters)
        if not messages:
            return request.reply(
                ResponseStatus.FAILED,
                error_message="Either 'prompt' or 'messages' is required",
                error_kind=ErrorKind.VALIDATION_ERROR,
            )

        logger.info(f"[{self.backend_id}] {request.action} via {self.model}")
        response = await self._request(
            "POST",
            self.completions_path,
            deadline,
            json=self._body(messages),
        )
        error = self._error_reply(request, response)
        if error is not None:
            return error

        data = response.json()
        logger.debug(f"[{self.backend_id}] response: {data}")
        if "choices" not in data or not data["choices"]:
            raise BackendInvocationError("No choices in completion response", backend=self.backend_id)

        content = data["choices"][0]["message"]["content"]
        return request.reply(
            ResponseStatus.SUCCESS,
            data={"content": content, "model": data.get("model", self.model)},
        )

    def _body(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "temperature": self.temperature,
        }

    def _messages(self, parameters: dict[str, Any]) -> list[dict[str, str]]:
        if parameters.get("messages"):
            return list(parameters["messages"])

        prompt = parameters.get("prompt")
        if not prompt:
            return []
        messages = []
        if parameters.get("system"):
            messages.append({"role": "system", "content": parameters["system"]})
        messages.append({"role": "user", "content": prompt})
        return messages


class OllamaAdapter(ChatCompletionAdapter):
    """Local model served by Ollama."""

    completions_path = "/v1/chat/completions"
    health_path = "/api/tags"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "qwen2.5:3b",
        backend_id: str = "ollama",
        capabilities: Sequence[str] = OLLAMA_CAPABILITIES,
        latency_ms: float = 800.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Ollama adapter.

        Args:
            base_url: Ollama server URL
            model: Model name
            backend_id: Registry id
            capabilities: Declared capabilities
            latency_ms: Declared latency estimate (RPi5 class hardware is slow)
            timeout: HTTP timeout in seconds
            transport: Custom httpx transport
        """
        descriptor = CapabilityDescriptor(
            backend_id=backend_id,
            capabilities=frozenset(capabilities),
            cost_per_call=0.0,
            latency_ms=latency_ms,
            privacy_class=PrivacyClass.LOCAL_ONLY,
            kind=BackendKind.LOCAL_MODEL,
        )
        super().__init__(descriptor, base_url, model, timeout=timeout, transport=transport)


class OpenAIReasoningAdapter(ChatCompletionAdapter):
    """Remote reasoning service on the OpenAI API."""

    health_path = "/models"
    temperature = 0.7

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        backend_id: str = "openai",
        capabilities: Sequence[str] = OPENAI_CAPABILITIES,
        cost_per_call: float = 0.01,
        latency_ms: float = 1500.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize OpenAI adapter.

        Raises:
            ValueError: If no API key is given
        """
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required for the OpenAI backend")

        descriptor = CapabilityDescriptor(
            backend_id=backend_id,
            capabilities=frozenset(capabilities),
            cost_per_call=cost_per_call,
            latency_ms=latency_ms,
            privacy_class=PrivacyClass.MAY_LEAVE_DEVICE,
            kind=BackendKind.REMOTE_REASONING,
        )
        super().__init__(
            descriptor,
            base_url,
            model,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

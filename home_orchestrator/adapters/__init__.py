"""Execution backend adapters.

Available adapters:
    mock: In-process backend for testing and development
    llm: Ollama (local) and OpenAI (remote reasoning) chat completion backends
    homeassistant: Device control through the Home Assistant REST API
"""

from home_orchestrator.adapters.homeassistant import HomeAssistantAdapter
from home_orchestrator.adapters.llm import (
    ChatCompletionAdapter,
    OllamaAdapter,
    OpenAIReasoningAdapter,
)
from home_orchestrator.adapters.mock import MockBackend

__all__ = [
    "ChatCompletionAdapter",
    "HomeAssistantAdapter",
    "MockBackend",
    "OllamaAdapter",
    "OpenAIReasoningAdapter",
]

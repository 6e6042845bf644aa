"""Helpers shared by test modules."""

from __future__ import annotations

from typing import Any

from home_orchestrator.core.models.message import AgentRequest


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_request(recipient_id: str, action: str, **parameters: Any) -> AgentRequest:
    """Build a request addressed to a backend."""
    return AgentRequest(
        recipient_id=recipient_id,
        payload={"action": action, "parameters": parameters},
    )

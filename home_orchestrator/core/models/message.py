"""Wire-level messages exchanged over the message bus.

Shape (regardless of transport):
    {message_id, correlation_id?, sender_id, recipient_id, timestamp,
     priority, headers, payload}
Responses additionally carry {status, error_message?, error_kind?, data?}.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from home_orchestrator.core.errors import ErrorKind

REQUEST_TYPE = "agent.request"
RESPONSE_TYPE = "agent.response"
INTENT_RESULT_TYPE = "intent.result"
CIRCUIT_STATE_TYPE = "circuit.state"


class MessagePriority(int, Enum):
    """Message priority levels (lower value = more urgent)."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3


class ResponseStatus(str, Enum):
    """Outcome reported by a response."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    NOT_SUPPORTED = "not_supported"


class BusMessage(BaseModel):
    """Base message delivered to subscribers of its message_type."""

    message_type: str = Field(default="event", min_length=1)
    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    correlation_id: str | None = None
    sender_id: str = "orchestrator"
    recipient_id: str = "*"
    timestamp: float = Field(default_factory=time.time)
    priority: MessagePriority = MessagePriority.NORMAL
    headers: dict[str, str] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)


class AgentRequest(BusMessage):
    """Request addressed to one backend, usually expecting a reply."""

    message_type: str = REQUEST_TYPE

    @property
    def action(self) -> str | None:
        """Action name carried in the payload."""
        return self.payload.get("action")

    @property
    def parameters(self) -> dict[str, Any]:
        """Action parameters carried in the payload."""
        return self.payload.get("parameters", {})

    def reply(
        self,
        status: ResponseStatus,
        data: dict[str, Any] | None = None,
        error_message: str | None = None,
        error_kind: ErrorKind | None = None,
    ) -> AgentResponse:
        """Create the response correlated with this request."""
        return AgentResponse(
            correlation_id=self.correlation_id,
            sender_id=self.recipient_id,
            recipient_id=self.sender_id,
            priority=self.priority,
            headers=dict(self.headers),
            status=status,
            data=data,
            error_message=error_message,
            error_kind=error_kind,
        )


class AgentResponse(BusMessage):
    """Response correlated with an AgentRequest."""

    message_type: str = RESPONSE_TYPE
    status: ResponseStatus = ResponseStatus.SUCCESS
    error_message: str | None = None
    error_kind: ErrorKind | None = None
    data: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        """True for success and partial success."""
        return self.status in (ResponseStatus.SUCCESS, ResponseStatus.PARTIAL_SUCCESS)

"""Data models shared by the orchestration core.

These models are the common language between the orchestrator, the
message bus and backend adapters.
"""

from home_orchestrator.core.models.capability import (
    BackendKind,
    CapabilityDescriptor,
    CapabilityRequest,
    NegotiatedCapabilities,
    PrivacyClass,
)
from home_orchestrator.core.models.intent import (
    CompensationSpec,
    Intent,
    IntentTag,
    Subtask,
    SubtaskGraph,
)
from home_orchestrator.core.models.message import (
    AgentRequest,
    AgentResponse,
    BusMessage,
    MessagePriority,
    ResponseStatus,
)
from home_orchestrator.core.models.result import (
    OrchestratedResult,
    OverallStatus,
    SubtaskOutcome,
    SubtaskStatus,
)
from home_orchestrator.core.models.routing import RoutingDecision, RoutingRule
from home_orchestrator.core.models.workflow import (
    StepResult,
    StepState,
    WorkflowInstance,
    WorkflowState,
)

__all__ = [
    "AgentRequest",
    "AgentResponse",
    "BackendKind",
    "BusMessage",
    "CapabilityDescriptor",
    "CapabilityRequest",
    "CompensationSpec",
    "Intent",
    "IntentTag",
    "MessagePriority",
    "NegotiatedCapabilities",
    "OrchestratedResult",
    "OverallStatus",
    "PrivacyClass",
    "ResponseStatus",
    "RoutingDecision",
    "RoutingRule",
    "StepResult",
    "StepState",
    "Subtask",
    "SubtaskGraph",
    "SubtaskOutcome",
    "SubtaskStatus",
    "WorkflowInstance",
    "WorkflowState",
]

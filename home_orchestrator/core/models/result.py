"""Aggregated outcome of one intent."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from home_orchestrator.core.errors import ErrorKind
from home_orchestrator.core.models.routing import RoutingDecision
from home_orchestrator.core.models.workflow import WorkflowState


class OverallStatus(str, Enum):
    """Overall status of an intent."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class SubtaskStatus(str, Enum):
    """Final status of one subtask."""

    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"  # completed, then rolled back
    SKIPPED = "skipped"  # never started


class SubtaskOutcome(BaseModel):
    """Final status of one subtask with its data or error."""

    subtask_id: str
    status: SubtaskStatus
    backend_id: str | None = None
    data: dict[str, Any] | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None


class WorkflowSummary(BaseModel):
    """Terminal state of one workflow run for an intent."""

    workflow_id: str
    state: WorkflowState
    steps: list[str]
    unreconciled_steps: list[str] = Field(default_factory=list)


class OrchestratedResult(BaseModel):
    """Result of processing one intent.

    Attributes:
        intent_id: Intent processed
        status: success, partial_success or failed
        outcomes: Per-subtask outcomes in decomposition order
        failed_subtasks: Subtask ids that did not complete
        error_kind: First irrecoverable error kind (COMPENSATION_FAILURE when
            any workflow partially failed)
        unreconciled_steps: Steps whose compensation did not complete
        routing: Routing decisions made for this intent
        workflows: Terminal state of each workflow run
    """

    intent_id: str
    status: OverallStatus
    outcomes: list[SubtaskOutcome] = Field(default_factory=list)
    failed_subtasks: list[str] = Field(default_factory=list)
    error_kind: ErrorKind | None = None
    unreconciled_steps: list[str] = Field(default_factory=list)
    routing: list[RoutingDecision] = Field(default_factory=list)
    workflows: list[WorkflowSummary] = Field(default_factory=list)
    completed_at: float = Field(default_factory=time.time)

    def outcome(self, subtask_id: str) -> SubtaskOutcome:
        for outcome in self.outcomes:
            if outcome.subtask_id == subtask_id:
                return outcome
        raise KeyError(subtask_id)

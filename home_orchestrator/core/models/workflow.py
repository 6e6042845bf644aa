"""Saga workflow models."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from home_orchestrator.core.errors import (
    CompensationFailureError,
    ErrorKind,
    WorkflowFailedError,
)


class StepState(str, Enum):
    """Lifecycle of a workflow step."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowState(str, Enum):
    """Lifecycle of a workflow instance."""

    RUNNING = "running"
    COMPLETED = "completed"
    COMPENSATED = "compensated"
    PARTIALLY_FAILED = "partially_failed"


class StepResult(BaseModel):
    """Value returned by a successful step execution."""

    data: dict[str, Any] = Field(default_factory=dict)
    backend_id: str | None = None


class StepFailure(BaseModel):
    """Structured description of a step failure."""

    step_id: str
    kind: ErrorKind
    message: str
    occurred_at: float = Field(default_factory=time.monotonic)


class StepRecord(BaseModel):
    """Per-step state tracked by a workflow instance."""

    step_id: str
    state: StepState = StepState.PENDING
    depends_on: list[str] = Field(default_factory=list)
    result: StepResult | None = None
    failure: StepFailure | None = None
    compensated: bool = False


class WorkflowInstance(BaseModel):
    """One execution of a step plan.

    Attributes:
        workflow_id: Unique workflow identifier
        intent_id: Intent the plan belongs to (if any)
        state: Running, then Completed, Compensated or PartiallyFailed
        steps: Step records keyed by step id
        completion_order: Step ids in the order they reached Completed
        compensation_order: Step ids in the order compensation was invoked
        failure: First step failure that triggered compensation
        compensation_failures: Step id -> error message for failed compensations
    """

    workflow_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    intent_id: str | None = None
    state: WorkflowState = WorkflowState.RUNNING
    steps: dict[str, StepRecord] = Field(default_factory=dict)
    completion_order: list[str] = Field(default_factory=list)
    compensation_order: list[str] = Field(default_factory=list)
    failure: StepFailure | None = None
    compensation_failures: dict[str, str] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state != WorkflowState.RUNNING

    @property
    def unreconciled_steps(self) -> list[str]:
        """Steps whose compensation did not complete."""
        return sorted(self.compensation_failures)

    def step_state(self, step_id: str) -> StepState:
        return self.steps[step_id].state

    def raise_for_outcome(self) -> None:
        """Raise if the workflow did not complete.

        Raises:
            CompensationFailureError: If the instance is PartiallyFailed
            WorkflowFailedError: If the instance was Compensated
        """
        if self.state == WorkflowState.PARTIALLY_FAILED:
            raise CompensationFailureError(
                f"Workflow {self.workflow_id} partially failed; "
                f"unreconciled steps: {', '.join(self.unreconciled_steps)}",
                unreconciled=self.unreconciled_steps,
            )
        if self.state == WorkflowState.COMPENSATED and self.failure is not None:
            raise WorkflowFailedError(
                self.failure.message,
                step_id=self.failure.step_id,
                kind=self.failure.kind,
            )

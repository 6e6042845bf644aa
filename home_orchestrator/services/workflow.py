"""Saga workflow coordinator.

Executes a DAG of steps in waves: every step whose predecessors have all
completed runs concurrently, and the next wave starts only when the whole
current wave has resolved. When any step fails, every completed step is
compensated exactly once, in strict reverse order of completion,
regardless of its position in the DAG. A failed compensation is never
retried; the instance ends PartiallyFailed and reports which steps are
unreconciled.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from home_orchestrator.core.errors import (
    ErrorKind,
    RequestValidationError,
    error_kind_of,
)
from home_orchestrator.core.models.intent import find_cycle
from home_orchestrator.core.models.workflow import (
    StepFailure,
    StepRecord,
    StepResult,
    StepState,
    WorkflowInstance,
    WorkflowState,
)
from home_orchestrator.services.audit_log import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class WorkflowContext:
    """State shared by the steps of one workflow run."""

    workflow_id: str
    intent_id: str | None = None
    results: dict[str, StepResult] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    def result_of(self, step_id: str) -> StepResult | None:
        return self.results.get(step_id)


class Step(ABC):
    """A unit of work in a saga.

    Subclasses implement execute(). Override compensate() for steps with
    side effects; the default is a no-op, which is only valid for pure reads.
    """

    def __init__(
        self,
        step_id: str,
        depends_on: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        """Initialize step.

        Args:
            step_id: Identifier unique within the workflow
            depends_on: Step ids that must complete first
            timeout: Seconds allowed for execute() and compensate()
        """
        self.step_id = step_id
        self.depends_on = tuple(depends_on)
        self.timeout = timeout

    @abstractmethod
    async def execute(self, context: WorkflowContext) -> StepResult:
        """Perform the step. Raising marks the step Failed."""
        ...

    async def compensate(self, context: WorkflowContext) -> None:
        """Undo the step's effect."""
        return None

    @property
    def has_compensation(self) -> bool:
        return type(self).compensate is not Step.compensate

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(step_id='{self.step_id}')>"


class FunctionStep(Step):
    """Step built from plain async callables."""

    def __init__(
        self,
        step_id: str,
        execute: Callable[[WorkflowContext], Awaitable[Any]],
        compensate: Callable[[WorkflowContext], Awaitable[None]] | None = None,
        depends_on: Sequence[str] = (),
        timeout: float | None = None,
    ) -> None:
        super().__init__(step_id, depends_on, timeout)
        self._execute = execute
        self._compensate = compensate

    async def execute(self, context: WorkflowContext) -> StepResult:
        return _as_result(await self._execute(context))

    async def compensate(self, context: WorkflowContext) -> None:
        if self._compensate is not None:
            await self._compensate(context)

    @property
    def has_compensation(self) -> bool:
        return self._compensate is not None


def _as_result(value: Any) -> StepResult:
    if isinstance(value, StepResult):
        return value
    if value is None:
        return StepResult()
    if isinstance(value, dict):
        return StepResult(data=value)
    return StepResult(data={"value": value})


def validate_plan(steps: Sequence[Step]) -> None:
    """Check step ids are unique, predecessors exist and there is no cycle.

    Raises:
        RequestValidationError: If the plan is malformed
    """
    if not steps:
        raise RequestValidationError("Workflow plan has no steps")

    ids = [step.step_id for step in steps]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise RequestValidationError(f"Duplicate step ids: {duplicates}")

    known = set(ids)
    for step in steps:
        unknown = [d for d in step.depends_on if d not in known]
        if unknown:
            raise RequestValidationError(
                f"Step '{step.step_id}' depends on unknown steps: {unknown}"
            )

    find_cycle({step.step_id: list(step.depends_on) for step in steps})


class WorkflowCoordinator:
    """Runs step plans as sagas."""

    def __init__(
        self,
        audit_log: AuditLog | None = None,
        max_concurrent_steps: int = 20,
        default_step_timeout: float | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            audit_log: Append-only log receiving every transition
            max_concurrent_steps: Upper bound on steps executing at once
            default_step_timeout: Seconds allowed per step when the step sets none
        """
        self.audit_log = audit_log if audit_log is not None else AuditLog()
        self.default_step_timeout = default_step_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_steps)

    async def run(
        self,
        steps: Sequence[Step],
        intent_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> WorkflowInstance:
        """Execute a plan to a terminal state.

        Args:
            steps: Steps with predecessor edges forming a DAG
            intent_id: Intent the plan belongs to
            data: Initial shared data for the workflow context

        Returns:
            Instance in state Completed, Compensated or PartiallyFailed

        Raises:
            RequestValidationError: If the plan is not a valid DAG
        """
        validate_plan(steps)

        instance = WorkflowInstance(
            intent_id=intent_id,
            steps={
                step.step_id: StepRecord(step_id=step.step_id, depends_on=list(step.depends_on))
                for step in steps
            },
        )
        context = WorkflowContext(
            workflow_id=instance.workflow_id,
            intent_id=intent_id,
            data=dict(data or {}),
        )
        by_id = {step.step_id: step for step in steps}
        self._audit(instance, "workflow_started", detail={"steps": list(by_id)})
        logger.info(f"Workflow {instance.workflow_id[:8]} started ({len(steps)} steps)")

        wave = 0
        while True:
            ready = [
                step for step in steps
                if instance.steps[step.step_id].state == StepState.PENDING
                and all(
                    instance.steps[dep].state == StepState.COMPLETED
                    for dep in step.depends_on
                )
            ]
            if not ready:
                break

            wave += 1
            logger.debug(
                f"Workflow {instance.workflow_id[:8]} wave {wave}: "
                f"{[step.step_id for step in ready]}"
            )
            failures = await asyncio.gather(
                *(self._execute_step(instance, context, step) for step in ready)
            )
            if any(failure is not None for failure in failures):
                await self._compensate(instance, context, by_id)
                return instance

        instance.state = WorkflowState.COMPLETED
        self._audit(instance, "workflow_completed", state=instance.state.value)
        logger.info(f"Workflow {instance.workflow_id[:8]} completed")
        return instance

    def _timeout_for(self, step: Step) -> float | None:
        return step.timeout if step.timeout is not None else self.default_step_timeout

    async def _execute_step(
        self,
        instance: WorkflowInstance,
        context: WorkflowContext,
        step: Step,
    ) -> StepFailure | None:
        """Execute one step and record its outcome. Returns the failure, if any."""
        record = instance.steps[step.step_id]
        timeout = self._timeout_for(step)

        async with self._semaphore:
            self._set_state(instance, record, StepState.EXECUTING)
            try:
                if timeout is not None:
                    raw = await asyncio.wait_for(step.execute(context), timeout=timeout)
                else:
                    raw = await step.execute(context)
            except asyncio.TimeoutError:
                failure = StepFailure(
                    step_id=step.step_id,
                    kind=ErrorKind.TIMEOUT,
                    message=f"Step exceeded its {timeout}s deadline",
                )
            except Exception as e:
                failure = StepFailure(
                    step_id=step.step_id,
                    kind=error_kind_of(e),
                    message=str(e) or type(e).__name__,
                )
            else:
                result = _as_result(raw)
                record.result = result
                context.results[step.step_id] = result
                instance.completion_order.append(step.step_id)
                self._set_state(instance, record, StepState.COMPLETED)
                return None

        record.failure = failure
        if instance.failure is None:
            instance.failure = failure
        self._set_state(
            instance,
            record,
            StepState.FAILED,
            detail={"kind": failure.kind.value, "message": failure.message},
        )
        logger.warning(
            f"Workflow {instance.workflow_id[:8]} step '{step.step_id}' failed "
            f"({failure.kind.value}): {failure.message}"
        )
        return failure

    async def _compensate(
        self,
        instance: WorkflowInstance,
        context: WorkflowContext,
        by_id: dict[str, Step],
    ) -> None:
        """Compensate completed steps in reverse completion order, once each."""
        self._audit(
            instance,
            "compensation_started",
            detail={"completed": list(instance.completion_order)},
        )

        for step_id in reversed(instance.completion_order):
            step = by_id[step_id]
            record = instance.steps[step_id]
            instance.compensation_order.append(step_id)
            timeout = self._timeout_for(step)
            try:
                if timeout is not None:
                    await asyncio.wait_for(step.compensate(context), timeout=timeout)
                else:
                    await step.compensate(context)
            except Exception as e:
                message = str(e) or type(e).__name__
                instance.compensation_failures[step_id] = message
                self._audit(
                    instance,
                    "compensation_failed",
                    step_id=step_id,
                    detail={"message": message},
                )
                logger.error(
                    f"Workflow {instance.workflow_id[:8]} compensation of "
                    f"'{step_id}' failed: {message}"
                )
                continue

            record.compensated = True
            self._audit(instance, "step_compensated", step_id=step_id)

        if instance.compensation_failures:
            instance.state = WorkflowState.PARTIALLY_FAILED
            logger.error(
                f"Workflow {instance.workflow_id[:8]} PARTIALLY FAILED; "
                f"unreconciled steps: {instance.unreconciled_steps}"
            )
        else:
            instance.state = WorkflowState.COMPENSATED
            logger.info(f"Workflow {instance.workflow_id[:8]} compensated")

        self._audit(
            instance,
            "workflow_terminated",
            state=instance.state.value,
            detail={"unreconciled": instance.unreconciled_steps},
        )

    def _set_state(
        self,
        instance: WorkflowInstance,
        record: StepRecord,
        state: StepState,
        detail: dict[str, Any] | None = None,
    ) -> None:
        record.state = state
        self._audit(
            instance,
            "step_state",
            step_id=record.step_id,
            state=state.value,
            detail=detail or {},
        )

    def _audit(self, instance: WorkflowInstance, event: str, **fields: Any) -> None:
        self.audit_log.record(
            instance.workflow_id,
            event,
            intent_id=instance.intent_id,
            **fields,
        )

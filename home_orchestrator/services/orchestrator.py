"""Orchestrator: entry point for processing intents.

Flow:
    decompose -> route each subtask -> run each connected component of the
    DAG as one saga (components run concurrently) -> aggregate ->
    publish intent.result on the bus -> update the context store.

A routing failure marks only its own subtask failed. Independent subtasks
live in different components, so one failing never rolls back another;
dependent subtasks share a saga and are compensated together.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from home_orchestrator.core.errors import (
    BackendInvocationError,
    BackendUnavailableError,
    CapabilityNotSupportedError,
    CompensationFailureError,
    ErrorKind,
    OrchestrationError,
    RequestTimeoutError,
    RequestValidationError,
)
from home_orchestrator.core.interfaces.collaborators import ContextStore, IntentDecomposer
from home_orchestrator.core.models.intent import Intent, IntentTag, Subtask
from home_orchestrator.core.models.message import (
    INTENT_RESULT_TYPE,
    AgentRequest,
    AgentResponse,
    BusMessage,
    ResponseStatus,
)
from home_orchestrator.core.models.result import (
    OrchestratedResult,
    OverallStatus,
    SubtaskOutcome,
    SubtaskStatus,
    WorkflowSummary,
)
from home_orchestrator.core.models.routing import RoutingDecision
from home_orchestrator.core.models.workflow import StepResult, StepState, WorkflowInstance, WorkflowState
from home_orchestrator.services.dispatcher import deadline_header
from home_orchestrator.services.message_bus import MessageBus
from home_orchestrator.services.router import IntelligenceRouter
from home_orchestrator.services.workflow import Step, WorkflowContext, WorkflowCoordinator

logger = logging.getLogger(__name__)

ORCHESTRATOR_ID = "orchestrator"
CONTEXT_HISTORY_SIZE = 20

_ERRORS_BY_KIND: dict[ErrorKind, type[OrchestrationError]] = {
    ErrorKind.BACKEND_UNAVAILABLE: BackendUnavailableError,
    ErrorKind.CAPABILITY_NOT_SUPPORTED: CapabilityNotSupportedError,
    ErrorKind.TIMEOUT: RequestTimeoutError,
    ErrorKind.VALIDATION_ERROR: RequestValidationError,
    ErrorKind.BACKEND_ERROR: BackendInvocationError,
}


def error_from_response(response: AgentResponse, backend_id: str) -> OrchestrationError:
    """Turn a failed response into the matching exception."""
    if response.error_kind is not None:
        kind = response.error_kind
    elif response.status == ResponseStatus.TIMEOUT:
        kind = ErrorKind.TIMEOUT
    elif response.status == ResponseStatus.NOT_SUPPORTED:
        kind = ErrorKind.CAPABILITY_NOT_SUPPORTED
    else:
        kind = ErrorKind.BACKEND_ERROR

    message = response.error_message or f"Backend answered '{response.status.value}'"
    error_class = _ERRORS_BY_KIND.get(kind, BackendInvocationError)
    return error_class(message, backend=backend_id)


class SubtaskStep(Step):
    """Saga step delegating one subtask to its routed backend over the bus.

    Candidates are tried in routing order. BackendUnavailable moves on to
    the next candidate; any other failure fails the step.
    """

    def __init__(
        self,
        subtask: Subtask,
        bus: MessageBus,
        deadline_ms: float,
        decision: RoutingDecision | None = None,
        routing_error: OrchestrationError | None = None,
    ) -> None:
        super().__init__(subtask.subtask_id, subtask.depends_on, timeout=deadline_ms / 1000.0)
        self.subtask = subtask
        self.bus = bus
        self.decision = decision
        self.routing_error = routing_error
        self.executed_by: str | None = None

    @property
    def candidates(self) -> list[str]:
        return list(self.decision.candidates) if self.decision else []

    async def execute(self, context: WorkflowContext) -> StepResult:
        if self.routing_error is not None:
            raise self.routing_error
        if self.decision is None:
            raise BackendUnavailableError(f"Subtask '{self.step_id}' was not routed")

        deadline = time.time() + (self.timeout or 0)
        last_error: OrchestrationError | None = None

        for backend_id in self.candidates:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise RequestTimeoutError(
                    f"Deadline of subtask '{self.step_id}' passed", backend=backend_id
                )

            response = await self.bus.send(
                self._request(backend_id, context, deadline), timeout=remaining
            )
            if response.ok:
                self.executed_by = backend_id
                return StepResult(data=response.data or {}, backend_id=backend_id)

            error = error_from_response(response, backend_id)
            if error.kind != ErrorKind.BACKEND_UNAVAILABLE:
                raise error
            logger.info(
                f"Subtask '{self.step_id}': backend '{backend_id}' unavailable, "
                f"trying next candidate"
            )
            last_error = error

        raise last_error or BackendUnavailableError(
            f"No candidate backend for subtask '{self.step_id}'"
        )

    async def compensate(self, context: WorkflowContext) -> None:
        compensation = self.subtask.compensation
        if compensation is None or self.executed_by is None:
            return

        request = AgentRequest(
            sender_id=ORCHESTRATOR_ID,
            recipient_id=self.executed_by,
            headers=deadline_header(time.time() + (self.timeout or 0)),
            payload={
                "action": compensation.action,
                "parameters": dict(compensation.parameters),
                "subtask_id": self.step_id,
                "intent_id": context.intent_id,
                "compensates": self.subtask.effective_action,
            },
        )
        response = await self.bus.send(request, timeout=self.timeout)
        if not response.ok:
            raise CompensationFailureError(
                f"Compensation '{compensation.action}' on '{self.executed_by}' failed: "
                f"{response.error_message or response.status.value}",
                unreconciled=[self.step_id],
            )

    @property
    def has_compensation(self) -> bool:
        return self.subtask.compensation is not None

    def _request(self, backend_id: str, context: WorkflowContext, deadline: float) -> AgentRequest:
        payload: dict[str, Any] = {
            "action": self.subtask.effective_action,
            "parameters": dict(self.subtask.parameters),
            "subtask_id": self.step_id,
            "intent_id": context.intent_id,
        }
        if self.decision is not None and backend_id == self.decision.backend_id:
            payload["substitutions"] = dict(self.decision.negotiated.substitutions)
        dependencies = {
            dep: context.results[dep].data
            for dep in self.depends_on
            if dep in context.results
        }
        if dependencies:
            payload["dependencies"] = dependencies
        return AgentRequest(
            sender_id=ORCHESTRATOR_ID,
            recipient_id=backend_id,
            headers=deadline_header(deadline),
            payload=payload,
        )


class Orchestrator:
    """Processes intents end to end."""

    def __init__(
        self,
        router: IntelligenceRouter,
        bus: MessageBus,
        coordinator: WorkflowCoordinator,
        decomposer: IntentDecomposer,
        context_store: ContextStore,
        default_deadline_ms: float = 5000.0,
        local_only_default: bool = False,
    ) -> None:
        """Initialize orchestrator.

        Args:
            router: Picks a backend per subtask
            bus: Message bus used for backend requests and result events
            coordinator: Runs step plans as sagas
            decomposer: Turns intents into subtask DAGs
            context_store: Per-subject context updated after each intent
            default_deadline_ms: Deadline of subtasks that set none
            local_only_default: Treat every intent as local-only
        """
        self.router = router
        self.bus = bus
        self.coordinator = coordinator
        self.decomposer = decomposer
        self.context_store = context_store
        self.default_deadline_ms = default_deadline_ms
        self.local_only_default = local_only_default

    async def process_intent(self, intent: Intent) -> OrchestratedResult:
        """Process an intent to an aggregated result.

        Args:
            intent: Intent to fulfil

        Returns:
            Result with overall status, per-subtask outcomes and error kinds

        Raises:
            RequestValidationError: If the intent cannot be decomposed into a valid DAG
        """
        start = time.perf_counter()
        graph = await self.decomposer.decompose(intent)
        graph.validate_dag()
        if len(graph) == 0:
            raise RequestValidationError(f"Intent {intent.intent_id} has no subtasks")

        local_only = (
            intent.local_only
            or intent.has_tag(IntentTag.PRIVACY_SENSITIVE)
            or self.local_only_default
        )
        decisions: dict[str, RoutingDecision] = {}
        routing_errors: dict[str, OrchestrationError] = {}
        for subtask in graph.subtasks:
            try:
                decisions[subtask.subtask_id] = self.router.route(
                    subtask,
                    local_only=local_only,
                    default_deadline_ms=self.default_deadline_ms,
                )
            except (CapabilityNotSupportedError, BackendUnavailableError) as e:
                logger.warning(f"Subtask '{subtask.subtask_id}' could not be routed: {e}")
                routing_errors[subtask.subtask_id] = e

        components = graph.components()
        instances = await asyncio.gather(
            *(
                self.coordinator.run(
                    [
                        SubtaskStep(
                            subtask,
                            self.bus,
                            deadline_ms=(
                                subtask.deadline_ms
                                if subtask.deadline_ms is not None
                                else self.default_deadline_ms
                            ),
                            decision=decisions.get(subtask.subtask_id),
                            routing_error=routing_errors.get(subtask.subtask_id),
                        )
                        for subtask in component
                    ],
                    intent_id=intent.intent_id,
                    data={"subject_id": intent.subject_id},
                )
                for component in components
            )
        )

        result = self._aggregate(intent, graph.subtasks, list(instances), decisions)
        logger.info(
            f"Intent {intent.intent_id} -> {result.status.value} "
            f"({len(graph)} subtasks, {len(components)} workflows, "
            f"{(time.perf_counter() - start) * 1000:.1f}ms)"
        )

        self._publish(result)
        await self._update_context(intent, result)
        return result

    def _aggregate(
        self,
        intent: Intent,
        subtasks: list[Subtask],
        instances: list[WorkflowInstance],
        decisions: dict[str, RoutingDecision],
    ) -> OrchestratedResult:
        instance_of = {
            step_id: instance
            for instance in instances
            for step_id in instance.steps
        }

        outcomes = [self._outcome(subtask, instance_of[subtask.subtask_id]) for subtask in subtasks]
        completed = [o for o in outcomes if o.status == SubtaskStatus.COMPLETED]
        failed = [o.subtask_id for o in outcomes if o.status != SubtaskStatus.COMPLETED]

        if not failed:
            status = OverallStatus.SUCCESS
        elif completed:
            status = OverallStatus.PARTIAL_SUCCESS
        else:
            status = OverallStatus.FAILED

        unreconciled = sorted(
            step_id for instance in instances for step_id in instance.unreconciled_steps
        )
        error_kind: ErrorKind | None = None
        if unreconciled:
            error_kind = ErrorKind.COMPENSATION_FAILURE
        else:
            failures = [i.failure for i in instances if i.failure is not None]
            if failures:
                error_kind = min(failures, key=lambda f: f.occurred_at).kind
            else:
                error_kind = next(
                    (o.error_kind for o in outcomes if o.status == SubtaskStatus.FAILED),
                    None,
                )

        return OrchestratedResult(
            intent_id=intent.intent_id,
            status=status,
            outcomes=outcomes,
            failed_subtasks=failed,
            error_kind=error_kind,
            unreconciled_steps=unreconciled,
            routing=[decisions[s.subtask_id] for s in subtasks if s.subtask_id in decisions],
            workflows=[
                WorkflowSummary(
                    workflow_id=instance.workflow_id,
                    state=instance.state,
                    steps=list(instance.steps),
                    unreconciled_steps=instance.unreconciled_steps,
                )
                for instance in instances
            ],
        )

    def _outcome(self, subtask: Subtask, instance: WorkflowInstance) -> SubtaskOutcome:
        record = instance.steps[subtask.subtask_id]
        backend_id = record.result.backend_id if record.result else None
        outcome = SubtaskOutcome(subtask_id=subtask.subtask_id, status=SubtaskStatus.COMPLETED, backend_id=backend_id)

        if record.state == StepState.FAILED and record.failure is not None:
            outcome.status = SubtaskStatus.FAILED
            outcome.error_kind = record.failure.kind
            outcome.error_message = record.failure.message
        elif record.state == StepState.PENDING:
            outcome.status = SubtaskStatus.SKIPPED
            if instance.failure is not None:
                outcome.error_message = f"Not started: '{instance.failure.step_id}' failed"
        elif subtask.subtask_id in instance.compensation_failures:
            outcome.status = SubtaskStatus.FAILED
            outcome.error_kind = ErrorKind.COMPENSATION_FAILURE
            outcome.error_message = instance.compensation_failures[subtask.subtask_id]
        elif instance.state != WorkflowState.COMPLETED:
            outcome.status = SubtaskStatus.COMPENSATED
        else:
            outcome.data = record.result.data if record.result else None
        return outcome

    def _publish(self, result: OrchestratedResult) -> None:
        self.bus.publish(
            BusMessage(
                message_type=INTENT_RESULT_TYPE,
                sender_id=ORCHESTRATOR_ID,
                correlation_id=result.intent_id,
                payload=result.model_dump(mode="json"),
            )
        )

    async def _update_context(self, intent: Intent, result: OrchestratedResult) -> None:
        """Record the outcome in the subject's context. Failures are logged, not raised."""
        try:
            context = await self.context_store.get(intent.subject_id) or {}
            history = list(context.get("intents", []))
            history.append(
                {
                    "intent_id": intent.intent_id,
                    "status": result.status.value,
                    "failed_subtasks": result.failed_subtasks,
                    "completed_at": result.completed_at,
                }
            )
            context["intents"] = history[-CONTEXT_HISTORY_SIZE:]
            context["last_intent_id"] = intent.intent_id
            await self.context_store.put(intent.subject_id, context)
        except Exception as e:
            logger.warning(f"Failed to update context for '{intent.subject_id}': {e}")

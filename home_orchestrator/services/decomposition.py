"""Default intent decomposer.

Intent understanding happens upstream; by the time an intent reaches the
core its payload already names the work to do. The payload holds either a
plan of subtasks:

    {"subtasks": [{"subtask_id": "lights", "domain": "light.turn_on", ...}, ...]}

or a single subtask:

    {"domain": "weather.forecast", "parameters": {...}}

Intent tags are propagated to every subtask:
- privacy_sensitive -> subtask.privacy_sensitive
- requires_creativity -> subtask.requires_reasoning
- latency_bound -> deadline tightened to the latency-bound budget
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from home_orchestrator.core.errors import RequestValidationError
from home_orchestrator.core.models.intent import Intent, IntentTag, Subtask, SubtaskGraph

logger = logging.getLogger(__name__)


class PayloadPlanDecomposer:
    """Builds a SubtaskGraph from the plan carried in the intent payload."""

    def __init__(self, latency_bound_deadline_ms: float = 1500.0) -> None:
        self.latency_bound_deadline_ms = latency_bound_deadline_ms

    async def decompose(self, intent: Intent) -> SubtaskGraph:
        """Turn an intent into a validated subtask DAG.

        Raises:
            RequestValidationError: If the payload holds no valid plan
        """
        raw_subtasks = self._raw_subtasks(intent.payload)
        if not raw_subtasks:
            raise RequestValidationError(f"Intent {intent.intent_id} carries no subtasks")

        subtasks: list[Subtask] = []
        for index, raw in enumerate(raw_subtasks):
            if not isinstance(raw, dict):
                raise RequestValidationError(f"Subtask #{index} is not an object")
            try:
                subtask = Subtask(**raw)
            except ValidationError as e:
                raise RequestValidationError(f"Invalid subtask #{index}: {e}") from e
            subtasks.append(self._apply_tags(subtask, intent))

        graph = SubtaskGraph(subtasks=subtasks)
        graph.validate_dag()
        logger.debug(
            f"Decomposed intent {intent.intent_id} into {len(graph)} subtasks: "
            f"{[s.subtask_id for s in graph.subtasks]}"
        )
        return graph

    def _raw_subtasks(self, payload: dict[str, Any]) -> list[Any]:
        if "subtasks" in payload:
            subtasks = payload["subtasks"]
            if not isinstance(subtasks, list):
                raise RequestValidationError("'subtasks' must be a list")
            return subtasks
        if "domain" in payload:
            return [payload]
        return []

    def _apply_tags(self, subtask: Subtask, intent: Intent) -> Subtask:
        update: dict[str, Any] = {}
        if intent.has_tag(IntentTag.PRIVACY_SENSITIVE):
            update["privacy_sensitive"] = True
        if intent.has_tag(IntentTag.REQUIRES_CREATIVITY):
            update["requires_reasoning"] = True
        if intent.has_tag(IntentTag.LATENCY_BOUND):
            current = subtask.deadline_ms
            if current is None or current > self.latency_bound_deadline_ms:
                update["deadline_ms"] = self.latency_bound_deadline_ms
        return subtask.model_copy(update=update) if update else subtask

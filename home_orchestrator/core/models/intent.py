"""Intent and subtask models.

An Intent is a user-level goal created at the system boundary. The
decomposer turns it into a SubtaskGraph: a DAG of Subtasks, each handled by
one backend.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from home_orchestrator.core.errors import RequestValidationError
from home_orchestrator.core.models.capability import CapabilityRequest


def _new_id() -> str:
    return uuid.uuid4().hex


class IntentTag(str, Enum):
    """Classification tags attached to an intent."""

    PRIVACY_SENSITIVE = "privacy_sensitive"
    LATENCY_BOUND = "latency_bound"
    REQUIRES_CREATIVITY = "requires_creativity"


class Intent(BaseModel):
    """User-level goal entering the orchestration core.

    Attributes:
        intent_id: Unique intent identifier
        subject_id: User/household the intent belongs to (context store key)
        payload: Opaque payload produced by intent understanding
        tags: Classification tags
        local_only: Caller's privacy setting demanding on-device processing
    """

    model_config = ConfigDict(frozen=True)

    intent_id: str = Field(default_factory=_new_id)
    subject_id: str = Field(default="default", min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    tags: frozenset[IntentTag] = Field(default_factory=frozenset)
    local_only: bool = False

    def has_tag(self, tag: IntentTag) -> bool:
        """Check if the intent carries a classification tag."""
        return tag in self.tags


class CompensationSpec(BaseModel):
    """Action that undoes a subtask's effect on the same backend."""

    model_config = ConfigDict(frozen=True)

    action: str = Field(..., min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class Subtask(BaseModel):
    """One unit of delegated work derived from an Intent.

    Attributes:
        subtask_id: Identifier unique within its graph
        domain: Capability tag of the skill handling it (e.g. 'light.turn_on')
        action: Action name sent to the backend (defaults to domain)
        parameters: Parameter bag for the backend
        required_capabilities: Must be satisfied by the backend (defaults to [domain])
        optional_capabilities: Used if the backend provides them
        alternatives: Requested capability -> acceptable substitutes
        depends_on: Subtask ids that must complete first
        deadline_ms: Time budget for this subtask (None = orchestrator default)
        privacy_sensitive: Must be processed on-device
        requires_reasoning: Needs creative/open-ended reasoning
        compensation: Undo action; None for pure reads
    """

    subtask_id: str = Field(default_factory=_new_id, min_length=1)
    domain: str = Field(..., min_length=1)
    action: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    required_capabilities: list[str] = Field(default_factory=list)
    optional_capabilities: list[str] = Field(default_factory=list)
    alternatives: dict[str, list[str]] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    deadline_ms: float | None = Field(default=None, gt=0)
    privacy_sensitive: bool = False
    requires_reasoning: bool = False
    compensation: CompensationSpec | None = None

    @property
    def effective_action(self) -> str:
        """Action name sent to the backend."""
        return self.action or self.domain

    def capability_request(self) -> CapabilityRequest:
        """Build the capability request used for negotiation."""
        required = self.required_capabilities or [self.domain]
        return CapabilityRequest(
            required=tuple(required),
            optional=tuple(self.optional_capabilities),
            alternatives={k: tuple(v) for k, v in self.alternatives.items()},
        )


class SubtaskGraph(BaseModel):
    """DAG of subtasks for one intent."""

    subtasks: list[Subtask] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.subtasks)

    def get(self, subtask_id: str) -> Subtask:
        """Look up a subtask by id."""
        for subtask in self.subtasks:
            if subtask.subtask_id == subtask_id:
                return subtask
        raise KeyError(subtask_id)

    def validate_dag(self) -> None:
        """Check ids are unique, dependencies exist and there is no cycle.

        Raises:
            RequestValidationError: If the graph is malformed
        """
        ids = [s.subtask_id for s in self.subtasks]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise RequestValidationError(f"Duplicate subtask ids: {duplicates}")

        known = set(ids)
        for subtask in self.subtasks:
            unknown = [d for d in subtask.depends_on if d not in known]
            if unknown:
                raise RequestValidationError(
                    f"Subtask '{subtask.subtask_id}' depends on unknown subtasks: {unknown}"
                )

        dependencies = {s.subtask_id: list(s.depends_on) for s in self.subtasks}
        find_cycle(dependencies)

    def components(self) -> list[list[Subtask]]:
        """Split into weakly connected components, preserving input order."""
        neighbours: dict[str, set[str]] = defaultdict(set)
        for subtask in self.subtasks:
            for dep in subtask.depends_on:
                neighbours[subtask.subtask_id].add(dep)
                neighbours[dep].add(subtask.subtask_id)

        component_of: dict[str, int] = {}
        groups: list[list[str]] = []
        for subtask in self.subtasks:
            if subtask.subtask_id in component_of:
                continue
            index = len(groups)
            members: list[str] = []
            stack = [subtask.subtask_id]
            while stack:
                current = stack.pop()
                if current in component_of:
                    continue
                component_of[current] = index
                members.append(current)
                stack.extend(neighbours[current] - component_of.keys())
            groups.append(members)

        result: list[list[Subtask]] = [[] for _ in groups]
        for subtask in self.subtasks:
            result[component_of[subtask.subtask_id]].append(subtask)
        return result


def find_cycle(dependencies: dict[str, list[str]]) -> None:
    """Raise RequestValidationError if the dependency map contains a cycle."""
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(node: str, path: list[str]) -> None:
        if node in done:
            return
        if node in visiting:
            cycle = path[path.index(node):] + [node]
            raise RequestValidationError(f"Dependency cycle: {' -> '.join(cycle)}")
        visiting.add(node)
        for dep in dependencies.get(node, []):
            visit(dep, path + [node])
        visiting.discard(node)
        done.add(node)

    for node in dependencies:
        visit(node, [])

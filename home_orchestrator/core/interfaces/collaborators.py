"""External collaborator protocols.

The orchestrator depends on intent decomposition and context storage only
through these narrow interfaces.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from home_orchestrator.core.models.intent import Intent, SubtaskGraph

Context = dict[str, Any]


@runtime_checkable
class IntentDecomposer(Protocol):
    """Turns an intent into a subtask DAG (e.g. an intent-understanding module)."""

    async def decompose(self, intent: Intent) -> SubtaskGraph:
        ...


@runtime_checkable
class ContextStore(Protocol):
    """Opaque key-value state per subject. The schema of Context is not defined here."""

    async def get(self, subject_id: str) -> Context | None:
        ...

    async def put(self, subject_id: str, context: Context) -> None:
        ...

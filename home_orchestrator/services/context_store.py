"""In-memory context store keyed by subject id."""

from __future__ import annotations

import asyncio
import copy
import logging

from home_orchestrator.core.interfaces.collaborators import Context

logger = logging.getLogger(__name__)


class InMemoryContextStore:
    """Process-local context store.

    Values are deep-copied on the way in and out so callers never share
    mutable state through the store.
    """

    def __init__(self) -> None:
        self._contexts: dict[str, Context] = {}
        self._lock = asyncio.Lock()

    async def get(self, subject_id: str) -> Context | None:
        async with self._lock:
            context = self._contexts.get(subject_id)
            return copy.deepcopy(context) if context is not None else None

    async def put(self, subject_id: str, context: Context) -> None:
        async with self._lock:
            self._contexts[subject_id] = copy.deepcopy(context)
        logger.debug(f"Context updated for subject '{subject_id}'")

    def __len__(self) -> int:
        return len(self._contexts)

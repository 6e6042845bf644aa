"""Append-only audit log of workflow transitions.

Every workflow state change is appended as one event. Events are kept in
memory per workflow and optionally mirrored to a JSON-lines file for
offline replay.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AuditEvent(BaseModel):
    """One workflow transition."""

    workflow_id: str
    event: str
    intent_id: str | None = None
    step_id: str | None = None
    state: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class AuditLog:
    """Append-only store of workflow events."""

    def __init__(self, path: str | Path | None = None, max_workflows: int = 1000) -> None:
        """Initialize audit log.

        Args:
            path: Optional JSON-lines file events are appended to
            max_workflows: Workflows kept in memory (oldest evicted first)
        """
        self.path = Path(path) if path else None
        self.max_workflows = max_workflows
        self._events: OrderedDict[str, list[AuditEvent]] = OrderedDict()

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Audit log mirrored to {self.path}")

    def append(self, event: AuditEvent) -> None:
        """Append an event."""
        events = self._events.setdefault(event.workflow_id, [])
        events.append(event)
        while len(self._events) > self.max_workflows:
            self._events.popitem(last=False)

        if self.path is not None:
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(event.model_dump_json() + "\n")
            except OSError as e:
                logger.error(f"Failed to write audit event to {self.path}: {e}")

    def record(self, workflow_id: str, event: str, **fields: Any) -> AuditEvent:
        """Build and append an event."""
        entry = AuditEvent(workflow_id=workflow_id, event=event, **fields)
        self.append(entry)
        return entry

    def replay(self, workflow_id: str) -> list[AuditEvent]:
        """Events of one workflow in append order."""
        return list(self._events.get(workflow_id, []))

    def workflows(self) -> list[str]:
        return list(self._events.keys())

    @staticmethod
    def load(path: str | Path) -> list[AuditEvent]:
        """Read events back from a JSON-lines file."""
        events: list[AuditEvent] = []
        with Path(path).open(encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line:
                    events.append(AuditEvent(**json.loads(line)))
        return events

    def __len__(self) -> int:
        return sum(len(events) for events in self._events.values())

"""Routing decision model."""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from home_orchestrator.core.models.capability import NegotiatedCapabilities


class RoutingRule(str, Enum):
    """Policy rule that produced a routing decision, in priority order."""

    PRIVACY_LOCAL_ONLY = "privacy_local_only"
    DEADLINE_EXCLUSION = "deadline_exclusion"
    REASONING_PREFERRED = "reasoning_preferred"
    LOWEST_COST = "lowest_cost"


class RoutingDecision(BaseModel):
    """Backend chosen for a subtask. Immutable once made.

    Attributes:
        subtask_id: Subtask this decision is for
        backend_id: Chosen backend
        score: Weighted score of the chosen backend
        rule: First policy rule that matched
        fallbacks: Next-best candidates, tried when the chosen one is unavailable
        negotiated: Capability negotiation result for the chosen backend
        decided_at: Unix timestamp of the decision
    """

    model_config = ConfigDict(frozen=True)

    subtask_id: str
    backend_id: str
    score: float
    rule: RoutingRule
    fallbacks: tuple[str, ...] = ()
    negotiated: NegotiatedCapabilities
    decided_at: float = Field(default_factory=time.time)

    @property
    def candidates(self) -> tuple[str, ...]:
        """Chosen backend followed by fallbacks."""
        return (self.backend_id, *self.fallbacks)

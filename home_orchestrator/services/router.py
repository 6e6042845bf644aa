"""Intelligence router: picks a backend for each subtask.

Policy, evaluated in fixed priority order:
1. privacy-sensitive subtask or local-only caller -> local-only backends
2. deadline tighter than a backend's declared latency -> exclude backend
3. requires reasoning -> prefer reasoning-capable backends, even if costlier
4. otherwise -> prefer the lowest-cost backends

Rules 1 and 2 exclude and apply together; rules 3 and 4 are preferences
that narrow the candidate set only when the preferred subset is non-empty.
The decision records the first rule that matched.

Remaining candidates are scored by a weighted sum of capability match
completeness, inverse cost, inverse latency and recent success rate.
Ties go to lower latency, then lower cost, then earlier registration.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from home_orchestrator.core.errors import (
    BackendUnavailableError,
    CapabilityNotSupportedError,
)
from home_orchestrator.core.models.capability import (
    CapabilityDescriptor,
    CapabilityRequest,
    NegotiatedCapabilities,
)
from home_orchestrator.core.models.intent import Subtask
from home_orchestrator.core.models.routing import RoutingDecision, RoutingRule
from home_orchestrator.core.registry.capability_registry import CapabilityRegistry
from home_orchestrator.services.circuit_breaker import CircuitBreakerBoard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingWeights:
    """Weights of the scoring terms."""

    capability: float = 0.4
    cost: float = 0.2
    latency: float = 0.2
    success: float = 0.2


@dataclass
class _Candidate:
    descriptor: CapabilityDescriptor
    negotiated: NegotiatedCapabilities
    priority: int
    score: float = 0.0

    @property
    def backend_id(self) -> str:
        return self.descriptor.backend_id

    def sort_key(self) -> tuple[float, float, float, int]:
        return (
            -round(self.score, 9),
            self.descriptor.latency_ms,
            self.descriptor.cost_per_call,
            self.priority,
        )


class IntelligenceRouter:
    """Chooses a backend for a subtask using the routing policy."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        breakers: CircuitBreakerBoard,
        weights: RoutingWeights | None = None,
        history_size: int = 1000,
    ) -> None:
        """Initialize router.

        Args:
            registry: Registry of backends and descriptors
            breakers: Circuit breakers consulted for availability and success rate
            weights: Scoring weights
            history_size: Number of decisions kept for audit
        """
        self.registry = registry
        self.breakers = breakers
        self.weights = weights or RoutingWeights()
        self.decisions: deque[RoutingDecision] = deque(maxlen=history_size)

    def route(
        self,
        subtask: Subtask,
        local_only: bool = False,
        default_deadline_ms: float | None = None,
    ) -> RoutingDecision:
        """Produce a routing decision for a subtask.

        Args:
            subtask: Subtask to route
            local_only: Caller's privacy setting demanding local processing
            default_deadline_ms: Deadline enforced when the subtask sets none

        Returns:
            Decision naming the chosen backend and ranked fallbacks

        Raises:
            CapabilityNotSupportedError: If no backend satisfies the capability,
                privacy and deadline constraints
            BackendUnavailableError: If capable backends exist but all of
                their circuits reject calls
        """
        request = subtask.capability_request()
        candidates = self._capable(request)
        if not candidates:
            raise CapabilityNotSupportedError(
                f"No backend provides {list(request.required)} for subtask '{subtask.subtask_id}'",
                missing=list(request.required),
            )

        matched: list[RoutingRule] = []

        if subtask.privacy_sensitive or local_only:
            matched.append(RoutingRule.PRIVACY_LOCAL_ONLY)
            candidates = [c for c in candidates if c.descriptor.is_local]
            if not candidates:
                raise CapabilityNotSupportedError(
                    f"No local-only backend provides {list(request.required)} "
                    f"for privacy-sensitive subtask '{subtask.subtask_id}'",
                    missing=list(request.required),
                )

        deadline_ms = subtask.deadline_ms if subtask.deadline_ms is not None else default_deadline_ms
        if deadline_ms is not None:
            too_slow = [c for c in candidates if c.descriptor.latency_ms > deadline_ms]
            if too_slow:
                matched.append(RoutingRule.DEADLINE_EXCLUSION)
                candidates = [c for c in candidates if c not in too_slow]
            if not candidates:
                raise CapabilityNotSupportedError(
                    f"No backend meets the {deadline_ms:.0f}ms deadline "
                    f"of subtask '{subtask.subtask_id}'",
                    missing=list(request.required),
                )

        available = [c for c in candidates if self.breakers.is_available(c.backend_id)]
        if not available:
            raise BackendUnavailableError(
                f"All backends for subtask '{subtask.subtask_id}' are unavailable "
                f"({', '.join(c.backend_id for c in candidates)})"
            )
        candidates = available

        if subtask.requires_reasoning:
            matched.append(RoutingRule.REASONING_PREFERRED)
            reasoning = [c for c in candidates if c.descriptor.supports_reasoning]
            if reasoning:
                candidates = reasoning
        else:
            matched.append(RoutingRule.LOWEST_COST)
            cheapest = min(c.descriptor.cost_per_call for c in candidates)
            candidates = [c for c in candidates if c.descriptor.cost_per_call == cheapest]

        for candidate in available:
            candidate.score = self._score(candidate, request)
        ranked = sorted(candidates, key=_Candidate.sort_key)
        others = sorted((c for c in available if c not in ranked), key=_Candidate.sort_key)
        chosen = ranked[0]

        decision = RoutingDecision(
            subtask_id=subtask.subtask_id,
            backend_id=chosen.backend_id,
            score=chosen.score,
            rule=matched[0],
            fallbacks=tuple(c.backend_id for c in ranked[1:] + others),
            negotiated=chosen.negotiated,
        )
        self.decisions.append(decision)
        logger.info(
            f"Routed subtask '{subtask.subtask_id}' to '{decision.backend_id}' "
            f"(rule={decision.rule.value}, score={decision.score:.3f}, "
            f"fallbacks={list(decision.fallbacks)})"
        )
        return decision

    def score(self, backend_id: str, subtask: Subtask) -> float:
        """Score one backend for a subtask, ignoring policy rules."""
        request = subtask.capability_request()
        candidate = _Candidate(
            descriptor=self.registry.get_descriptor(backend_id),
            negotiated=self.registry.negotiate(backend_id, request),
            priority=self.registry.priority_of(backend_id),
        )
        return self._score(candidate, request)

    def _capable(self, request: CapabilityRequest) -> list[_Candidate]:
        """Backends whose negotiation of the required capabilities succeeds."""
        capable: list[_Candidate] = []
        for descriptor in self.registry.descriptors():
            try:
                negotiated = self.registry.negotiate(descriptor.backend_id, request)
            except CapabilityNotSupportedError:
                continue
            capable.append(
                _Candidate(
                    descriptor=descriptor,
                    negotiated=negotiated,
                    priority=self.registry.priority_of(descriptor.backend_id),
                )
            )
        return capable

    def _score(self, candidate: _Candidate, request: CapabilityRequest) -> float:
        descriptor = candidate.descriptor
        completeness = candidate.negotiated.completeness(request)
        inverse_cost = 1.0 / (1.0 + descriptor.cost_per_call)
        inverse_latency = 1.0 / (1.0 + descriptor.latency_ms / 1000.0)
        success = self.breakers.success_rate(candidate.backend_id)
        return (
            self.weights.capability * completeness
            + self.weights.cost * inverse_cost
            + self.weights.latency * inverse_latency
            + self.weights.success * success
        )


"""Registry of execution backends and their declared capabilities.

Backends are registered explicitly at startup through a typed call; there
is no runtime discovery. Registration order is the routing tie-break
priority (first registered wins).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass

from home_orchestrator.core.errors import (
    BackendUnavailableError,
    CapabilityNotSupportedError,
    RequestValidationError,
)
from home_orchestrator.core.interfaces.backend import BackendAdapter
from home_orchestrator.core.models.capability import (
    CapabilityDescriptor,
    CapabilityRequest,
    NegotiatedCapabilities,
)

logger = logging.getLogger(__name__)


@dataclass
class BackendEntry:
    """A registered backend."""

    adapter: BackendAdapter
    descriptor: CapabilityDescriptor
    priority: int
    healthy: bool = True


class CapabilityRegistry:
    """Registry of backend adapters keyed by backend id.

    Example:
        >>> registry = CapabilityRegistry()
        >>> registry.register(MockBackend(backend_id="lights", capabilities=["light.turn_on"]))
        >>> registry.find_candidates("light.turn_on")
        ['lights']
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._entries: dict[str, BackendEntry] = {}
        self._priority = itertools.count()

    def register(self, adapter: BackendAdapter) -> CapabilityDescriptor:
        """Register a backend adapter.

        Args:
            adapter: Adapter instance implementing BackendAdapter

        Returns:
            The descriptor the adapter declared

        Raises:
            RequestValidationError: If the adapter is not a BackendAdapter or
                its backend id is already registered
        """
        if not isinstance(adapter, BackendAdapter):
            raise RequestValidationError(
                f"{type(adapter).__name__} does not implement BackendAdapter"
            )

        descriptor = adapter.describe()
        if descriptor.backend_id in self._entries:
            raise RequestValidationError(
                f"Backend '{descriptor.backend_id}' already registered"
            )

        self._entries[descriptor.backend_id] = BackendEntry(
            adapter=adapter,
            descriptor=descriptor,
            priority=next(self._priority),
        )
        logger.info(
            f"Registered backend: {descriptor.backend_id} "
            f"(capabilities={sorted(descriptor.capabilities)}, "
            f"privacy={descriptor.privacy_class.value})"
        )
        return descriptor

    def deregister(self, backend_id: str) -> bool:
        """Remove a backend.

        Args:
            backend_id: Backend to remove

        Returns:
            True if removed, False if not registered
        """
        if self._entries.pop(backend_id, None) is not None:
            logger.info(f"Deregistered backend: {backend_id}")
            return True
        return False

    def __contains__(self, backend_id: object) -> bool:
        return backend_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def list_backends(self) -> list[str]:
        """Backend ids in registration order."""
        return [entry.descriptor.backend_id for entry in self._ordered()]

    def get_adapter(self, backend_id: str) -> BackendAdapter:
        """Get the adapter for a backend.

        Raises:
            BackendUnavailableError: If the backend is not registered
        """
        return self._entry(backend_id).adapter

    def get_descriptor(self, backend_id: str) -> CapabilityDescriptor:
        """Get the descriptor for a backend.

        Raises:
            BackendUnavailableError: If the backend is not registered
        """
        return self._entry(backend_id).descriptor

    def priority_of(self, backend_id: str) -> int:
        """Registration priority (lower registered earlier)."""
        return self._entry(backend_id).priority

    def descriptors(self) -> list[CapabilityDescriptor]:
        """All descriptors in registration order."""
        return [entry.descriptor for entry in self._ordered()]

    def find_candidates(self, capability: str) -> list[str]:
        """Backends providing a capability natively or via declared substitute.

        Args:
            capability: Required capability name

        Returns:
            Backend ids ordered by registration priority
        """
        return [
            entry.descriptor.backend_id
            for entry in self._ordered()
            if entry.descriptor.has_capability(capability)
            or entry.descriptor.substitute_for(capability) is not None
        ]

    def negotiate(self, backend_id: str, request: CapabilityRequest) -> NegotiatedCapabilities:
        """Negotiate a capability request against one backend.

        Required capabilities must all be satisfied, natively or by a
        substitute (caller-accepted first, then backend-declared). Optional
        capabilities are included if present and omitted otherwise.

        Args:
            backend_id: Backend to negotiate against
            request: Requested capabilities

        Returns:
            Negotiation result recording granted, substituted and omitted capabilities

        Raises:
            CapabilityNotSupportedError: If a required capability is missing
            BackendUnavailableError: If the backend is not registered
        """
        descriptor = self.get_descriptor(backend_id)
        granted: list[str] = []
        substitutions: dict[str, str] = {}
        missing: list[str] = []
        omitted: list[str] = []

        for capability, is_required in itertools.chain(
            ((c, True) for c in request.required),
            ((c, False) for c in request.optional),
        ):
            if descriptor.has_capability(capability):
                granted.append(capability)
                continue
            substitute = self._find_substitute(descriptor, capability, request)
            if substitute is not None:
                substitutions[capability] = substitute
            elif is_required:
                missing.append(capability)
            else:
                omitted.append(capability)

        if missing:
            raise CapabilityNotSupportedError(
                f"Missing required capabilities: {', '.join(missing)}",
                missing=missing,
                backend=backend_id,
            )

        if substitutions:
            logger.debug(f"[{backend_id}] Negotiated with substitutions: {substitutions}")

        return NegotiatedCapabilities(
            backend_id=backend_id,
            granted=tuple(granted),
            substitutions=substitutions,
            omitted=tuple(omitted),
        )

    def is_healthy(self, backend_id: str) -> bool:
        """Last known health of a backend."""
        return self._entry(backend_id).healthy

    def mark_health(self, backend_id: str, healthy: bool) -> None:
        """Record the result of a health check."""
        entry = self._entry(backend_id)
        if entry.healthy != healthy:
            logger.warning(
                f"[{backend_id}] Health changed: {'healthy' if healthy else 'unhealthy'}"
            )
        entry.healthy = healthy

    async def check_health(self) -> dict[str, bool]:
        """Run health checks on every backend concurrently.

        Returns:
            Backend id -> healthy
        """
        entries = self._ordered()
        results = await asyncio.gather(
            *(entry.adapter.health_check() for entry in entries),
            return_exceptions=True,
        )
        health: dict[str, bool] = {}
        for entry, result in zip(entries, results):
            backend_id = entry.descriptor.backend_id
            if isinstance(result, Exception):
                logger.error(f"[{backend_id}] Health check failed: {result}")
                healthy = False
            else:
                healthy = bool(result)
            self.mark_health(backend_id, healthy)
            health[backend_id] = healthy
        return health

    def _find_substitute(
        self,
        descriptor: CapabilityDescriptor,
        capability: str,
        request: CapabilityRequest,
    ) -> str | None:
        for alternative in request.alternatives.get(capability, ()):
            if descriptor.has_capability(alternative):
                return alternative
        return descriptor.substitute_for(capability)

    def _entry(self, backend_id: str) -> BackendEntry:
        entry = self._entries.get(backend_id)
        if entry is None:
            raise BackendUnavailableError(f"Backend '{backend_id}' is not registered")
        return entry

    def _ordered(self) -> list[BackendEntry]:
        return sorted(self._entries.values(), key=lambda e: e.priority)

    def __repr__(self) -> str:
        return f"<CapabilityRegistry({len(self)} backends: {', '.join(self.list_backends())})>"

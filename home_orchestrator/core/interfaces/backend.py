"""Backend adapter protocol definition.

Defines the interface every execution backend implements: local model
runners, remote reasoning services and direct device-control functions.
Concrete domains are distinguished by the capabilities they declare, not
by subclassing.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from home_orchestrator.core.models.capability import CapabilityDescriptor
from home_orchestrator.core.models.message import AgentRequest, AgentResponse


@runtime_checkable
class BackendAdapter(Protocol):
    """Protocol for execution backend adapters.

    Using Protocol allows structural subtyping: any class that implements
    these methods is a backend.

    Lifecycle:
        1. Create instance with configuration
        2. Register with the CapabilityRegistry (calls describe())
        3. connect() at container startup
        4. invoke() / health_check() while running
        5. disconnect() at shutdown

    Example Implementation:
        >>> class EchoBackend:
        ...     def describe(self) -> CapabilityDescriptor:
        ...         return CapabilityDescriptor(backend_id="echo", capabilities=["echo"])
        ...
        ...     async def connect(self) -> bool:
        ...         return True
        ...
        ...     async def disconnect(self) -> None:
        ...         pass
        ...
        ...     async def health_check(self) -> bool:
        ...         return True
        ...
        ...     async def invoke(self, request: AgentRequest, deadline: float) -> AgentResponse:
        ...         return request.reply(ResponseStatus.SUCCESS, data=request.payload)
    """

    @abstractmethod
    def describe(self) -> CapabilityDescriptor:
        """Declared capabilities, cost, latency and privacy class."""
        ...

    @abstractmethod
    async def connect(self) -> bool:
        """Establish connections. Returns True on success."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connections and release resources."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backend is reachable and functioning.

        Consulted opportunistically before a circuit breaker probe.

        Returns:
            True if healthy, False otherwise
        """
        ...

    @abstractmethod
    async def invoke(self, request: AgentRequest, deadline: float) -> AgentResponse:
        """Execute a request.

        Args:
            request: Request carrying the action and parameters in its payload
            deadline: Absolute deadline (unix seconds)

        Returns:
            Response correlated with the request

        Raises:
            TransientBackendError: For failures worth retrying
            BackendInvocationError: For other execution failures
        """
        ...

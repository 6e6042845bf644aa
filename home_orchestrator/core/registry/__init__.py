"""Backend registration and capability negotiation."""

from home_orchestrator.core.registry.capability_registry import (
    BackendEntry,
    CapabilityRegistry,
)

__all__ = [
    "BackendEntry",
    "CapabilityRegistry",
]

"""Protocol definitions for backends and external collaborators."""

from home_orchestrator.core.interfaces.backend import BackendAdapter
from home_orchestrator.core.interfaces.collaborators import (
    Context,
    ContextStore,
    IntentDecomposer,
)

__all__ = [
    "BackendAdapter",
    "Context",
    "ContextStore",
    "IntentDecomposer",
]

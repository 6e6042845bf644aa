"""Shared dependencies for API routers."""

from __future__ import annotations

from fastapi import Depends, Request

from home_orchestrator.container import OrchestrationContainer
from home_orchestrator.services.orchestrator import Orchestrator


def get_container(request: Request) -> OrchestrationContainer:
    """Container created by the application lifespan."""
    return request.app.state.container


def get_orchestrator(
    container: OrchestrationContainer = Depends(get_container),
) -> Orchestrator:
    return container.orchestrator

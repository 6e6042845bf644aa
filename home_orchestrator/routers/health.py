"""Health and status endpoints.

Provides liveness and readiness probes plus backend and workflow
inspection for operators.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from home_orchestrator.container import OrchestrationContainer
from home_orchestrator.routers.dependencies import get_container

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Basic liveness health check.

    Returns:
        Status message (always returns 200 OK if service is running)
    """
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(
    container: OrchestrationContainer = Depends(get_container),
) -> JSONResponse:
    """Deep readiness health check.

    Runs every backend's health check and reports circuit states.

    Returns:
        HTTP 200 if every backend is healthy, HTTP 503 otherwise
    """
    results = await container.registry.check_health()
    checks: dict[str, str] = {"api": "ok"}
    for backend_id, healthy in results.items():
        state = container.breakers.state_of(backend_id).value
        checks[backend_id] = "ok" if healthy else f"unhealthy (circuit {state})"

    all_ok = all(v == "ok" for v in checks.values())
    status_code = status.HTTP_200_OK if all_ok else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ok" if all_ok else "degraded",
            "checks": checks,
        },
    )


@router.get("/backends")
async def list_backends(
    container: OrchestrationContainer = Depends(get_container),
) -> dict[str, Any]:
    """Registered backends with descriptors, health and circuit status."""
    breaker_status = container.breakers.statuses()
    backends = []
    for backend_id in container.registry.list_backends():
        descriptor = container.registry.get_descriptor(backend_id)
        backends.append(
            {
                "descriptor": descriptor.model_dump(mode="json"),
                "healthy": container.registry.is_healthy(backend_id),
                "circuit": breaker_status.get(
                    backend_id,
                    {"state": container.breakers.state_of(backend_id).value},
                ),
            }
        )
    return {"backends": backends, "bus": container.bus.metrics.to_dict()}


@router.get("/workflows/{workflow_id}/events")
async def workflow_events(
    workflow_id: str,
    container: OrchestrationContainer = Depends(get_container),
) -> dict[str, Any]:
    """Audit trail of one workflow."""
    events = container.audit_log.replay(workflow_id)
    if not events:
        raise HTTPException(status_code=404, detail=f"Unknown workflow: {workflow_id}")
    return {
        "workflow_id": workflow_id,
        "events": [event.model_dump(mode="json") for event in events],
    }

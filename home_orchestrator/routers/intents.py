"""Intent processing endpoint."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from home_orchestrator.core.errors import RequestValidationError
from home_orchestrator.core.models.intent import Intent, IntentTag
from home_orchestrator.core.models.result import OrchestratedResult
from home_orchestrator.routers.dependencies import get_orchestrator
from home_orchestrator.services.orchestrator import Orchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


class IntentRequest(BaseModel):
    """Intent submitted by the intent-understanding layer."""

    intent_id: str | None = None
    subject_id: str = Field(default="default", min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    tags: list[IntentTag] = Field(default_factory=list)
    local_only: bool = False

    def to_intent(self) -> Intent:
        fields: dict[str, Any] = {
            "subject_id": self.subject_id,
            "payload": self.payload,
            "tags": frozenset(self.tags),
            "local_only": self.local_only,
        }
        if self.intent_id:
            fields["intent_id"] = self.intent_id
        return Intent(**fields)


@router.post("/intents", response_model=OrchestratedResult)
async def process_intent(
    request: IntentRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> OrchestratedResult:
    """Process an intent.

    Returns:
        Aggregated result (200 even for partial or failed outcomes)

    Raises:
        HTTPException: 422 if the intent has no valid subtask plan
    """
    intent = request.to_intent()
    try:
        return await orchestrator.process_intent(intent)
    except RequestValidationError as e:
        logger.warning(f"Rejected intent {intent.intent_id}: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error_kind": e.kind.value, "message": e.message},
        ) from e

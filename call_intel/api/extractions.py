"""
API Router — Extraction Endpoints.

Ad-hoc extraction of a transcript, the review queue for low-confidence
extractions, and manual overrides.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from call_intel.api.deps import Services, get_current_user, get_services
from call_intel.logging_config import get_logger
from call_intel.schemas.extraction import AppointmentExtraction, ExtractionResult, ExtractionReviewUpdate
from call_intel.schemas.feedback import ManualOverrideRequest, OverrideData

logger = get_logger(__name__)
router = APIRouter(prefix="/extractions", tags=["Extractions"])


class ExtractRequest(BaseModel):
    transcript: str
    caller_phone: Optional[str] = None


class OverrideRequest(BaseModel):
    call_id: str
    override_data: OverrideData
    reason: str = ""


class OverrideResponse(BaseModel):
    extraction_id: str
    status: str = "overridden"


@router.post("/extract", response_model=ExtractionResult)
async def extract_transcript(
    body: ExtractRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> ExtractionResult:
    """Run extraction on a transcript without persisting anything."""
    return await services.engine.extract(body.transcript, caller_phone=body.caller_phone)


@router.get("/pending")
async def get_pending_reviews(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Unreviewed extractions below the review threshold or with issues, newest first."""
    items = await services.reviews.get_pending_reviews(user_id, limit=limit)
    return {
        "data": [item.model_dump(mode="json") for item in items],
        "total": len(items),
    }


@router.post("/override", response_model=OverrideResponse)
async def create_manual_override(
    body: OverrideRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> OverrideResponse:
    """Replace a call's extraction with reviewer-supplied values."""
    extraction_id = await services.feedback.create_manual_override(
        ManualOverrideRequest(
            user_id=user_id,
            call_id=body.call_id,
            override_data=body.override_data,
            reason=body.reason,
        )
    )
    return OverrideResponse(extraction_id=extraction_id)


@router.get("/{extraction_id}", response_model=AppointmentExtraction)
async def get_extraction(
    extraction_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> AppointmentExtraction:
    return await services.reviews.get_extraction(user_id, extraction_id)


@router.put("/{extraction_id}/review", response_model=AppointmentExtraction)
async def review_extraction(
    extraction_id: str,
    body: ExtractionReviewUpdate,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> AppointmentExtraction:
    """Apply a reviewer's edits and mark the extraction reviewed."""
    return await services.reviews.review_extraction(user_id, extraction_id, body)

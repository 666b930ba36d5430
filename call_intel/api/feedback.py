"""
API Router — Feedback Endpoints.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from call_intel.api.deps import Services, get_current_user, get_services
from call_intel.schemas.feedback import FeedbackCategory, FeedbackCreate, FeedbackRecord, FeedbackSummary

router = APIRouter(prefix="/feedback", tags=["Feedback"])


class FeedbackRequest(BaseModel):
    extraction_id: str
    category: FeedbackCategory
    rating: int
    original_value: Any = None
    corrected_value: Any = None
    comment: str | None = None


@router.post("/", response_model=FeedbackRecord, status_code=201)
async def submit_feedback(
    body: FeedbackRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> FeedbackRecord:
    """Record a rating and move the extraction's confidence accordingly."""
    return await services.feedback.submit_feedback(FeedbackCreate(user_id=user_id, **body.model_dump()))


@router.get("/summary", response_model=FeedbackSummary)
async def get_feedback_summary(
    days: int = Query(default=30),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> FeedbackSummary:
    return await services.feedback.get_feedback_summary(user_id, days=days)


@router.get("/calls/{call_id}", response_model=list[FeedbackRecord])
async def get_call_feedback(
    call_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> list[FeedbackRecord]:
    """Feedback history for one call, oldest first."""
    return await services.feedback.get_call_feedback_history(user_id, call_id)

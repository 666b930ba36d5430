"""
Data models for reviewer feedback on extractions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from call_intel.schemas.extraction import TimeFlexibility, UrgencyLevel


class FeedbackCategory(str, Enum):
    CUSTOMER_NAME_CORRECTION = "CUSTOMER_NAME_CORRECTION"
    SERVICE_TYPE_CORRECTION = "SERVICE_TYPE_CORRECTION"
    ADDRESS_CORRECTION = "ADDRESS_CORRECTION"
    DATE_TIME_CORRECTION = "DATE_TIME_CORRECTION"
    PHONE_EMAIL_CORRECTION = "PHONE_EMAIL_CORRECTION"
    URGENCY_CORRECTION = "URGENCY_CORRECTION"
    PRICE_CORRECTION = "PRICE_CORRECTION"
    DESCRIPTION_CORRECTION = "DESCRIPTION_CORRECTION"
    APPOINTMENT_EXISTS = "APPOINTMENT_EXISTS"
    NO_APPOINTMENT = "NO_APPOINTMENT"
    TRANSCRIPTION_ERROR = "TRANSCRIPTION_ERROR"
    MULTIPLE_APPOINTMENTS = "MULTIPLE_APPOINTMENTS"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"


class FeedbackCreate(BaseModel):
    """A reviewer's correction of one extraction."""
    user_id: str
    extraction_id: str
    category: FeedbackCategory
    rating: int
    original_value: Any = None
    corrected_value: Any = None
    comment: Optional[str] = None


class FeedbackRecord(BaseModel):
    """Append-only feedback event."""
    id: str
    user_id: str
    call_id: Optional[str] = None
    extraction_id: str
    category: FeedbackCategory
    rating: int = Field(ge=1, le=5)
    original_value: Any = None
    corrected_value: Any = None
    comment: Optional[str] = None
    is_model_improvement: bool = False
    is_manual_override: bool = False
    confidence_delta: float = 0.0
    extraction_confidence: Optional[float] = None  # after the delta was applied
    created_at: datetime


class OverrideData(BaseModel):
    """Replacement values for every reviewable extraction field."""
    has_appointment: bool
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    service_type: Optional[str] = None
    job_description: Optional[str] = None
    urgency_level: Optional[UrgencyLevel] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    time_flexibility: Optional[TimeFlexibility] = None
    service_address: Optional[str] = None
    quoted_price: Optional[float] = None
    budget_mentioned: Optional[float] = None
    pricing_discussion: Optional[str] = None


class ManualOverrideRequest(BaseModel):
    user_id: str
    call_id: str
    override_data: OverrideData
    reason: str = ""


class CategoryCount(BaseModel):
    category: FeedbackCategory
    count: int


class FeedbackSummary(BaseModel):
    total_feedbacks: int = 0
    average_rating: float = 0.0
    improvement_rate: float = 0.0
    confidence_impact: float = 0.0
    common_issues: list[CategoryCount] = Field(default_factory=list)

"""
Data models for structured appointment extraction results.

``AppointmentData`` is the contract the structured-extraction model must
satisfy (camelCase on the wire). ``AppointmentExtraction`` is the persisted
record owned by the call.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


class UrgencyLevel(str, Enum):
    EMERGENCY = "emergency"
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"
    ROUTINE = "routine"


class TimeFlexibility(str, Enum):
    STRICT = "strict"
    FLEXIBLE = "flexible"
    ANY_TIME = "any_time"


# Fields a reviewer may rewrite; manual overrides replace all of them at once.
REVIEWABLE_FIELDS: tuple[str, ...] = (
    "has_appointment",
    "customer_name",
    "customer_phone",
    "customer_email",
    "service_type",
    "job_description",
    "urgency_level",
    "preferred_date",
    "preferred_time",
    "time_flexibility",
    "service_address",
    "quoted_price",
    "budget_mentioned",
    "pricing_discussion",
)


def normalize_confidence(value: Any) -> float:
    """
    Coerce a confidence into [0, 1].

    Values in (1, 100] are read as percentages. Anything unusable is 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    if 1.0 < number <= 100.0:
        number = number / 100.0
    return min(1.0, max(0.0, number))


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value.strip() if isinstance(value, str) else value


class AppointmentData(BaseModel):
    """Appointment fields as returned by the extraction model."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    has_appointment: bool = False
    appointment_count: int = Field(default=0, ge=0)
    confidence: float = 0.0

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
    address_confidence: Optional[float] = None

    quoted_price: Optional[float] = None
    budget_mentioned: Optional[float] = None
    pricing_discussion: Optional[str] = None

    issues: list[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("has_appointment", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("appointment_count", mode="before")
    @classmethod
    def _null_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> float:
        return normalize_confidence(value)

    @field_validator("address_confidence", mode="before")
    @classmethod
    def _normalize_address_confidence(cls, value: Any) -> Optional[float]:
        return None if value is None else normalize_confidence(value)

    @field_validator(
        "customer_name",
        "customer_phone",
        "customer_email",
        "service_type",
        "job_description",
        "preferred_date",
        "preferred_time",
        "service_address",
        "pricing_discussion",
        "notes",
        mode="before",
    )
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        return _blank_to_none(value)

    @field_validator("urgency_level", "time_flexibility", mode="before")
    @classmethod
    def _lenient_enum(cls, value: Any, info: ValidationInfo) -> Any:
        # Unknown labels from the model mean "unspecified", not a bad payload
        if not isinstance(value, str):
            return None
        label = value.strip().lower().replace(" ", "_").replace("-", "_")
        enum_type = UrgencyLevel if info.field_name == "urgency_level" else TimeFlexibility
        try:
            return enum_type(label)
        except ValueError:
            return None

    @field_validator("quoted_price", "budget_mentioned", mode="before")
    @classmethod
    def _money(cls, value: Any) -> Any:
        if isinstance(value, str):
            cleaned = value.replace("$", "").replace(",", "").strip()
            try:
                return float(cleaned) if cleaned else None
            except ValueError:
                return None
        return value

    @field_validator("issues", mode="before")
    @classmethod
    def _issue_list(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item).strip() for item in value if str(item).strip()]


class ExtractionResult(BaseModel):
    """Reported outcome of one extraction attempt. Never raised."""

    success: bool
    data: Optional[AppointmentData] = None
    error: Optional[str] = None
    processing_time_ms: int = 0
    raw_extraction: Optional[dict[str, Any]] = None


class AppointmentExtraction(BaseModel):
    """Persisted extraction for one call."""

    id: str
    call_id: str
    user_id: str
    customer_id: Optional[str] = None

    has_appointment: bool = False
    appointment_count: int = 0

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
    address_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    quoted_price: Optional[float] = None
    budget_mentioned: Optional[float] = None
    pricing_discussion: Optional[str] = None

    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)
    has_issues: bool = False
    is_reviewed: bool = False
    manual_override: bool = False
    review_notes: Optional[str] = None
    feedback_count: int = 0

    extraction_model: Optional[str] = None
    processing_time_ms: Optional[int] = None
    raw_extraction: Optional[dict[str, Any]] = None

    created_at: datetime
    updated_at: datetime


class ExtractionReviewUpdate(BaseModel):
    """Partial reviewer edit of an extraction (fields left unset are kept)."""

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
    quoted_price: Optional[float] = Field(default=None, ge=0)
    budget_mentioned: Optional[float] = Field(default=None, ge=0)
    pricing_discussion: Optional[str] = None
    review_notes: Optional[str] = None

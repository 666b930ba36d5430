"""
Feedback Engine.

Records reviewer corrections against extractions and recalibrates the
extraction's confidence by a fixed weight per feedback category:

    delta = weight * (rating - 3) / 2

so rating 3 is neutral, 5 adds the full weight and 1 removes it. Feedback
records are append-only; the confidence change is applied atomically at
the store and a snapshot of the resulting confidence is kept on the record.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from call_intel.db import RecordStore
from call_intel.errors import ConflictError, NotFoundError, ValidationError
from call_intel.logging_config import get_logger
from call_intel.schemas.extraction import REVIEWABLE_FIELDS
from call_intel.schemas.feedback import (
    CategoryCount,
    FeedbackCategory,
    FeedbackCreate,
    FeedbackRecord,
    FeedbackSummary,
    ManualOverrideRequest,
)
from call_intel.services.notifications import NotificationSink

logger = get_logger(__name__)

# How diagnostic each category is of a model error
CATEGORY_WEIGHTS: dict[FeedbackCategory, float] = {
    FeedbackCategory.CUSTOMER_NAME_CORRECTION: 0.15,
    FeedbackCategory.SERVICE_TYPE_CORRECTION: 0.12,
    FeedbackCategory.ADDRESS_CORRECTION: 0.10,
    FeedbackCategory.DATE_TIME_CORRECTION: 0.10,
    FeedbackCategory.PHONE_EMAIL_CORRECTION: 0.08,
    FeedbackCategory.URGENCY_CORRECTION: 0.05,
    FeedbackCategory.PRICE_CORRECTION: 0.08,
    FeedbackCategory.DESCRIPTION_CORRECTION: 0.05,
    FeedbackCategory.APPOINTMENT_EXISTS: 0.20,
    FeedbackCategory.NO_APPOINTMENT: 0.25,
    FeedbackCategory.TRANSCRIPTION_ERROR: 0.30,
    FeedbackCategory.MULTIPLE_APPOINTMENTS: 0.18,
    FeedbackCategory.MANUAL_OVERRIDE: 0.35,
}
DEFAULT_WEIGHT = 0.05

MIN_RATING = 1
MAX_RATING = 5
NUMERIC_TOLERANCE = 1e-6


def category_weight(category: Any) -> float:
    try:
        return CATEGORY_WEIGHTS.get(FeedbackCategory(category), DEFAULT_WEIGHT)
    except ValueError:
        return DEFAULT_WEIGHT


def confidence_adjustment(category: Any, rating: int) -> float:
    return round(category_weight(category) * (rating - 3) / 2, 6)


def validate_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}")
    return rating


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return all(_is_blank(item) for item in (value.values() if isinstance(value, dict) else value))
    return False


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace("$", "").replace(",", "").strip())
        except ValueError:
            return None
    return None


def materially_different(original: Any, corrected: Any) -> bool:
    """
    Whether a correction changes anything beyond formatting.

    Strings compare casefolded and whitespace-collapsed, numbers within a
    small tolerance, dicts and lists element by element. A missing
    corrected value is never material.
    """
    if corrected is None:
        return False
    if original is None:
        return not _is_blank(corrected)

    if isinstance(original, dict) or isinstance(corrected, dict):
        if not (isinstance(original, dict) and isinstance(corrected, dict)):
            return True
        return any(
            materially_different(original.get(key), corrected.get(key))
            for key in corrected
        )

    if isinstance(original, list) or isinstance(corrected, list):
        if not (isinstance(original, list) and isinstance(corrected, list)):
            return True
        if len(original) != len(corrected):
            return True
        return any(materially_different(a, b) for a, b in zip(original, corrected))

    if isinstance(original, bool) or isinstance(corrected, bool):
        return original != corrected

    left, right = _as_number(original), _as_number(corrected)
    if left is not None and right is not None:
        return not math.isclose(left, right, abs_tol=NUMERIC_TOLERANCE)

    return " ".join(str(original).casefold().split()) != " ".join(str(corrected).casefold().split())


class FeedbackEngine:

    def __init__(self, store: RecordStore, notifications: NotificationSink | None = None) -> None:
        self._store = store
        self._notifications = notifications

    async def submit_feedback(self, feedback: FeedbackCreate) -> FeedbackRecord:
        rating = validate_rating(feedback.rating)

        extraction = await self._store.get_extraction(feedback.extraction_id)
        if not extraction or extraction["user_id"] != feedback.user_id:
            raise NotFoundError("Extraction", feedback.extraction_id)

        delta = confidence_adjustment(feedback.category, rating)
        updated = await self._store.adjust_extraction_confidence(feedback.extraction_id, delta)
        if not updated:
            raise NotFoundError("Extraction", feedback.extraction_id)

        is_improvement = materially_different(feedback.original_value, feedback.corrected_value) and rating <= 2

        row = await self._store.insert_feedback(
            {
                "user_id": feedback.user_id,
                "call_id": extraction["call_id"],
                "extraction_id": feedback.extraction_id,
                "category": feedback.category.value,
                "rating": rating,
                "original_value": feedback.original_value,
                "corrected_value": feedback.corrected_value,
                "comment": (feedback.comment or "").strip() or None,
                "is_model_improvement": is_improvement,
                "is_manual_override": feedback.category == FeedbackCategory.MANUAL_OVERRIDE,
                "confidence_delta": delta,
                "extraction_confidence": updated["confidence"],
            }
        )
        record = FeedbackRecord.model_validate(row)

        logger.info(
            "feedback_recorded",
            feedback_id=record.id,
            extraction_id=record.extraction_id,
            category=record.category.value,
            rating=rating,
            confidence_delta=delta,
            confidence=updated["confidence"],
        )
        if is_improvement:
            logger.info(
                "model_improvement_queued",
                feedback_id=record.id,
                category=record.category.value,
            )
        if self._notifications:
            self._notifications.feedback_submitted(
                feedback.user_id, feedback.extraction_id, record.category.value, rating
            )
        return record

    async def create_manual_override(self, request: ManualOverrideRequest) -> str:
        """
        Replace every reviewable field of the call's extraction.

        Creates the extraction if the call has none. Returns its id.
        """
        override = request.override_data
        if override.has_appointment and not (
            (override.customer_name or "").strip() or (override.service_type or "").strip()
        ):
            raise ValidationError(
                "Manual override with an appointment requires a customer name or service type"
            )

        call = await self._store.get_call(request.call_id)
        if not call or call["user_id"] != request.user_id:
            raise NotFoundError("Call", request.call_id)

        reason = request.reason.strip()
        fields = override.model_dump(mode="json")
        updates = {
            **fields,
            "appointment_count": 1 if override.has_appointment else 0,
            "issues": [],
            "has_issues": False,
            "is_reviewed": True,
            "manual_override": True,
            "confidence": 1.0,
            "review_notes": f"Manual override: {reason}",
        }

        existing = await self._store.get_extraction_by_call(request.call_id)
        if existing is None:
            try:
                extraction = await self._store.insert_extraction(
                    {
                        "call_id": request.call_id,
                        "user_id": request.user_id,
                        "extraction_model": "manual",
                        **updates,
                    }
                )
            except ConflictError:
                # Pipeline persisted its extraction concurrently; override it
                existing = await self._store.get_extraction_by_call(request.call_id)
                if existing is None:
                    raise
        if existing is not None:
            extraction = await self._store.update_extraction(existing["id"], updates)

        original = {field: existing.get(field) for field in REVIEWABLE_FIELDS} if existing else None

        await self.submit_feedback(
            FeedbackCreate(
                user_id=request.user_id,
                extraction_id=extraction["id"],
                category=FeedbackCategory.MANUAL_OVERRIDE,
                rating=MAX_RATING,
                original_value=original,
                corrected_value=fields,
                comment=reason or None,
            )
        )

        logger.info(
            "manual_override_applied",
            extraction_id=extraction["id"],
            call_id=request.call_id,
            created=existing is None,
        )
        return extraction["id"]

    async def get_feedback_summary(self, user_id: str, days: int = 30) -> FeedbackSummary:
        if days < 1:
            raise ValidationError("days must be at least 1")

        since = datetime.now(timezone.utc) - timedelta(days=days)
        records = [FeedbackRecord.model_validate(row) for row in await self._store.list_feedback(user_id, since)]
        return summarize_feedback(records)

    async def get_call_feedback_history(self, user_id: str, call_id: str) -> list[FeedbackRecord]:
        call = await self._store.get_call(call_id)
        if not call or call["user_id"] != user_id:
            raise NotFoundError("Call", call_id)
        return [FeedbackRecord.model_validate(row) for row in await self._store.list_call_feedback(user_id, call_id)]


def summarize_feedback(records: list[FeedbackRecord]) -> FeedbackSummary:
    """
    Aggregate feedback records.

    confidence_impact is the average post-feedback extraction confidence
    minus 1.0: how far below perfect the model is running.
    """
    if not records:
        return FeedbackSummary()

    total = len(records)
    confidences = [r.extraction_confidence for r in records if r.extraction_confidence is not None]
    counts = Counter(r.category for r in records)

    return FeedbackSummary(
        total_feedbacks=total,
        average_rating=round(sum(r.rating for r in records) / total, 2),
        improvement_rate=round(sum(1 for r in records if r.is_model_improvement) / total, 4),
        confidence_impact=round(sum(confidences) / len(confidences) - 1.0, 4) if confidences else 0.0,
        common_issues=[
            CategoryCount(category=category, count=count)
            for category, count in sorted(counts.items(), key=lambda item: (-item[1], item[0].value))
        ],
    )

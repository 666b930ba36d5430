"""
Unit tests for feedback scoring, summaries and manual overrides.
"""

from datetime import datetime, timezone

import pytest

from call_intel.errors import NotFoundError, ValidationError
from call_intel.schemas.feedback import (
    FeedbackCategory,
    FeedbackCreate,
    FeedbackRecord,
    ManualOverrideRequest,
    OverrideData,
)
from call_intel.services.feedback_engine import (
    DEFAULT_WEIGHT,
    category_weight,
    confidence_adjustment,
    materially_different,
    summarize_feedback,
    validate_rating,
)

from conftest import OTHER_USER_ID, USER_ID


@pytest.mark.parametrize(
    "category,rating,expected",
    [
        (FeedbackCategory.TRANSCRIPTION_ERROR, 5, 0.15),
        (FeedbackCategory.TRANSCRIPTION_ERROR, 1, -0.15),
        (FeedbackCategory.TRANSCRIPTION_ERROR, 3, 0.0),
        (FeedbackCategory.CUSTOMER_NAME_CORRECTION, 4, 0.0375),
        (FeedbackCategory.MANUAL_OVERRIDE, 5, 0.35),
    ],
)
def test_confidence_adjustment(category, rating, expected):
    assert confidence_adjustment(category, rating) == pytest.approx(expected)


@pytest.mark.parametrize("rating", [1, 2, 3, 4, 5])
def test_adjustment_matches_weight_formula(rating):
    for category in FeedbackCategory:
        expected = category_weight(category) * (rating - 3) / 2
        assert confidence_adjustment(category, rating) == pytest.approx(expected)


def test_unknown_category_uses_default_weight():
    assert category_weight("SOMETHING_NEW") == DEFAULT_WEIGHT


@pytest.mark.parametrize("rating", [0, 6, 2.5, "4", True, None])
def test_invalid_rating_rejected(rating):
    with pytest.raises(ValidationError):
        validate_rating(rating)


def test_materially_different():
    assert not materially_different("John  Smith", "john smith")
    assert materially_different("John Smith", "Jon Smith")
    assert not materially_different("$1,200", 1200)
    assert materially_different(100, 150)
    assert not materially_different("anything", None)
    assert materially_different(None, "Plumbing")
    assert not materially_different(None, "  ")
    assert materially_different({"a": 1}, {"a": 2})
    assert not materially_different({"a": "x", "b": 1}, {"a": "X"})


def _record(rating, improve, confidence):
    return FeedbackRecord(
        id=f"f-{rating}",
        user_id=USER_ID,
        extraction_id="e1",
        category=FeedbackCategory.SERVICE_TYPE_CORRECTION,
        rating=rating,
        is_model_improvement=improve,
        extraction_confidence=confidence,
        created_at=datetime.now(timezone.utc),
    )


def test_summary_scenario():
    summary = summarize_feedback(
        [_record(4, True, 0.9), _record(3, False, 0.8), _record(5, True, 1.0), _record(2, True, 0.6)]
    )

    assert summary.total_feedbacks == 4
    assert summary.average_rating == 3.5
    assert summary.improvement_rate == 0.75
    assert summary.confidence_impact == pytest.approx(-0.175)
    assert summary.common_issues[0].category == FeedbackCategory.SERVICE_TYPE_CORRECTION
    assert summary.common_issues[0].count == 4


def test_empty_summary():
    summary = summarize_feedback([])
    assert summary.total_feedbacks == 0
    assert summary.confidence_impact == 0.0


@pytest.mark.asyncio
async def test_submit_feedback_adjusts_confidence(feedback_engine, store, extraction_row):
    record = await feedback_engine.submit_feedback(
        FeedbackCreate(
            user_id=USER_ID,
            extraction_id=extraction_row["id"],
            category=FeedbackCategory.CUSTOMER_NAME_CORRECTION,
            rating=1,
            original_value="John Smith",
            corrected_value="Joan Smythe",
        )
    )

    assert record.confidence_delta == pytest.approx(-0.15)
    assert record.extraction_confidence == pytest.approx(0.65)
    assert record.is_model_improvement
    assert record.call_id == extraction_row["call_id"]

    stored = await store.get_extraction(extraction_row["id"])
    assert stored["confidence"] == pytest.approx(0.65)
    assert stored["feedback_count"] == 1


@pytest.mark.asyncio
async def test_confidence_is_clamped(feedback_engine, store, extraction_row):
    for _ in range(3):
        await feedback_engine.submit_feedback(
            FeedbackCreate(
                user_id=USER_ID,
                extraction_id=extraction_row["id"],
                category=FeedbackCategory.TRANSCRIPTION_ERROR,
                rating=5,
            )
        )

    stored = await store.get_extraction(extraction_row["id"])
    assert stored["confidence"] == 1.0


@pytest.mark.asyncio
async def test_high_rating_is_not_an_improvement_signal(feedback_engine, extraction_row):
    record = await feedback_engine.submit_feedback(
        FeedbackCreate(
            user_id=USER_ID,
            extraction_id=extraction_row["id"],
            category=FeedbackCategory.ADDRESS_CORRECTION,
            rating=4,
            original_value="12 Elm St",
            corrected_value="14 Elm St",
        )
    )
    assert not record.is_model_improvement


@pytest.mark.asyncio
async def test_feedback_on_someone_elses_extraction(feedback_engine, extraction_row):
    with pytest.raises(NotFoundError):
        await feedback_engine.submit_feedback(
            FeedbackCreate(
                user_id=OTHER_USER_ID,
                extraction_id=extraction_row["id"],
                category=FeedbackCategory.PRICE_CORRECTION,
                rating=2,
            )
        )


@pytest.mark.asyncio
async def test_invalid_rating_leaves_confidence_alone(feedback_engine, store, extraction_row):
    with pytest.raises(ValidationError):
        await feedback_engine.submit_feedback(
            FeedbackCreate(
                user_id=USER_ID,
                extraction_id=extraction_row["id"],
                category=FeedbackCategory.PRICE_CORRECTION,
                rating=7,
            )
        )
    stored = await store.get_extraction(extraction_row["id"])
    assert stored["confidence"] == pytest.approx(0.8)


# -- Manual overrides --


@pytest.mark.asyncio
async def test_override_requires_name_or_service(feedback_engine, call_row):
    request = ManualOverrideRequest(
        user_id=USER_ID,
        call_id=call_row["id"],
        override_data=OverrideData(has_appointment=True, customer_name="", service_type="  "),
    )
    with pytest.raises(ValidationError) as exc_info:
        await feedback_engine.create_manual_override(request)
    assert "customer name or service type" in str(exc_info.value)


@pytest.mark.parametrize(
    "override",
    [
        OverrideData(has_appointment=True, customer_name="Jane Doe"),
        OverrideData(has_appointment=True, service_type="HVAC"),
        OverrideData(has_appointment=False),
    ],
)
@pytest.mark.asyncio
async def test_override_creates_extraction(feedback_engine, store, call_row, override):
    extraction_id = await feedback_engine.create_manual_override(
        ManualOverrideRequest(user_id=USER_ID, call_id=call_row["id"], override_data=override, reason="caller rang back")
    )

    stored = await store.get_extraction(extraction_id)
    assert stored["manual_override"] is True
    assert stored["is_reviewed"] is True
    assert stored["confidence"] == 1.0
    assert stored["review_notes"] == "Manual override: caller rang back"
    assert stored["has_appointment"] is override.has_appointment


@pytest.mark.asyncio
async def test_override_replaces_existing_extraction(feedback_engine, store, extraction_row):
    extraction_id = await feedback_engine.create_manual_override(
        ManualOverrideRequest(
            user_id=USER_ID,
            call_id=extraction_row["call_id"],
            override_data=OverrideData(has_appointment=True, customer_name="Jane Doe", service_type="Electrical"),
        )
    )

    assert extraction_id == extraction_row["id"]
    stored = await store.get_extraction(extraction_id)
    assert stored["customer_name"] == "Jane Doe"
    assert stored["service_type"] == "Electrical"
    # Every reviewable field is replaced, including ones the reviewer left empty
    assert stored["service_address"] is None

    history = await store.list_call_feedback(USER_ID, extraction_row["call_id"])
    assert len(history) == 1
    assert history[0]["category"] == "MANUAL_OVERRIDE"
    assert history[0]["original_value"]["customer_name"] == "John Smith"


@pytest.mark.asyncio
async def test_override_on_unknown_call(feedback_engine):
    with pytest.raises(NotFoundError):
        await feedback_engine.create_manual_override(
            ManualOverrideRequest(
                user_id=USER_ID,
                call_id="missing",
                override_data=OverrideData(has_appointment=False),
            )
        )


@pytest.mark.asyncio
async def test_summary_rejects_bad_window(feedback_engine):
    with pytest.raises(ValidationError):
        await feedback_engine.get_feedback_summary(USER_ID, days=0)


@pytest.mark.asyncio
async def test_summary_over_stored_feedback(feedback_engine, extraction_row):
    for rating in (4, 2):
        await feedback_engine.submit_feedback(
            FeedbackCreate(
                user_id=USER_ID,
                extraction_id=extraction_row["id"],
                category=FeedbackCategory.DATE_TIME_CORRECTION,
                rating=rating,
            )
        )

    summary = await feedback_engine.get_feedback_summary(USER_ID, days=30)

    assert summary.total_feedbacks == 2
    assert summary.average_rating == 3.0
    assert summary.common_issues[0].category == FeedbackCategory.DATE_TIME_CORRECTION

"""
Review Service.

Human review of extractions: the queue of extractions that need a look
(low confidence or flagged issues) and partial reviewer edits, which mark
the extraction as reviewed and overridden.
"""

from __future__ import annotations

from typing import Any

from call_intel.config import get_settings
from call_intel.db import RecordStore
from call_intel.errors import NotFoundError, ValidationError
from call_intel.logging_config import get_logger
from call_intel.schemas.extraction import AppointmentExtraction, ExtractionReviewUpdate

logger = get_logger(__name__)

MAX_QUEUE_SIZE = 200


class ReviewService:

    def __init__(self, store: RecordStore, review_threshold: float | None = None) -> None:
        self._store = store
        self._threshold = get_settings().review_threshold if review_threshold is None else review_threshold

    async def get_extraction(self, user_id: str, extraction_id: str) -> AppointmentExtraction:
        row = await self._store.get_extraction(extraction_id)
        if not row or row["user_id"] != user_id:
            raise NotFoundError("Extraction", extraction_id)
        return AppointmentExtraction.model_validate(row)

    async def get_pending_reviews(self, user_id: str, limit: int = 50) -> list[AppointmentExtraction]:
        """Unreviewed extractions below the review threshold or carrying issues, newest first."""
        rows = await self._store.list_pending_reviews(
            user_id, threshold=self._threshold, limit=max(1, min(limit, MAX_QUEUE_SIZE))
        )
        return [AppointmentExtraction.model_validate(row) for row in rows]

    async def review_extraction(
        self,
        user_id: str,
        extraction_id: str,
        update: ExtractionReviewUpdate,
    ) -> AppointmentExtraction:
        """
        Apply a reviewer's partial edit.

        Only fields present in the request change. Confidence is untouched;
        it moves through feedback only.
        """
        await self.get_extraction(user_id, extraction_id)

        changes: dict[str, Any] = update.model_dump(mode="json", exclude_unset=True)
        for field in ("customer_name", "service_type"):
            if field in changes and changes[field] is not None and not changes[field].strip():
                raise ValidationError(f"{field} cannot be blank")

        row = await self._store.update_extraction(
            extraction_id,
            {**changes, "is_reviewed": True, "manual_override": True},
        )
        if not row:
            raise NotFoundError("Extraction", extraction_id)

        logger.info("extraction_reviewed", extraction_id=extraction_id, fields=sorted(changes))
        return AppointmentExtraction.model_validate(row)

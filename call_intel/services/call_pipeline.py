"""
Call Pipeline.

Runs one finished call through the stages, strictly in order:

    transcript -> extraction -> customer match -> persisted extraction
               -> notification -> job (when confident enough)

A failing transcription or extraction leaves the call FAILED with the
reason recorded; it never raises past ``process_call``. Re-processing a
call that already has an extraction returns that extraction untouched, so
duplicate webhook deliveries are harmless.
"""

from __future__ import annotations

from typing import Any, Optional

from call_intel.config import get_settings
from call_intel.db import RecordStore
from call_intel.errors import CallIntelError, ConflictError, NotFoundError
from call_intel.logging_config import call_id_var, get_logger, user_id_var
from call_intel.schemas.call import CallCreate, CallRecord, CallStatus, PipelineOutcome
from call_intel.schemas.customer import ContactInfo
from call_intel.schemas.extraction import AppointmentData, AppointmentExtraction
from call_intel.services.customer_matcher import CustomerMatcher
from call_intel.services.data_extraction import ExtractionEngine
from call_intel.services.job_orchestrator import JobOrchestrator
from call_intel.services.notifications import NotificationSink
from call_intel.services.phone import is_valid_phone, normalize_phone
from call_intel.services.transcription import Transcriber

logger = get_logger(__name__)

PHONE_CUSTOMER_NAME = "Phone Customer"


class CallPipeline:

    def __init__(
        self,
        store: RecordStore,
        engine: ExtractionEngine,
        matcher: CustomerMatcher,
        jobs: JobOrchestrator,
        transcriber: Transcriber | None = None,
        notifications: NotificationSink | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._matcher = matcher
        self._jobs = jobs
        self._transcriber = transcriber
        self._notifications = notifications
        self._settings = get_settings()

    async def register_call(self, user_id: str, data: CallCreate) -> CallRecord:
        """Store a finished call, ready for processing."""
        row = await self._store.insert_call(
            {
                "user_id": user_id,
                "phone_number": normalize_phone(data.phone_number) if data.phone_number else None,
                "recording_url": data.recording_url,
                "transcript": data.transcript,
                "duration_seconds": data.duration_seconds,
                "status": CallStatus.PROCESSING.value,
            }
        )
        logger.info("call_registered", call_id=row["id"])
        return CallRecord.model_validate(row)

    async def process_call(self, call_id: str) -> PipelineOutcome:
        """
        Process one call end to end.

        Raises NotFoundError only when the call itself does not exist.
        """
        row = await self._store.get_call(call_id)
        if not row:
            raise NotFoundError("Call", call_id)
        call = CallRecord.model_validate(row)

        call_token = call_id_var.set(call.id)
        user_token = user_id_var.set(call.user_id)
        try:
            return await self._run(call)
        finally:
            call_id_var.reset(call_token)
            user_id_var.reset(user_token)

    async def _run(self, call: CallRecord) -> PipelineOutcome:
        existing = await self._store.get_extraction_by_call(call.id)
        if existing:
            logger.info("call_already_processed", extraction_id=existing["id"])
            return self._outcome_for_existing(call, existing)

        await self._store.update_call(call.id, {"status": CallStatus.PROCESSING.value, "failure_reason": None})
        logger.info("call_processing_started")

        # 1. Transcript
        transcript = (call.transcript or "").strip()
        if not transcript:
            if not call.recording_url or self._transcriber is None:
                return await self._fail(call, "No transcript or recording available")
            transcription = await self._transcriber.transcribe(call.recording_url)
            if not transcription.success or transcription.transcript is None:
                return await self._fail(call, transcription.error or "Transcription failed")
            transcript = transcription.transcript.text
            await self._store.update_call(
                call.id,
                {
                    "transcript": transcript,
                    "transcript_confidence": transcription.transcript.confidence,
                    "duration_seconds": transcription.transcript.duration_seconds,
                },
            )

        # 2. Extraction
        result = await self._engine.extract(transcript, caller_phone=call.phone_number)
        if not result.success or result.data is None:
            return await self._fail(call, result.error or "Extraction failed")
        data = result.data

        # 3. Customer
        customer_id, is_new_customer = await self._match_customer(call, data)

        # 4. Persist
        try:
            extraction_row = await self._store.insert_extraction(
                {
                    **data.model_dump(mode="json", exclude={"notes"}),
                    "call_id": call.id,
                    "user_id": call.user_id,
                    "customer_id": customer_id,
                    "has_issues": bool(data.issues),
                    "extraction_model": self._engine.model_name,
                    "processing_time_ms": result.processing_time_ms,
                    "raw_extraction": result.raw_extraction,
                }
            )
        except ConflictError:
            existing = await self._store.get_extraction_by_call(call.id)
            if not existing:
                raise
            logger.info("extraction_race_lost", extraction_id=existing["id"])
            return self._outcome_for_existing(call, existing)
        extraction = AppointmentExtraction.model_validate(extraction_row)

        status = CallStatus.COMPLETED if extraction.has_appointment else CallStatus.NO_APPOINTMENT
        await self._store.update_call(call.id, {"status": status.value})

        if extraction.has_appointment and self._notifications:
            self._notifications.appointment_extracted(
                call.user_id,
                extraction.customer_name or "Unknown Customer",
                extraction.service_type or "Service Request",
                extraction.confidence,
            )

        outcome = PipelineOutcome(
            call_id=call.id,
            status=status,
            extraction_id=extraction.id,
            customer_id=customer_id,
            is_new_customer=is_new_customer,
            confidence=extraction.confidence,
        )
        logger.info(
            "call_processed",
            status=status.value,
            extraction_id=extraction.id,
            confidence=extraction.confidence,
        )

        # 5. Job
        if not (self._settings.feature_auto_create_jobs and extraction.has_appointment):
            return outcome
        if extraction.confidence < self._settings.min_job_confidence:
            logger.info(
                "job_not_auto_created",
                confidence=extraction.confidence,
                minimum=self._settings.min_job_confidence,
            )
            return outcome

        job = await self._jobs.create_from_extraction(extraction.id, call.user_id)
        if job.success:
            outcome.job_id = job.job_id
            outcome.warnings = job.warnings or []
        else:
            logger.warning("auto_job_creation_failed", error=job.error)
            outcome.warnings = [f"Job not created: {job.error}"]

        return outcome

    async def _match_customer(self, call: CallRecord, data: AppointmentData) -> tuple[Optional[str], bool]:
        phone = data.customer_phone if is_valid_phone(data.customer_phone) else call.phone_number
        if not (data.customer_name or phone):
            return None, False

        try:
            match = await self._matcher.find_or_create(
                call.user_id,
                ContactInfo(
                    name=data.customer_name,
                    phone=phone,
                    email=data.customer_email,
                    address=data.service_address,
                ),
                default_name=PHONE_CUSTOMER_NAME,
            )
        except CallIntelError as e:
            # The extraction is still worth keeping; it can be linked on review
            logger.warning("customer_match_failed", error=str(e))
            return None, False

        if match.customer is None:
            return None, False
        return match.customer.id, match.is_new_customer

    async def _fail(self, call: CallRecord, reason: str) -> PipelineOutcome:
        await self._store.update_call(
            call.id,
            {
                "status": CallStatus.FAILED.value,
                "failure_reason": reason,
                "retry_count": call.retry_count + 1,
            },
        )
        logger.error("call_processing_failed", reason=reason)
        if self._notifications:
            self._notifications.extraction_failed(call.user_id, call.id, reason)
        return PipelineOutcome(call_id=call.id, status=CallStatus.FAILED, error=reason)

    @staticmethod
    def _outcome_for_existing(call: CallRecord, existing: dict[str, Any]) -> PipelineOutcome:
        status = CallStatus.COMPLETED if existing.get("has_appointment") else CallStatus.NO_APPOINTMENT
        return PipelineOutcome(
            call_id=call.id,
            status=status,
            extraction_id=existing["id"],
            customer_id=existing.get("customer_id"),
            confidence=existing.get("confidence"),
        )

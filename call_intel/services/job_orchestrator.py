"""
Job Orchestrator.

Creates jobs (work orders) from manual submissions or from appointment
extractions, and owns the job status state machine:

    QUOTING -> CONFIRMED -> IN_PROGRESS -> COMPLETED
    any non-terminal status -> CANCELLED
    COMPLETED -> IN_PROGRESS (reopen)

``completed_at`` is set exactly while a job is COMPLETED. Customer job
counters and revenue analytics only change through atomic store operations.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional

from call_intel.config import get_settings
from call_intel.db import RecordStore
from call_intel.errors import CallIntelError, ConflictError, NotFoundError, ValidationError
from call_intel.logging_config import get_logger
from call_intel.schemas.customer import ContactInfo, Customer
from call_intel.schemas.extraction import AppointmentExtraction, UrgencyLevel
from call_intel.schemas.job import Job, JobCreate, JobCreationResult, JobPriority, JobStats, JobStatus, JobUpdate
from call_intel.services.customer_matcher import CustomerMatcher
from call_intel.services.date_parsing import parse_natural_date
from call_intel.services.notifications import NotificationSink
from call_intel.services.phone import is_valid_phone, normalize_phone

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MIN_TITLE_LENGTH = 3
MIN_CUSTOMER_NAME_LENGTH = 3
TITLE_MAX_LENGTH = 50
UNKNOWN_CUSTOMER = "Unknown Customer"

PRIORITY_BY_URGENCY: dict[Optional[UrgencyLevel], JobPriority] = {
    UrgencyLevel.EMERGENCY: JobPriority.URGENT,
    UrgencyLevel.URGENT: JobPriority.URGENT,
    UrgencyLevel.HIGH: JobPriority.HIGH,
    UrgencyLevel.NORMAL: JobPriority.NORMAL,
    None: JobPriority.NORMAL,
    UrgencyLevel.LOW: JobPriority.LOW,
    UrgencyLevel.ROUTINE: JobPriority.LOW,
}

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUOTING: frozenset({JobStatus.CONFIRMED, JobStatus.CANCELLED}),
    JobStatus.CONFIRMED: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset({JobStatus.IN_PROGRESS}),
    JobStatus.CANCELLED: frozenset(),
}


def priority_for_urgency(urgency: Optional[UrgencyLevel]) -> JobPriority:
    return PRIORITY_BY_URGENCY.get(urgency, JobPriority.NORMAL)


def generate_job_title(
    service_type: Optional[str],
    description: Optional[str],
    customer_name: Optional[str],
) -> str:
    """
    Title for a job created from a call.

    A detailed description (over 10 characters) wins, cut to 47 characters
    plus "..." when longer than 50. Otherwise the service type and whatever
    else is known are combined.
    """
    service_type = (service_type or "").strip()
    description = (description or "").strip()
    customer_name = (customer_name or "").strip()

    if len(description) > 10:
        if len(description) <= TITLE_MAX_LENGTH:
            return description
        return description[: TITLE_MAX_LENGTH - 3] + "..."
    if service_type and description:
        return f"{service_type} - {description}"
    if service_type:
        return f"{service_type} Service for {customer_name}" if customer_name else f"{service_type} Service"
    if description:
        return description
    return f"Service Request - {customer_name}" if customer_name else "Service Request"


def validate_job_input(data: JobCreate) -> None:
    """Raise ValidationError listing every violated rule."""
    errors = []
    if len((data.title or "").strip()) < MIN_TITLE_LENGTH:
        errors.append(f"Job title must be at least {MIN_TITLE_LENGTH} characters")
    if len((data.customer_name or "").strip()) < MIN_CUSTOMER_NAME_LENGTH:
        errors.append(f"Customer name must be at least {MIN_CUSTOMER_NAME_LENGTH} characters")
    if data.customer_phone and not is_valid_phone(data.customer_phone):
        errors.append("Invalid phone number format")
    if data.customer_email and not EMAIL_PATTERN.match(data.customer_email.strip()):
        errors.append("Invalid email format")
    if data.estimated_cost is not None and data.estimated_cost < 0:
        errors.append("Estimated cost cannot be negative")
    if data.estimated_duration is not None and data.estimated_duration < 0:
        errors.append("Estimated duration cannot be negative")
    if errors:
        raise ValidationError(errors)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobOrchestrator:

    def __init__(
        self,
        store: RecordStore,
        matcher: CustomerMatcher,
        notifications: NotificationSink | None = None,
        min_confidence: float | None = None,
    ) -> None:
        self._store = store
        self._matcher = matcher
        self._notifications = notifications
        self._min_confidence = get_settings().min_job_confidence if min_confidence is None else min_confidence

    # -- Creation --

    async def create_job(self, user_id: str, data: JobCreate) -> JobCreationResult:
        """Manual job creation. Validation and lookup failures come back as a failed result."""
        try:
            validate_job_input(data)

            phone = normalize_phone(data.customer_phone) if data.customer_phone else None
            email = data.customer_email.strip().lower() if data.customer_email else None

            if data.customer_id:
                customer = await self._owned_customer(user_id, data.customer_id)
            else:
                match = await self._matcher.find_or_create(
                    user_id,
                    ContactInfo(name=data.customer_name, phone=phone, email=email, address=data.address),
                )
                customer = match.customer

            row = {
                **data.model_dump(mode="json", exclude={"customer_id", "priority"}),
                "user_id": user_id,
                "customer_id": customer.id if customer else None,
                "title": data.title.strip(),
                "customer_name": data.customer_name.strip(),
                "customer_phone": phone,
                "customer_email": email,
                "priority": (data.priority or JobPriority.NORMAL).value,
                "status": JobStatus.QUOTING.value,
                "extracted_from_call": False,
            }
            job = await self._insert_job(row)
        except ValidationError as e:
            logger.info("job_validation_failed", errors=e.errors)
            return JobCreationResult(success=False, error=f"Validation failed: {e}", errors=e.errors)
        except CallIntelError as e:
            logger.warning("job_creation_failed", error=str(e))
            return JobCreationResult(success=False, error=str(e), errors=[str(e)])

        return JobCreationResult(success=True, job_id=job.id)

    async def create_from_extraction(
        self, extraction_id: str, user_id: Optional[str] = None
    ) -> JobCreationResult:
        """
        Create a job from an appointment extraction.

        Refused (as a failed result) when the extraction is missing, already
        has a job, detected no appointment, or is below the confidence floor.
        """
        row = await self._store.get_extraction(extraction_id)
        if not row or (user_id and row["user_id"] != user_id):
            return JobCreationResult(success=False, error="Extracted appointment not found")
        extraction = AppointmentExtraction.model_validate(row)

        if await self._store.get_job_by_extraction(extraction_id):
            return JobCreationResult(success=False, error="Job already exists for this extraction")
        if not extraction.has_appointment:
            return JobCreationResult(success=False, error="No appointment detected in this extraction")
        if extraction.confidence < self._min_confidence:
            return JobCreationResult(
                success=False,
                error=(
                    f"Extraction confidence {extraction.confidence:.0%} is below the "
                    f"{self._min_confidence:.0%} minimum for job creation"
                ),
            )

        warnings: list[str] = []

        scheduled_date = None
        if extraction.preferred_date:
            parsed = parse_natural_date(extraction.preferred_date)
            if parsed:
                scheduled_date = parsed.isoformat()
            else:
                warnings.append(f"Could not parse preferred date: {extraction.preferred_date}")

        phone = extraction.customer_phone
        if not phone:
            call = await self._store.get_call(extraction.call_id)
            phone = call.get("phone_number") if call else None
        if phone and not is_valid_phone(phone):
            warnings.append(f"Invalid phone number dropped: {phone}")
            phone = None
        phone = normalize_phone(phone) if phone else None

        try:
            customer = await self._resolve_extraction_customer(extraction, phone)
            customer_name = extraction.customer_name or (customer.name if customer else None) or UNKNOWN_CUSTOMER

            title = generate_job_title(extraction.service_type, extraction.job_description, extraction.customer_name)
            if len(title) < MIN_TITLE_LENGTH:
                raise ValidationError(f"Job title must be at least {MIN_TITLE_LENGTH} characters")

            notes = "\n".join(
                part
                for part in (
                    extraction.pricing_discussion,
                    extraction.review_notes,
                    f"Urgency: {extraction.urgency_level.value}" if extraction.urgency_level else None,
                    f"Time flexibility: {extraction.time_flexibility.value}" if extraction.time_flexibility else None,
                )
                if part
            )

            row = {
                "user_id": extraction.user_id,
                "customer_id": customer.id if customer else None,
                "extraction_id": extraction.id,
                "call_id": extraction.call_id,
                "title": title,
                "customer_name": customer_name,
                "customer_phone": phone,
                "customer_email": extraction.customer_email,
                "service_type": extraction.service_type,
                "description": extraction.job_description,
                "scheduled_date": scheduled_date,
                "scheduled_time": extraction.preferred_time,
                "address": extraction.service_address,
                "status": JobStatus.QUOTING.value,
                "priority": priority_for_urgency(extraction.urgency_level).value,
                "estimated_cost": extraction.quoted_price
                if extraction.quoted_price is not None and extraction.quoted_price >= 0
                else None,
                "notes": notes or None,
                "extracted_from_call": True,
                "confidence_score": extraction.confidence,
            }
            try:
                job = await self._insert_job(row)
            except ConflictError:
                # Only the insert can hit the one-job-per-extraction constraint
                return JobCreationResult(success=False, error="Job already exists for this extraction")
        except CallIntelError as e:
            logger.warning("job_from_extraction_failed", extraction_id=extraction_id, error=str(e))
            return JobCreationResult(success=False, error=str(e), errors=getattr(e, "errors", [str(e)]))

        return JobCreationResult(success=True, job_id=job.id, warnings=warnings or None)

    async def _resolve_extraction_customer(
        self, extraction: AppointmentExtraction, phone: Optional[str]
    ) -> Customer | None:
        if extraction.customer_id:
            row = await self._store.get_customer(extraction.customer_id)
            if row and row["user_id"] == extraction.user_id:
                return Customer.model_validate(row)

        match = await self._matcher.find_or_create(
            extraction.user_id,
            ContactInfo(
                name=extraction.customer_name,
                phone=phone,
                email=extraction.customer_email,
                address=extraction.service_address,
            ),
        )
        return match.customer

    async def _owned_customer(self, user_id: str, customer_id: str) -> Customer:
        row = await self._store.get_customer(customer_id)
        if not row or row["user_id"] != user_id:
            raise NotFoundError("Customer", customer_id)
        return Customer.model_validate(row)

    async def _insert_job(self, row: dict[str, Any]) -> Job:
        job = Job.model_validate(await self._store.insert_job(row))
        if job.customer_id:
            await self._store.increment_customer_jobs(job.customer_id, 1)

        logger.info(
            "job_created",
            job_id=job.id,
            customer_id=job.customer_id,
            extraction_id=job.extraction_id,
            priority=job.priority.value,
        )
        if self._notifications:
            self._notifications.job_created(job.user_id, job.id, job.title, job.customer_name, job.estimated_cost)
        return job

    # -- Lifecycle --

    async def get_job(self, user_id: str, job_id: str) -> Job:
        row = await self._store.get_job(job_id)
        if not row or row["user_id"] != user_id:
            raise NotFoundError("Job", job_id)
        return Job.model_validate(row)

    async def update_job_status(self, user_id: str, job_id: str, new_status: JobStatus) -> Job:
        job = await self.get_job(user_id, job_id)
        current = job.status
        if new_status == current:
            return job

        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise ValidationError(f"Cannot move job from {current.value} to {new_status.value}")

        completed_at = _now() if new_status == JobStatus.COMPLETED else None
        row = await self._store.transition_job_status(job_id, current.value, new_status.value, completed_at)
        if row is None:
            raise ConflictError(f"Job {job_id} changed status concurrently; reload and retry")
        updated = Job.model_validate(row)

        if updated.customer_id and JobStatus.COMPLETED in (current, new_status):
            await self._store.refresh_customer_analytics(updated.customer_id)

        logger.info("job_status_changed", job_id=job_id, old_status=current.value, new_status=new_status.value)
        if self._notifications:
            self._notifications.job_status_changed(user_id, job_id, updated.title, current.value, new_status.value)
        return updated

    async def update_job(self, user_id: str, job_id: str, update: JobUpdate) -> Job:
        job = await self.get_job(user_id, job_id)

        changes = update.model_dump(mode="json", exclude_unset=True)
        if "title" in changes:
            title = (changes["title"] or "").strip()
            if len(title) < MIN_TITLE_LENGTH:
                raise ValidationError(f"Job title must be at least {MIN_TITLE_LENGTH} characters")
            changes["title"] = title
        if not changes:
            return job

        row = await self._store.update_job(job_id, changes)
        if not row:
            raise NotFoundError("Job", job_id)
        updated = Job.model_validate(row)

        cost_changed = {"actual_cost", "estimated_cost"} & changes.keys()
        if updated.customer_id and updated.status == JobStatus.COMPLETED and cost_changed:
            await self._store.refresh_customer_analytics(updated.customer_id)

        logger.info("job_updated", job_id=job_id, fields=sorted(changes))
        return updated

    async def delete_job(self, user_id: str, job_id: str) -> None:
        job = await self.get_job(user_id, job_id)
        if not await self._store.delete_job(job_id):
            raise NotFoundError("Job", job_id)

        if job.customer_id:
            await self._store.increment_customer_jobs(job.customer_id, -1)
            await self._store.refresh_customer_analytics(job.customer_id)
        logger.info("job_deleted", job_id=job_id, customer_id=job.customer_id)

    async def get_job_stats(self, user_id: str) -> JobStats:
        jobs = await self._store.list_jobs(user_id)
        extracted = sum(1 for job in jobs if job.get("extracted_from_call"))
        return JobStats(
            total_jobs=len(jobs),
            extracted_from_calls=extracted,
            manually_created=len(jobs) - extracted,
            status_breakdown=dict(Counter(job["status"] for job in jobs)),
            priority_breakdown=dict(Counter(job["priority"] for job in jobs)),
        )

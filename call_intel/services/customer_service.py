"""
Customer lifecycle operations outside of matching: reads, edits,
soft deletion, blacklisting, profile statistics and search.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from call_intel.db import ACTIVE_JOB_STATUSES, RecordStore
from call_intel.errors import NotFoundError, ValidationError
from call_intel.logging_config import get_logger
from call_intel.schemas.customer import (
    Customer,
    CustomerProfile,
    CustomerSearchFilters,
    CustomerSearchResult,
    CustomerStats,
    CustomerStatus,
    CustomerUpdate,
)
from call_intel.services.phone import is_valid_phone, normalize_phone

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_PAGE_SIZE = 100


class CustomerService:

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def get_customer(self, user_id: str, customer_id: str) -> Customer:
        row = await self._store.get_customer(customer_id)
        if not row or row["user_id"] != user_id:
            raise NotFoundError("Customer", customer_id)
        return Customer.model_validate(row)

    async def update_customer(self, user_id: str, customer_id: str, update: CustomerUpdate) -> Customer:
        await self.get_customer(user_id, customer_id)

        changes = update.model_dump(exclude_unset=True)
        errors = []
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if len(name) < 2:
                errors.append("Customer name must be at least 2 characters")
            changes["name"] = name
        if changes.get("phone"):
            if not is_valid_phone(changes["phone"]):
                errors.append("Invalid phone number format")
            changes["phone"] = normalize_phone(changes["phone"].strip())
        elif "phone" in changes:
            changes["phone"] = None
        if changes.get("email"):
            email = changes["email"].strip().lower()
            if not EMAIL_PATTERN.match(email):
                errors.append("Invalid email format")
            changes["email"] = email
        elif "email" in changes:
            changes["email"] = None
        if "tags" in changes:
            changes["tags"] = list(dict.fromkeys(changes["tags"] or []))
        if errors:
            raise ValidationError(errors)

        row = await self._store.update_customer(customer_id, changes)
        if not row:
            raise NotFoundError("Customer", customer_id)
        logger.info("customer_updated", customer_id=customer_id, fields=sorted(changes))
        return Customer.model_validate(row)

    async def soft_delete(self, user_id: str, customer_id: str) -> Customer:
        """
        Retire a customer without breaking references from jobs and calls.

        Refused while the customer has jobs that are not completed or
        cancelled. Contact details are cleared and the status becomes FORMER.
        """
        await self.get_customer(user_id, customer_id)

        jobs = await self._store.list_customer_jobs(customer_id)
        active = [job for job in jobs if job["status"] in ACTIVE_JOB_STATUSES]
        if active:
            raise ValidationError(
                f"Cannot delete customer with {len(active)} active job(s). "
                "Complete or cancel them first."
            )

        now = datetime.now(timezone.utc).isoformat()
        row = await self._store.update_customer(
            customer_id,
            {
                "status": CustomerStatus.FORMER.value,
                "phone": None,
                "email": None,
                "address": None,
                "notes": f"[DELETED] {now}",
            },
        )
        logger.info("customer_soft_deleted", customer_id=customer_id)
        return Customer.model_validate(row)

    async def set_blacklisted(
        self, user_id: str, customer_id: str, blacklisted: bool, reason: str | None = None
    ) -> Customer:
        customer = await self.get_customer(user_id, customer_id)

        updates: dict = {
            "is_blacklisted": blacklisted,
            "blacklist_reason": ((reason or "").strip() or None) if blacklisted else None,
        }
        if blacklisted and customer.status == CustomerStatus.ACTIVE:
            updates["status"] = CustomerStatus.BLACKLISTED.value
        elif not blacklisted and customer.status == CustomerStatus.BLACKLISTED:
            updates["status"] = CustomerStatus.ACTIVE.value

        row = await self._store.update_customer(customer_id, updates)
        logger.info("customer_blacklist_changed", customer_id=customer_id, blacklisted=blacklisted)
        return Customer.model_validate(row)

    async def get_profile(self, user_id: str, customer_id: str) -> CustomerProfile:
        customer = await self.get_customer(user_id, customer_id)
        jobs = await self._store.list_customer_jobs(customer_id)
        total_calls = await self._store.count_customer_calls(customer_id)

        completed = [job for job in jobs if job["status"] == "COMPLETED"]
        revenue = sum(float(job.get("actual_cost") or job.get("estimated_cost") or 0) for job in completed)
        from_calls = sum(1 for job in jobs if job.get("extracted_from_call"))

        stats = CustomerStats(
            total_jobs=len(jobs),
            completed_jobs=len(completed),
            total_revenue=round(revenue, 2),
            average_job_value=round(revenue / len(completed), 2) if completed else 0.0,
            total_calls=total_calls,
            conversion_rate=round(from_calls / total_calls * 100, 1) if total_calls else 0.0,
        )
        return CustomerProfile(customer=customer, stats=stats)

    async def search(
        self,
        user_id: str,
        filters: CustomerSearchFilters,
        limit: int = 50,
        offset: int = 0,
    ) -> CustomerSearchResult:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)

        rows, total = await self._store.search_customers(
            user_id,
            search=(filters.search or "").strip() or None,
            status=filters.status.value if filters.status else None,
            tags=filters.tags,
            has_jobs=filters.has_jobs,
            limit=limit,
            offset=offset,
        )
        return CustomerSearchResult(
            customers=[Customer.model_validate(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(rows) < total,
        )

    async def refresh_analytics(self, user_id: str, customer_id: str) -> Customer:
        await self.get_customer(user_id, customer_id)
        await self._store.refresh_customer_analytics(customer_id)
        return await self.get_customer(user_id, customer_id)

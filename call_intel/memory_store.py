"""
In-process record store.

Mirrors the Supabase schema closely enough for development and tests:
the same unique constraints, the same column defaults, and the same atomic
operations, each applied under one ``asyncio.Lock``. Rows are copied on the
way in and out so callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import TypeAdapter

from call_intel.db import RETRYABLE_CALL_STATUSES, RecordStore, Row
from call_intel.errors import ConflictError

_timestamp = TypeAdapter(datetime)

_DEFAULTS: dict[str, Row] = {
    "customers": {
        "phone": None,
        "email": None,
        "address": None,
        "preferred_contact": "phone",
        "notes": None,
        "tags": [],
        "status": "ACTIVE",
        "is_blacklisted": False,
        "blacklist_reason": None,
        "total_jobs": 0,
        "total_spent": 0.0,
        "average_job_value": 0.0,
        "last_contact_date": None,
    },
    "calls": {
        "phone_number": None,
        "recording_url": None,
        "status": "processing",
        "transcript": None,
        "transcript_confidence": None,
        "duration_seconds": None,
        "failure_reason": None,
        "retry_count": 0,
    },
    "appointment_extractions": {
        "customer_id": None,
        "confidence": 0.0,
        "issues": [],
        "has_issues": False,
        "is_reviewed": False,
        "manual_override": False,
        "feedback_count": 0,
    },
    "feedback": {
        "call_id": None,
        "is_model_improvement": False,
        "is_manual_override": False,
        "confidence_delta": 0.0,
    },
    "jobs": {
        "customer_id": None,
        "extraction_id": None,
        "call_id": None,
        "status": "QUOTING",
        "priority": "normal",
        "extracted_from_call": False,
        "completed_at": None,
    },
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ts(value: Any) -> datetime:
    moment = _timestamp.validate_python(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class InMemoryStore(RecordStore):
    """Dict-backed RecordStore for a single process."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._tables: dict[str, dict[str, Row]] = {name: {} for name in _DEFAULTS}

    # -- helpers --

    def _rows(self, table: str) -> list[Row]:
        return list(self._tables[table].values())

    def _get(self, table: str, row_id: str) -> Row | None:
        row = self._tables[table].get(row_id)
        return copy.deepcopy(row) if row is not None else None

    def _find(self, table: str, **criteria: Any) -> Row | None:
        for row in self._rows(table):
            if all(row.get(key) == value for key, value in criteria.items()):
                return copy.deepcopy(row)
        return None

    def _insert(self, table: str, data: Row) -> Row:
        now = _now()
        row = {**copy.deepcopy(_DEFAULTS[table]), **copy.deepcopy(data)}
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", now)
        if table != "feedback":
            row.setdefault("updated_at", now)
        self._tables[table][row["id"]] = row
        return copy.deepcopy(row)

    def _update(self, table: str, row_id: str, updates: Row) -> Row | None:
        row = self._tables[table].get(row_id)
        if row is None:
            return None
        row.update(copy.deepcopy(updates))
        if "updated_at" in row:
            row["updated_at"] = _now()
        return copy.deepcopy(row)

    def _check_customer_unique(self, data: Row, exclude_id: Optional[str] = None) -> None:
        for column in ("phone", "email"):
            value = data.get(column)
            if not value:
                continue
            for row in self._rows("customers"):
                if row["id"] != exclude_id and row["user_id"] == data["user_id"] and row.get(column) == value:
                    raise ConflictError(f"customer with this {column} already exists")

    # -- Customers --

    async def get_customer(self, customer_id: str) -> Row | None:
        return self._get("customers", customer_id)

    async def find_customer_by_phone(self, user_id: str, phone: str) -> Row | None:
        return self._find("customers", user_id=user_id, phone=phone)

    async def find_customer_by_email(self, user_id: str, email: str) -> Row | None:
        return self._find("customers", user_id=user_id, email=email)

    async def list_customers(self, user_id: str, exclude_former: bool = True) -> list[Row]:
        return [
            copy.deepcopy(row)
            for row in self._rows("customers")
            if row["user_id"] == user_id and not (exclude_former and row["status"] == "FORMER")
        ]

    async def insert_customer(self, data: Row) -> Row:
        async with self._lock:
            self._check_customer_unique(data)
            return self._insert("customers", data)

    async def update_customer(self, customer_id: str, updates: Row) -> Row | None:
        async with self._lock:
            current = self._tables["customers"].get(customer_id)
            if current is None:
                return None
            self._check_customer_unique({**current, **updates}, exclude_id=customer_id)
            return self._update("customers", customer_id, updates)

    async def increment_customer_jobs(self, customer_id: str, delta: int) -> None:
        async with self._lock:
            row = self._tables["customers"].get(customer_id)
            if row is None:
                return
            self._update(
                "customers",
                customer_id,
                {"total_jobs": max(0, row["total_jobs"] + delta), "last_contact_date": _now()},
            )

    async def refresh_customer_analytics(self, customer_id: str) -> None:
        async with self._lock:
            if customer_id not in self._tables["customers"]:
                return
            values = [
                float(job.get("actual_cost") or job.get("estimated_cost") or 0)
                for job in self._rows("jobs")
                if job.get("customer_id") == customer_id and job["status"] == "COMPLETED"
            ]
            total = round(sum(values), 2)
            average = round(total / len(values), 2) if values else 0.0
            self._update("customers", customer_id, {"total_spent": total, "average_job_value": average})

    async def search_customers(
        self,
        user_id: str,
        search: Optional[str],
        status: Optional[str],
        tags: list[str],
        has_jobs: Optional[bool],
        limit: int,
        offset: int,
    ) -> tuple[list[Row], int]:
        term = (search or "").strip().lower()
        matches = []
        for row in self._rows("customers"):
            if row["user_id"] != user_id:
                continue
            if term and not any(
                term in str(row.get(column) or "").lower()
                for column in ("name", "phone", "email", "address", "notes")
            ):
                continue
            if status and row["status"] != status:
                continue
            if tags and not set(tags).issubset(row.get("tags") or []):
                continue
            if has_jobs is not None and (row["total_jobs"] > 0) != has_jobs:
                continue
            matches.append(row)

        matches.sort(key=lambda row: _ts(row["created_at"]), reverse=True)
        page = matches[offset : offset + limit]
        return copy.deepcopy(page), len(matches)

    # -- Calls --

    async def get_call(self, call_id: str) -> Row | None:
        return self._get("calls", call_id)

    async def insert_call(self, data: Row) -> Row:
        async with self._lock:
            return self._insert("calls", data)

    async def update_call(self, call_id: str, updates: Row) -> Row | None:
        async with self._lock:
            return self._update("calls", call_id, updates)

    async def list_unprocessed_calls(self, limit: int, max_retries: int) -> list[Row]:
        extracted = {row["call_id"] for row in self._rows("appointment_extractions")}
        calls = [
            row
            for row in self._rows("calls")
            if row["status"] in RETRYABLE_CALL_STATUSES
            and row["id"] not in extracted
            and row["retry_count"] < max_retries
            and (row.get("transcript") or row.get("recording_url"))
        ]
        calls.sort(key=lambda row: _ts(row["created_at"]))
        return copy.deepcopy(calls[:limit])

    # -- Extractions --

    async def get_extraction(self, extraction_id: str) -> Row | None:
        return self._get("appointment_extractions", extraction_id)

    async def get_extraction_by_call(self, call_id: str) -> Row | None:
        return self._find("appointment_extractions", call_id=call_id)

    async def insert_extraction(self, data: Row) -> Row:
        async with self._lock:
            if self._find("appointment_extractions", call_id=data["call_id"]):
                raise ConflictError("call already has an extraction")
            return self._insert("appointment_extractions", data)

    async def update_extraction(self, extraction_id: str, updates: Row) -> Row | None:
        async with self._lock:
            return self._update("appointment_extractions", extraction_id, updates)

    async def adjust_extraction_confidence(self, extraction_id: str, delta: float) -> Row | None:
        async with self._lock:
            row = self._tables["appointment_extractions"].get(extraction_id)
            if row is None:
                return None
            confidence = round(min(1.0, max(0.0, float(row["confidence"]) + delta)), 6)
            return self._update(
                "appointment_extractions",
                extraction_id,
                {"confidence": confidence, "feedback_count": row["feedback_count"] + 1},
            )

    async def list_pending_reviews(self, user_id: str, threshold: float, limit: int) -> list[Row]:
        rows = [
            row
            for row in self._rows("appointment_extractions")
            if row["user_id"] == user_id
            and not row["is_reviewed"]
            and (row["confidence"] < threshold or row["has_issues"])
        ]
        rows.sort(key=lambda row: _ts(row["created_at"]), reverse=True)
        return copy.deepcopy(rows[:limit])

    async def count_customer_calls(self, customer_id: str) -> int:
        return sum(1 for row in self._rows("appointment_extractions") if row.get("customer_id") == customer_id)

    # -- Feedback --

    async def insert_feedback(self, data: Row) -> Row:
        async with self._lock:
            return self._insert("feedback", data)

    async def list_feedback(self, user_id: str, since: datetime) -> list[Row]:
        cutoff = _ts(since)
        rows = [
            row for row in self._rows("feedback")
            if row["user_id"] == user_id and _ts(row["created_at"]) >= cutoff
        ]
        rows.sort(key=lambda row: _ts(row["created_at"]))
        return copy.deepcopy(rows)

    async def list_call_feedback(self, user_id: str, call_id: str) -> list[Row]:
        rows = [
            row for row in self._rows("feedback")
            if row["user_id"] == user_id and row.get("call_id") == call_id
        ]
        rows.sort(key=lambda row: _ts(row["created_at"]))
        return copy.deepcopy(rows)

    # -- Jobs --

    async def get_job(self, job_id: str) -> Row | None:
        return self._get("jobs", job_id)

    async def get_job_by_extraction(self, extraction_id: str) -> Row | None:
        return self._find("jobs", extraction_id=extraction_id)

    async def insert_job(self, data: Row) -> Row:
        async with self._lock:
            extraction_id = data.get("extraction_id")
            if extraction_id and self._find("jobs", extraction_id=extraction_id):
                raise ConflictError("extraction already has a job")
            return self._insert("jobs", data)

    async def update_job(self, job_id: str, updates: Row) -> Row | None:
        async with self._lock:
            return self._update("jobs", job_id, updates)

    async def transition_job_status(
        self,
        job_id: str,
        expected_status: str,
        new_status: str,
        completed_at: Optional[str],
    ) -> Row | None:
        async with self._lock:
            row = self._tables["jobs"].get(job_id)
            if row is None or row["status"] != expected_status:
                return None
            return self._update("jobs", job_id, {"status": new_status, "completed_at": completed_at})

    async def delete_job(self, job_id: str) -> bool:
        async with self._lock:
            return self._tables["jobs"].pop(job_id, None) is not None

    async def list_jobs(self, user_id: str) -> list[Row]:
        rows = [row for row in self._rows("jobs") if row["user_id"] == user_id]
        rows.sort(key=lambda row: _ts(row["created_at"]), reverse=True)
        return copy.deepcopy(rows)

    async def list_customer_jobs(self, customer_id: str) -> list[Row]:
        return copy.deepcopy([row for row in self._rows("jobs") if row.get("customer_id") == customer_id])

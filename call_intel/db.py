"""
Record store.

``RecordStore`` is the keyed record store the services are written
against: plain dict rows in, plain dict rows out. ``SupabaseStore`` backs
it with the official Supabase Python client; ``InMemoryStore``
(``call_intel.memory_store``) backs it in-process for development and tests.

Anything that must not lose updates under concurrency (customer aggregates,
extraction confidence, job status transitions) is a single store operation,
implemented as a Postgres function on Supabase.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional

from postgrest.exceptions import APIError
from supabase import Client, create_client

from call_intel.config import StoreBackend, get_settings
from call_intel.errors import ConflictError, ExternalServiceError
from call_intel.logging_config import get_logger

logger = get_logger(__name__)

Row = dict[str, Any]

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

ACTIVE_JOB_STATUSES = ("QUOTING", "CONFIRMED", "IN_PROGRESS")
RETRYABLE_CALL_STATUSES = ("processing", "failed")


class RecordStore(ABC):
    """Persistence contract used by every service."""

    # -- Customers --

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Row | None: ...

    @abstractmethod
    async def find_customer_by_phone(self, user_id: str, phone: str) -> Row | None: ...

    @abstractmethod
    async def find_customer_by_email(self, user_id: str, email: str) -> Row | None: ...

    @abstractmethod
    async def list_customers(self, user_id: str, exclude_former: bool = True) -> list[Row]: ...

    @abstractmethod
    async def insert_customer(self, data: Row) -> Row:
        """Insert a customer. Raises ConflictError on a duplicate (user_id, phone|email)."""

    @abstractmethod
    async def update_customer(self, customer_id: str, updates: Row) -> Row | None: ...

    @abstractmethod
    async def increment_customer_jobs(self, customer_id: str, delta: int) -> None:
        """Atomically add ``delta`` to total_jobs (floored at 0) and touch last_contact_date."""

    @abstractmethod
    async def refresh_customer_analytics(self, customer_id: str) -> None:
        """Atomically recompute total_spent and average_job_value from completed jobs."""

    @abstractmethod
    async def search_customers(
        self,
        user_id: str,
        search: Optional[str],
        status: Optional[str],
        tags: list[str],
        has_jobs: Optional[bool],
        limit: int,
        offset: int,
    ) -> tuple[list[Row], int]: ...

    # -- Calls --

    @abstractmethod
    async def get_call(self, call_id: str) -> Row | None: ...

    @abstractmethod
    async def insert_call(self, data: Row) -> Row: ...

    @abstractmethod
    async def update_call(self, call_id: str, updates: Row) -> Row | None: ...

    @abstractmethod
    async def list_unprocessed_calls(self, limit: int, max_retries: int) -> list[Row]:
        """Calls PROCESSING or FAILED, with no extraction and retries left, oldest first."""

    # -- Extractions --

    @abstractmethod
    async def get_extraction(self, extraction_id: str) -> Row | None: ...

    @abstractmethod
    async def get_extraction_by_call(self, call_id: str) -> Row | None: ...

    @abstractmethod
    async def insert_extraction(self, data: Row) -> Row:
        """Insert an extraction. Raises ConflictError if the call already has one."""

    @abstractmethod
    async def update_extraction(self, extraction_id: str, updates: Row) -> Row | None: ...

    @abstractmethod
    async def adjust_extraction_confidence(self, extraction_id: str, delta: float) -> Row | None:
        """Atomically add ``delta`` to confidence (clamped to [0, 1]) and bump feedback_count."""

    @abstractmethod
    async def list_pending_reviews(self, user_id: str, threshold: float, limit: int) -> list[Row]:
        """Unreviewed extractions below ``threshold`` or with issues, newest first."""

    @abstractmethod
    async def count_customer_calls(self, customer_id: str) -> int: ...

    # -- Feedback --

    @abstractmethod
    async def insert_feedback(self, data: Row) -> Row: ...

    @abstractmethod
    async def list_feedback(self, user_id: str, since: datetime) -> list[Row]: ...

    @abstractmethod
    async def list_call_feedback(self, user_id: str, call_id: str) -> list[Row]:
        """Feedback records for one call, oldest first."""

    # -- Jobs --

    @abstractmethod
    async def get_job(self, job_id: str) -> Row | None: ...

    @abstractmethod
    async def get_job_by_extraction(self, extraction_id: str) -> Row | None: ...

    @abstractmethod
    async def insert_job(self, data: Row) -> Row: ...

    @abstractmethod
    async def update_job(self, job_id: str, updates: Row) -> Row | None: ...

    @abstractmethod
    async def transition_job_status(
        self,
        job_id: str,
        expected_status: str,
        new_status: str,
        completed_at: Optional[str],
    ) -> Row | None:
        """
        Compare-and-set the job status.

        Returns the updated row, or None when the stored status no longer
        equals ``expected_status``.
        """

    @abstractmethod
    async def delete_job(self, job_id: str) -> bool: ...

    @abstractmethod
    async def list_jobs(self, user_id: str) -> list[Row]: ...

    @abstractmethod
    async def list_customer_jobs(self, customer_id: str) -> list[Row]: ...


class SupabaseStore(RecordStore):
    """Record store backed by Supabase (PostgREST + RPC functions)."""

    def __init__(self, client: Client | None = None) -> None:
        self._client = client or _create_client()

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client

    def _execute(self, query: Any, operation: str, **context: Any) -> Any:
        """Run a PostgREST query, translating failures into core errors."""
        try:
            return query.execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.info("store_unique_violation", operation=operation, **context)
                raise ConflictError(f"{operation}: duplicate record") from e
            logger.error("store_error", operation=operation, error=e.message, code=e.code, **context)
            raise ExternalServiceError("supabase", f"{operation} failed: {e.message}") from e

    def _first(self, query: Any, operation: str, **context: Any) -> Row | None:
        response = self._execute(query.limit(1), operation, **context)
        return response.data[0] if response.data else None

    def _returning(self, query: Any, operation: str, **context: Any) -> Row | None:
        response = self._execute(query, operation, **context)
        # Supabase insert/update returns a list, usually with 1 item
        if response.data:
            return response.data[0]
        return None

    # -- Customers --

    async def get_customer(self, customer_id: str) -> Row | None:
        return self._first(
            self.client.table("customers").select("*").eq("id", customer_id),
            "get_customer", customer_id=customer_id,
        )

    async def find_customer_by_phone(self, user_id: str, phone: str) -> Row | None:
        return self._first(
            self.client.table("customers").select("*").eq("user_id", user_id).eq("phone", phone),
            "find_customer_by_phone",
        )

    async def find_customer_by_email(self, user_id: str, email: str) -> Row | None:
        return self._first(
            self.client.table("customers").select("*").eq("user_id", user_id).eq("email", email),
            "find_customer_by_email",
        )

    async def list_customers(self, user_id: str, exclude_former: bool = True) -> list[Row]:
        query = self.client.table("customers").select("*").eq("user_id", user_id)
        if exclude_former:
            query = query.neq("status", "FORMER")
        return self._execute(query.order("created_at"), "list_customers").data or []

    async def insert_customer(self, data: Row) -> Row:
        row = self._returning(self.client.table("customers").insert(data), "insert_customer")
        if row is None:
            raise ExternalServiceError("supabase", "insert_customer returned no row")
        return row

    async def update_customer(self, customer_id: str, updates: Row) -> Row | None:
        return self._returning(
            self.client.table("customers").update(updates).eq("id", customer_id),
            "update_customer", customer_id=customer_id,
        )

    async def increment_customer_jobs(self, customer_id: str, delta: int) -> None:
        self._execute(
            self.client.rpc("increment_customer_jobs", {"p_customer_id": customer_id, "p_delta": delta}),
            "increment_customer_jobs", customer_id=customer_id,
        )

    async def refresh_customer_analytics(self, customer_id: str) -> None:
        self._execute(
            self.client.rpc("refresh_customer_analytics", {"p_customer_id": customer_id}),
            "refresh_customer_analytics", customer_id=customer_id,
        )

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
        query = self.client.table("customers").select("*", count="exact").eq("user_id", user_id)
        if search:
            term = search.replace(",", " ").strip()
            query = query.or_(
                ",".join(f"{column}.ilike.%{term}%" for column in ("name", "phone", "email", "address", "notes"))
            )
        if status:
            query = query.eq("status", status)
        if tags:
            query = query.contains("tags", tags)
        if has_jobs is True:
            query = query.gt("total_jobs", 0)
        elif has_jobs is False:
            query = query.eq("total_jobs", 0)

        response = self._execute(
            query.order("created_at", desc=True).range(offset, offset + limit - 1),
            "search_customers",
        )
        rows = response.data or []
        return rows, response.count if response.count is not None else len(rows)

    # -- Calls --

    async def get_call(self, call_id: str) -> Row | None:
        return self._first(self.client.table("calls").select("*").eq("id", call_id), "get_call", call_id=call_id)

    async def insert_call(self, data: Row) -> Row:
        row = self._returning(self.client.table("calls").insert(data), "insert_call")
        if row is None:
            raise ExternalServiceError("supabase", "insert_call returned no row")
        return row

    async def update_call(self, call_id: str, updates: Row) -> Row | None:
        return self._returning(
            self.client.table("calls").update(updates).eq("id", call_id), "update_call", call_id=call_id
        )

    async def list_unprocessed_calls(self, limit: int, max_retries: int) -> list[Row]:
        response = self._execute(
            self.client.table("calls")
            .select("*, appointment_extractions(id)")
            .in_("status", list(RETRYABLE_CALL_STATUSES))
            .lt("retry_count", max_retries)
            .order("created_at", desc=False)
            .limit(limit * 5),
            "list_unprocessed_calls",
        )
        calls = []
        for row in response.data or []:
            if row.pop("appointment_extractions", None):
                continue
            if not row.get("transcript") and not row.get("recording_url"):
                continue
            calls.append(row)
        return calls[:limit]

    # -- Extractions --

    async def get_extraction(self, extraction_id: str) -> Row | None:
        return self._first(
            self.client.table("appointment_extractions").select("*").eq("id", extraction_id),
            "get_extraction", extraction_id=extraction_id,
        )

    async def get_extraction_by_call(self, call_id: str) -> Row | None:
        return self._first(
            self.client.table("appointment_extractions").select("*").eq("call_id", call_id),
            "get_extraction_by_call", call_id=call_id,
        )

    async def insert_extraction(self, data: Row) -> Row:
        row = self._returning(
            self.client.table("appointment_extractions").insert(data),
            "insert_extraction", call_id=data.get("call_id"),
        )
        if row is None:
            raise ExternalServiceError("supabase", "insert_extraction returned no row")
        return row

    async def update_extraction(self, extraction_id: str, updates: Row) -> Row | None:
        return self._returning(
            self.client.table("appointment_extractions").update(updates).eq("id", extraction_id),
            "update_extraction", extraction_id=extraction_id,
        )

    async def adjust_extraction_confidence(self, extraction_id: str, delta: float) -> Row | None:
        response = self._execute(
            self.client.rpc(
                "adjust_extraction_confidence",
                {"p_extraction_id": extraction_id, "p_delta": delta},
            ),
            "adjust_extraction_confidence", extraction_id=extraction_id,
        )
        data = response.data
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    async def list_pending_reviews(self, user_id: str, threshold: float, limit: int) -> list[Row]:
        response = self._execute(
            self.client.table("appointment_extractions")
            .select("*")
            .eq("user_id", user_id)
            .eq("is_reviewed", False)
            .or_(f"confidence.lt.{threshold},has_issues.eq.true")
            .order("created_at", desc=True)
            .limit(limit),
            "list_pending_reviews",
        )
        return response.data or []

    async def count_customer_calls(self, customer_id: str) -> int:
        response = self._execute(
            self.client.table("appointment_extractions")
            .select("id", count="exact")
            .eq("customer_id", customer_id)
            .limit(1),
            "count_customer_calls", customer_id=customer_id,
        )
        return response.count or 0

    # -- Feedback --

    async def insert_feedback(self, data: Row) -> Row:
        row = self._returning(self.client.table("feedback").insert(data), "insert_feedback")
        if row is None:
            raise ExternalServiceError("supabase", "insert_feedback returned no row")
        return row

    async def list_feedback(self, user_id: str, since: datetime) -> list[Row]:
        response = self._execute(
            self.client.table("feedback")
            .select("*")
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
            .order("created_at", desc=False),
            "list_feedback",
        )
        return response.data or []

    async def list_call_feedback(self, user_id: str, call_id: str) -> list[Row]:
        response = self._execute(
            self.client.table("feedback")
            .select("*")
            .eq("user_id", user_id)
            .eq("call_id", call_id)
            .order("created_at", desc=False),
            "list_call_feedback", call_id=call_id,
        )
        return response.data or []

    # -- Jobs --

    async def get_job(self, job_id: str) -> Row | None:
        return self._first(self.client.table("jobs").select("*").eq("id", job_id), "get_job", job_id=job_id)

    async def get_job_by_extraction(self, extraction_id: str) -> Row | None:
        return self._first(
            self.client.table("jobs").select("*").eq("extraction_id", extraction_id),
            "get_job_by_extraction", extraction_id=extraction_id,
        )

    async def insert_job(self, data: Row) -> Row:
        row = self._returning(self.client.table("jobs").insert(data), "insert_job")
        if row is None:
            raise ExternalServiceError("supabase", "insert_job returned no row")
        return row

    async def update_job(self, job_id: str, updates: Row) -> Row | None:
        return self._returning(
            self.client.table("jobs").update(updates).eq("id", job_id), "update_job", job_id=job_id
        )

    async def transition_job_status(
        self,
        job_id: str,
        expected_status: str,
        new_status: str,
        completed_at: Optional[str],
    ) -> Row | None:
        response = self._execute(
            self.client.rpc(
                "transition_job_status",
                {
                    "p_job_id": job_id,
                    "p_expected_status": expected_status,
                    "p_new_status": new_status,
                    "p_completed_at": completed_at,
                },
            ),
            "transition_job_status", job_id=job_id,
        )
        data = response.data
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    async def delete_job(self, job_id: str) -> bool:
        response = self._execute(self.client.table("jobs").delete().eq("id", job_id), "delete_job", job_id=job_id)
        return bool(response.data)

    async def list_jobs(self, user_id: str) -> list[Row]:
        response = self._execute(
            self.client.table("jobs").select("*").eq("user_id", user_id).order("created_at", desc=True),
            "list_jobs",
        )
        return response.data or []

    async def list_customer_jobs(self, customer_id: str) -> list[Row]:
        response = self._execute(
            self.client.table("jobs").select("*").eq("customer_id", customer_id),
            "list_customer_jobs", customer_id=customer_id,
        )
        return response.data or []


def _create_client() -> Client:
    settings = get_settings()

    if not settings.supabase_url or not settings.supabase_service_key:
        logger.warning(
            "Supabase credentials missing. Database operations will fail.",
            url=bool(settings.supabase_url),
            key=bool(settings.supabase_service_key),
        )

    try:
        client = create_client(settings.supabase_url, settings.supabase_service_key)
    except Exception as e:
        logger.error("Failed to initialize Supabase client", error=str(e))
        raise

    logger.info("Supabase client initialized", url=settings.supabase_url)
    return client


# Global accessor
@lru_cache(maxsize=1)
def get_store() -> RecordStore:
    settings = get_settings()
    if settings.store_backend == StoreBackend.SUPABASE:
        return SupabaseStore()

    from call_intel.memory_store import InMemoryStore

    logger.info("using_in_memory_store")
    return InMemoryStore()

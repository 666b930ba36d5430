"""
API dependencies.

Service wiring, caller identity, and the mapping from core errors to
HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as aioredis
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from call_intel.db import RecordStore, get_store
from call_intel.errors import (
    CallIntelError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from call_intel.logging_config import get_logger, user_id_var
from call_intel.services.call_pipeline import CallPipeline
from call_intel.services.customer_matcher import CustomerMatcher
from call_intel.services.customer_service import CustomerService
from call_intel.services.data_extraction import ExtractionEngine
from call_intel.services.feedback_engine import FeedbackEngine
from call_intel.services.job_orchestrator import JobOrchestrator
from call_intel.services.locks import KeyedLock, build_customer_lock
from call_intel.services.notifications import NotificationSink
from call_intel.services.review_service import ReviewService
from call_intel.services.transcription import DeepgramTranscriber, Transcriber
from call_intel.services.ttl_store import get_redis
from call_intel.services.verification_codes import VerificationCodeStore

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything the routers need, built once per process."""

    store: RecordStore
    redis: aioredis.Redis
    notifications: NotificationSink
    matcher: CustomerMatcher
    customers: CustomerService
    engine: ExtractionEngine
    feedback: FeedbackEngine
    reviews: ReviewService
    jobs: JobOrchestrator
    pipeline: CallPipeline
    verification: VerificationCodeStore

    @classmethod
    def build(
        cls,
        store: RecordStore | None = None,
        redis: aioredis.Redis | None = None,
        engine: ExtractionEngine | None = None,
        transcriber: Transcriber | None = None,
        lock: KeyedLock | None = None,
    ) -> "Services":
        store = store or get_store()
        redis = redis or get_redis()
        notifications = NotificationSink(redis)
        matcher = CustomerMatcher(store, lock=lock or build_customer_lock(), notifications=notifications)
        engine = engine or ExtractionEngine()
        jobs = JobOrchestrator(store, matcher, notifications)
        return cls(
            store=store,
            redis=redis,
            notifications=notifications,
            matcher=matcher,
            customers=CustomerService(store),
            engine=engine,
            feedback=FeedbackEngine(store, notifications),
            reviews=ReviewService(store),
            jobs=jobs,
            pipeline=CallPipeline(
                store,
                engine,
                matcher,
                jobs,
                transcriber=transcriber or DeepgramTranscriber(),
                notifications=notifications,
            ),
            verification=VerificationCodeStore(redis),
        )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = Services.build()
        request.app.state.services = services
    return services


async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """
    Caller identity from the ``X-User-Id`` header.

    Authentication happens upstream (gateway); every record is scoped
    to this id.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user_id_var.set(user_id)
    return user_id


# -- Error mapping --

_STATUS_BY_ERROR: list[tuple[type[CallIntelError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ExternalServiceError, 502),
]


async def _handle_core_error(request: Request, exc: Exception) -> JSONResponse:
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 400)
    body: dict[str, object] = {"error": str(exc)}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    log = logger.warning if status < 500 else logger.error
    log("api_error", path=request.url.path, status=status, error=str(exc), kind=type(exc).__name__)
    return JSONResponse(status_code=status, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CallIntelError, _handle_core_error)

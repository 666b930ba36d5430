"""
Pytest configuration and fixtures.
"""

import fnmatch
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from call_intel.api.deps import Services
from call_intel.api_server import app
from call_intel.memory_store import InMemoryStore
from call_intel.services.call_pipeline import CallPipeline
from call_intel.services.customer_matcher import CustomerMatcher
from call_intel.services.customer_service import CustomerService
from call_intel.services.data_extraction import ExtractionEngine, StructuredExtractor
from call_intel.services.feedback_engine import FeedbackEngine
from call_intel.services.job_orchestrator import JobOrchestrator
from call_intel.services.locks import LocalKeyedLock
from call_intel.services.notifications import NotificationSink
from call_intel.services.review_service import ReviewService

USER_ID = "user-1"
OTHER_USER_ID = "user-2"

APPOINTMENT_PAYLOAD: dict[str, Any] = {
    "hasAppointment": True,
    "appointmentCount": 1,
    "confidence": 0.9,
    "customerName": "John Smith",
    "customerPhone": "(555) 123-4567",
    "customerEmail": "john@example.com",
    "serviceType": "Plumbing",
    "jobDescription": "Kitchen sink is leaking under the cabinet",
    "urgencyLevel": "urgent",
    "preferredDate": "tomorrow",
    "preferredTime": "morning",
    "timeFlexibility": "flexible",
    "serviceAddress": "12 Elm Street, Springfield",
    "addressConfidence": 0.9,
    "quotedPrice": 150,
    "issues": [],
}

TRANSCRIPT = (
    "Hi, this is John Smith. My kitchen sink is leaking under the cabinet. "
    "Could someone come out tomorrow morning? I'm at 12 Elm Street, Springfield."
)


class StubExtractor(StructuredExtractor):
    """Returns a canned payload (or raises a canned error)."""

    model_name = "stub-model"

    def __init__(self, payload: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.payload = dict(APPOINTMENT_PAYLOAD if payload is None else payload)
        self.error = error
        self.calls = 0

    async def extract(self, transcript: str) -> dict[str, Any]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.payload)


def make_redis() -> AsyncMock:
    """
    AsyncMock Redis whose string, counter and sorted-set commands are
    backed by plain dicts. Expiry is recorded but not enforced.
    """
    values: dict[str, str] = {}
    zsets: dict[str, dict[str, float]] = {}
    ttls: dict[str, int] = {}
    redis = AsyncMock()
    redis.values = values
    redis.zsets = zsets
    redis.ttls = ttls

    async def set_(key, value, ex=None, keepttl=False, **kwargs):
        values[key] = value
        if ex is not None:
            ttls[key] = ex
        return True

    async def get(key):
        return values.get(key)

    async def getdel(key):
        return values.pop(key, None)

    async def mget(keys):
        return [values.get(key) for key in keys]

    async def delete(*keys):
        removed = 0
        for key in keys:
            removed += int(values.pop(key, None) is not None or zsets.pop(key, None) is not None)
        return removed

    async def incr(key):
        values[key] = str(int(values.get(key, 0)) + 1)
        return int(values[key])

    async def expire(key, seconds):
        ttls[key] = seconds
        return True

    async def ttl(key):
        return ttls.get(key, -2) if key in values else -2

    def _ordered(key):
        return [member for member, _ in sorted(zsets.get(key, {}).items(), key=lambda item: item[1])]

    def _slice(members, start, stop):
        start = max(len(members) + start, 0) if start < 0 else start
        stop = len(members) + stop if stop < 0 else stop
        if stop < 0:
            return []
        return members[start:stop + 1]

    async def zadd(key, mapping):
        zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def zrange(key, start, stop):
        return _slice(_ordered(key), start, stop)

    async def zrevrange(key, start, stop):
        return _slice(list(reversed(_ordered(key))), start, stop)

    async def zrem(key, *members):
        for member in members:
            zsets.get(key, {}).pop(member, None)
        return len(members)

    redis.set.side_effect = set_
    redis.get.side_effect = get
    redis.getdel.side_effect = getdel
    redis.mget.side_effect = mget
    redis.delete.side_effect = delete
    redis.incr.side_effect = incr
    redis.expire.side_effect = expire
    redis.ttl.side_effect = ttl
    redis.zadd.side_effect = zadd
    redis.zrange.side_effect = zrange
    redis.zrevrange.side_effect = zrevrange
    redis.zrem.side_effect = zrem
    redis.publish.return_value = 1
    redis.lock = MagicMock()
    return redis


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def redis() -> AsyncMock:
    return make_redis()


@pytest.fixture
async def notifications(redis: AsyncMock) -> AsyncGenerator[NotificationSink, None]:
    sink = NotificationSink(redis, ttl_seconds=3600, max_per_user=100, enabled=True)
    yield sink
    await sink.drain()


@pytest.fixture
def matcher(store: InMemoryStore, notifications: NotificationSink) -> CustomerMatcher:
    return CustomerMatcher(store, lock=LocalKeyedLock(5.0), notifications=notifications, name_threshold=80)


@pytest.fixture
def customer_service(store: InMemoryStore) -> CustomerService:
    return CustomerService(store)


@pytest.fixture
def extractor() -> StubExtractor:
    return StubExtractor()


@pytest.fixture
def engine(extractor: StubExtractor) -> ExtractionEngine:
    return ExtractionEngine(extractor, timeout_seconds=2.0, issue_penalty=0.15)


@pytest.fixture
def feedback_engine(store: InMemoryStore, notifications: NotificationSink) -> FeedbackEngine:
    return FeedbackEngine(store, notifications)


@pytest.fixture
def review_service(store: InMemoryStore) -> ReviewService:
    return ReviewService(store, review_threshold=0.7)


@pytest.fixture
def jobs(store: InMemoryStore, matcher: CustomerMatcher, notifications: NotificationSink) -> JobOrchestrator:
    return JobOrchestrator(store, matcher, notifications, min_confidence=0.6)


@pytest.fixture
def pipeline(
    store: InMemoryStore,
    engine: ExtractionEngine,
    matcher: CustomerMatcher,
    jobs: JobOrchestrator,
    notifications: NotificationSink,
) -> CallPipeline:
    return CallPipeline(store, engine, matcher, jobs, transcriber=None, notifications=notifications)


@pytest.fixture
async def call_row(store: InMemoryStore) -> dict[str, Any]:
    """A registered call with a transcript, owned by USER_ID."""
    return await store.insert_call(
        {
            "user_id": USER_ID,
            "phone_number": "+15551234567",
            "transcript": TRANSCRIPT,
            "status": "processing",
        }
    )


@pytest.fixture
async def extraction_row(store: InMemoryStore, call_row: dict[str, Any]) -> dict[str, Any]:
    """A persisted extraction for call_row at confidence 0.8."""
    return await store.insert_extraction(
        {
            "call_id": call_row["id"],
            "user_id": USER_ID,
            "has_appointment": True,
            "appointment_count": 1,
            "customer_name": "John Smith",
            "customer_phone": "+15551234567",
            "service_type": "Plumbing",
            "job_description": "Kitchen sink is leaking under the cabinet",
            "urgency_level": "urgent",
            "preferred_date": "tomorrow",
            "service_address": "12 Elm Street, Springfield",
            "quoted_price": 150.0,
            "confidence": 0.8,
            "extraction_model": "stub-model",
        }
    )


@pytest.fixture
def services(
    store: InMemoryStore,
    redis: AsyncMock,
    engine: ExtractionEngine,
) -> Services:
    return Services.build(store=store, redis=redis, engine=engine, lock=LocalKeyedLock(5.0))


@pytest.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await services.notifications.drain()
    app.state.services = None


@pytest.fixture
def headers() -> dict[str, str]:
    return {"X-User-Id": USER_ID}


def matching_keys(redis: AsyncMock, pattern: str) -> list[str]:
    return [key for key in redis.values if fnmatch.fnmatch(key, pattern)]

"""
API Middleware.

Request ID injection, rate limiting, and structured audit logging
for every incoming API request.
"""

from __future__ import annotations

import time
from typing import Callable

from fastapi import Request, Response
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from call_intel.config import get_settings
from call_intel.logging_config import generate_trace_id, get_logger, trace_id_var
from call_intel.services.ttl_store import get_redis

logger = get_logger(__name__)

RATE_LIMIT_EXEMPT_PATHS = {"/health", "/"}


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Inject a unique request ID into every request and response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", generate_trace_id())
        trace_id_var.set(request_id)

        start = time.monotonic()

        response = await call_next(request)

        elapsed_ms = round((time.monotonic() - start) * 1000, 1)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)

        logger.info(
            "api_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            elapsed_ms=elapsed_ms,
            request_id=request_id,
        )

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window rate limiter per client, counted in Redis so that every
    API instance shares the same budget.

    The client is the ``X-User-Id`` header when present, otherwise the IP.
    When Redis is unreachable requests are let through.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        settings = get_settings()
        window = settings.rate_limit_window_seconds
        client = request.headers.get("X-User-Id") or (request.client.host if request.client else "unknown")
        key = f"ratelimit:{client}:{int(time.time() // window)}"

        try:
            redis = self._redis(request)
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, window)
        except RedisError as e:
            logger.warning("rate_limit_unavailable", error=str(e))
            return await call_next(request)

        if count > settings.rate_limit_max_requests:
            logger.warning("rate_limit_exceeded", client=client, count=count)
            return Response(
                content='{"error": "Rate limit exceeded"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(window)},
            )

        return await call_next(request)

    @staticmethod
    def _redis(request: Request):
        services = getattr(request.app.state, "services", None)
        return services.redis if services is not None else get_redis()

"""
Notification sink.

Pipeline stages report events here without waiting on delivery. Each
notification is stored in Redis as a JSON value with its own TTL, indexed
per user by a capped sorted set, and published on the user's channel for
live subscribers (SSE/websocket gateways outside this service).

Redis layout:
    notifications:{user_id}:{notification_id}   JSON, expires after TTL
    notifications:{user_id}:index               ZSET id -> created_at epoch
    notifications:{user_id}:stream              pub/sub channel
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis

from call_intel.config import get_settings
from call_intel.logging_config import get_logger
from call_intel.schemas.notification import Notification, NotificationPriority, NotificationType

settings = get_settings()
logger = get_logger(__name__)

NOTIFICATION_KEY = "notifications:{}:{}"
INDEX_KEY = "notifications:{}:index"
CHANNEL_KEY = "notifications:{}:stream"

EXTRACTION_FAILED_TTL = 24 * 3600


class NotificationSink:
    """Fire-and-forget notification emitter backed by Redis."""

    def __init__(
        self,
        redis: aioredis.Redis,
        ttl_seconds: int | None = None,
        max_per_user: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds or settings.notification_ttl_seconds
        self._max_per_user = max_per_user or settings.notification_max_per_user
        self._enabled = settings.feature_notifications if enabled is None else enabled
        self._pending: set[asyncio.Task] = set()

    # -- Emission --

    def emit(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        ttl_seconds: Optional[int] = None,
    ) -> Notification | None:
        """
        Schedule delivery and return immediately.

        Delivery failures are logged by the background task and never
        reach the caller.
        """
        if not self._enabled:
            return None

        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or {},
            priority=priority,
            created_at=datetime.now(timezone.utc),
        )

        task = asyncio.create_task(self._deliver(notification, ttl_seconds or self._ttl))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return notification

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, notification: Notification, ttl_seconds: int) -> None:
        user_id = notification.user_id
        index_key = INDEX_KEY.format(user_id)
        payload = notification.model_dump_json()

        try:
            await self._redis.set(
                NOTIFICATION_KEY.format(user_id, notification.id), payload, ex=ttl_seconds
            )
            await self._redis.zadd(index_key, {notification.id: notification.created_at.timestamp()})

            # Keep only the newest entries per user
            evicted = await self._redis.zrange(index_key, 0, -(self._max_per_user + 1))
            if evicted:
                await self._redis.zrem(index_key, *evicted)
                await self._redis.delete(*[NOTIFICATION_KEY.format(user_id, nid) for nid in evicted])
            await self._redis.expire(index_key, self._ttl)

            await self._redis.publish(CHANNEL_KEY.format(user_id), payload)
            logger.info(
                "notification_delivered",
                notification_id=notification.id,
                type=notification.type.value,
            )
        except Exception as e:
            logger.error(
                "notification_delivery_failed",
                notification_id=notification.id,
                type=notification.type.value,
                error=str(e),
            )

    # -- Reading --

    async def list_notifications(
        self, user_id: str, limit: int = 50, unread_only: bool = False
    ) -> list[Notification]:
        """Newest first. Entries whose value already expired are skipped."""
        ids = await self._redis.zrevrange(INDEX_KEY.format(user_id), 0, max(0, limit - 1))
        if not ids:
            return []
        raw_values = await self._redis.mget([NOTIFICATION_KEY.format(user_id, nid) for nid in ids])

        notifications = []
        for raw in raw_values:
            if raw is None:
                continue
            notification = Notification.model_validate(json.loads(raw))
            if unread_only and notification.read:
                continue
            notifications.append(notification)
        return notifications

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        key = NOTIFICATION_KEY.format(user_id, notification_id)
        raw = await self._redis.get(key)
        if raw is None:
            return False
        notification = Notification.model_validate(json.loads(raw))
        if not notification.read:
            notification.read = True
            await self._redis.set(key, notification.model_dump_json(), keepttl=True)
        return True

    async def mark_all_read(self, user_id: str) -> int:
        count = 0
        for notification in await self.list_notifications(user_id, limit=self._max_per_user, unread_only=True):
            if await self.mark_read(user_id, notification.id):
                count += 1
        return count

    # -- Event helpers --

    def appointment_extracted(
        self, user_id: str, customer_name: str, service_type: str, confidence: float
    ) -> Notification | None:
        # Confidence is 0..1 internally and shown as a percentage
        percent = round(confidence * 100)
        return self.emit(
            user_id,
            NotificationType.APPOINTMENT_EXTRACTED,
            "Appointment Extracted",
            f"New appointment detected: {service_type} for {customer_name} ({percent}% confidence)",
            data={"customer_name": customer_name, "service_type": service_type, "confidence": confidence},
            priority=NotificationPriority.HIGH if confidence > 0.8 else NotificationPriority.NORMAL,
        )

    def job_created(
        self, user_id: str, job_id: str, job_title: str, customer_name: str, estimated_cost: float | None = None
    ) -> Notification | None:
        cost = f" (${estimated_cost:g})" if estimated_cost else ""
        return self.emit(
            user_id,
            NotificationType.JOB_CREATED,
            "New Job Created",
            f'Job "{job_title}" created for {customer_name}{cost}',
            data={
                "job_id": job_id,
                "job_title": job_title,
                "customer_name": customer_name,
                "estimated_cost": estimated_cost,
            },
        )

    def job_status_changed(
        self, user_id: str, job_id: str, job_title: str, old_status: str, new_status: str
    ) -> Notification | None:
        return self.emit(
            user_id,
            NotificationType.JOB_STATUS_CHANGED,
            "Job Status Updated",
            f'"{job_title}" moved from {old_status} to {new_status}',
            data={"job_id": job_id, "job_title": job_title, "old_status": old_status, "new_status": new_status},
            priority=NotificationPriority.HIGH if new_status == "COMPLETED" else NotificationPriority.NORMAL,
        )

    def customer_created(self, user_id: str, customer_name: str, matched_by: str) -> Notification | None:
        verb = "created" if matched_by == "none" else "linked"
        return self.emit(
            user_id,
            NotificationType.CUSTOMER_CREATED,
            "New Customer Added",
            f"{customer_name} has been {verb} in your customer database",
            data={"customer_name": customer_name, "matched_by": matched_by},
            priority=NotificationPriority.LOW,
        )

    def extraction_failed(self, user_id: str, call_id: str, error: str) -> Notification | None:
        return self.emit(
            user_id,
            NotificationType.EXTRACTION_FAILED,
            "Call Processing Failed",
            f"Failed to process appointment data from call {call_id}. Manual review needed.",
            data={"call_id": call_id, "error": error},
            priority=NotificationPriority.HIGH,
            ttl_seconds=EXTRACTION_FAILED_TTL,
        )

    def feedback_submitted(
        self, user_id: str, extraction_id: str, category: str, rating: int
    ) -> Notification | None:
        return self.emit(
            user_id,
            NotificationType.FEEDBACK_SUBMITTED,
            "Feedback Recorded",
            f"{category.replace('_', ' ').title()} feedback recorded ({rating}/5)",
            data={"extraction_id": extraction_id, "category": category, "rating": rating},
            priority=NotificationPriority.LOW,
        )


_sink: NotificationSink | None = None


def get_notification_sink() -> NotificationSink:
    global _sink
    if _sink is None:
        from call_intel.services.ttl_store import get_redis

        _sink = NotificationSink(get_redis())
    return _sink

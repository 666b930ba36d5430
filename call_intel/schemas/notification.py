"""
Data models for notification events sent to the notification sink.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    APPOINTMENT_EXTRACTED = "appointment_extracted"
    JOB_CREATED = "job_created"
    JOB_STATUS_CHANGED = "job_status_changed"
    CUSTOMER_CREATED = "customer_created"
    EXTRACTION_FAILED = "extraction_failed"
    FEEDBACK_SUBMITTED = "feedback_submitted"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Notification(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL
    read: bool = False
    created_at: datetime

"""
Data models for jobs (work orders) and job creation results.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    QUOTING = "QUOTING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class JobPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class JobCreate(BaseModel):
    """Manual job submission. Validated by JobOrchestrator, not here."""
    title: str = ""
    customer_name: str = ""
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    service_type: Optional[str] = None
    description: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    estimated_duration: Optional[int] = None  # minutes
    address: Optional[str] = None
    priority: Optional[JobPriority] = None
    estimated_cost: Optional[float] = None
    notes: Optional[str] = None
    customer_id: Optional[str] = None


class Job(BaseModel):
    id: str
    user_id: str
    customer_id: Optional[str] = None
    extraction_id: Optional[str] = None
    call_id: Optional[str] = None
    title: str
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    service_type: Optional[str] = None
    description: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    estimated_duration: Optional[int] = None
    address: Optional[str] = None
    status: JobStatus = JobStatus.QUOTING
    priority: JobPriority = JobPriority.NORMAL
    estimated_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    notes: Optional[str] = None
    extracted_from_call: bool = False
    confidence_score: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class JobUpdate(BaseModel):
    """Field edits. Status changes go through the transition operation."""
    title: Optional[str] = None
    service_type: Optional[str] = None
    description: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    estimated_duration: Optional[int] = Field(default=None, ge=0)
    address: Optional[str] = None
    priority: Optional[JobPriority] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    actual_cost: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class JobCreationResult(BaseModel):
    success: bool
    job_id: Optional[str] = None
    warnings: Optional[list[str]] = None
    error: Optional[str] = None
    errors: list[str] = Field(default_factory=list)


class JobStats(BaseModel):
    total_jobs: int = 0
    extracted_from_calls: int = 0
    manually_created: int = 0
    status_breakdown: dict[str, int] = Field(default_factory=dict)
    priority_breakdown: dict[str, int] = Field(default_factory=dict)

"""
Data models for deduplicated customer records and caller matching.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CustomerStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FORMER = "FORMER"
    BLACKLISTED = "BLACKLISTED"


class MatchedBy(str, Enum):
    NONE = "none"
    PHONE = "phone"
    EMAIL = "email"
    NAME_SIMILARITY = "name_similarity"


class ContactInfo(BaseModel):
    """Caller contact fragments as heard on a call or typed by a user."""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    preferred_contact: Optional[str] = None


class Customer(BaseModel):
    id: str
    user_id: str
    name: str
    phone: Optional[str] = None  # normalized, see services.phone
    email: Optional[str] = None  # lowercased
    address: Optional[str] = None
    preferred_contact: str = "phone"
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    status: CustomerStatus = CustomerStatus.ACTIVE
    is_blacklisted: bool = False
    blacklist_reason: Optional[str] = None
    total_jobs: int = 0
    total_spent: float = 0.0
    average_job_value: float = 0.0
    last_contact_date: Optional[datetime] = None
    created_at: datetime


class MatchResult(BaseModel):
    """Transient result of CustomerMatcher.find_or_create. Never persisted."""
    customer: Optional[Customer] = None
    is_new_customer: bool = False
    matched_by: MatchedBy = MatchedBy.NONE
    confidence: float = 0.0  # 0..100, match certainty rather than extraction confidence


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    preferred_contact: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None


class CustomerSearchFilters(BaseModel):
    search: Optional[str] = None
    status: Optional[CustomerStatus] = None
    tags: list[str] = Field(default_factory=list)
    has_jobs: Optional[bool] = None


class CustomerSearchResult(BaseModel):
    customers: list[Customer]
    total: int
    limit: int
    offset: int
    has_more: bool


class CustomerStats(BaseModel):
    total_jobs: int = 0
    completed_jobs: int = 0
    total_revenue: float = 0.0
    average_job_value: float = 0.0
    total_calls: int = 0
    conversion_rate: float = 0.0  # percent of calls that became jobs


class CustomerProfile(BaseModel):
    customer: Customer
    stats: CustomerStats

"""
API Router — Customer Endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from call_intel.api.deps import Services, get_current_user, get_services
from call_intel.schemas.customer import (
    ContactInfo,
    Customer,
    CustomerProfile,
    CustomerSearchFilters,
    CustomerSearchResult,
    CustomerStatus,
    CustomerUpdate,
    MatchResult,
)

router = APIRouter(prefix="/customers", tags=["Customers"])


class BlacklistRequest(BaseModel):
    blacklisted: bool = True
    reason: Optional[str] = None


@router.get("/", response_model=CustomerSearchResult)
async def search_customers(
    search: Optional[str] = None,
    status: Optional[CustomerStatus] = None,
    tags: list[str] = Query(default=[]),
    has_jobs: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> CustomerSearchResult:
    """Paged search over name, phone, and email."""
    filters = CustomerSearchFilters(search=search, status=status, tags=tags, has_jobs=has_jobs)
    return await services.customers.search(user_id, filters, limit=limit, offset=offset)


@router.post("/match", response_model=MatchResult)
async def find_or_create_customer(
    body: ContactInfo,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> MatchResult:
    """Resolve contact details to an existing customer, creating one if none matches."""
    return await services.matcher.find_or_create(user_id, body)


@router.get("/{customer_id}", response_model=Customer)
async def get_customer(
    customer_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Customer:
    return await services.customers.get_customer(user_id, customer_id)


@router.get("/{customer_id}/profile", response_model=CustomerProfile)
async def get_customer_profile(
    customer_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> CustomerProfile:
    return await services.customers.get_profile(user_id, customer_id)


@router.patch("/{customer_id}", response_model=Customer)
async def update_customer(
    customer_id: str,
    body: CustomerUpdate,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Customer:
    return await services.customers.update_customer(user_id, customer_id, body)


@router.put("/{customer_id}/blacklist", response_model=Customer)
async def set_blacklisted(
    customer_id: str,
    body: BlacklistRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Customer:
    return await services.customers.set_blacklisted(user_id, customer_id, body.blacklisted, body.reason)


@router.post("/{customer_id}/refresh-analytics", response_model=Customer)
async def refresh_customer_analytics(
    customer_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Customer:
    return await services.customers.refresh_analytics(user_id, customer_id)


@router.delete("/{customer_id}", response_model=Customer)
async def delete_customer(
    customer_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> Customer:
    """Soft delete. Refused while the customer has active jobs."""
    return await services.customers.soft_delete(user_id, customer_id)

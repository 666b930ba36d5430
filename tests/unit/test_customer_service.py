"""
Unit tests for customer lifecycle operations.
"""

import pytest

from call_intel.errors import ConflictError, NotFoundError, ValidationError
from call_intel.schemas.customer import ContactInfo, CustomerSearchFilters, CustomerStatus, CustomerUpdate
from call_intel.schemas.job import JobCreate, JobStatus

from conftest import OTHER_USER_ID, USER_ID


async def _customer(matcher, **contact):
    contact.setdefault("name", "Alice Moore")
    result = await matcher.find_or_create(USER_ID, ContactInfo(**contact))
    return result.customer


@pytest.mark.asyncio
async def test_get_customer_hides_other_tenants(customer_service, matcher):
    customer = await _customer(matcher, phone="555-777-7777")

    with pytest.raises(NotFoundError) as exc_info:
        await customer_service.get_customer(OTHER_USER_ID, customer.id)
    assert str(exc_info.value) == "Customer not found"


@pytest.mark.asyncio
async def test_update_normalizes_contact_fields(customer_service, matcher):
    customer = await _customer(matcher)

    updated = await customer_service.update_customer(
        USER_ID,
        customer.id,
        CustomerUpdate(phone="(555) 321-0000", email=" Alice@Example.COM ", tags=["vip", "vip", "new"]),
    )

    assert updated.phone == "+15553210000"
    assert updated.email == "alice@example.com"
    assert updated.tags == ["vip", "new"]
    assert updated.name == "Alice Moore"


@pytest.mark.asyncio
async def test_update_collects_all_errors(customer_service, matcher):
    customer = await _customer(matcher)

    with pytest.raises(ValidationError) as exc_info:
        await customer_service.update_customer(
            USER_ID, customer.id, CustomerUpdate(name="A", phone="123", email="not-an-email")
        )

    assert len(exc_info.value.errors) == 3


@pytest.mark.asyncio
async def test_update_to_taken_phone_conflicts(customer_service, matcher):
    await _customer(matcher, name="Alice Moore", phone="555-777-7777")
    bob = await _customer(matcher, name="Bob Stone", phone="555-888-8888")

    with pytest.raises(ConflictError):
        await customer_service.update_customer(USER_ID, bob.id, CustomerUpdate(phone="555-777-7777"))


@pytest.mark.asyncio
async def test_soft_delete_clears_contact(customer_service, matcher, store):
    customer = await _customer(matcher, phone="555-777-7777", email="alice@example.com", address="1 Main St")

    deleted = await customer_service.soft_delete(USER_ID, customer.id)

    assert deleted.status == CustomerStatus.FORMER
    assert deleted.phone is None
    assert deleted.email is None
    assert deleted.address is None
    assert deleted.notes.startswith("[DELETED] ")
    # Former customers no longer take part in matching
    assert await store.list_customers(USER_ID) == []


@pytest.mark.asyncio
async def test_soft_delete_refused_with_active_jobs(customer_service, jobs):
    result = await jobs.create_job(USER_ID, JobCreate(title="Fix Sink", customer_name="Alice Moore"))
    job = await jobs.get_job(USER_ID, result.job_id)

    with pytest.raises(ValidationError) as exc_info:
        await customer_service.soft_delete(USER_ID, job.customer_id)
    assert "1 active job(s)" in str(exc_info.value)

    await jobs.update_job_status(USER_ID, job.id, JobStatus.CANCELLED)
    deleted = await customer_service.soft_delete(USER_ID, job.customer_id)
    assert deleted.status == CustomerStatus.FORMER


@pytest.mark.asyncio
async def test_blacklist_round_trip(customer_service, matcher):
    customer = await _customer(matcher)

    blacklisted = await customer_service.set_blacklisted(USER_ID, customer.id, True, "  unpaid invoices ")
    assert blacklisted.is_blacklisted
    assert blacklisted.status == CustomerStatus.BLACKLISTED
    assert blacklisted.blacklist_reason == "unpaid invoices"

    restored = await customer_service.set_blacklisted(USER_ID, customer.id, False, "ignored")
    assert not restored.is_blacklisted
    assert restored.status == CustomerStatus.ACTIVE
    assert restored.blacklist_reason is None


@pytest.mark.asyncio
async def test_profile_stats(customer_service, jobs, store, extraction_row):
    result = await jobs.create_from_extraction(extraction_row["id"], USER_ID)
    job = await jobs.get_job(USER_ID, result.job_id)
    await store.update_extraction(extraction_row["id"], {"customer_id": job.customer_id})
    for status in (JobStatus.CONFIRMED, JobStatus.IN_PROGRESS, JobStatus.COMPLETED):
        await jobs.update_job_status(USER_ID, job.id, status)

    profile = await customer_service.get_profile(USER_ID, job.customer_id)

    assert profile.stats.total_jobs == 1
    assert profile.stats.completed_jobs == 1
    assert profile.stats.total_revenue == 150.0
    assert profile.stats.average_job_value == 150.0
    assert profile.stats.total_calls == 1
    assert profile.stats.conversion_rate == 100.0


@pytest.mark.asyncio
async def test_search_filters_and_pages(customer_service, matcher):
    await _customer(matcher, name="Alice Moore", phone="555-000-0001", tags=["vip"])
    await _customer(matcher, name="Bob Stone", phone="555-000-0002")
    await _customer(matcher, name="Carol Diaz", phone="555-000-0003", tags=["vip"])

    vip = await customer_service.search(USER_ID, CustomerSearchFilters(tags=["vip"]))
    assert vip.total == 2

    by_name = await customer_service.search(USER_ID, CustomerSearchFilters(search="stone"))
    assert [c.name for c in by_name.customers] == ["Bob Stone"]

    page = await customer_service.search(USER_ID, CustomerSearchFilters(), limit=2, offset=0)
    assert page.total == 3
    assert len(page.customers) == 2
    assert page.has_more

    clamped = await customer_service.search(USER_ID, CustomerSearchFilters(), limit=1000)
    assert clamped.limit == 100

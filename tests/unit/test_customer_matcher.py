"""
Unit tests for customer matching and creation.
"""

import asyncio

import pytest

from call_intel.schemas.customer import ContactInfo, MatchedBy
from call_intel.services.customer_matcher import CustomerMatcher
from call_intel.services.locks import LocalKeyedLock

from conftest import OTHER_USER_ID, USER_ID


@pytest.mark.asyncio
async def test_empty_contact_creates_nothing(matcher, store):
    result = await matcher.find_or_create(USER_ID, ContactInfo(name="  ", phone="", email=None))

    assert result.customer is None
    assert result.is_new_customer is False
    assert result.matched_by == MatchedBy.NONE
    assert await store.list_customers(USER_ID) == []


@pytest.mark.asyncio
async def test_same_contact_twice_returns_same_customer(matcher):
    contact = ContactInfo(name="Alice Moore", phone="555-777-7777", email="Alice@Example.com")

    first = await matcher.find_or_create(USER_ID, contact)
    second = await matcher.find_or_create(USER_ID, contact)

    assert first.is_new_customer
    assert not second.is_new_customer
    assert first.customer.id == second.customer.id
    assert second.matched_by == MatchedBy.PHONE
    assert second.confidence == 100.0
    assert first.customer.phone == "+15557777777"
    assert first.customer.email == "alice@example.com"


@pytest.mark.asyncio
async def test_concurrent_calls_create_one_customer(matcher, store):
    contact = ContactInfo(name="A", phone="+15557777777", email="a@x.com")

    results = await asyncio.gather(*(matcher.find_or_create(USER_ID, contact) for _ in range(5)))

    assert len({r.customer.id for r in results}) == 1
    assert sum(r.is_new_customer for r in results) == 1
    assert len(await store.list_customers(USER_ID)) == 1


@pytest.mark.asyncio
async def test_phone_beats_email_and_name(matcher):
    by_phone = await matcher.find_or_create(USER_ID, ContactInfo(name="Alice Moore", phone="555-111-2222"))
    by_email = await matcher.find_or_create(USER_ID, ContactInfo(name="Bob Stone", email="bob@example.com"))

    result = await matcher.find_or_create(
        USER_ID, ContactInfo(name="Bob Stone", phone="(555) 111-2222", email="bob@example.com")
    )

    assert result.customer.id == by_phone.customer.id
    assert result.matched_by == MatchedBy.PHONE
    assert by_email.customer.id != by_phone.customer.id


@pytest.mark.asyncio
async def test_email_match_is_case_insensitive(matcher):
    created = await matcher.find_or_create(USER_ID, ContactInfo(name="Bob Stone", email="bob@example.com"))

    result = await matcher.find_or_create(USER_ID, ContactInfo(name="Robert", email=" BOB@example.COM "))

    assert result.customer.id == created.customer.id
    assert result.matched_by == MatchedBy.EMAIL
    assert result.confidence == 95.0


@pytest.mark.asyncio
async def test_name_similarity_match(matcher):
    created = await matcher.find_or_create(USER_ID, ContactInfo(name="John Smith"))

    result = await matcher.find_or_create(USER_ID, ContactInfo(name="Jon Smith", phone="555-222-3333"))

    assert result.customer.id == created.customer.id
    assert result.matched_by == MatchedBy.NAME_SIMILARITY
    assert result.confidence > 80
    # The match fills in the missing phone but keeps the stored name
    assert result.customer.phone == "+15552223333"
    assert result.customer.name == "John Smith"


@pytest.mark.asyncio
async def test_dissimilar_name_creates_new_customer(matcher):
    await matcher.find_or_create(USER_ID, ContactInfo(name="John Smith"))

    result = await matcher.find_or_create(USER_ID, ContactInfo(name="Maria Garcia"))

    assert result.is_new_customer


@pytest.mark.asyncio
async def test_customers_are_tenant_scoped(matcher):
    contact = ContactInfo(name="Alice Moore", phone="555-777-7777")

    mine = await matcher.find_or_create(USER_ID, contact)
    theirs = await matcher.find_or_create(OTHER_USER_ID, contact)

    assert theirs.is_new_customer
    assert mine.customer.id != theirs.customer.id


@pytest.mark.asyncio
async def test_match_merges_tags_and_appends_notes(matcher):
    await matcher.find_or_create(
        USER_ID, ContactInfo(name="Alice Moore", phone="555-777-7777", tags=["vip"], notes="Gate code 1234")
    )

    result = await matcher.find_or_create(
        USER_ID, ContactInfo(phone="555-777-7777", tags=["vip", "repeat"], notes="Has a dog")
    )

    assert result.customer.tags == ["vip", "repeat"]
    assert result.customer.notes == "Gate code 1234\n---\nHas a dog"


@pytest.mark.asyncio
async def test_phone_only_contact_gets_default_name(matcher):
    result = await matcher.find_or_create(USER_ID, ContactInfo(phone="555-444-5555"))
    assert result.customer.name == "Unknown Customer"


@pytest.mark.asyncio
async def test_placeholder_name_never_matches_by_similarity(matcher, store):
    first = await matcher.find_or_create(
        USER_ID, ContactInfo(phone="555-111-0001"), default_name="Phone Customer"
    )
    second = await matcher.find_or_create(
        USER_ID, ContactInfo(name="Phone Customer", phone="555-999-0002"), default_name="Phone Customer"
    )

    assert second.is_new_customer
    assert second.customer.id != first.customer.id
    assert second.customer.name == "Phone Customer"
    assert second.customer.phone == "+15559990002"
    assert len(await store.list_customers(USER_ID)) == 2


@pytest.mark.asyncio
async def test_matchers_in_separate_processes_converge_on_one_customer(store, monkeypatch):
    lookup = store.find_customer_by_phone

    async def slow_lookup(user_id, phone):
        row = await lookup(user_id, phone)
        # Both racers see no customer before either one inserts
        await asyncio.sleep(0)
        return row

    monkeypatch.setattr(store, "find_customer_by_phone", slow_lookup)
    matchers = [CustomerMatcher(store, lock=LocalKeyedLock(5.0), name_threshold=80) for _ in range(2)]
    contact = ContactInfo(name="Joan Smith", phone="555-123-4567")

    results = await asyncio.gather(*(m.find_or_create(USER_ID, contact) for m in matchers))

    assert len(await store.list_customers(USER_ID)) == 1
    assert [r.is_new_customer for r in results].count(True) == 1
    assert len({r.customer.id for r in results}) == 1

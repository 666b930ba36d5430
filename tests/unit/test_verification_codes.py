"""
Unit tests for verification codes and the keyed TTL store beneath them.
"""

import pytest

from call_intel.errors import ValidationError
from call_intel.services.ttl_store import KeyedTTLStore
from call_intel.services.verification_codes import VerificationCodeStore, generate_code


def test_generated_codes_are_six_digits():
    for _ in range(50):
        code = generate_code()
        assert len(code) == 6
        assert code.isdigit()


@pytest.mark.asyncio
async def test_ttl_store_round_trip(redis):
    store = KeyedTTLStore(redis, "scratch", ttl_seconds=30)

    await store.put("k", {"a": 1})

    assert redis.ttls["scratch:k"] == 30
    assert await store.get("k") == {"a": 1}
    assert await store.pop("k") == {"a": 1}
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_code_is_consumed_by_first_match(redis):
    codes = VerificationCodeStore(redis, ttl_seconds=600)

    code = await codes.issue("phone", "(555) 123-4567")

    assert redis.ttls["verification:phone:+15551234567"] == 600
    assert await codes.verify("phone", "555.123.4567", code)
    assert not await codes.verify("phone", "555.123.4567", code)


@pytest.mark.asyncio
async def test_wrong_code_keeps_live_code(redis):
    codes = VerificationCodeStore(redis, ttl_seconds=600)
    code = await codes.issue("email", "Joan@Example.com")
    wrong = "000000" if code != "000000" else "111111"

    assert not await codes.verify("email", "joan@example.com", wrong)
    assert await codes.verify("email", " JOAN@example.com ", code)


@pytest.mark.asyncio
async def test_reissue_replaces_code(redis):
    codes = VerificationCodeStore(redis, ttl_seconds=600)
    await codes.issue("email", "joan@example.com")
    latest = await codes.issue("email", "joan@example.com")

    assert await codes.verify("email", "joan@example.com", latest)


@pytest.mark.asyncio
async def test_unknown_target_does_not_verify(redis):
    codes = VerificationCodeStore(redis, ttl_seconds=600)
    assert not await codes.verify("email", "nobody@example.com", "123456")


@pytest.mark.parametrize("channel,target", [("phone", "12"), ("email", "not-an-email"), ("fax", "555-123-4567")])
@pytest.mark.asyncio
async def test_invalid_targets_rejected(redis, channel, target):
    codes = VerificationCodeStore(redis, ttl_seconds=600)
    with pytest.raises(ValidationError):
        await codes.issue(channel, target)

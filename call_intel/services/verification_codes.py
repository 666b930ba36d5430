"""
Email and phone verification codes.

Codes are six digits, expire after ``verification_code_ttl_seconds``
(10 minutes by default) and are consumed by the first successful check.
"""

from __future__ import annotations

import hmac
import secrets

import redis.asyncio as aioredis

from call_intel.config import get_settings
from call_intel.errors import ValidationError
from call_intel.logging_config import get_logger
from call_intel.services.phone import is_valid_phone, normalize_phone
from call_intel.services.ttl_store import KeyedTTLStore

logger = get_logger(__name__)


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


class VerificationCodeStore:

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds or get_settings().verification_code_ttl_seconds
        self._store = KeyedTTLStore(redis, "verification", ttl)

    @staticmethod
    def _identifier(channel: str, target: str) -> str:
        if channel == "phone":
            if not is_valid_phone(target):
                raise ValidationError("invalid phone number")
            return f"phone:{normalize_phone(target)}"
        if channel == "email":
            email = (target or "").strip().lower()
            if "@" not in email:
                raise ValidationError("invalid email address")
            return f"email:{email}"
        raise ValidationError(f"unsupported verification channel: {channel}")

    async def issue(self, channel: str, target: str) -> str:
        """Create (or replace) the code for a target and return it for delivery."""
        identifier = self._identifier(channel, target)
        code = generate_code()
        await self._store.put(identifier, {"code": code})
        logger.info("verification_code_issued", channel=channel)
        return code

    async def verify(self, channel: str, target: str, code: str) -> bool:
        """True if ``code`` matches the live code. A match consumes it."""
        identifier = self._identifier(channel, target)
        entry = await self._store.get(identifier)
        if not entry:
            logger.info("verification_code_missing_or_expired", channel=channel)
            return False
        if not hmac.compare_digest(str(entry.get("code", "")), (code or "").strip()):
            logger.info("verification_code_mismatch", channel=channel)
            return False
        await self._store.delete(identifier)
        logger.info("verification_code_verified", channel=channel)
        return True

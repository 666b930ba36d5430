"""
Customer Matcher.

Resolves caller contact fragments to a single customer record per user,
creating one only when nothing matches. Precedence is strict:

1. normalized phone (confidence 100)
2. lowercased email (confidence 95)
3. best name similarity strictly above the threshold (confidence = score);
   placeholder names never take part
4. nothing usable supplied: no-op, no customer
5. otherwise create (confidence 100)

Concurrent callers with the same contact data converge on one record:
creation runs under a keyed lock, and a unique violation from the store
is resolved by re-fetching the winner.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from call_intel.config import get_settings
from call_intel.db import RecordStore
from call_intel.errors import ConflictError
from call_intel.logging_config import get_logger
from call_intel.schemas.customer import ContactInfo, Customer, MatchedBy, MatchResult
from call_intel.services.locks import KeyedLock, LocalKeyedLock
from call_intel.services.name_similarity import best_match, normalize_name
from call_intel.services.notifications import NotificationSink
from call_intel.services.phone import normalize_phone

logger = get_logger(__name__)

PHONE_MATCH_CONFIDENCE = 100.0
EMAIL_MATCH_CONFIDENCE = 95.0
NEW_CUSTOMER_CONFIDENCE = 100.0

DEFAULT_CUSTOMER_NAME = "Unknown Customer"
NOTES_SEPARATOR = "\n---\n"


def clean_phone(raw: Optional[str]) -> Optional[str]:
    """Normalized phone, or None when the input carries no digits."""
    if not raw or not any(ch.isdigit() for ch in raw):
        return None
    return normalize_phone(raw)


def clean_email(raw: Optional[str]) -> Optional[str]:
    email = (raw or "").strip().lower()
    return email or None


class CustomerMatcher:

    def __init__(
        self,
        store: RecordStore,
        lock: KeyedLock | None = None,
        notifications: NotificationSink | None = None,
        name_threshold: float | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._lock = lock or LocalKeyedLock(settings.lock_timeout_seconds)
        self._notifications = notifications
        self._name_threshold = settings.name_match_threshold if name_threshold is None else name_threshold

    async def find_or_create(
        self, user_id: str, contact: ContactInfo, default_name: str = DEFAULT_CUSTOMER_NAME
    ) -> MatchResult:
        """
        Match the contact to an existing customer or create one.

        `default_name` names a record created without a caller name. A
        placeholder name is never used for name similarity.
        """
        name = (contact.name or "").strip()
        if name.lower() in (default_name.lower(), DEFAULT_CUSTOMER_NAME.lower()):
            name = ""
        phone = clean_phone(contact.phone)
        email = clean_email(contact.email)

        if not name and not phone and not email:
            logger.info("customer_match_skipped_empty_contact")
            return MatchResult(customer=None, is_new_customer=False, matched_by=MatchedBy.NONE, confidence=0.0)

        found = await self._find_existing(user_id, name, phone, email)
        if found:
            return await self._attach(found, contact, phone, email)

        async with self._lock.hold(self._lock_key(user_id, name, phone, email)):
            # Another caller may have created it while we waited
            found = await self._find_existing(user_id, name, phone, email)
            if found:
                return await self._attach(found, contact, phone, email)

            try:
                new_row = self._new_customer(user_id, contact, name or default_name, phone, email)
                row = await self._store.insert_customer(new_row)
            except ConflictError:
                found = await self._find_existing(user_id, "", phone, email)
                if not found:
                    raise
                logger.info("customer_create_race_resolved", customer_id=found[0]["id"])
                return await self._attach(found, contact, phone, email)

        customer = Customer.model_validate(row)
        logger.info("customer_created", customer_id=customer.id)
        if self._notifications:
            self._notifications.customer_created(user_id, customer.name, MatchedBy.NONE.value)

        return MatchResult(
            customer=customer,
            is_new_customer=True,
            matched_by=MatchedBy.NONE,
            confidence=NEW_CUSTOMER_CONFIDENCE,
        )

    async def _find_existing(
        self,
        user_id: str,
        name: str,
        phone: Optional[str],
        email: Optional[str],
    ) -> tuple[dict[str, Any], MatchedBy, float] | None:
        if phone:
            row = await self._store.find_customer_by_phone(user_id, phone)
            if row:
                return row, MatchedBy.PHONE, PHONE_MATCH_CONFIDENCE

        if email:
            row = await self._store.find_customer_by_email(user_id, email)
            if row:
                return row, MatchedBy.EMAIL, EMAIL_MATCH_CONFIDENCE

        if name:
            candidates = await self._store.list_customers(user_id)
            best = best_match(name, ((row["id"], row["name"]) for row in candidates), self._name_threshold)
            if best:
                candidate_id, score = best
                row = next(row for row in candidates if row["id"] == candidate_id)
                return row, MatchedBy.NAME_SIMILARITY, score

        return None

    async def _attach(
        self,
        found: tuple[dict[str, Any], MatchedBy, float],
        contact: ContactInfo,
        phone: Optional[str],
        email: Optional[str],
    ) -> MatchResult:
        """Refresh the matched record with what this contact adds. The name is kept."""
        row, matched_by, confidence = found
        updates: dict[str, Any] = {"last_contact_date": datetime.now(timezone.utc).isoformat()}

        if phone and not row.get("phone"):
            updates["phone"] = phone
        if email and not row.get("email"):
            updates["email"] = email
        if contact.address and contact.address.strip() and not row.get("address"):
            updates["address"] = contact.address.strip()
        if contact.tags:
            merged = list(row.get("tags") or [])
            merged.extend(tag for tag in contact.tags if tag not in merged)
            updates["tags"] = merged
        if contact.notes and contact.notes.strip():
            existing_notes = row.get("notes") or ""
            separator = NOTES_SEPARATOR if existing_notes else ""
            updates["notes"] = existing_notes + separator + contact.notes.strip()

        try:
            updated = await self._store.update_customer(row["id"], updates)
        except ConflictError:
            # The new phone/email already belongs to a different customer
            updates.pop("phone", None)
            updates.pop("email", None)
            updated = await self._store.update_customer(row["id"], updates)

        customer = Customer.model_validate(updated or row)
        logger.info(
            "customer_matched",
            customer_id=customer.id,
            matched_by=matched_by.value,
            confidence=confidence,
        )
        return MatchResult(customer=customer, is_new_customer=False, matched_by=matched_by, confidence=confidence)

    @staticmethod
    def _lock_key(user_id: str, name: str, phone: Optional[str], email: Optional[str]) -> str:
        if phone:
            return f"customer:{user_id}:phone:{phone}"
        if email:
            return f"customer:{user_id}:email:{email}"
        return f"customer:{user_id}:name:{normalize_name(name)}"

    @staticmethod
    def _new_customer(
        user_id: str,
        contact: ContactInfo,
        name: str,
        phone: Optional[str],
        email: Optional[str],
    ) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "name": name,
            "phone": phone,
            "email": email,
            "address": (contact.address or "").strip() or None,
            "preferred_contact": contact.preferred_contact or "phone",
            "notes": (contact.notes or "").strip() or None,
            "tags": list(dict.fromkeys(contact.tags)),
            "status": "ACTIVE",
            "last_contact_date": datetime.now(timezone.utc).isoformat(),
        }

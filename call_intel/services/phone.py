"""
Phone number canonicalization.

Every phone number that enters the system (caller ID, extracted from a
transcript, typed into a form) is compared and stored in the form produced
by ``normalize_phone``.
"""

from __future__ import annotations

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")

# Runs of digits and common separators long enough to be a phone number
_PHONE_CANDIDATE = re.compile(r"\+?\d[\d\s().-]{8,}\d")

MIN_VALID_DIGITS = 11
MAX_VALID_DIGITS = 15


def normalize_phone(raw: Optional[str]) -> str:
    """
    Canonicalize a phone number. Never raises.

    - 10 digits: assumed US/Canada, prefixed with ``+1``
    - 11 or more digits: country code already present, prefixed with ``+``
    - anything shorter keeps an explicit leading ``+`` as is, otherwise
      falls back to ``+1`` (lossy for non-US numbers typed without a ``+``)

    The result always starts with ``+`` and normalizing it again yields
    the same string.
    """
    text = (raw or "").strip()
    digits = _NON_DIGITS.sub("", text)

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) > 10:
        return f"+{digits}"
    if text.startswith("+"):
        return f"+{digits}"
    return f"+1{digits}"


def phone_digits(raw: Optional[str]) -> str:
    """Digits of the normalized form, without the leading ``+``."""
    return normalize_phone(raw)[1:]


def is_valid_phone(raw: Optional[str]) -> bool:
    """True when the normalized number has an E.164 length (11-15 digits)."""
    if not raw or not _NON_DIGITS.sub("", raw):
        return False
    return MIN_VALID_DIGITS <= len(phone_digits(raw)) <= MAX_VALID_DIGITS


def find_phone_numbers(text: Optional[str]) -> list[str]:
    """Distinct valid phone numbers mentioned in free text, in order of appearance."""
    found: list[str] = []
    for match in _PHONE_CANDIDATE.finditer(text or ""):
        candidate = match.group(0)
        if not is_valid_phone(candidate):
            continue
        normalized = normalize_phone(candidate)
        if normalized not in found:
            found.append(normalized)
    return found

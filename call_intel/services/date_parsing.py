"""
Best-effort parsing of spoken dates ("tomorrow", "next Friday", "March 3rd").

Used to turn an extraction's preferred date into a job's scheduled date and
to flag dates the extraction model returned but nobody can interpret.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_RELATIVE_OFFSET = re.compile(r"^in\s+(\d{1,3}|a|an|one|two|three)\s+(day|week|month)s?$")
_WEEKDAY = re.compile(r"^(?:(this|next|on)\s+)?(" + "|".join(_WEEKDAYS) + r")$")
_WORD_NUMBERS = {"a": 1, "an": 1, "one": 1, "two": 2, "three": 3}

_TODAY_WORDS = ("today", "this morning", "this afternoon", "this evening", "tonight", "asap", "right away")

# "tomorrow morning", "friday at 3pm": the time of day is scheduled separately
_TIME_OF_DAY_SUFFIX = re.compile(r"\s+(?:(?:in the\s+)?(?:morning|afternoon|evening|night)|at\s+\S+(?:\s*[ap]\.?m\.?)?)$")


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_natural_date(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a date phrase relative to ``now``. Returns a midnight datetime
    (timezone of ``now``, UTC by default) or None. Never raises.
    """
    if not text or not text.strip():
        return None

    now = now or datetime.now(timezone.utc)
    today = _midnight(now)
    phrase = " ".join(text.strip().lower().rstrip(".").split())
    if phrase not in _TODAY_WORDS:
        phrase = _TIME_OF_DAY_SUFFIX.sub("", phrase)

    if phrase in _TODAY_WORDS:
        return today
    if phrase == "tomorrow":
        return today + timedelta(days=1)
    if phrase in ("day after tomorrow", "the day after tomorrow"):
        return today + timedelta(days=2)
    if phrase == "next week":
        return today + timedelta(weeks=1)
    if phrase == "next month":
        return today + relativedelta(months=1)

    offset = _RELATIVE_OFFSET.match(phrase)
    if offset:
        amount_text, unit = offset.groups()
        amount = _WORD_NUMBERS.get(amount_text) or int(amount_text)
        if unit == "day":
            return today + timedelta(days=amount)
        if unit == "week":
            return today + timedelta(weeks=amount)
        return today + relativedelta(months=amount)

    weekday = _WEEKDAY.match(phrase)
    if weekday:
        qualifier, day_name = weekday.groups()
        days_ahead = (_WEEKDAYS.index(day_name) - today.weekday()) % 7
        if days_ahead == 0:
            days_ahead = 7
        if qualifier == "next" and days_ahead < 7:
            days_ahead += 7
        return today + timedelta(days=days_ahead)

    try:
        parsed = date_parser.parse(phrase, fuzzy=True, default=today.replace(tzinfo=None))
    except (ValueError, OverflowError):
        return None

    if parsed.tzinfo is None and today.tzinfo is not None:
        parsed = parsed.replace(tzinfo=today.tzinfo)
    return _midnight(parsed)

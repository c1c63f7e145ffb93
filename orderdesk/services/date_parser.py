"""Relative and absolute date parsing for task due dates and order fulfillment.

Everything works on timezone-aware datetimes in the configured local zone.
`now` is always passed in so callers (and tests) control the clock.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from dateutil.parser import ParserError
from dateutil.parser import parse as parse_datetime
from dateutil.relativedelta import relativedelta

from orderdesk.config import settings
from orderdesk.logging_config import get_logger

logger = get_logger("date_parser")

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH_NAMES = "|".join(sorted(MONTHS, key=len, reverse=True))

PERIODS_OF_DAY = {
    "noon": time(12, 0),
    "midday": time(12, 0),
    "midnight": time(0, 0),
    "morning": time(9, 0),
    "afternoon": time(14, 0),
    "evening": time(18, 0),
    "tonight": time(20, 0),
    "night": time(20, 0),
}

_TIME_12H = re.compile(r"\b(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)(?![a-z])")
_TIME_24H = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_DAY_MONTH = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?({_MONTH_NAMES})\b(?:,?\s*(\d{{4}})\b)?")
_MONTH_DAY = re.compile(rf"\b({_MONTH_NAMES})\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s*(\d{{4}})\b)?")
_ORDINAL_DAY = re.compile(r"\b(?:on\s+the\s+)?(\d{1,2})(?:st|nd|rd|th)\b|\bon\s+the\s+(\d{1,2})\b")
_IN_PERIOD = re.compile(r"\bin\s+(\d+)\s+(day|week|month)s?\b")
_PERIOD_LATER = re.compile(r"\b(\d+)\s+(day|week|month)s?\s+(?:later|from\s+now)\b")
_YEAR = re.compile(r"\b\d{4}\b")
_WEEKDAY = re.compile(rf"\b(?:(this|next|coming)\s+)?({'|'.join(WEEKDAYS)})\b")


def local_zone() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def local_now() -> datetime:
    return datetime.now(local_zone())


def ensure_timezone(dt: Optional[datetime], tz=timezone.utc) -> Optional[datetime]:
    """Attach `tz` to naive datetimes (SQLite hands them back without one)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to UTC before storage; SQLite drops the offset on write."""
    if dt is None:
        return None
    return ensure_timezone(dt).astimezone(timezone.utc)


def _extract_time(text: str) -> Tuple[Optional[time], str]:
    """Find a time of day and return it with the text minus the time phrase."""
    match = _TIME_12H.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        meridiem = match.group(3).replace(".", "")
        if hour > 12 or minute > 59:
            return None, text
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
        return time(hour, minute), text[: match.start()] + " " + text[match.end():]

    match = _TIME_24H.search(text)
    if match:
        parsed = time(int(match.group(1)), int(match.group(2)))
        return parsed, text[: match.start()] + " " + text[match.end():]

    for word, parsed in PERIODS_OF_DAY.items():
        if re.search(rf"\b{word}\b", text):
            return parsed, text
    return None, text


def _combine(day: date, at: Optional[time], now: datetime, keep_clock: bool = False) -> datetime:
    if at is None:
        at = now.time().replace(microsecond=0) if keep_clock else time(0, 0)
    return datetime.combine(day, at, tzinfo=now.tzinfo)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _roll_day_of_month(day: int, today: date) -> Optional[date]:
    """Next date on or after today carrying this day-of-month."""
    candidate = today.replace(day=1)
    for _ in range(13):
        found = _safe_date(candidate.year, candidate.month, day)
        if found and found >= today:
            return found
        candidate = candidate + relativedelta(months=1)
    return None


def _weekday_date(prefix: Optional[str], name: str, at: Optional[time], now: datetime) -> date:
    today = now.date()
    days_ahead = (WEEKDAYS.index(name) - today.weekday()) % 7
    if prefix == "next" and days_ahead == 0:
        days_ahead = 7
    elif days_ahead == 0 and (at is None or _combine(today, at, now) < now):
        days_ahead = 7
    return today + timedelta(days=days_ahead)


def parse_date_time(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse phrases like "tomorrow 5pm", "friday", "15th nov" or "2025-03-01".

    Returns None when nothing date-like is found.
    """
    if not text or not text.strip():
        return None
    now = now or local_now()
    today = now.date()
    lowered = " ".join(text.lower().split())

    at, rest = _extract_time(lowered)

    if "day after tomorrow" in rest:
        return _combine(today + timedelta(days=2), at, now, keep_clock=True)
    if re.search(r"\btomorrow\b", rest):
        return _combine(today + timedelta(days=1), at, now, keep_clock=True)
    if re.search(r"\b(today|tonight)\b", rest):
        return _combine(today, at, now, keep_clock=True)
    if "next week" in rest:
        return _combine(today + timedelta(days=7), at, now, keep_clock=True)
    if "next month" in rest:
        return _combine(today + relativedelta(months=1), at, now, keep_clock=True)

    match = _IN_PERIOD.search(rest) or _PERIOD_LATER.search(rest)
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        if unit == "month":
            delta = relativedelta(months=amount)
        else:
            delta = timedelta(days=amount * (7 if unit == "week" else 1))
        return _combine(today + delta, at, now, keep_clock=True)

    match = _ISO_DATE.search(rest)
    if match:
        found = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if found:
            return _combine(found, at, now)

    match = _DAY_MONTH.search(rest)
    month_match = (int(match.group(1)), MONTHS[match.group(2)], match.group(3)) if match else None
    if month_match is None:
        match = _MONTH_DAY.search(rest)
        month_match = (int(match.group(2)), MONTHS[match.group(1)], match.group(3)) if match else None
    if month_match:
        day, month, year = month_match
        if year:
            found = _safe_date(int(year), month, day)
        else:
            found = _safe_date(today.year, month, day)
            if found and found < today:
                found = _safe_date(today.year + 1, month, day)
        if found:
            return _combine(found, at, now)

    match = _WEEKDAY.search(rest)
    if match:
        return _combine(_weekday_date(match.group(1), match.group(2), at, now), at, now)

    match = _ORDINAL_DAY.search(rest)
    if match:
        found = _roll_day_of_month(int(match.group(1) or match.group(2)), today)
        if found:
            return _combine(found, at, now)

    if at is not None:
        candidate = _combine(today, at, now)
        if candidate < now:
            candidate += timedelta(days=1)
        return candidate

    return _fallback_parse(lowered, now)


def _fallback_parse(text: str, now: datetime) -> Optional[datetime]:
    default = now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    try:
        parsed = parse_datetime(text, default=default, fuzzy=True, dayfirst=True)
    except (ParserError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    if parsed.date() < now.date():
        # Only a date without a written year moves forward.
        if _YEAR.search(text):
            return None
        parsed += relativedelta(years=1)
    logger.debug(f"Fallback date parse: {text!r} -> {parsed.isoformat()}")
    return parsed


def _start_of_day(day: date, tz) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _end_of_day(day: date, tz) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def parse_date_range(
    label: Optional[str], now: Optional[datetime] = None
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive (start, end) bounds for labels like "this week"; (None, None) if unknown."""
    if not label:
        return None, None
    now = now or local_now()
    tz = now.tzinfo
    today = now.date()
    key = " ".join(label.lower().split())
    monday = today - timedelta(days=today.weekday())

    if key == "today":
        return _start_of_day(today, tz), _end_of_day(today, tz)
    if key == "yesterday":
        day = today - timedelta(days=1)
        return _start_of_day(day, tz), _end_of_day(day, tz)
    if key == "tomorrow":
        day = today + timedelta(days=1)
        return _start_of_day(day, tz), _end_of_day(day, tz)
    if key == "this week":
        return _start_of_day(monday, tz), _end_of_day(monday + timedelta(days=6), tz)
    if key == "last week":
        start = monday - timedelta(days=7)
        return _start_of_day(start, tz), _end_of_day(start + timedelta(days=6), tz)
    if key == "next week":
        start = monday + timedelta(days=7)
        return _start_of_day(start, tz), _end_of_day(start + timedelta(days=6), tz)
    if key == "this month":
        first = today.replace(day=1)
        last = first + relativedelta(months=1) - timedelta(days=1)
        return _start_of_day(first, tz), _end_of_day(last, tz)
    if key == "last month":
        first = today.replace(day=1) - relativedelta(months=1)
        last = today.replace(day=1) - timedelta(days=1)
        return _start_of_day(first, tz), _end_of_day(last, tz)
    if key == "this year":
        return _start_of_day(date(today.year, 1, 1), tz), _end_of_day(date(today.year, 12, 31), tz)

    return None, None

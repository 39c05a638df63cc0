"""Date/time helpers for the booking tools.

All business rules (opening hours, weekends, "today"/"tomorrow") are
evaluated in the clinic's configured time zone, not in UTC.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from careconnect.config import BUSINESS_CLOSE_HOUR, BUSINESS_OPEN_HOUR, TIMEZONE

ISO_8601_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{3})?(Z|[+-]\d{2}:\d{2})?$"
)

# Substrings that mark a date-time argument as relative phrasing.
NATURAL_TIME_MARKERS = (
    "tomorrow", "today", "내일", "오늘", "모레", "오전", "오후",
)


def business_tz(tz_name: str = TIMEZONE) -> ZoneInfo:
    return ZoneInfo(tz_name)


def is_valid_iso8601(value: str | None) -> bool:
    """Strict ``YYYY-MM-DDTHH:MM:SS[.mmm][Z|±HH:MM]`` check."""
    if not value or not isinstance(value, str):
        return False
    if not ISO_8601_PATTERN.match(value):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def parse_iso(value: str, tz_name: str = TIMEZONE) -> datetime:
    """Parse an ISO-8601 string, reading naive times as business-local time."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=business_tz(tz_name))
    return parsed


def looks_natural(value: str) -> bool:
    lowered = value.lower()
    return any(marker in lowered for marker in NATURAL_TIME_MARKERS)


_HOUR_PATTERNS = (
    ("korean_clock", re.compile(r"(\d{1,2})\s*시\s*(?:(\d{1,2})\s*분)?")),
    ("colon", re.compile(r"(\d{1,2}):(\d{2})")),
    ("meridiem", re.compile(r"(\d{1,2})\s*(am|pm)\b")),
    ("korean_am", re.compile(r"오전\s*(\d{1,2})")),
    ("korean_pm", re.compile(r"오후\s*(\d{1,2})")),
)
_PM_WORD = re.compile(r"오후|\bpm\b|\d\s*pm\b")
_AM_WORD = re.compile(r"오전|\bam\b|\d\s*am\b")


def parse_natural_time(text: str | None, reference: datetime | None = None,
                       tz_name: str = TIMEZONE) -> str | None:
    """Turn phrasing like ``"내일 2시"`` or ``"tomorrow 3pm"`` into a local ISO string.

    The result carries no offset (``YYYY-MM-DDTHH:MM:SS``) and is meant to
    be read in the business time zone.  Returns ``None`` when no hour can
    be found, except that booking questions (``예약``) default to 10:00.
    """
    if not text or not isinstance(text, str):
        return None
    lowered = text.lower().strip()
    zone = business_tz(tz_name)
    base = (reference or datetime.now(zone)).astimezone(zone)

    target = base
    if "모레" in lowered or "day after tomorrow" in lowered:
        target = base + timedelta(days=2)
    elif "내일" in lowered or "tomorrow" in lowered:
        target = base + timedelta(days=1)

    hour: int | None = None
    minute = 0
    for kind, pattern in _HOUR_PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        hour = int(match.group(1))
        if kind == "korean_am":
            if hour == 12:
                hour = 0
        elif kind == "korean_pm":
            if hour != 12:
                hour += 12
        elif kind == "meridiem":
            is_pm = match.group(2) == "pm"
            if is_pm and hour != 12:
                hour += 12
            if not is_pm and hour == 12:
                hour = 0
        else:
            minute = int(match.group(2)) if match.group(2) else 0
            if _PM_WORD.search(lowered):
                if hour < 12:
                    hour += 12
            elif _AM_WORD.search(lowered):
                if hour == 12:
                    hour = 0
            elif 1 <= hour <= 7:
                # "2시" at a clinic means the afternoon
                hour += 12
        break

    if hour is None:
        if "예약" not in lowered:
            return None
        hour = 10

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0).strftime(
        "%Y-%m-%dT%H:%M:%S"
    )


def is_business_hours(moment: datetime, tz_name: str = TIMEZONE) -> bool:
    """Weekdays, ``BUSINESS_OPEN_HOUR`` inclusive to ``BUSINESS_CLOSE_HOUR`` exclusive."""
    local = moment.astimezone(business_tz(tz_name)) if moment.tzinfo else moment
    if local.weekday() >= 5:
        return False
    return BUSINESS_OPEN_HOUR <= local.hour < BUSINESS_CLOSE_HOUR


def slot_within_business_hours(start: datetime, minutes: int, tz_name: str = TIMEZONE) -> bool:
    """True when the whole ``[start, start + minutes)`` window is inside opening hours."""
    end = start + timedelta(minutes=minutes)
    last_minute = end - timedelta(minutes=1)
    return is_business_hours(start, tz_name) and is_business_hours(last_minute, tz_name) and (
        start.astimezone(business_tz(tz_name)).date() == last_minute.astimezone(business_tz(tz_name)).date()
    )


def overlaps(start: datetime, end: datetime, busy: list[tuple[datetime, datetime]]) -> bool:
    return any(b_start < end and start < b_end for b_start, b_end in busy)

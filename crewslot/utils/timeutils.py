"""
Time helpers: instant <-> resource-local conversion and flexible parsing.

All instants handled by the engine are timezone-aware datetimes. Naive
inputs are interpreted in the scheduling timezone supplied by the caller.
"""

import re
from datetime import date, datetime, timezone
from typing import NamedTuple, Optional
from zoneinfo import ZoneInfo

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:\d{2})$")
_YMD_TIME = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(am|pm)?$", re.I)
_YMD = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_MDY_TIME = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?\s*(am|pm)?$", re.I)
_MDY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ORDINAL = re.compile(r"(\d+)(st|nd|rd|th)\b")
_CLOCK = re.compile(r"^(\d{1,2})(?::(\d{2}))?(am|pm)?$")


class LocalTime(NamedTuple):
    weekday: int  # 0 = Sunday
    minute_of_day: int


def to_local(instant: datetime, tz: str) -> LocalTime:
    """Convert an aware instant into (weekday, minute of day) in ``tz``."""
    local = instant.astimezone(ZoneInfo(tz))
    # isoweekday: Monday=1 .. Sunday=7
    return LocalTime(local.isoweekday() % 7, local.hour * 60 + local.minute)


def make_local(year: int, month: int, day: int, hour: int, minute: int, second: int, tz: str) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=ZoneInfo(tz))


def to_iso(instant: datetime, tz: str) -> str:
    """Render ``instant`` as ISO-8601 with the offset of ``tz`` (seconds precision)."""
    return instant.astimezone(ZoneInfo(tz)).replace(microsecond=0).isoformat()


def _to_24h(hour: int, meridiem: Optional[str]) -> int:
    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == "pm" and hour < 12:
            return hour + 12
        if meridiem == "am" and hour == 12:
            return 0
    return hour


def _safe_local(year, month, day, hour, minute, second, tz) -> Optional[datetime]:
    try:
        return make_local(year, month, day, hour, minute, second, tz)
    except ValueError:
        return None


def parse_datetime_flexible(
    value,
    tz: str,
    default_hour: int = 9,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Parse a requested instant from structured or free-text input.

    Accepted shapes (first match wins):
    - aware ``datetime`` (naive ones are localised to ``tz``), ``date``
    - ISO-8601 with ``Z`` or an explicit offset
    - ``YYYY-MM-DD HH:MM[:SS] [am|pm]`` and bare ``YYYY-MM-DD``
    - ``M/D/YYYY H:MM[:SS][am|pm]`` and bare ``M/D/YYYY``
    - free text such as ``"March 4th 2pm"`` or ``"4 march 2025 14:30"``

    Bare dates get ``default_hour``. Free text without a year resolves to the
    next occurrence of that date relative to ``now``. Returns None when the
    input cannot be understood.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=ZoneInfo(tz))
    if isinstance(value, date):
        return _safe_local(value.year, value.month, value.day, default_hour, 0, 0, tz)

    raw = str(value).strip()
    if not raw:
        return None

    if _ISO_DATETIME.match(raw):
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None

    match = _YMD_TIME.match(raw)
    if match:
        y, mo, d, h, mi, s, ampm = match.groups()
        return _safe_local(int(y), int(mo), int(d), _to_24h(int(h), ampm), int(mi), int(s or 0), tz)

    match = _YMD.match(raw)
    if match:
        y, mo, d = match.groups()
        return _safe_local(int(y), int(mo), int(d), default_hour, 0, 0, tz)

    match = _MDY_TIME.match(raw)
    if match:
        mo, d, y, h, mi, s, ampm = match.groups()
        return _safe_local(int(y), int(mo), int(d), _to_24h(int(h), ampm), int(mi), int(s or 0), tz)

    match = _MDY.match(raw)
    if match:
        mo, d, y = match.groups()
        return _safe_local(int(y), int(mo), int(d), default_hour, 0, 0, tz)

    return _parse_free_text(raw, tz, default_hour, now)


def _month_number(token: str) -> Optional[int]:
    """Month for a name or an abbreviation of one ('sept', 'janu'); other words are not months."""
    if token in MONTHS:
        return MONTHS[token]
    if len(token) >= 3 and token.isalpha():
        for name, number in MONTHS.items():
            if len(name) > 3 and name.startswith(token):
                return number
    return None


def _parse_free_text(raw: str, tz: str, default_hour: int, now: Optional[datetime]) -> Optional[datetime]:
    normalized = raw.lower().replace(".", "").replace(",", " ")
    normalized = _ORDINAL.sub(r"\1", normalized)
    parts = normalized.split()

    month = day = year = hour = None
    minute = 0
    meridiem = None

    for part in parts:
        month_match = _month_number(part)
        if month_match is not None:
            month = month_match
            continue
        if part in ("am", "pm"):
            meridiem = part
            continue
        if re.fullmatch(r"\d{4}", part):
            year = int(part)
            continue
        clock = _CLOCK.match(part)
        if clock and (clock.group(2) or clock.group(3)):
            hour = int(clock.group(1))
            minute = int(clock.group(2) or 0)
            meridiem = clock.group(3) or meridiem
            continue
        if part.isdigit():
            num = int(part)
            if day is None and 1 <= num <= 31:
                day = num
            elif hour is None and 0 <= num <= 23:
                hour = num

    if month is None or day is None:
        return None

    hour = default_hour if hour is None else _to_24h(hour, meridiem)

    if year is None:
        reference = (now or datetime.now(timezone.utc)).astimezone(ZoneInfo(tz))
        year = reference.year
        candidate = _safe_local(year, month, day, hour, minute, 0, tz)
        if candidate is not None and candidate.date() < reference.date():
            year += 1

    return _safe_local(year, month, day, hour, minute, 0, tz)


def parse_time_to_minutes(value) -> Optional[int]:
    """Parse ``HH:MM`` (24h) or ``H[:MM] am/pm`` into minutes since midnight."""
    raw = str(value if value is not None else "").strip().lower()
    match = re.fullmatch(r"(\d{1,2}):(\d{2})", raw)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return hour * 60 + minute
        return None
    match = re.fullmatch(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)", raw)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if hour < 1 or hour > 12 or minute > 59:
            return None
        return _to_24h(hour, match.group(3)) * 60 + minute
    return None

"""
Availability Schedule Parser

Normalises the availability specs stored on resources into one canonical
``AvailabilitySchedule``. Two encodings are in circulation:

- structured: ``{"tz": "America/Chicago", "rules": [{"days": ["MO", "TU"],
  "start": "09:00", "end": "5pm"}]}`` (also accepted as a JSON string)
- legacy text: ``"Mon-Fri 9am-5pm"``, ``"Mon, Wed, Fri 08:00-16:00"``,
  ``"Sat 10am-2pm"``, ``"24/7"``

The raw value is classified once in ``parse_availability`` and handed to the
parser for its shape; nothing downstream branches on the raw form.

Parsing fails OPEN: anything that cannot be understood yields an
always-available schedule rather than an error or an empty schedule.
"""

import json
import logging
from typing import List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crewslot.models.entities import AvailabilityRule, AvailabilitySchedule
from crewslot.models.errors import InvalidRuleError
from crewslot.utils.timeutils import parse_time_to_minutes

logger = logging.getLogger(__name__)

DAY_NAMES = {
    "sun": 0, "sunday": 0,
    "mon": 1, "monday": 1,
    "tue": 2, "tues": 2, "tuesday": 2,
    "wed": 3, "weds": 3, "wednesday": 3,
    "thu": 4, "thur": 4, "thurs": 4, "thursday": 4,
    "fri": 5, "friday": 5,
    "sat": 6, "saturday": 6,
}

DAY_TOKENS = {"SU": 0, "MO": 1, "TU": 2, "WE": 3, "TH": 4, "FR": 5, "SA": 6}

ALWAYS_MARKERS = ("24/7", "24-7")


def parse_availability(raw, default_timezone: str) -> AvailabilitySchedule:
    """
    Parse any stored availability spec, falling back to always available.

    This is the only place the fail-open policy is applied.
    """
    fallback = AvailabilitySchedule.always(default_timezone)
    if raw is None:
        return fallback

    if isinstance(raw, Mapping):
        return parse_structured(raw, default_timezone)

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return fallback
        if text.startswith("{"):
            try:
                decoded = json.loads(text)
            except ValueError as exc:
                logger.warning(f"Invalid availability JSON, treating as always available: {exc}")
                return fallback
            if not isinstance(decoded, Mapping):
                return fallback
            return parse_structured(decoded, default_timezone)
        schedule = parse_legacy(text, default_timezone)
        if schedule is None:
            logger.debug(f"Unparseable legacy availability {text!r}, treating as always available")
            return fallback
        return schedule

    logger.debug(f"Unsupported availability type {type(raw).__name__}, treating as always available")
    return fallback


def parse_structured(spec: Mapping, default_timezone: str) -> AvailabilitySchedule:
    """Parse the structured rule format; bad rules are dropped individually."""
    tz = spec.get("tz")
    tz = tz.strip() if isinstance(tz, str) and tz.strip() else default_timezone
    if not _is_known_timezone(tz):
        logger.warning(f"Unknown availability timezone {tz!r}, using {default_timezone}")
        tz = default_timezone

    raw_rules = spec.get("rules")
    rules: List[AvailabilityRule] = []
    for entry in raw_rules if isinstance(raw_rules, list) else []:
        if not isinstance(entry, Mapping):
            continue
        raw_days = entry.get("days") if isinstance(entry.get("days"), list) else []
        days = {
            DAY_TOKENS[d.strip().upper()]
            for d in raw_days
            if isinstance(d, str) and d.strip().upper() in DAY_TOKENS
        }
        start = parse_time_to_minutes(entry.get("start"))
        end = parse_time_to_minutes(entry.get("end"))
        if not days or start is None or end is None:
            continue
        try:
            rules.append(AvailabilityRule(frozenset(days), start, end))
        except InvalidRuleError as exc:
            logger.warning(f"Dropping availability rule {dict(entry)!r}: {exc}")

    return AvailabilitySchedule.from_rules(tz, rules)


def parse_legacy(text: str, tz: str) -> Optional[AvailabilitySchedule]:
    """
    Parse ``"<days> <start>-<end>"``. Returns None when the text is not
    understood; ``24/7`` style markers return an always-available schedule.
    """
    lower = text.lower()
    if any(marker in lower for marker in ALWAYS_MARKERS) or lower == "always":
        return AvailabilitySchedule.always(tz)

    parts = text.split()
    if len(parts) < 2:
        return None

    start_raw, sep, end_raw = parts[-1].partition("-")
    if not sep:
        return None
    start = parse_time_to_minutes(start_raw)
    end = parse_time_to_minutes(end_raw)
    if start is None or end is None:
        return None

    days = parse_day_group(" ".join(parts[:-1]))
    if not days:
        return None

    try:
        rule = AvailabilityRule(frozenset(days), start, end)
    except InvalidRuleError as exc:
        logger.warning(f"Rejecting legacy availability {text!r}: {exc}")
        return None
    return AvailabilitySchedule.from_rules(tz, [rule])


def parse_day_group(text: str) -> List[int]:
    """Comma list (items may be ranges), wrapping hyphen range (``Fri-Mon``) or a single day."""
    normalized = text.replace("–", "-").replace("—", "-").lower().strip()

    if "," in normalized:
        days = []
        for chunk in normalized.split(","):
            for day in parse_day_group(chunk) if "-" in chunk else [_day_number(chunk.strip())]:
                if day is not None and day not in days:
                    days.append(day)
        return days

    if "-" in normalized:
        first, _, last = normalized.partition("-")
        a, b = _day_number(first.strip()), _day_number(last.strip())
        if a is None or b is None:
            return []
        days = [a]
        while days[-1] != b:
            days.append((days[-1] + 1) % 7)
        return days

    day = _day_number(normalized)
    return [] if day is None else [day]


def _day_number(token: str) -> Optional[int]:
    if not token:
        return None
    return DAY_NAMES.get(token, DAY_NAMES.get(token[:3]))


def _is_known_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True

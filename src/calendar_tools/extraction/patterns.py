"""Ordered date/time pattern catalog.

Detail-surface text has no schema.  Each :class:`TimePattern` recognises one
shape of time text and turns a match into a :class:`~calendar_tools.models.TimeInfo`.
:data:`PATTERN_CATALOG` lists them in priority order and :func:`first_match`
returns the first one that matches; when none does the event is treated as
all-day on the fallback date.

Month names are English, full or three-letter, case-insensitive.  An
unrecognised month name parses as January.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from calendar_tools.dates import DAY, end_of_day, shift, start_of_day
from calendar_tools.models import TimeInfo

logger = logging.getLogger(__name__)

MONTHS: dict[str, int] = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

SINGLE_TIME_DURATION = timedelta(hours=1)

_DATE = r"[A-Za-z]{3,9} \d{1,2}(?:, \d{4})?"
_FULL_DATE = r"[A-Za-z]{3,9} \d{1,2}, \d{4}"
_TIME12 = r"\d{1,2}:\d{2}\s?[AP]M"
_TIME24 = r"\d{1,2}:\d{2}"
_RANGE = r"\s*[–—-]\s*"

_TIME12_RE = re.compile(r"^(\d{1,2}):(\d{2})\s?([AP]M)$", re.IGNORECASE)
_TIME24_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_DATE_RE = re.compile(r"^([A-Za-z]{3,9}) (\d{1,2})(?:, (\d{4}))?$")


def parse_month(name: str) -> int:
    """1-based month number for *name*; unrecognised names give 1 (January)."""
    return MONTHS.get(name.strip().lower(), 1)


def parse_time(text: str) -> time | None:
    """Parse ``H:MM AM``/``H:MMPM``.  12 AM is midnight, 12 PM is noon."""
    match = _TIME12_RE.match(text.strip())
    if match is None:
        return None
    hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if hour > 12 or minute > 59:
        return None
    if meridiem == "PM" and hour != 12:
        hour += 12
    elif meridiem == "AM" and hour == 12:
        hour = 0
    return time(hour, minute)


def parse_time24(text: str) -> time | None:
    match = _TIME24_RE.match(text.strip())
    if match is None:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def parse_date(text: str, fallback: date) -> date:
    """Parse ``Dec 25, 2024`` or ``Dec 25`` (year from *fallback*).

    Anything else, including impossible dates, yields *fallback*.
    """
    match = _DATE_RE.match(text.strip())
    if match is None:
        return fallback
    year = int(match.group(3)) if match.group(3) else fallback.year
    try:
        return date(year, parse_month(match.group(1)), int(match.group(2)))
    except ValueError:
        logger.debug("Ignoring impossible date %r", text)
        return fallback


def combine(day: date, clock: time, tz: tzinfo | None) -> datetime:
    return datetime.combine(day, clock, tzinfo=tz)


def default_time_info(fallback: date, tz: tzinfo | None) -> TimeInfo:
    """All-day on *fallback*: 00:00:00.000 to 23:59:59.999."""
    return TimeInfo(start_of_day(fallback, tz), end_of_day(fallback, tz), True)


Builder = Callable[[re.Match[str], date, tzinfo | None], TimeInfo | None]


@dataclass(frozen=True)
class TimePattern:
    """One recogniser in the catalog.  ``build`` returns None for not-matched."""

    name: str
    regex: re.Pattern[str]
    build: Builder

    def match(self, text: str, fallback: date, tz: tzinfo | None) -> TimeInfo | None:
        found = self.regex.search(text)
        if found is None:
            return None
        return self.build(found, fallback, tz)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _all_day(m: re.Match[str], fallback: date, tz: tzinfo | None) -> TimeInfo | None:
    first = parse_date(m.group(1), fallback) if m.group(1) else fallback
    last = parse_date(m.group(2), fallback) if m.group(2) else first
    if last < first:
        return None
    return TimeInfo(start_of_day(first, tz), end_of_day(last, tz), True)


def _date_time_range(m: re.Match[str], fallback: date, tz: tzinfo | None) -> TimeInfo | None:
    start_clock, end_clock = parse_time(m.group(2)), parse_time(m.group(4))
    if start_clock is None or end_clock is None:
        return None
    start = combine(parse_date(m.group(1), fallback), start_clock, tz)
    end = combine(parse_date(m.group(3), fallback), end_clock, tz)
    if end < start:
        return None
    return TimeInfo(start, end, False)


def _timed_on(
    day: date, start_clock: time | None, end_clock: time | None, tz: tzinfo | None
) -> TimeInfo | None:
    if start_clock is None or end_clock is None:
        return None
    start = combine(day, start_clock, tz)
    end = combine(day, end_clock, tz)
    if end < start:
        # Overnight: "11:00 PM - 1:00 AM" ends the next morning.
        end = combine(day + DAY, end_clock, tz)
    return TimeInfo(start, end, False)


def _dated_time_range(m: re.Match[str], fallback: date, tz: tzinfo | None) -> TimeInfo | None:
    day = parse_date(m.group(1), fallback)
    return _timed_on(day, parse_time(m.group(2)), parse_time(m.group(3)), tz)


def _time_range(m: re.Match[str], fallback: date, tz: tzinfo | None) -> TimeInfo | None:
    return _timed_on(fallback, parse_time(m.group(1)), parse_time(m.group(2)), tz)


def _time_range_24h(m: re.Match[str], fallback: date, tz: tzinfo | None) -> TimeInfo | None:
    return _timed_on(fallback, parse_time24(m.group(1)), parse_time24(m.group(2)), tz)


def _single_time(m: re.Match[str], fallback: date, tz: tzinfo | None) -> TimeInfo | None:
    clock = parse_time(m.group(1))
    if clock is None:
        return None
    start = combine(fallback, clock, tz)
    return TimeInfo(start, shift(start, SINGLE_TIME_DURATION), False)


PATTERN_CATALOG: tuple[TimePattern, ...] = (
    TimePattern(
        "all_day",
        re.compile(
            rf"All day(?:\s*[•·⋅]\s*({_DATE})(?:{_RANGE}({_DATE}))?)?",
            re.IGNORECASE,
        ),
        _all_day,
    ),
    TimePattern(
        "date_time_range",
        re.compile(rf"({_FULL_DATE}) ({_TIME12}){_RANGE}({_FULL_DATE}) ({_TIME12})", re.IGNORECASE),
        _date_time_range,
    ),
    TimePattern(
        "dated_time_range",
        re.compile(rf"({_FULL_DATE}) ({_TIME12}){_RANGE}({_TIME12})", re.IGNORECASE),
        _dated_time_range,
    ),
    TimePattern(
        "time_range",
        re.compile(rf"({_TIME12}){_RANGE}({_TIME12})", re.IGNORECASE),
        _time_range,
    ),
    TimePattern(
        "time_range_24h",
        re.compile(rf"(?<![\d:])({_TIME24}){_RANGE}({_TIME24})(?![\d:])"),
        _time_range_24h,
    ),
    TimePattern(
        "single_time",
        re.compile(rf"({_TIME12})", re.IGNORECASE),
        _single_time,
    ),
)

DEFAULT_PATTERN = "default"


def first_match(text: str, fallback: date, tz: tzinfo | None = None) -> tuple[str, TimeInfo]:
    """Run the catalog over *text* and return ``(pattern name, TimeInfo)``.

    Falls through to an all-day event on *fallback* when no pattern matches.
    """
    for pattern in PATTERN_CATALOG:
        info = pattern.match(text, fallback, tz)
        if info is not None:
            logger.debug("Time text matched pattern %s", pattern.name)
            return pattern.name, info
    return DEFAULT_PATTERN, default_time_info(fallback, tz)

"""Date adjustment and calendar date formatting.

``adjust_event_for_new_date`` moves an extracted event onto a target date:

* all-day events keep their span in whole calendar days (the number of
  midnights between the local start and end dates, minimum one) and end at
  the exclusive midnight after that span;
* timed events keep their wall-clock start time and their exact elapsed
  duration, computed in UTC so daylight-saving transitions do not stretch or
  shrink the copy;
* events with a missing start or end become a 09:00-10:00 timed event.

The formatting helpers produce the encodings used by the calendar template
URL and the display strings used in notifications.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any

from calendar_tools.errors import InvalidTargetDate
from calendar_tools.models import EventDetails

DAY = timedelta(days=1)
END_OF_DAY = time(23, 59, 59, 999000)

DEFAULT_START = time(9, 0)
DEFAULT_DURATION = timedelta(hours=1)


def coerce_target_date(value: Any) -> date:
    """Return *value* as a calendar date.

    Accepts ``date``, ``datetime`` (its own calendar date) and ISO
    ``YYYY-MM-DD`` strings.

    Raises
    ------
    InvalidTargetDate
        For ``None``, unparseable strings and any other type.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise InvalidTargetDate(f"Not a valid calendar date: {value!r}") from exc
    raise InvalidTargetDate(f"Not a valid calendar date: {value!r}")


def start_of_day(day: date, tz: tzinfo | None = None) -> datetime:
    return datetime.combine(day, time(0), tzinfo=tz)


def end_of_day(day: date, tz: tzinfo | None = None) -> datetime:
    return datetime.combine(day, END_OF_DAY, tzinfo=tz)


def add_days(day: date, days: int) -> date:
    """Shift *day* by *days*, raising InvalidTargetDate past the calendar range."""
    try:
        return day + timedelta(days=days)
    except OverflowError as exc:
        raise InvalidTargetDate(f"{day.isoformat()} + {days} days is out of range") from exc


def elapsed(start: datetime, end: datetime) -> timedelta:
    """Absolute time between two instants."""
    if start.tzinfo is None or end.tzinfo is None:
        return end.replace(tzinfo=None) - start.replace(tzinfo=None)
    return end.astimezone(UTC) - start.astimezone(UTC)


def shift(moment: datetime, delta: timedelta) -> datetime:
    """Add absolute elapsed time to *moment*, keeping its zone."""
    if moment.tzinfo is None:
        return moment + delta
    return (moment.astimezone(UTC) + delta).astimezone(moment.tzinfo)


def _calendar_days(start: datetime, end: datetime) -> int:
    """Whole days between the local dates of *start* and *end*, minimum one."""
    return max(1, (end.date() - start.date()).days)


def adjust_event_for_new_date(
    details: EventDetails,
    target: Any,
    tz: tzinfo | None = None,
) -> EventDetails:
    """Return a copy of *details* moved onto *target*.

    *tz* is the zone the new boundaries are expressed in.  When omitted the
    zone of the original start is used, or UTC when there is no start.

    Raises
    ------
    InvalidTargetDate
        When *target* is not a valid calendar date or the shifted event would
        fall outside the representable range.
    """
    day = coerce_target_date(target)
    start, end = details.start_datetime, details.end_datetime
    zone = tz if tz is not None else (start.tzinfo if start is not None else UTC)

    try:
        if details.is_all_day and start is not None and end is not None:
            days = _calendar_days(start, end)
            return details.replace(
                start_datetime=start_of_day(day, zone),
                end_datetime=start_of_day(add_days(day, days), zone),
                is_all_day=True,
            )

        if start is not None and end is not None:
            local_start = start.astimezone(zone) if start.tzinfo and zone else start
            new_start = datetime.combine(day, local_start.time(), tzinfo=zone)
            return details.replace(
                start_datetime=new_start,
                end_datetime=shift(new_start, elapsed(start, end)),
                is_all_day=False,
            )

        new_start = datetime.combine(day, DEFAULT_START, tzinfo=zone)
        return details.replace(
            start_datetime=new_start,
            end_datetime=shift(new_start, DEFAULT_DURATION),
            is_all_day=False,
        )
    except OverflowError as exc:
        raise InvalidTargetDate(f"Cannot move event to {day.isoformat()}") from exc


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_date_only(value: date) -> str:
    """``YYYYMMDD`` of the local calendar date."""
    return f"{value.year:04d}{value.month:02d}{value.day:02d}"


def format_date_time(value: datetime) -> str:
    """``YYYYMMDDTHHMMSSZ`` in UTC.  Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return f"{format_date_only(value)}T{value.hour:02d}{value.minute:02d}{value.second:02d}Z"


def format_google_calendar_dates(start: datetime, end: datetime, is_all_day: bool) -> str:
    """Encode an event's boundaries for the template URL ``dates`` parameter.

    All-day events use ``YYYYMMDD/YYYYMMDD``; timed events use
    ``YYYYMMDDTHHMMSSZ/YYYYMMDDTHHMMSSZ`` in UTC.
    """
    if is_all_day:
        return f"{format_date_only(start)}/{format_date_only(end)}"
    return f"{format_date_time(start)}/{format_date_time(end)}"


def format_display_date(value: date) -> str:
    """Human-readable date, e.g. ``January 15, 2024``."""
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def format_date_for_input(value: date) -> str:
    """``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def generate_event_summary(details: EventDetails) -> str:
    summary = f"Event: {details.title}"
    if details.is_all_day:
        summary += " (All Day)"
    elif details.start_datetime is not None:
        summary += f" at {details.start_datetime.strftime('%H:%M')}"
    if details.location:
        summary += f" at {details.location}"
    return summary

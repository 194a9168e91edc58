"""Tests for the date adjuster and calendar date formatting."""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from calendar_tools.dates import (
    DAY,
    add_days,
    adjust_event_for_new_date,
    coerce_target_date,
    elapsed,
    end_of_day,
    format_date_for_input,
    format_date_time,
    format_display_date,
    format_google_calendar_dates,
    generate_event_summary,
    start_of_day,
)
from calendar_tools.errors import InvalidTargetDate
from calendar_tools.extraction.patterns import first_match
from calendar_tools.models import EventDetails

pytestmark = pytest.mark.unit

NEW_YORK = ZoneInfo("America/New_York")


def _timed(start: datetime, end: datetime, **kwargs) -> EventDetails:
    return EventDetails(id="evt-1", start_datetime=start, end_datetime=end, **kwargs)


# ---------------------------------------------------------------------------
# coerce_target_date()
# ---------------------------------------------------------------------------


class TestCoerceTargetDate:
    def test_accepts_date_datetime_and_iso_string(self):
        assert coerce_target_date(date(2024, 1, 16)) == date(2024, 1, 16)
        assert coerce_target_date(datetime(2024, 1, 16, 8, 30)) == date(2024, 1, 16)
        assert coerce_target_date(" 2024-01-16 ") == date(2024, 1, 16)

    @pytest.mark.parametrize("value", ["not-a-date", "2024-02-30", "", None, 20240116])
    def test_rejects_invalid_values(self, value):
        with pytest.raises(InvalidTargetDate):
            coerce_target_date(value)

    def test_add_days_past_calendar_range(self):
        with pytest.raises(InvalidTargetDate):
            add_days(date.max, 1)


# ---------------------------------------------------------------------------
# adjust_event_for_new_date(): timed events
# ---------------------------------------------------------------------------


class TestAdjustTimed:
    def test_keeps_start_time_and_duration(self):
        details = _timed(
            datetime(2024, 1, 15, 14, 30, tzinfo=UTC), datetime(2024, 1, 15, 16, 0, tzinfo=UTC)
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 1, 16))
        assert adjusted.start_datetime == datetime(2024, 1, 16, 14, 30, tzinfo=UTC)
        assert adjusted.end_datetime == datetime(2024, 1, 16, 16, 0, tzinfo=UTC)
        assert adjusted.is_all_day is False

    def test_other_fields_carried_over(self):
        details = _timed(
            datetime(2024, 1, 15, 9, 0, tzinfo=UTC),
            datetime(2024, 1, 15, 10, 0, tzinfo=UTC),
            title="Standup",
            location="Room 101",
            description="Daily sync",
            calendar_id="team@example.com",
        )
        adjusted = adjust_event_for_new_date(details, "2024-01-16")
        assert (adjusted.title, adjusted.location, adjusted.description) == (
            "Standup",
            "Room 101",
            "Daily sync",
        )
        assert adjusted.calendar_id == "team@example.com"
        assert details.start_datetime == datetime(2024, 1, 15, 9, 0, tzinfo=UTC)

    def test_overnight_event_keeps_duration(self):
        details = _timed(
            datetime(2024, 1, 15, 23, 0, tzinfo=UTC), datetime(2024, 1, 16, 1, 0, tzinfo=UTC)
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 1, 16))
        assert adjusted.start_datetime == datetime(2024, 1, 16, 23, 0, tzinfo=UTC)
        assert adjusted.end_datetime == datetime(2024, 1, 17, 1, 0, tzinfo=UTC)

    def test_duration_preserved_across_dst_change(self):
        # 2024-03-10 is the spring-forward day in New York.
        details = _timed(
            datetime(2024, 3, 9, 1, 0, tzinfo=NEW_YORK), datetime(2024, 3, 9, 4, 0, tzinfo=NEW_YORK)
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 3, 10), NEW_YORK)

        assert adjusted.start_datetime.time() == time(1, 0)
        assert elapsed(adjusted.start_datetime, adjusted.end_datetime) == timedelta(hours=3)
        # Three elapsed hours read as 05:00 on the wall clock after the jump.
        assert adjusted.end_datetime.time() == time(5, 0)

    @pytest.mark.parametrize(
        "target", [date(2024, 1, 1), date(2024, 2, 29), date(2024, 3, 10), date(2024, 11, 3)]
    )
    def test_duration_identity(self, target: date):
        start = datetime(2024, 6, 1, 7, 45, tzinfo=NEW_YORK)
        details = _timed(start, start + timedelta(hours=2, minutes=15))
        adjusted = adjust_event_for_new_date(details, target, NEW_YORK)
        assert elapsed(adjusted.start_datetime, adjusted.end_datetime) == elapsed(
            details.start_datetime, details.end_datetime
        )

    def test_start_converted_to_requested_zone(self):
        details = _timed(
            datetime(2024, 1, 15, 15, 0, tzinfo=UTC), datetime(2024, 1, 15, 16, 0, tzinfo=UTC)
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 1, 16), NEW_YORK)
        assert adjusted.start_datetime == datetime(2024, 1, 16, 10, 0, tzinfo=NEW_YORK)


# ---------------------------------------------------------------------------
# adjust_event_for_new_date(): all-day and missing times
# ---------------------------------------------------------------------------


class TestAdjustAllDay:
    def test_single_day(self):
        details = EventDetails(
            id="evt-1",
            start_datetime=start_of_day(date(2024, 1, 15), UTC),
            end_datetime=end_of_day(date(2024, 1, 15), UTC),
            is_all_day=True,
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 1, 16))
        assert adjusted.start_datetime == datetime(2024, 1, 16, tzinfo=UTC)
        assert adjusted.end_datetime == datetime(2024, 1, 17, tzinfo=UTC)
        assert adjusted.is_all_day is True

    def test_multi_day_span_counts_calendar_dates(self):
        details = EventDetails(
            id="evt-1",
            start_datetime=start_of_day(date(2024, 1, 15), UTC),
            end_datetime=end_of_day(date(2024, 1, 17), UTC),
            is_all_day=True,
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 1, 18))
        assert adjusted.end_datetime - adjusted.start_datetime == 2 * DAY

    def test_extracted_range_copied_with_same_day_count(self):
        _, info = first_match("All day • Dec 25, 2024 – Dec 27, 2024", date(2024, 12, 1), UTC)
        details = EventDetails(
            id="evt-1", start_datetime=info.start, end_datetime=info.end, is_all_day=True
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 12, 28))
        assert adjusted.start_datetime == datetime(2024, 12, 28, tzinfo=UTC)
        assert adjusted.end_datetime == datetime(2024, 12, 30, tzinfo=UTC)

    def test_exclusive_midnight_end(self):
        details = EventDetails(
            id="evt-1",
            start_datetime=datetime(2024, 1, 15, tzinfo=UTC),
            end_datetime=datetime(2024, 1, 17, tzinfo=UTC),
            is_all_day=True,
        )
        adjusted = adjust_event_for_new_date(details, date(2024, 2, 1))
        assert adjusted.end_datetime == datetime(2024, 2, 3, tzinfo=UTC)

    def test_missing_times_default_to_nine_to_ten(self):
        details = EventDetails(id="evt-1", is_all_day=False)
        adjusted = adjust_event_for_new_date(details, date(2024, 1, 16))
        assert adjusted.start_datetime == datetime(2024, 1, 16, 9, 0, tzinfo=UTC)
        assert adjusted.end_datetime == datetime(2024, 1, 16, 10, 0, tzinfo=UTC)
        assert adjusted.is_all_day is False

    def test_missing_times_force_timed_even_if_all_day(self):
        details = EventDetails(id="evt-1", is_all_day=True)
        adjusted = adjust_event_for_new_date(details, date(2024, 1, 16), NEW_YORK)
        assert adjusted.is_all_day is False
        assert adjusted.start_datetime == datetime(2024, 1, 16, 9, 0, tzinfo=NEW_YORK)


class TestAdjustInvalidTarget:
    @pytest.mark.parametrize("target", ["not-a-date", None, 3.14])
    def test_invalid_target_date(self, target):
        details = _timed(
            datetime(2024, 1, 15, 9, 0, tzinfo=UTC), datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        )
        with pytest.raises(InvalidTargetDate):
            adjust_event_for_new_date(details, target)

    def test_result_past_calendar_range(self):
        details = _timed(
            datetime(2024, 1, 15, 23, 0, tzinfo=UTC), datetime(2024, 1, 16, 1, 0, tzinfo=UTC)
        )
        with pytest.raises(InvalidTargetDate):
            adjust_event_for_new_date(details, date.max)

    def test_all_day_past_calendar_range(self):
        details = EventDetails(
            id="evt-1",
            start_datetime=start_of_day(date(2024, 1, 15), UTC),
            end_datetime=end_of_day(date(2024, 1, 15), UTC),
            is_all_day=True,
        )
        with pytest.raises(InvalidTargetDate):
            adjust_event_for_new_date(details, date.max)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_timed_dates_in_utc(self):
        assert (
            format_google_calendar_dates(
                datetime(2024, 1, 15, 14, 30, tzinfo=UTC),
                datetime(2024, 1, 15, 16, 30, tzinfo=UTC),
                False,
            )
            == "20240115T143000Z/20240115T163000Z"
        )

    def test_all_day_dates(self):
        assert (
            format_google_calendar_dates(date(2024, 1, 15), date(2024, 1, 16), True)
            == "20240115/20240116"
        )

    def test_zoned_time_converted_to_utc(self):
        assert format_date_time(datetime(2024, 7, 4, 9, 5, 7, tzinfo=NEW_YORK)) == (
            "20240704T130507Z"
        )

    def test_naive_time_taken_as_utc(self):
        assert format_date_time(datetime(2024, 1, 15, 8, 0)) == "20240115T080000Z"

    def test_display_and_input_formats(self):
        assert format_display_date(date(2024, 1, 5)) == "January 5, 2024"
        assert format_date_for_input(date(2024, 1, 5)) == "2024-01-05"
        assert format_date_for_input(datetime(2024, 1, 5, 12, 0)) == "2024-01-05"


class TestGenerateEventSummary:
    def test_all_day(self):
        details = EventDetails(id="e", title="Offsite", is_all_day=True)
        assert generate_event_summary(details) == "Event: Offsite (All Day)"

    def test_timed_with_location(self):
        details = _timed(
            datetime(2024, 1, 15, 14, 30, tzinfo=UTC),
            datetime(2024, 1, 15, 15, 30, tzinfo=UTC),
            title="Review",
            location="Room 4",
        )
        assert generate_event_summary(details) == "Event: Review at 14:30 at Room 4"

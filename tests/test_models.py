"""Tests for the shared value types."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime

import pytest

from calendar_tools.models import DEFAULT_TITLE, EventDetails, TimeInfo

pytestmark = pytest.mark.unit


class TestEventDetails:
    def test_defaults(self):
        details = EventDetails(id="evt-1")
        assert details.title == DEFAULT_TITLE
        assert details.location == ""
        assert details.calendar_id is None
        assert details.time_info == TimeInfo(None, None, False)

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError, match="precedes"):
            EventDetails(
                id="evt-1",
                start_datetime=datetime(2024, 1, 15, 10, tzinfo=UTC),
                end_datetime=datetime(2024, 1, 15, 9, tzinfo=UTC),
            )

    def test_all_day_boundaries_must_be_midnight_or_end_of_day(self):
        with pytest.raises(ValueError, match="day boundary"):
            EventDetails(
                id="evt-1",
                start_datetime=datetime(2024, 1, 15, 9, tzinfo=UTC),
                end_datetime=datetime(2024, 1, 16, tzinfo=UTC),
                is_all_day=True,
            )

    def test_replace_returns_new_record(self):
        details = EventDetails(id="evt-1", title="Standup")
        renamed = details.replace(title="Retro")
        assert renamed.title == "Retro"
        assert details.title == "Standup"

    def test_is_immutable(self):
        details = EventDetails(id="evt-1")
        with pytest.raises(dataclasses.FrozenInstanceError):
            details.title = "changed"  # type: ignore[misc]

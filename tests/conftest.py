"""Shared fixtures for the calendar tools test suite."""

from __future__ import annotations

from datetime import date
from typing import Any

import pytest

from calendar_tools.config import ResilienceConfig, ToolsConfig, WorkflowConfig
from calendar_tools.creation import CreationOutcome, EventCreator
from calendar_tools.dom.soup import SoupDocument
from calendar_tools.models import EventDetails
from calendar_tools.testing import RecordingNotificationSink, html_document

CALENDAR_PAGE = """
<html><body>
  <div role="main" data-view="week">
    <h1>January 2024</h1>
    <div data-eventchip="grid" jsname="grid">
      <div class="day" data-date="2024-01-15">
        <div role="button" data-eventid="evt-1" data-calendar-id="team@example.com">Standup</div>
      </div>
      <div class="day" data-date="2024-01-16">
        <div role="button" data-eventid="evt-2">Lunch</div>
      </div>
    </div>
  </div>
</body></html>
"""

DETAIL_DIALOG = """
<div role="dialog">
  <h2>Team Standup</h2>
  <div><span>January 15, 2024</span><span>10:00 AM – 10:30 AM</span></div>
  <div><span class="icon">location_on</span><span>Room 101</span></div>
  <div class="description">Daily sync</div>
  <button aria-label="Close">x</button>
</div>
"""


def make_config(**workflow: Any) -> ToolsConfig:
    """Config with short timings so lifecycle tests run fast."""
    resilience = ResilienceConfig(
        max_retries=2,
        retry_delay_s=0.01,
        health_check_interval_s=60.0,
        max_error_count=10,
        stale_event_threshold_s=60.0,
        enhancement_timeout_s=0.05,
    )
    settings: dict[str, Any] = {
        "detail_timeout_s": 0.2,
        "settle_delay_s": 0.0,
        "close_delay_s": 0.0,
        "mutation_debounce_s": 0.01,
    }
    settings.update(workflow)
    return ToolsConfig(resilience=resilience, workflow=WorkflowConfig(**settings))


def open_dialog(doc: SoupDocument, element: Any) -> None:
    doc.insert_html(doc.body(), DETAIL_DIALOG)


def close_dialog(doc: SoupDocument, element: Any) -> None:
    dialog = doc.select_one('div[role="dialog"]')
    if dialog is not None:
        doc.remove(dialog)


class RecordingCreator(EventCreator):
    """Creator that records every call and answers with a fixed outcome."""

    def __init__(self, error: Exception | None = None) -> None:
        self.created: list[EventDetails] = []
        self.error = error
        self.closed = False

    async def create(self, details: EventDetails) -> CreationOutcome:
        self.created.append(details)
        if self.error is not None:
            raise self.error
        return CreationOutcome(method="api", event_id=f"copy-{details.id}")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def config() -> ToolsConfig:
    return make_config()


@pytest.fixture
def calendar_doc() -> SoupDocument:
    """Calendar page whose cards open the detail dialog when clicked."""
    doc = html_document(CALENDAR_PAGE)
    doc.on_click("[data-eventid]", open_dialog)
    doc.on_click('[aria-label*="Close"]', close_dialog)
    return doc


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def creator() -> RecordingCreator:
    return RecordingCreator()


@pytest.fixture
def today() -> date:
    return date(2024, 1, 20)

"""Copy Day: replay every event of one calendar day onto another day.

The day-column headers of the week view are the entry points.  A request
collects the cards sitting under the source day, reads each one through its
detail surface, moves it to the target day and creates it there.  Events that
would overlap something already on the target day are handed to a conflict
resolver, which decides per event whether to skip it, overwrite the existing
events, or copy it anyway.

One request sends exactly one summary notification.  A single event that
fails to copy is reported in the summary and never stops the others.
"""

from __future__ import annotations

import enum
import inspect
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any

from calendar_tools.config import ToolsConfig
from calendar_tools.core.metrics import ToolsMetrics
from calendar_tools.core.telemetry import get_tracer
from calendar_tools.creation import EventCreator
from calendar_tools.dates import (
    adjust_event_for_new_date,
    coerce_target_date,
    format_display_date,
    start_of_day,
)
from calendar_tools.dom.base import DomCollaborator
from calendar_tools.dom.selectors import resolve
from calendar_tools.errors import CalendarToolsError, DayCopyFailed, InvalidTargetDate
from calendar_tools.extraction.grid import event_date_from_position, parse_header_text
from calendar_tools.models import EventDetails
from calendar_tools.notifications import NotificationSink, Severity
from calendar_tools.orchestrator import DuplicationOrchestrator
from calendar_tools.supervisor import ResilienceSupervisor

logger = logging.getLogger(__name__)

MIN_HEADER_WIDTH = 30
MIN_HEADER_HEIGHT = 20

_HEADER_DATE_TEXT = re.compile(
    r"(mon|tue|wed|thu|fri|sat|sun|monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
    r"\d*|\d+",
    re.IGNORECASE,
)
# "Wed9", "Mon 14": weekday abbreviation glued to the day of the month.
_WEEKDAY_NUMBER = re.compile(
    r"^(?:mon|tue|wed|thu|fri|sat|sun)[a-z]*\.?\s*(\d{1,2})$", re.IGNORECASE
)


class ConflictResolution(enum.StrEnum):
    SKIP = "skip"
    OVERWRITE = "overwrite"
    COPY_ANYWAY = "copy-anyway"


@dataclass(frozen=True)
class DayHeader:
    element: Any
    date: date | None


@dataclass(frozen=True)
class Conflict:
    """A source event, already moved to the target day, and what it overlaps."""

    source: EventDetails
    conflicting: tuple[EventDetails, ...]


Resolutions = Mapping[str, ConflictResolution]
# Returns resolutions keyed by source event id, or None to cancel; may be async.
ConflictResolver = Callable[[Sequence[Conflict]], Any]
EventRemover = Callable[[EventDetails], Awaitable[None]]


def resolve_all(resolution: ConflictResolution) -> ConflictResolver:
    """Resolver applying one decision to every conflict."""

    def resolver(conflicts: Sequence[Conflict]) -> Resolutions:
        return {conflict.source.id: resolution for conflict in conflicts}

    return resolver


@dataclass
class DayCopyResult:
    """Outcome of one Copy Day request."""

    source_date: date
    target_date: date
    collected: list[EventDetails] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    copied: list[EventDetails] = field(default_factory=list)
    skipped: list[EventDetails] = field(default_factory=list)
    failed: list[tuple[EventDetails, str]] = field(default_factory=list)
    cancelled: bool = False
    error: CalendarToolsError | None = None

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and self.error is None and not self.failed


# ---------------------------------------------------------------------------
# Day headers
# ---------------------------------------------------------------------------


def is_day_header(dom: DomCollaborator, element: Any, event_id_attribute: str) -> bool:
    """True for a column header that names a day, as opposed to an event card."""
    if dom.get_attribute(element, event_id_attribute) is not None:
        return False
    if not _HEADER_DATE_TEXT.search(dom.text_content(element)):
        return False
    box = dom.get_bounding_box(element)
    if box is None:
        return True
    return box.width > MIN_HEADER_WIDTH and box.height > MIN_HEADER_HEIGHT


def date_from_day_header(dom: DomCollaborator, element: Any, today: date) -> date | None:
    """Calendar date named by a day header.

    Tries the ``aria-label`` of the header and its descendants (``Monday,
    14 July``), then a weekday glued to a day number (``Wed9``), then the
    whole header text.
    """
    labelled = [element, *dom.query_all("[aria-label]", root=element)]
    for node in labelled:
        label = dom.get_attribute(node, "aria-label")
        found = parse_header_text(label, today) if label else None
        if found is not None:
            return found

    text = dom.text_content(element)
    match = _WEEKDAY_NUMBER.match(text)
    if match:
        try:
            return today.replace(day=int(match.group(1)))
        except ValueError:
            return None
    return parse_header_text(text, today)


def find_day_headers(
    dom: DomCollaborator, config: ToolsConfig, today: date
) -> list[DayHeader]:
    selectors = config.selectors
    headers = [
        DayHeader(element, date_from_day_header(dom, element, today))
        for element in resolve(dom, selectors.day_header)
        if is_day_header(dom, element, selectors.event_id_attribute)
    ]
    logger.debug("Found %d day headers", len(headers))
    return headers


# ---------------------------------------------------------------------------
# Dates and overlaps
# ---------------------------------------------------------------------------


def _local(value: datetime, tz: tzinfo) -> datetime:
    return value.astimezone(tz)


def _last_day(start: datetime, end: datetime) -> date:
    # An exclusive midnight end belongs to the day before.
    if end > start and end.time() == time(0):
        return (end - timedelta(microseconds=1)).date()
    return end.date()


def event_occurs_on(details: EventDetails, day: date, tz: tzinfo) -> bool:
    """True when *details* covers any part of *day* in *tz*."""
    start, end = details.start_datetime, details.end_datetime
    if start is None:
        return False
    start = _local(start, tz)
    if details.is_all_day and end is not None:
        return start.date() <= day <= _last_day(start, _local(end, tz))
    if start.date() == day:
        return True
    if end is None:
        return False
    day_start = start_of_day(day, tz)
    return start < day_start + timedelta(days=1) and _local(end, tz) > day_start


def events_overlap(first: EventDetails, second: EventDetails, tz: tzinfo) -> bool:
    """Overlap between two events on the same day.

    Two all-day events always overlap; an all-day event overlaps any timed
    event starting on its first day; timed events overlap when each starts
    before the other ends.
    """
    if first.is_all_day and second.is_all_day:
        return True
    if first.is_all_day or second.is_all_day:
        all_day, timed = (first, second) if first.is_all_day else (second, first)
        if all_day.start_datetime is None or timed.start_datetime is None:
            return False
        return _local(timed.start_datetime, tz).date() == _local(all_day.start_datetime, tz).date()

    if None in (
        first.start_datetime,
        first.end_datetime,
        second.start_datetime,
        second.end_datetime,
    ):
        return False
    return (
        first.start_datetime < second.end_datetime
        and second.start_datetime < first.end_datetime
    )


def detect_conflicts(
    sources: Sequence[EventDetails],
    targets: Sequence[EventDetails],
    target_date: date,
    tz: tzinfo,
) -> list[Conflict]:
    conflicts = []
    for source in sources:
        moved = adjust_event_for_new_date(source, target_date, tz)
        overlapping = tuple(target for target in targets if events_overlap(moved, target, tz))
        if overlapping:
            conflicts.append(Conflict(moved, overlapping))
    return conflicts


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class DayCopier:
    """Copy all events of one day to another day.

    Parameters
    ----------
    orchestrator:
        Reads each card through its detail surface and refreshes the view
        afterwards.
    remove_event:
        Deletes an existing event for the ``OVERWRITE`` resolution.  Without
        one, overwritten events are logged and left in place.
    resolver:
        Default conflict resolver; copies everything anyway when omitted.
    """

    def __init__(
        self,
        dom: DomCollaborator,
        supervisor: ResilienceSupervisor,
        orchestrator: DuplicationOrchestrator,
        creator: EventCreator,
        sink: NotificationSink,
        *,
        config: ToolsConfig | None = None,
        metrics: ToolsMetrics | None = None,
        today: Callable[[], date] | None = None,
        resolver: ConflictResolver | None = None,
        remove_event: EventRemover | None = None,
    ) -> None:
        self._dom = dom
        self._supervisor = supervisor
        self._orchestrator = orchestrator
        self._creator = creator
        self._sink = sink
        self._config = config or ToolsConfig()
        self._tz = self._config.workflow.tzinfo
        self._metrics = metrics or ToolsMetrics()
        self._today = today or (lambda: datetime.now(self._tz).date())
        self._resolver = resolver or resolve_all(ConflictResolution.COPY_ANYWAY)
        self._remove_event = remove_event
        self._tracer = get_tracer()

    def day_headers(self) -> list[DayHeader]:
        return find_day_headers(self._dom, self._config, self._today())

    async def collect(self, day: date) -> list[EventDetails]:
        """Read every tracked card the grid places on *day*.

        Cards whose details turn out to belong to another day are dropped.  A
        card that cannot be read is logged and skipped.
        """
        await self._supervisor.scan()
        today = self._today()
        collected: list[EventDetails] = []
        for record in self._supervisor.registry:
            if not self._dom.is_live(record.element_ref):
                continue
            grid_date = event_date_from_position(
                self._dom, record.element_ref, self._config.selectors, today
            )
            if grid_date != day:
                continue
            try:
                details = await self._orchestrator.read_details(record.id, day)
            except Exception:
                logger.warning("Could not read event %s for Copy Day", record.id, exc_info=True)
                continue
            if event_occurs_on(details, day, self._tz):
                collected.append(details)
            else:
                logger.debug("Event %s does not occur on %s; skipped", record.id, day)
        logger.info("Collected %d events from %s", len(collected), day.isoformat())
        return collected

    async def copy_day(
        self,
        source_date: Any,
        target_date: Any,
        *,
        resolver: ConflictResolver | None = None,
    ) -> DayCopyResult:
        """Copy every event on *source_date* to *target_date*."""
        try:
            source = coerce_target_date(source_date)
            target = coerce_target_date(target_date)
            if source == target:
                raise InvalidTargetDate(f"Cannot copy {source.isoformat()} onto itself")
        except InvalidTargetDate as exc:
            self._sink.notify(exc.user_message, Severity.ERROR)
            raise

        result = DayCopyResult(source, target)
        with self._tracer.start_as_current_span("calendar_tools.copy_day") as span:
            span.set_attribute("day_copy.source", source.isoformat())
            span.set_attribute("day_copy.target", target.isoformat())
            try:
                await self._run(result, resolver or self._resolver)
            except Exception as exc:
                logger.exception("Copy Day from %s to %s failed", source, target)
                error = DayCopyFailed(f"Copy Day failed: {exc}")
                error.__cause__ = exc
                result.error = error
                self._supervisor.record_error("Copy Day failed", error)
            span.set_attribute("day_copy.copied", len(result.copied))
            span.set_attribute("day_copy.failed", len(result.failed))

        self._summarize(result)
        return result

    async def _run(self, result: DayCopyResult, resolver: ConflictResolver) -> None:
        result.collected = await self.collect(result.source_date)
        if not result.collected:
            return
        existing = await self.collect(result.target_date)
        result.conflicts = detect_conflicts(
            result.collected, existing, result.target_date, self._tz
        )
        logger.info("Found %d conflicts on %s", len(result.conflicts), result.target_date)

        resolutions: Resolutions = {}
        if result.conflicts:
            decided = resolver(result.conflicts)
            if inspect.isawaitable(decided):
                decided = await decided
            if decided is None:
                result.cancelled = True
                return
            resolutions = decided

        by_source = {conflict.source.id: conflict for conflict in result.conflicts}
        for details in result.collected:
            conflict = by_source.get(details.id)
            resolution = ConflictResolution.COPY_ANYWAY
            if conflict is not None:
                resolution = ConflictResolution(
                    resolutions.get(details.id, ConflictResolution.COPY_ANYWAY)
                )
            if resolution is ConflictResolution.SKIP:
                logger.info("Skipping %s (%s)", details.id, details.title)
                result.skipped.append(details)
                continue
            if resolution is ConflictResolution.OVERWRITE and conflict is not None:
                await self._remove(conflict.conflicting)
            await self._copy_one(result, details)

        self._metrics.day_copy("copied", len(result.copied))
        self._metrics.day_copy("skipped", len(result.skipped))
        self._metrics.day_copy("failed", len(result.failed))
        if result.copied:
            self._orchestrator.refresh_view()

    async def _remove(self, events: Sequence[EventDetails]) -> None:
        for existing in events:
            if self._remove_event is None:
                logger.warning("No event remover configured; keeping %s", existing.id)
                continue
            try:
                await self._remove_event(existing)
            except Exception:
                logger.warning("Failed to remove conflicting event %s", existing.id, exc_info=True)

    async def _copy_one(self, result: DayCopyResult, details: EventDetails) -> None:
        try:
            moved = adjust_event_for_new_date(details, result.target_date, self._tz)
            await self._creator.create(moved)
        except Exception as exc:
            message = exc.user_message if isinstance(exc, CalendarToolsError) else str(exc)
            logger.warning("Failed to copy event %s: %s", details.id, exc)
            result.failed.append((details, message or type(exc).__name__))
            self._supervisor.record_error(f"Copy Day failed for {details.id}", exc)
            return
        result.copied.append(moved)

    def _summarize(self, result: DayCopyResult) -> None:
        source = format_display_date(result.source_date)
        target = format_display_date(result.target_date)
        if result.error is not None:
            self._sink.notify(result.error.user_message, Severity.ERROR)
        elif not result.collected:
            self._sink.notify(f"No events found on {source} to copy", Severity.INFO)
        elif result.cancelled:
            self._sink.notify("Copy Day cancelled", Severity.INFO)
        elif result.failed and not result.copied:
            self._sink.notify(
                f"Failed to copy {len(result.failed)} event(s) to {target}", Severity.ERROR
            )
        elif result.failed:
            self._sink.notify(
                f"Copied {len(result.copied)} event(s) to {target}; "
                f"{len(result.failed)} failed",
                Severity.ERROR,
            )
        elif result.copied:
            self._sink.notify(
                f"Copied {len(result.copied)} event(s) from {source} to {target}",
                Severity.SUCCESS,
            )
        else:
            self._sink.notify(
                "No events selected for copying after conflict resolution", Severity.INFO
            )

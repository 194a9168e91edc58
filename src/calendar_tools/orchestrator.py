"""Duplication workflow: copy one tracked event to the following day.

States run in a fixed order::

    IDLE -> OPENING_DETAIL -> EXTRACTING -> ADJUSTING -> CREATING
         -> NOTIFYING -> CLOSING_DETAIL -> REFRESHING_VIEW -> IDLE

Any workflow error moves to the terminal ABORTED state.  Extraction problems
never abort; they degrade to defaults.  Closing the detail surface and
refreshing the view are best effort once the event has been created.

Every request ends in exactly one notification, and at most one workflow
runs per event id: a second request while one is in flight is rejected with
:class:`~calendar_tools.errors.DuplicateInProgress`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from calendar_tools.config import ToolsConfig
from calendar_tools.core.logging import event_context
from calendar_tools.core.metrics import ToolsMetrics
from calendar_tools.core.telemetry import get_tracer
from calendar_tools.creation import CreationOutcome, EventCreator
from calendar_tools.dates import add_days, adjust_event_for_new_date, format_display_date
from calendar_tools.dom.base import DomCollaborator, MutationRecord, ObserveConfig
from calendar_tools.dom.selectors import resolve, resolve_first
from calendar_tools.errors import (
    CalendarToolsError,
    CreationFailed,
    DetailSurfaceTimeout,
    DuplicateInProgress,
    DuplicationFailed,
    ElementDetached,
    RecordNotFound,
)
from calendar_tools.extraction.detail import DetailExtractor
from calendar_tools.extraction.grid import event_date_from_position
from calendar_tools.extraction.patterns import default_time_info
from calendar_tools.models import EventDetails
from calendar_tools.notifications import NotificationSink, Severity
from calendar_tools.supervisor import ResilienceSupervisor

logger = logging.getLogger(__name__)

REFRESH_KEY = "F5"


class DuplicationState(enum.StrEnum):
    IDLE = "idle"
    OPENING_DETAIL = "opening_detail"
    EXTRACTING = "extracting"
    ADJUSTING = "adjusting"
    CREATING = "creating"
    NOTIFYING = "notifying"
    CLOSING_DETAIL = "closing_detail"
    REFRESHING_VIEW = "refreshing_view"
    ABORTED = "aborted"


@dataclass
class DuplicationResult:
    """Outcome of one duplication request."""

    event_id: str
    state: DuplicationState
    transitions: list[DuplicationState] = field(default_factory=list)
    source: EventDetails | None = None
    details: EventDetails | None = None
    target_date: date | None = None
    outcome: CreationOutcome | None = None
    error: CalendarToolsError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is DuplicationState.IDLE and self.error is None


class DuplicationOrchestrator:
    """Run the duplication workflow against the host document.

    Parameters
    ----------
    dom:
        Host document collaborator.
    supervisor:
        Resilience supervisor whose registry holds the tracked cards.  Aborts
        are reported to it as errors.
    creator:
        Event-creation collaborator.
    sink:
        Notification sink; receives exactly one notification per request.
    today:
        Source of the current date, injected by tests.
    """

    def __init__(
        self,
        dom: DomCollaborator,
        supervisor: ResilienceSupervisor,
        creator: EventCreator,
        sink: NotificationSink,
        *,
        config: ToolsConfig | None = None,
        extractor: DetailExtractor | None = None,
        metrics: ToolsMetrics | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._dom = dom
        self._supervisor = supervisor
        self._creator = creator
        self._sink = sink
        self._config = config or ToolsConfig()
        self._selectors = self._config.selectors
        self._workflow = self._config.workflow
        self._tz = self._workflow.tzinfo
        self._extractor = extractor or DetailExtractor(dom, self._selectors, self._tz)
        self._metrics = metrics or ToolsMetrics()
        self._today = today or (lambda: datetime.now(self._tz).date())
        self._tracer = get_tracer()
        self._in_flight: set[str] = set()

    @property
    def sink(self) -> NotificationSink:
        return self._sink

    def in_flight(self, event_id: str) -> bool:
        return event_id in self._in_flight

    async def read_details(self, event_id: str, fallback_date: date) -> EventDetails:
        """Open the detail surface of a tracked card, extract it and close it.

        Raises the same workflow errors as :meth:`duplicate` but sends no
        notification; the caller reports the outcome.
        """
        element = self._locate(event_id)
        surface = await self._open_detail(element, event_id)
        try:
            return self._extract(event_id, surface, element, fallback_date)
        finally:
            await self._close_detail()

    def refresh_view(self) -> None:
        self._refresh_view()

    async def duplicate(self, event_id: str) -> DuplicationResult:
        """Duplicate the tracked event *event_id* onto the following day."""
        if event_id in self._in_flight:
            error = DuplicateInProgress(
                f"Duplication of {event_id} already in progress", event_id=event_id
            )
            logger.info("Rejected duplicate request for %s: already in progress", event_id)
            self._sink.notify(error.user_message, Severity.ERROR)
            self._metrics.duplication("rejected")
            return DuplicationResult(
                event_id=event_id,
                state=DuplicationState.ABORTED,
                transitions=[DuplicationState.ABORTED],
                error=error,
            )

        self._in_flight.add(event_id)
        try:
            with (
                event_context(event_id),
                self._tracer.start_as_current_span("calendar_tools.duplicate") as span,
            ):
                span.set_attribute("event.id", event_id)
                result = await self._run(DuplicationResult(event_id, DuplicationState.IDLE))
                span.set_attribute("duplication.state", str(result.state))
        finally:
            self._in_flight.discard(event_id)

        self._metrics.duplication(str(result.state))
        return result

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def _enter(self, result: DuplicationResult, state: DuplicationState) -> None:
        result.state = state
        result.transitions.append(state)
        logger.debug("Duplication %s -> %s", result.event_id, state)

    async def _run(self, result: DuplicationResult) -> DuplicationResult:
        event_id = result.event_id
        result.transitions.append(DuplicationState.IDLE)
        surface_opened = False
        try:
            self._enter(result, DuplicationState.OPENING_DETAIL)
            element = self._locate(event_id)
            today = self._today()
            grid_date = event_date_from_position(self._dom, element, self._selectors, today)
            surface = await self._open_detail(element, event_id)
            surface_opened = True

            self._enter(result, DuplicationState.EXTRACTING)
            source = self._extract(event_id, surface, element, grid_date or today)
            result.source = source

            self._enter(result, DuplicationState.ADJUSTING)
            base = grid_date
            if base is None and source.start_datetime is not None:
                base = source.start_datetime.astimezone(self._tz).date()
            target = add_days(base or today, 1)
            adjusted = adjust_event_for_new_date(source, target, self._tz)
            result.target_date = target
            result.details = adjusted

            self._enter(result, DuplicationState.CREATING)
            result.outcome = await self._create(adjusted)
        except CalendarToolsError as exc:
            if exc.event_id is None:
                exc.event_id = event_id
            return await self._abort(result, exc, close_detail=surface_opened)
        except Exception as exc:
            logger.exception("Unexpected error duplicating %s in %s", event_id, result.state)
            error = self._wrap_unexpected(result.state, event_id, exc)
            return await self._abort(result, error, close_detail=surface_opened)

        self._enter(result, DuplicationState.NOTIFYING)
        self._sink.notify(
            f'Duplicated "{adjusted.title}" to {format_display_date(target)}', Severity.SUCCESS
        )

        self._enter(result, DuplicationState.CLOSING_DETAIL)
        await self._close_detail()

        self._enter(result, DuplicationState.REFRESHING_VIEW)
        self._refresh_view()

        self._enter(result, DuplicationState.IDLE)
        logger.info("Duplicated event %s to %s", event_id, target.isoformat())
        return result

    async def _abort(
        self, result: DuplicationResult, error: CalendarToolsError, *, close_detail: bool
    ) -> DuplicationResult:
        failed_in = result.state
        self._enter(result, DuplicationState.ABORTED)
        result.error = error
        logger.warning(
            "Duplication of %s aborted in %s: %s", result.event_id, failed_in, error
        )
        self._sink.notify(error.user_message, Severity.ERROR)
        self._supervisor.record_error(f"Duplication of {result.event_id} failed", error)
        if close_detail:
            await self._close_detail()
        return result

    @staticmethod
    def _wrap_unexpected(
        state: DuplicationState, event_id: str, exc: Exception
    ) -> CalendarToolsError:
        """Map a collaborator failure onto the workflow error for *state*."""
        error: CalendarToolsError
        if state is DuplicationState.OPENING_DETAIL:
            error = DetailSurfaceTimeout(f"Could not open event details: {exc}", event_id=event_id)
        elif state is DuplicationState.CREATING:
            error = CreationFailed(f"Event creation failed: {exc}", event_id=event_id)
        else:
            error = DuplicationFailed(f"Duplication failed in {state}: {exc}", event_id=event_id)
        error.__cause__ = exc
        return error

    def _locate(self, event_id: str) -> Any:
        registry = self._supervisor.registry
        record = registry.get(event_id)
        if record is None:
            raise RecordNotFound(f"Event {event_id} is not tracked", event_id=event_id)
        if not self._dom.is_live(record.element_ref):
            registry.remove(event_id)
            self._metrics.eviction("detached")
            raise ElementDetached(
                f"Element for event {event_id} is no longer in the document", event_id=event_id
            )
        return record.element_ref

    def _surface(self) -> Any | None:
        return resolve_first(self._dom, self._selectors.detail_surface)

    async def _open_detail(self, element: Any, event_id: str) -> Any:
        appeared = asyncio.Event()

        def on_mutation(records: Sequence[MutationRecord]) -> None:
            if self._surface() is not None:
                appeared.set()

        handle = self._dom.observe(
            self._dom.body(), ObserveConfig(child_list=True, subtree=True), on_mutation
        )
        try:
            try:
                self._dom.simulate_click(element)
            except Exception as exc:
                raise DetailSurfaceTimeout(
                    f"Could not click event card: {exc}", event_id=event_id
                ) from exc
            if self._surface() is None:
                try:
                    await asyncio.wait_for(appeared.wait(), self._workflow.detail_timeout_s)
                except TimeoutError:
                    raise DetailSurfaceTimeout(
                        f"Detail surface did not appear within {self._workflow.detail_timeout_s}s",
                        event_id=event_id,
                    ) from None
        finally:
            handle.disconnect()

        # Let the host finish rendering before reading it.
        await asyncio.sleep(self._workflow.settle_delay_s)
        surface = self._surface()
        if surface is None:
            raise DetailSurfaceTimeout(
                "Detail surface closed before it could be read", event_id=event_id
            )
        return surface

    def _extract(
        self, event_id: str, surface: Any, element: Any, fallback_date: date
    ) -> EventDetails:
        try:
            return self._extractor.extract(event_id, surface, element, fallback_date)
        except Exception:
            logger.warning("Extraction failed for %s; using defaults", event_id, exc_info=True)
            info = default_time_info(fallback_date, self._tz)
            return EventDetails(
                id=event_id, start_datetime=info.start, end_datetime=info.end, is_all_day=True
            )

    async def _create(self, details: EventDetails) -> CreationOutcome:
        try:
            return await self._creator.create(details)
        except CalendarToolsError:
            raise
        except Exception as exc:
            raise CreationFailed(f"Event creation failed: {exc}", event_id=details.id) from exc

    async def _close_detail(self) -> None:
        try:
            for button in resolve(self._dom, self._selectors.close_button):
                if self._dom.is_live(button):
                    self._dom.simulate_click(button)
                    await asyncio.sleep(self._workflow.close_delay_s)
            if self._surface() is not None:
                self._dom.simulate_click(self._dom.body())
        except Exception:
            logger.warning("Failed to close detail surface", exc_info=True)

    def _refresh_view(self) -> None:
        try:
            self._dom.dispatch_key(REFRESH_KEY)
        except Exception:
            logger.warning("Failed to refresh calendar view", exc_info=True)

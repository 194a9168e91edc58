"""Turn a rendered event detail surface into an :class:`EventDetails` record.

Every heuristic here is best effort.  A failure in one field is logged and
that field falls back to its default; :meth:`DetailExtractor.extract` never
raises for content problems.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, tzinfo
from typing import Any

from calendar_tools.config import SelectorConfig
from calendar_tools.dom.base import DomCollaborator
from calendar_tools.extraction.patterns import default_time_info, first_match
from calendar_tools.models import DEFAULT_TITLE, EventDetails, TimeInfo

logger = logging.getLogger(__name__)

_MIN_TITLE_LENGTH = 3


class DetailExtractor:
    """Title, time, location and description heuristics over a detail surface."""

    def __init__(
        self,
        dom: DomCollaborator,
        selectors: SelectorConfig,
        tz: tzinfo,
    ) -> None:
        self._dom = dom
        self._selectors = selectors
        self._tz = tz
        self._indicator_re = re.compile(
            "|".join(rf"(?<!\w){re.escape(token)}(?!\w)" for token in selectors.location_indicators)
        )

    def today(self) -> date:
        return datetime.now(self._tz).date()

    # ------------------------------------------------------------------
    # Individual fields
    # ------------------------------------------------------------------

    def harvest_text(self, surface: Any) -> str:
        """Concatenate the text of every text-bearing element on the surface."""
        parts = [
            text
            for text in (
                self._dom.text_content(element)
                for element in self._dom.query_all(self._selectors.surface_text, surface)
            )
            if text
        ]
        if not parts:
            return self._dom.text_content(surface)
        return " ".join(parts)

    def extract_title(self, surface: Any) -> str:
        for selector in self._selectors.title:
            for element in self._dom.query_all(selector, surface)[:1]:
                text = self._dom.text_content(element)
                if text:
                    return text

        # Longest piece of text directly owned by one element.
        candidates = [
            self._dom.own_text(element)
            for element in self._dom.query_all(self._selectors.surface_text, surface)
        ]
        candidates = [text for text in candidates if len(text) > _MIN_TITLE_LENGTH]
        if not candidates:
            return DEFAULT_TITLE
        return max(candidates, key=len)

    def _is_indicator(self, element: Any) -> bool:
        if self._indicator_re.search(self._dom.own_text(element)):
            return True
        label = self._dom.get_attribute(element, "aria-label") or ""
        return bool(self._indicator_re.search(label))

    def _is_indicator_text(self, text: str) -> bool:
        return text in self._selectors.location_indicators

    def extract_location(self, surface: Any) -> str:
        dom = self._dom
        for element in dom.query_all("*", surface):
            if not self._is_indicator(element):
                continue
            parent = dom.parent(element)
            grandparent = dom.parent(parent) if parent is not None else None
            for sibling in (
                dom.next_sibling(element),
                dom.next_sibling(parent) if parent is not None else None,
                dom.next_sibling(grandparent) if grandparent is not None else None,
            ):
                if sibling is None or not dom.contains(surface, sibling):
                    continue
                text = dom.text_content(sibling)
                if text and not self._is_indicator_text(text):
                    return text
        return ""

    def extract_description(self, surface: Any) -> str:
        for selector in self._selectors.description:
            for element in self._dom.query_all(selector, surface)[:1]:
                text = self._dom.text_content(element)
                if text:
                    return text
        return ""

    def extract_time_info(self, surface: Any, fallback_date: date) -> TimeInfo:
        text = self.harvest_text(surface)
        logger.debug("Analysing time text %r (fallback %s)", text, fallback_date)
        _, info = first_match(text, fallback_date, self._tz)
        return info

    def extract_calendar_id(self, surface: Any, element: Any | None) -> str | None:
        attribute = self._selectors.calendar_id_attribute
        for node in (element, surface):
            if node is None:
                continue
            value = self._dom.get_attribute(node, attribute)
            if value:
                return value
        for node in self._dom.query_all(f"[{attribute}]", surface)[:1]:
            return self._dom.get_attribute(node, attribute)
        return None

    # ------------------------------------------------------------------
    # Whole record
    # ------------------------------------------------------------------

    def extract(
        self,
        event_id: str,
        surface: Any,
        element: Any | None = None,
        fallback_date: date | None = None,
    ) -> EventDetails:
        """Build an EventDetails record for *event_id* from *surface*.

        *element* is the grid card the surface was opened from; it is only
        consulted for the calendar id.  *fallback_date* defaults to today.
        """
        fallback = fallback_date or self.today()

        title = self._field("title", DEFAULT_TITLE, self.extract_title, surface)
        info = self._field(
            "time", default_time_info(fallback, self._tz), self.extract_time_info, surface, fallback
        )
        location = self._field("location", "", self.extract_location, surface)
        description = self._field("description", "", self.extract_description, surface)
        calendar_id = self._field("calendar id", None, self.extract_calendar_id, surface, element)

        details = EventDetails(
            id=event_id,
            title=title or DEFAULT_TITLE,
            start_datetime=info.start,
            end_datetime=info.end,
            is_all_day=info.is_all_day,
            location=location,
            description=description,
            calendar_id=calendar_id,
        )
        logger.info(
            "Extracted event %s: title=%r all_day=%s start=%s",
            event_id,
            details.title,
            details.is_all_day,
            details.start_datetime.isoformat() if details.start_datetime else None,
        )
        return details

    def _field(self, name: str, default: Any, func: Any, *args: Any) -> Any:
        try:
            return func(*args)
        except Exception:
            logger.warning("Failed to extract %s; using default", name, exc_info=True)
            return default

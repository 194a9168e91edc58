"""Fallback date from an event card's position in the calendar grid.

Detail surfaces usually omit the date of single-day events, so the date the
card sits under on screen is worked out independently and used as the
fallback date for the pattern catalog.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any

from calendar_tools.config import SelectorConfig
from calendar_tools.dom.base import DomCollaborator
from calendar_tools.extraction.patterns import MONTHS, parse_month

logger = logging.getLogger(__name__)

_DAY_MONTH_YEAR = re.compile(r"\b(\d{1,2})\s+([A-Za-z]{3,9})\s+(\d{4})\b")
_MONTH_YEAR = re.compile(r"([A-Za-z]{3,9})\s+(\d{4})")
_DAY_NUMBER = re.compile(r"^\d{1,2}$")

_WEEKDAY_MONTH_DAY = re.compile(r"(\w+),?\s+([A-Za-z]+)\s+(\d{1,2})\b")
_WEEKDAY_DAY_MONTH = re.compile(r"(\w+),?\s+(\d{1,2})\s+([A-Za-z]+)\b")

# Sunday-first, as calendar week headers are laid out.
_WEEKDAYS = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")


def _parse_attribute_date(value: str) -> date | None:
    value = value.strip()
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _date_from_ancestors(
    dom: DomCollaborator, element: Any, selectors: SelectorConfig
) -> date | None:
    body = dom.body()
    node = element
    while node is not None and node is not body:
        for attribute in selectors.date_attributes:
            raw = dom.get_attribute(node, attribute)
            if raw:
                found = _parse_attribute_date(raw)
                if found is not None:
                    logger.debug("Grid date from %s attribute: %s", attribute, found)
                    return found

        match = _DAY_MONTH_YEAR.search(dom.text_content(node))
        if match:
            found = _safe_date(
                int(match.group(3)), parse_month(match.group(2)), int(match.group(1))
            )
            if found is not None:
                logger.debug("Grid date from nearby text: %s", found)
                return found

        node = dom.parent(node)
    return None


def _view_month(dom: DomCollaborator, selectors: SelectorConfig) -> tuple[int, int] | None:
    headings = dom.query_all(", ".join(selectors.heading))
    if not headings:
        return None
    match = _MONTH_YEAR.search(dom.text_content(headings[0]))
    if match is None:
        return None
    return int(match.group(2)), parse_month(match.group(1))


def _date_from_layout(
    dom: DomCollaborator, element: Any, selectors: SelectorConfig, today: date
) -> date | None:
    box = dom.get_bounding_box(element)
    if box is None:
        return None

    for candidate in dom.elements_at_point(box.center_x, box.top):
        text = dom.text_content(candidate)
        if not _DAY_NUMBER.match(text):
            label = dom.get_attribute(candidate, "aria-label")
            found = parse_header_text(label, today) if label else None
            if found is not None:
                logger.debug("Grid date from column header: %s", found)
                return found
            continue
        day = int(text)
        view = _view_month(dom, selectors)
        if view is not None:
            found = _safe_date(view[0], view[1], day)
            if found is not None:
                logger.debug("Grid date from view heading: %s", found)
                return found
        found = _safe_date(today.year, today.month, day)
        if found is not None:
            logger.debug("Grid date from current month: %s", found)
            return found
    return None


def event_date_from_position(
    dom: DomCollaborator,
    element: Any,
    selectors: SelectorConfig,
    today: date,
) -> date | None:
    """Best-effort calendar date of the grid cell holding *element*.

    Tries, in order: date attributes on the card and its ancestors, a
    ``15 January 2024`` style date in their text, then the day-number cell
    under the card's top edge combined with the view's ``Month YYYY`` heading
    (or *today*'s month), or a column header's ``aria-label`` under that
    point.  Returns None when nothing is found.
    """
    try:
        return _date_from_ancestors(dom, element, selectors) or _date_from_layout(
            dom, element, selectors, today
        )
    except Exception:
        logger.exception("Failed to read grid date for event card")
        return None


def parse_header_text(text: str, today: date) -> date | None:
    """Parse a day-column header.

    Understands ``Mon, Jul 7``, ``Monday, 14 July``, a bare day number
    (current month) and a bare weekday name (current week, Sunday first).
    """
    text = text.strip()

    match = _WEEKDAY_MONTH_DAY.search(text)
    if match and match.group(2).lower() in MONTHS:
        found = _safe_date(today.year, MONTHS[match.group(2).lower()], int(match.group(3)))
        if found is not None:
            return found

    match = _WEEKDAY_DAY_MONTH.search(text)
    if match and match.group(3).lower() in MONTHS:
        found = _safe_date(today.year, MONTHS[match.group(3).lower()], int(match.group(2)))
        if found is not None:
            return found

    if text.isdigit():
        return _safe_date(today.year, today.month, int(text))

    name = text.lower()
    if name in _WEEKDAYS:
        current = (today.weekday() + 1) % 7
        return today + timedelta(days=_WEEKDAYS.index(name) - current)

    return None

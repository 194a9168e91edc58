"""Heuristic extraction of event details from host-page text."""

from calendar_tools.extraction.detail import DetailExtractor
from calendar_tools.extraction.grid import event_date_from_position, parse_header_text
from calendar_tools.extraction.patterns import PATTERN_CATALOG, TimePattern, first_match

__all__ = [
    "PATTERN_CATALOG",
    "DetailExtractor",
    "TimePattern",
    "event_date_from_position",
    "first_match",
    "parse_header_text",
]

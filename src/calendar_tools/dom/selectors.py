"""Selector resolver: first candidate with matches wins.

Host markup changes between versions, so every lookup is expressed as an
ordered list of candidate selectors, most specific first.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from calendar_tools.dom.base import DomCollaborator


def resolve(dom: DomCollaborator, candidates: Iterable[str], root: Any | None = None) -> list[Any]:
    """Return the matches of the first candidate that yields at least one element.

    Returns an empty list when every candidate is exhausted.  Has no side effects.
    """
    for selector in candidates:
        found = dom.query_all(selector, root)
        if found:
            return found
    return []


def resolve_first(
    dom: DomCollaborator, candidates: Iterable[str], root: Any | None = None
) -> Any | None:
    """Return the first element found by :func:`resolve`, or None."""
    found = resolve(dom, candidates, root)
    return found[0] if found else None


def matches_any(dom: DomCollaborator, element: Any, candidates: Iterable[str]) -> bool:
    """True if *element* matches any candidate selector."""
    return any(dom.matches(element, selector) for selector in candidates)

"""Value types shared across extraction, adjustment and orchestration."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any

DEFAULT_TITLE = "Untitled Event"

_END_OF_DAY = time(23, 59, 59, 999000)


@dataclass
class EventRecord:
    """Registry entry for one enhanced host element.

    ``element_ref`` is an opaque handle into the host document.  It is never
    assumed to survive a DOM mutation: check ``DomCollaborator.is_live``
    before using it.
    """

    id: str
    element_ref: Any
    has_custom_ui: bool
    last_seen: float


@dataclass(frozen=True)
class TimeInfo:
    """Start/end/all-day triple produced by a time pattern."""

    start: datetime | None
    end: datetime | None
    is_all_day: bool


@dataclass(frozen=True)
class EventDetails:
    """Structured record recovered from an event detail surface.

    Immutable: every workflow stage produces a new copy via :meth:`replace`.
    """

    id: str
    title: str = DEFAULT_TITLE
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    is_all_day: bool = False
    location: str = ""
    description: str = ""
    calendar_id: str | None = None

    def __post_init__(self) -> None:
        start, end = self.start_datetime, self.end_datetime
        if self.is_all_day:
            for label, value in (("start_datetime", start), ("end_datetime", end)):
                if value is not None and not _is_day_boundary(value):
                    raise ValueError(
                        f"all-day {label} must fall on a day boundary, got {value.isoformat()}"
                    )
        elif start is not None and end is not None and end < start:
            raise ValueError(
                f"end_datetime {end.isoformat()} precedes start_datetime {start.isoformat()}"
            )

    def replace(self, **changes: Any) -> EventDetails:
        return dataclasses.replace(self, **changes)

    @property
    def time_info(self) -> TimeInfo:
        return TimeInfo(self.start_datetime, self.end_datetime, self.is_all_day)


def _is_day_boundary(value: datetime) -> bool:
    clock = value.time()
    return clock == time(0) or clock == _END_OF_DAY

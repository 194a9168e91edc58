"""Registry of enhanced host elements, keyed by event id.

Lifecycle of an event id: ``unknown -> tracked -> (stale | removed)``.
``track`` creates or refreshes a record; ``touch`` resets the stale clock;
``evict`` drops records that are too old or whose element has left the
document; ``remove`` handles explicit removal notifications.

The registry is only ever touched from the event loop, so it needs no lock.
Callers must still re-check a record after any ``await``: the host document
may have changed in between.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Iterator
from typing import Any

from calendar_tools.models import EventRecord

logger = logging.getLogger(__name__)

# Departed ids remembered for state(); the oldest are forgotten first.
MAX_DEPARTED = 1000


class RecordState(enum.StrEnum):
    UNKNOWN = "unknown"
    TRACKED = "tracked"
    STALE = "stale"
    REMOVED = "removed"


class Registry:
    """In-memory map of event id to :class:`EventRecord`.

    Parameters
    ----------
    clock:
        Monotonic time source in seconds.  Injected by tests.
    max_departed:
        How many departed ids keep their terminal state before reverting
        to ``UNKNOWN``.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_departed: int = MAX_DEPARTED,
    ) -> None:
        self._clock = clock
        self._max_departed = max_departed
        self._records: dict[str, EventRecord] = {}
        # Last known terminal state of ids that have left the registry.
        self._departed: dict[str, RecordState] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._records

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(list(self._records.values()))

    @property
    def ids(self) -> list[str]:
        return list(self._records)

    def now(self) -> float:
        return self._clock()

    def state(self, event_id: str) -> RecordState:
        if event_id in self._records:
            return RecordState.TRACKED
        return self._departed.get(event_id, RecordState.UNKNOWN)

    def track(self, event_id: str, element: Any, *, has_custom_ui: bool) -> EventRecord:
        """Create or refresh the record for *event_id*."""
        record = self._records.get(event_id)
        now = self._clock()
        if record is None:
            record = EventRecord(
                id=event_id, element_ref=element, has_custom_ui=has_custom_ui, last_seen=now
            )
            self._records[event_id] = record
            self._departed.pop(event_id, None)
            logger.debug("Tracking event %s (custom_ui=%s)", event_id, has_custom_ui)
        else:
            record.element_ref = element
            record.has_custom_ui = record.has_custom_ui or has_custom_ui
            record.last_seen = now
        return record

    def touch(self, event_id: str) -> bool:
        """Reset the stale clock of *event_id*.  False if it is not tracked."""
        record = self._records.get(event_id)
        if record is None:
            return False
        record.last_seen = self._clock()
        return True

    def get(self, event_id: str) -> EventRecord | None:
        return self._records.get(event_id)

    def remove(self, event_id: str, state: RecordState = RecordState.REMOVED) -> bool:
        record = self._records.pop(event_id, None)
        if record is None:
            return False
        self._departed.pop(event_id, None)
        self._departed[event_id] = state
        while len(self._departed) > self._max_departed:
            del self._departed[next(iter(self._departed))]
        logger.debug("Event %s left the registry (%s)", event_id, state)
        return True

    def find_by_element(self, element: Any) -> EventRecord | None:
        for record in self._records.values():
            if record.element_ref is element:
                return record
        return None

    def evict(
        self,
        stale_threshold_s: float,
        is_live: Callable[[Any], bool],
    ) -> dict[str, str]:
        """Drop stale and detached records.

        Returns a mapping of evicted event id to reason (``stale`` or
        ``detached``).
        """
        now = self._clock()
        evicted: dict[str, str] = {}
        for event_id, record in list(self._records.items()):
            if now - record.last_seen > stale_threshold_s:
                evicted[event_id] = "stale"
                self.remove(event_id, RecordState.STALE)
            elif not is_live(record.element_ref):
                evicted[event_id] = "detached"
                self.remove(event_id, RecordState.REMOVED)
        if evicted:
            logger.info("Evicted %d registry records: %s", len(evicted), evicted)
        return evicted

    def clear(self) -> None:
        self._records.clear()
        self._departed.clear()

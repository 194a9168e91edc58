"""Calendar tools: duplicate a hosted calendar event to the following day.

The package reads the loosely structured text of a calendar page's event
detail surface, turns it into an :class:`~calendar_tools.models.EventDetails`
record, shifts it to the next day and replays it as a new event.  A
:class:`~calendar_tools.supervisor.ResilienceSupervisor` keeps the set of
enhanced event cards in step with a host page that mutates underneath it.
"""

from __future__ import annotations

__version__ = "0.1.0"

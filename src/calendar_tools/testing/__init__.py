"""Test helpers for code built on calendar tools."""

from __future__ import annotations

from dataclasses import dataclass, field

from calendar_tools.dom.soup import SoupDocument
from calendar_tools.notifications import NotificationSink, Severity


@dataclass
class RecordingNotificationSink(NotificationSink):
    """Sink that keeps every notification as a ``(message, severity)`` pair."""

    notifications: list[tuple[str, Severity]] = field(default_factory=list)

    def notify(self, message: str, severity: Severity) -> None:
        self.notifications.append((message, severity))

    @property
    def severities(self) -> list[Severity]:
        return [severity for _, severity in self.notifications]


def html_document(markup: str, *, ready: bool = True) -> SoupDocument:
    """Build a SoupDocument, wrapping *markup* in a body when it has none."""
    if "<body" not in markup.lower():
        markup = f"<html><body>{markup}</body></html>"
    return SoupDocument(markup, ready=ready)


__all__ = ["RecordingNotificationSink", "html_document"]

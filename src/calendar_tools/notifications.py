"""User-facing notification sink."""

from __future__ import annotations

import abc
import enum
import logging

logger = logging.getLogger(__name__)


class Severity(enum.StrEnum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class NotificationSink(abc.ABC):
    """Where workflow outcomes are shown to the user.  Rendering is up to the sink."""

    @abc.abstractmethod
    def notify(self, message: str, severity: Severity) -> None:
        """Show *message* to the user."""


class LoggingNotificationSink(NotificationSink):
    """Sink that writes notifications to the log."""

    _LEVELS = {
        Severity.INFO: logging.INFO,
        Severity.SUCCESS: logging.INFO,
        Severity.ERROR: logging.ERROR,
    }

    def notify(self, message: str, severity: Severity) -> None:
        logger.log(self._LEVELS[severity], "[%s] %s", severity, message)

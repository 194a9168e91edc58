"""Calendar tools configuration.

All settings are immutable dataclasses with defaults taken from the behaviour
of the hosted calendar page.  There is no configuration file: ``load_config``
starts from the defaults and applies ``CALENDAR_TOOLS_*`` environment variable
overrides.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

ENV_PREFIX = "CALENDAR_TOOLS_"


class ConfigError(Exception):
    """Raised when a configuration value is missing, malformed, or invalid."""


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ConfigError(f"Invalid {name}: {value!r}. Must be a positive number.")


@dataclass(frozen=True)
class ResilienceConfig:
    """Retry, timeout and health-check policy for the resilience supervisor.

    ``retry_delay_s`` is the base backoff unit: attempt *n* of host detection
    waits ``retry_delay_s * n`` before the next attempt.
    """

    max_retries: int = 3
    retry_delay_s: float = 1.0
    health_check_interval_s: float = 2.0
    max_error_count: int = 10
    stale_event_threshold_s: float = 60.0
    enhancement_timeout_s: float = 2.0

    def __post_init__(self) -> None:
        _require_positive("max_retries", self.max_retries)
        _require_positive("retry_delay_s", self.retry_delay_s)
        _require_positive("health_check_interval_s", self.health_check_interval_s)
        _require_positive("max_error_count", self.max_error_count)
        _require_positive("stale_event_threshold_s", self.stale_event_threshold_s)
        _require_positive("enhancement_timeout_s", self.enhancement_timeout_s)


@dataclass(frozen=True)
class WorkflowConfig:
    """Timings for the duplication workflow and the mutation watcher."""

    detail_timeout_s: float = 5.0
    settle_delay_s: float = 0.2
    close_delay_s: float = 0.1
    mutation_debounce_s: float = 0.15
    mutation_queue_capacity: int = 100
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        _require_positive("detail_timeout_s", self.detail_timeout_s)
        _require_positive("mutation_debounce_s", self.mutation_debounce_s)
        _require_positive("mutation_queue_capacity", self.mutation_queue_capacity)
        if self.settle_delay_s < 0 or self.close_delay_s < 0:
            raise ConfigError("settle_delay_s and close_delay_s must not be negative")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown timezone: {self.timezone!r}") from exc

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class SelectorConfig:
    """Ordered candidate selectors and token lists for the host page.

    Every tuple is ordered most-specific (newest markup) first; the selector
    resolver returns the matches of the first candidate that finds anything.
    """

    event_card: tuple[str, ...] = (
        'div[role="button"][data-eventid]',
        'div[role="button"].rSoRzd[data-eventid]',
        "div.rSoRzd[data-eventid]",
        '[data-eventid][role="button"]',
        ".rSoRzd[data-eventid]",
    )
    calendar_container: tuple[str, ...] = ("[data-eventchip]", "[jsname]", ".rSoRzd")
    detail_surface: tuple[str, ...] = ('div[role="dialog"]', 'div[role="region"]')
    title: tuple[str, ...] = (
        "h1",
        "h2",
        "h3",
        "[data-event-title]",
        ".event-title",
        'span[role="heading"]',
    )
    description: tuple[str, ...] = (
        "[data-event-description]",
        ".event-description",
        ".description",
        'div[aria-label*="Description"]',
        'div[aria-label*="description"]',
    )
    close_button: tuple[str, ...] = (
        '[aria-label*="Close"]',
        '[aria-label*="close"]',
        'button[aria-label*="Back"]',
    )
    heading: tuple[str, ...] = ("h1", "h2", '[role="heading"]')
    day_header: tuple[str, ...] = (
        '.yzWBv.ChfiMc.N4XV7d[role="columnheader"]',
        '[role="columnheader"]',
        '.yzWBv[role="columnheader"]',
        ".hI2jVc",
        ".rFrNMe",
    )
    surface_text: str = "span, div, p"
    location_indicators: tuple[str, ...] = ("location_on", "place", "Location")
    date_attributes: tuple[str, ...] = ("data-date", "data-datekey", "data-day")
    event_id_attribute: str = "data-eventid"
    calendar_id_attribute: str = "data-calendar-id"
    view_change_attributes: tuple[str, ...] = ("aria-label", "data-view", "jsname")
    view_root: tuple[str, ...] = ('[role="main"]', ".rSoRzd")

    def __post_init__(self) -> None:
        for name in ("event_card", "calendar_container", "detail_surface", "title"):
            if not getattr(self, name):
                raise ConfigError(f"selectors.{name} must contain at least one candidate")


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None

    def __post_init__(self) -> None:
        if self.format not in ("text", "json"):
            raise ConfigError(
                f"Invalid logging format: {self.format!r}. Must be 'text' or 'json'."
            )


@dataclass(frozen=True)
class ToolsConfig:
    """Aggregate configuration for one running instance."""

    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    selectors: SelectorConfig = field(default_factory=SelectorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    calendar_api_base_url: str = "https://www.googleapis.com/calendar/v3"
    template_url: str = "https://calendar.google.com/calendar/render"


# Environment variable suffix -> (section, field, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "MAX_RETRIES": ("resilience", "max_retries", int),
    "RETRY_DELAY_S": ("resilience", "retry_delay_s", float),
    "HEALTH_CHECK_INTERVAL_S": ("resilience", "health_check_interval_s", float),
    "MAX_ERROR_COUNT": ("resilience", "max_error_count", int),
    "STALE_EVENT_THRESHOLD_S": ("resilience", "stale_event_threshold_s", float),
    "ENHANCEMENT_TIMEOUT_S": ("resilience", "enhancement_timeout_s", float),
    "DETAIL_TIMEOUT_S": ("workflow", "detail_timeout_s", float),
    "SETTLE_DELAY_S": ("workflow", "settle_delay_s", float),
    "CLOSE_DELAY_S": ("workflow", "close_delay_s", float),
    "MUTATION_DEBOUNCE_S": ("workflow", "mutation_debounce_s", float),
    "MUTATION_QUEUE_CAPACITY": ("workflow", "mutation_queue_capacity", int),
    "TIMEZONE": ("workflow", "timezone", str),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FORMAT": ("logging", "format", str),
    "LOG_ROOT": ("logging", "log_root", str),
}


def load_config(environ: Mapping[str, str] | None = None) -> ToolsConfig:
    """Build a :class:`ToolsConfig` from defaults plus environment overrides.

    Parameters
    ----------
    environ:
        Mapping to read overrides from.  Defaults to ``os.environ``.

    Raises
    ------
    ConfigError
        If an override cannot be converted or fails validation.
    """
    env = os.environ if environ is None else environ
    sections: dict[str, dict[str, object]] = {"resilience": {}, "workflow": {}, "logging": {}}

    for suffix, (section, name, convert) in _ENV_OVERRIDES.items():
        raw = env.get(f"{ENV_PREFIX}{suffix}")
        if raw is None or not raw.strip():
            continue
        try:
            sections[section][name] = convert(raw.strip())
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {ENV_PREFIX}{suffix}: {raw!r}") from exc

    if "format" in sections["logging"]:
        sections["logging"]["format"] = str(sections["logging"]["format"]).lower()

    api_base = env.get(f"{ENV_PREFIX}API_BASE_URL", "").strip()
    extra: dict[str, str] = {}
    if api_base:
        extra["calendar_api_base_url"] = api_base.rstrip("/")

    return ToolsConfig(
        resilience=ResilienceConfig(**sections["resilience"]),  # type: ignore[arg-type]
        workflow=WorkflowConfig(**sections["workflow"]),  # type: ignore[arg-type]
        logging=LoggingConfig(**sections["logging"]),  # type: ignore[arg-type]
        **extra,
    )

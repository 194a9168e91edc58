"""Wiring for one running calendar tools instance.

:class:`CalendarToolsRuntime` builds the supervisor, the orchestrator, the Copy
Day workflow and the default creation chain from a :class:`~calendar_tools.config.ToolsConfig`,
and gives the embedding application a single start/stop lifecycle.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from calendar_tools.config import ToolsConfig, load_config
from calendar_tools.core.logging import configure_logging
from calendar_tools.core.metrics import ToolsMetrics, init_metrics
from calendar_tools.core.telemetry import init_telemetry
from calendar_tools.creation import (
    EventCreator,
    FallbackEventCreator,
    GoogleApiEventCreator,
    TemplateUrlEventCreator,
    UrlOpener,
)
from calendar_tools.credentials import CredentialChain, CredentialSource, EnvCredentialSource
from calendar_tools.day_copy import DayCopier, DayCopyResult
from calendar_tools.dom.base import DomCollaborator
from calendar_tools.notifications import LoggingNotificationSink, NotificationSink
from calendar_tools.orchestrator import DuplicationOrchestrator, DuplicationResult
from calendar_tools.supervisor import AffordanceHook, ResilienceSupervisor

logger = logging.getLogger(__name__)

SERVICE_NAME = "calendar-tools"


def setup_observability(config: ToolsConfig) -> None:
    """Configure logging, tracing and metrics for the process."""
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    init_telemetry(SERVICE_NAME)
    init_metrics(SERVICE_NAME)


def build_default_creator(
    config: ToolsConfig,
    sources: Iterable[CredentialSource] = (),
    *,
    opener: UrlOpener | None = None,
) -> FallbackEventCreator:
    """API creator with a template-URL fallback.

    *sources* are the page-derived credential sources; the environment source
    is always appended last.
    """
    chain = CredentialChain([*sources, EnvCredentialSource()])
    return FallbackEventCreator(
        GoogleApiEventCreator(
            chain,
            base_url=config.calendar_api_base_url,
            timezone_name=config.workflow.timezone,
        ),
        TemplateUrlEventCreator(template_url=config.template_url, opener=opener),
    )


class CalendarToolsRuntime:
    """Supervisor, orchestrator and Copy Day workflow over one host document."""

    def __init__(
        self,
        dom: DomCollaborator,
        *,
        config: ToolsConfig | None = None,
        creator: EventCreator | None = None,
        sink: NotificationSink | None = None,
        attach_affordance: AffordanceHook | None = None,
    ) -> None:
        self.config = config or load_config()
        self.metrics = ToolsMetrics()
        self.creator = creator or build_default_creator(self.config)
        self.supervisor = ResilienceSupervisor(
            dom,
            self.config,
            attach_affordance=attach_affordance,
            metrics=self.metrics,
        )
        self.orchestrator = DuplicationOrchestrator(
            dom,
            self.supervisor,
            self.creator,
            sink or LoggingNotificationSink(),
            config=self.config,
            metrics=self.metrics,
        )
        self.day_copier = DayCopier(
            dom,
            self.supervisor,
            self.orchestrator,
            self.creator,
            self.orchestrator.sink,
            config=self.config,
            metrics=self.metrics,
        )

    async def start(self) -> bool:
        return await self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()
        await self.creator.aclose()

    async def duplicate(self, event_id: str) -> DuplicationResult:
        return await self.orchestrator.duplicate(event_id)

    async def copy_day(self, source_date: object, target_date: object) -> DayCopyResult:
        return await self.day_copier.copy_day(source_date, target_date)

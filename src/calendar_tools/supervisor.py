"""Resilience supervisor: enhancement, health checks and recovery.

The supervisor owns every long-lived activity of a running instance:

* host detection at startup, with ``max_retries`` attempts and a linear
  backoff of ``retry_delay_s * attempt`` between them;
* enhancement of event cards, each attempt raced against
  ``enhancement_timeout_s``;
* the debounced :class:`~calendar_tools.watcher.MutationWatcher`;
* a periodic health check that evicts stale records, rescans the document
  and triggers recovery when the error rate or error count is too high.

Recovery resets :class:`HealthState`, clears the registry, recreates the
mutation watcher and rescans.  It is idempotent and never re-entered.
``stop()`` cancels every timer and task it started.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from calendar_tools.config import ToolsConfig
from calendar_tools.core.metrics import ToolsMetrics
from calendar_tools.core.telemetry import get_tracer
from calendar_tools.dom.base import DomCollaborator, ObserveConfig
from calendar_tools.dom.selectors import matches_any, resolve, resolve_first
from calendar_tools.errors import EnhancementTimeout, InitializationTimeout
from calendar_tools.models import EventRecord
from calendar_tools.registry import Registry
from calendar_tools.watcher import MutationBatch, MutationWatcher

logger = logging.getLogger(__name__)

MAX_ERROR_RATE = 0.1
SLOW_ENHANCEMENT_S = 1.0
READY_POLL_INTERVAL_S = 0.1

AffordanceHook = Callable[[Any, str], Any]


@dataclass
class HealthState:
    """Process-wide health counters.  Only the supervisor mutates them."""

    is_healthy: bool = True
    last_health_check: float | None = None
    error_count: int = 0
    total_enhanced: int = 0
    failed_enhancements: int = 0

    @property
    def error_rate(self) -> float:
        return self.failed_enhancements / max(self.total_enhanced, 1)

    def reset(self) -> None:
        self.is_healthy = True
        self.last_health_check = None
        self.error_count = 0
        self.total_enhanced = 0
        self.failed_enhancements = 0


class ResilienceSupervisor:
    """Keep the registry in step with a mutating host document.

    Parameters
    ----------
    dom:
        Host document collaborator.
    config:
        Aggregate configuration; the ``resilience``, ``workflow`` and
        ``selectors`` sections are used.
    registry:
        Registry to maintain.  A fresh one is created when omitted.
    attach_affordance:
        Optional callable ``(element, event_id)`` that attaches the duplicate
        affordance to a card.  May be sync or async; a raise or a timeout
        counts as a failed enhancement.
    metrics:
        Metrics wrapper; defaults to one bound to the global meter provider.
    """

    def __init__(
        self,
        dom: DomCollaborator,
        config: ToolsConfig | None = None,
        *,
        registry: Registry | None = None,
        attach_affordance: AffordanceHook | None = None,
        metrics: ToolsMetrics | None = None,
    ) -> None:
        self._dom = dom
        self._config = config or ToolsConfig()
        self._resilience = self._config.resilience
        self._selectors = self._config.selectors
        self._registry = registry if registry is not None else Registry()
        self._attach_affordance = attach_affordance
        self._metrics = metrics or ToolsMetrics()
        self._tracer = get_tracer()

        self.health = HealthState()
        self.initialized = False
        self.recoveries = 0

        self._running = False
        self._recovering = False
        self._watcher: MutationWatcher | None = None
        self._health_task: asyncio.Task | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._retry_scheduled = False
        self._background: set[asyncio.Task] = set()

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def watcher(self) -> MutationWatcher | None:
        return self._watcher

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Detect the host, start watching and schedule health checks.

        Returns True when initialization succeeded.  A detection failure is
        logged, not raised, and one delayed recovery attempt is scheduled.
        """
        if self._running:
            return self.initialized
        self._running = True
        self._retry_scheduled = False
        return await self._initialize()

    async def stop(self) -> None:
        """Cancel every timer and background task and forget all records."""
        if not self._running:
            return
        self._running = False

        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        for task in list(self._background):
            task.cancel()
        for task in list(self._background):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._background.clear()

        await self._stop_watcher()
        self._registry.clear()
        self.initialized = False
        logger.info(
            "Resilience supervisor stopped: enhanced=%d failed=%d errors=%d recoveries=%d",
            self.health.total_enhanced,
            self.health.failed_enhancements,
            self.health.error_count,
            self.recoveries,
        )

    async def _initialize(self) -> bool:
        try:
            await self.wait_for_host_ready()
        except InitializationTimeout as exc:
            self.record_error(f"Failed to initialize: {exc}", exc, trip=False)
            self._schedule_init_retry()
            return False

        self.initialized = True
        await self._start_watcher()
        await self.scan()
        if self._health_task is None:
            self._health_task = asyncio.create_task(self._health_loop(), name="health-check")
        logger.info("Resilience supervisor started: %d event cards tracked", len(self._registry))
        return True

    def _schedule_init_retry(self) -> None:
        if self._retry_scheduled or not self._running:
            return
        self._retry_scheduled = True
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self._resilience.retry_delay_s, self._on_retry_timer)
        logger.info(
            "Initialization recovery scheduled in %.1fs", self._resilience.retry_delay_s
        )

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self._spawn(self.recover())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        if not self._running:
            coro.close()
            return
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Host detection
    # ------------------------------------------------------------------

    def _host_ready(self) -> bool:
        if not self._dom.is_ready:
            return False
        return resolve_first(self._dom, self._selectors.calendar_container) is not None

    async def _wait_once(self) -> None:
        deadline = time.monotonic() + self._resilience.enhancement_timeout_s
        while not self._host_ready():
            if time.monotonic() >= deadline:
                raise TimeoutError("calendar container not found")
            await asyncio.sleep(READY_POLL_INTERVAL_S)

    async def wait_for_host_ready(self) -> None:
        """Wait for the host application, retrying with linear backoff.

        Raises
        ------
        InitializationTimeout
            After ``max_retries`` failed attempts.
        """
        attempts = self._resilience.max_retries
        for attempt in range(1, attempts + 1):
            try:
                await self._wait_once()
                logger.debug("Host application detected on attempt %d", attempt)
                return
            except TimeoutError:
                logger.info("Host detection attempt %d/%d failed", attempt, attempts)
                if attempt >= attempts:
                    break
                await asyncio.sleep(self._resilience.retry_delay_s * attempt)
        raise InitializationTimeout(f"Host application not detected after {attempts} attempts")

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------

    def _event_id(self, element: Any) -> str | None:
        return self._dom.get_attribute(element, self._selectors.event_id_attribute) or None

    def _needs_enhancement(self, event_id: str, element: Any) -> bool:
        record = self._registry.get(event_id)
        return record is None or record.element_ref is not element or not record.has_custom_ui

    async def _attach(self, element: Any, event_id: str) -> None:
        if self._attach_affordance is None:
            return
        result = self._attach_affordance(element, event_id)
        if inspect.isawaitable(result):
            await result

    async def enhance(self, element: Any) -> EventRecord | None:
        """Enhance one event card and track it.

        A card that is already enhanced is only touched.  A failed or timed-out
        enhancement still tracks the card with ``has_custom_ui=False`` so the
        next scan retries it.
        A card that left the document while its hook ran is not tracked and
        yields ``None``.  Only successful enhancements count towards
        ``total_enhanced``.
        """
        event_id = self._event_id(element)
        if event_id is None:
            return None
        if not self._needs_enhancement(event_id, element):
            self._registry.touch(event_id)
            return self._registry.get(event_id)

        started = time.monotonic()
        outcome = "success"
        try:
            await asyncio.wait_for(
                self._attach(element, event_id), timeout=self._resilience.enhancement_timeout_s
            )
        except TimeoutError:
            outcome = "timeout"
            self.health.failed_enhancements += 1
            self.record_error(
                f"Enhancement of event {event_id} timed out",
                EnhancementTimeout(
                    f"enhancement exceeded {self._resilience.enhancement_timeout_s}s",
                    event_id=event_id,
                ),
            )
        except Exception as exc:
            outcome = "failure"
            self.health.failed_enhancements += 1
            self.record_error(f"Enhancement of event {event_id} failed", exc)

        elapsed_s = time.monotonic() - started
        if not self._dom.is_live(element):
            # The card left the document while the hook ran; a later scan
            # picks up its replacement.
            self._metrics.enhancement("detached", elapsed_s * 1000)
            logger.debug("Event card %s detached during enhancement", event_id)
            return None

        if outcome == "success":
            self.health.total_enhanced += 1
        self._metrics.enhancement(outcome, elapsed_s * 1000)
        if elapsed_s > SLOW_ENHANCEMENT_S:
            logger.warning("Slow enhancement for event %s: %.0fms", event_id, elapsed_s * 1000)

        return self._registry.track(event_id, element, has_custom_ui=outcome == "success")

    async def scan(self) -> int:
        """Enhance every event card in the document.  Returns new enhancements."""
        enhanced = 0
        for card in resolve(self._dom, self._selectors.event_card):
            event_id = self._event_id(card)
            if event_id is None:
                continue
            if self._needs_enhancement(event_id, card):
                await self.enhance(card)
                enhanced += 1
            else:
                self._registry.touch(event_id)
        if enhanced:
            logger.debug("Scan enhanced %d event cards", enhanced)
        return enhanced

    # ------------------------------------------------------------------
    # Errors, health and recovery
    # ------------------------------------------------------------------

    def record_error(
        self, message: str, error: BaseException | None = None, *, trip: bool = True
    ) -> None:
        """Count an error; past ``max_error_count`` schedule a recovery."""
        self.health.error_count += 1
        logger.error("%s: %s", message, error if error is not None else "")
        if (
            trip
            and self.health.error_count > self._resilience.max_error_count
            and not self._recovering
            and self._running
        ):
            logger.warning(
                "Error count %d exceeded %d; scheduling recovery",
                self.health.error_count,
                self._resilience.max_error_count,
            )
            self._spawn(self.recover())

    def _record_evictions(self, evicted: dict[str, str]) -> None:
        for reason in set(evicted.values()):
            self._metrics.eviction(reason, sum(1 for r in evicted.values() if r == reason))

    async def health_check(self) -> bool:
        """Run one health check.  Returns the resulting ``is_healthy``."""
        self.health.last_health_check = self._registry.now()
        evicted = self._registry.evict(
            self._resilience.stale_event_threshold_s, self._dom.is_live
        )
        self._record_evictions(evicted)

        await self.scan()

        healthy = (
            self.health.error_rate < MAX_ERROR_RATE
            and self.health.error_count < self._resilience.max_error_count
        )
        self.health.is_healthy = healthy
        self._metrics.health_check(healthy=healthy)
        logger.debug(
            "Health check: records=%d errors=%d error_rate=%.3f healthy=%s",
            len(self._registry),
            self.health.error_count,
            self.health.error_rate,
            healthy,
        )

        if len(self._registry) == 0:
            visible = self._dom.query_all(f"[{self._selectors.event_id_attribute}]")
            if visible:
                logger.warning(
                    "Health check: %d events in document but none tracked; recovering",
                    len(visible),
                )
                await self.recover()
                return self.health.is_healthy

        if not healthy:
            logger.warning(
                "Health check failed: error_rate=%.1f%% errors=%d",
                self.health.error_rate * 100,
                self.health.error_count,
            )
            await self.recover()
        return healthy

    async def _health_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._resilience.health_check_interval_s)
            except asyncio.CancelledError:
                break

            try:
                await self.health_check()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.exception("Health check failed")
                self.record_error("Health check failed", exc)

    async def recover(self) -> None:
        """Reset health, clear the registry, recreate the watcher and rescan.

        Before a successful initialization this retries initialization
        instead.  Calls made while a recovery is running return immediately.
        """
        if self._recovering or not self._running:
            return
        self._recovering = True
        try:
            with self._tracer.start_as_current_span("calendar_tools.recover") as span:
                if not self.initialized:
                    logger.info("Retrying initialization")
                    span.set_attribute("recover.kind", "initialize")
                    await self._initialize()
                    return

                span.set_attribute("recover.kind", "reset")
                logger.info("Performing recovery")
                self.health.reset()
                self._registry.clear()
                await self._stop_watcher()
                await self._start_watcher()
                await self.scan()
                self.recoveries += 1
                self._metrics.recovery()
                span.set_attribute("recover.records", len(self._registry))
                logger.info("Recovery completed: %d event cards tracked", len(self._registry))
        except Exception:
            logger.exception("Recovery failed")
        finally:
            self._recovering = False

    # ------------------------------------------------------------------
    # Mutation handling
    # ------------------------------------------------------------------

    def _observe_config(self) -> ObserveConfig:
        return ObserveConfig(
            child_list=True,
            subtree=True,
            attributes=True,
            attribute_filter=(
                self._selectors.event_id_attribute,
                *self._selectors.view_change_attributes,
            ),
        )

    async def _start_watcher(self) -> None:
        workflow = self._config.workflow
        self._watcher = MutationWatcher(
            self._dom,
            self._dom.body(),
            self.handle_batch,
            debounce_s=workflow.mutation_debounce_s,
            queue_capacity=workflow.mutation_queue_capacity,
            config=self._observe_config(),
            metrics=self._metrics,
        )
        await self._watcher.start()

    async def _stop_watcher(self) -> None:
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None

    def _cards_in(self, node: Any) -> list[Any]:
        cards = [node] if matches_any(self._dom, node, self._selectors.event_card) else []
        for card in resolve(self._dom, self._selectors.event_card, node):
            if card is not node:
                cards.append(card)
        return cards

    def _in_view_root(self, element: Any) -> bool:
        node = element
        while node is not None:
            if matches_any(self._dom, node, self._selectors.view_root):
                return True
            node = self._dom.parent(node)
        return False

    async def handle_batch(self, batch: MutationBatch) -> None:
        """Apply one debounced batch: added, then removed, then attributes."""
        seen: set[int] = set()
        enhanced = 0

        for node in batch.added:
            if not self._dom.is_live(node):
                continue
            for card in self._cards_in(node):
                if id(card) in seen:
                    continue
                seen.add(id(card))
                event_id = self._event_id(card)
                if event_id and self._needs_enhancement(event_id, card):
                    await self.enhance(card)
                    enhanced += 1

        removed = 0
        for node in batch.removed:
            for card in self._cards_in(node):
                event_id = self._event_id(card)
                record = self._registry.get(event_id) if event_id else None
                if record is None:
                    continue
                if record.element_ref is card or not self._dom.is_live(record.element_ref):
                    self._registry.remove(record.id)
                    removed += 1
        self._metrics.eviction("removed", removed)

        view_changed = False
        for change in batch.attributes:
            target = change.target
            if not self._dom.is_live(target):
                continue
            if matches_any(self._dom, target, self._selectors.event_card):
                event_id = self._event_id(target)
                if event_id and self._needs_enhancement(event_id, target):
                    await self.enhance(target)
                    enhanced += 1
            elif change.attribute_name in self._selectors.view_change_attributes and (
                self._in_view_root(target)
            ):
                view_changed = True

        if view_changed:
            logger.info("View change detected; cleaning up and rescanning")
            self._record_evictions(self._registry.evict(math.inf, self._dom.is_live))
            await self.scan()
        elif enhanced == 0 and len(batch):
            await self.scan()

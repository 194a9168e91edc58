"""Debounced mutation watcher backed by a bounded work queue.

Host-document mutation callbacks only collect records.  After a quiet period
of ``debounce_s`` the collected records are sealed into one
:class:`MutationBatch` and put on a bounded :class:`asyncio.Queue`.  A single
consumer task drains the queue in arrival order, so batches are handled FIFO
and never interleave.

Within a batch, added elements are handled before removed elements, and
attribute changes last.  When the queue is full the batch is dropped with a
warning; the supervisor's periodic rescan picks up anything missed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from calendar_tools.core.metrics import ToolsMetrics
from calendar_tools.dom.base import DomCollaborator, MutationRecord, ObserveConfig, ObserverHandle

logger = logging.getLogger(__name__)


@dataclass
class MutationBatch:
    """Coalesced mutations from one debounce window."""

    added: list[Any] = field(default_factory=list)
    removed: list[Any] = field(default_factory=list)
    attributes: list[MutationRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.added) + len(self.removed) + len(self.attributes)

    @classmethod
    def from_records(cls, records: Sequence[MutationRecord]) -> MutationBatch:
        batch = cls()
        seen_added: set[int] = set()
        seen_removed: set[int] = set()
        seen_attributes: set[tuple[int, str | None]] = set()
        for record in records:
            if record.type == "childList":
                for node in record.added_nodes:
                    if id(node) not in seen_added:
                        seen_added.add(id(node))
                        batch.added.append(node)
                for node in record.removed_nodes:
                    if id(node) not in seen_removed:
                        seen_removed.add(id(node))
                        batch.removed.append(node)
            elif record.type == "attributes":
                key = (id(record.target), record.attribute_name)
                if key not in seen_attributes:
                    seen_attributes.add(key)
                    batch.attributes.append(record)
        return batch


BatchHandler = Callable[[MutationBatch], Awaitable[None]]


class MutationWatcher:
    """Observe *root* and feed debounced batches to *handler*.

    Parameters
    ----------
    dom:
        Host document to observe.
    root:
        Element whose subtree is observed.
    handler:
        Async callable run by the consumer task for each batch.
    debounce_s:
        Quiet period after the last mutation before a batch is sealed.
    queue_capacity:
        Maximum sealed batches waiting for the consumer.
    """

    def __init__(
        self,
        dom: DomCollaborator,
        root: Any,
        handler: BatchHandler,
        *,
        debounce_s: float = 0.15,
        queue_capacity: int = 100,
        config: ObserveConfig | None = None,
        metrics: ToolsMetrics | None = None,
    ) -> None:
        self._dom = dom
        self._root = root
        self._handler = handler
        self._debounce_s = debounce_s
        self._config = config or ObserveConfig()
        self._metrics = metrics or ToolsMetrics()

        self._queue: asyncio.Queue[MutationBatch] = asyncio.Queue(maxsize=queue_capacity)
        self._pending: list[MutationRecord] = []
        self._timer: asyncio.TimerHandle | None = None
        self._observer: ObserverHandle | None = None
        self._consumer: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False

        self.batches_processed = 0
        self.batches_dropped = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin observing and spawn the consumer task."""
        if self._running:
            return
        self._running = True
        self._loop = asyncio.get_running_loop()
        self._observer = self._dom.observe(self._root, self._config, self._on_mutations)
        self._consumer = asyncio.create_task(self._consume(), name="mutation-watcher")
        logger.debug("Mutation watcher started (debounce=%.3fs)", self._debounce_s)

    async def stop(self) -> None:
        """Disconnect, cancel the debounce timer and the consumer task.

        Pending records and queued batches are discarded.
        """
        if not self._running:
            return
        self._running = False

        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        logger.debug("Mutation watcher stopped")

    async def flush(self) -> None:
        """Seal any pending records now and wait until every batch is handled."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._seal()
        await self._queue.join()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def _on_mutations(self, records: Sequence[MutationRecord]) -> None:
        if not self._running or self._loop is None:
            return
        self._pending.extend(records)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self._debounce_s, self._on_quiet)

    def _on_quiet(self) -> None:
        self._timer = None
        self._seal()

    def _seal(self) -> None:
        if not self._pending:
            return
        batch = MutationBatch.from_records(self._pending)
        self._pending = []
        try:
            self._queue.put_nowait(batch)
        except asyncio.QueueFull:
            self.batches_dropped += 1
            self._metrics.mutation_batch_dropped()
            logger.warning(
                "Mutation queue full (%d batches); dropping batch of %d changes",
                self._queue.maxsize,
                len(batch),
            )

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                await self._handler(batch)
                self.batches_processed += 1
                self._metrics.mutation_batch()
            except Exception:
                logger.exception("Mutation batch handler failed (%d changes)", len(batch))
            finally:
                self._queue.task_done()

"""Unit tests for MutationWatcher.

Covers:
- MutationBatch: coalescing and de-duplication of raw records
- Debounce: a burst of mutations becomes one batch
- Queue: FIFO delivery, drop on overflow, handler errors are contained
- Lifecycle: stop() disconnects the observer and leaves no tasks behind
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from calendar_tools.dom.base import MutationRecord
from calendar_tools.testing import html_document
from calendar_tools.watcher import MutationBatch, MutationWatcher

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def doc():
    return html_document("<div id='root'></div>")


def _make_watcher(doc, handler, **kwargs) -> MutationWatcher:
    kwargs.setdefault("debounce_s", 0.01)
    return MutationWatcher(doc, doc.select_one("#root"), handler, **kwargs)


def _added(target, *nodes) -> MutationRecord:
    return MutationRecord(type="childList", target=target, added_nodes=nodes)


# ---------------------------------------------------------------------------
# MutationBatch
# ---------------------------------------------------------------------------


class TestMutationBatch:
    def test_groups_by_kind(self):
        a, b, c, target = object(), object(), object(), object()
        batch = MutationBatch.from_records(
            [
                MutationRecord(type="childList", target=target, removed_nodes=(a,)),
                MutationRecord(type="attributes", target=c, attribute_name="data-view"),
                _added(target, b),
            ]
        )
        assert batch.added == [b]
        assert batch.removed == [a]
        assert [r.target for r in batch.attributes] == [c]
        assert len(batch) == 3

    def test_deduplicates_by_identity(self):
        node, target = object(), object()
        batch = MutationBatch.from_records(
            [
                _added(target, node),
                _added(target, node),
                MutationRecord(type="attributes", target=target, attribute_name="jsname"),
                MutationRecord(type="attributes", target=target, attribute_name="jsname"),
                MutationRecord(type="attributes", target=target, attribute_name="aria-label"),
            ]
        )
        assert batch.added == [node]
        assert [r.attribute_name for r in batch.attributes] == ["jsname", "aria-label"]


# ---------------------------------------------------------------------------
# Debounce and delivery
# ---------------------------------------------------------------------------


class TestDelivery:
    async def test_burst_is_coalesced_into_one_batch(self, doc):
        batches: list[MutationBatch] = []

        async def handler(batch):
            batches.append(batch)

        watcher = _make_watcher(doc, handler, debounce_s=0.05)
        await watcher.start()
        root = doc.select_one("#root")
        for i in range(3):
            doc.insert_html(root, f"<span id='s{i}'></span>")

        await asyncio.sleep(0.2)
        await watcher.stop()

        assert len(batches) == 1
        assert [el["id"] for el in batches[0].added] == ["s0", "s1", "s2"]
        assert watcher.batches_processed == 1

    async def test_batches_handled_in_arrival_order(self, doc):
        seen: list[str] = []

        async def handler(batch):
            await asyncio.sleep(0)
            seen.extend(el["id"] for el in batch.added)

        watcher = _make_watcher(doc, handler, debounce_s=10.0)
        await watcher.start()
        root = doc.select_one("#root")
        for name in ("first", "second", "third"):
            doc.insert_html(root, f"<span id='{name}'></span>")
            watcher._timer.cancel()
            watcher._seal()
        await watcher.flush()
        await watcher.stop()

        assert seen == ["first", "second", "third"]

    async def test_flush_seals_pending_records(self, doc):
        batches: list[MutationBatch] = []

        async def handler(batch):
            batches.append(batch)

        watcher = _make_watcher(doc, handler, debounce_s=10.0)
        await watcher.start()
        doc.insert_html(doc.select_one("#root"), "<span></span>")
        await watcher.flush()
        await watcher.stop()

        assert len(batches) == 1

    async def test_mutations_outside_root_ignored(self, doc):
        batches: list[MutationBatch] = []

        async def handler(batch):
            batches.append(batch)

        watcher = _make_watcher(doc, handler)
        await watcher.start()
        doc.insert_html(doc.body(), "<p>elsewhere</p>")
        await watcher.flush()
        await watcher.stop()

        assert batches == []


# ---------------------------------------------------------------------------
# Queue behaviour
# ---------------------------------------------------------------------------


class TestQueue:
    async def test_full_queue_drops_batch(self, doc, caplog: pytest.LogCaptureFixture):
        gate = asyncio.Event()
        handled: list[MutationBatch] = []

        async def handler(batch):
            await gate.wait()
            handled.append(batch)

        watcher = _make_watcher(doc, handler, queue_capacity=1)
        await watcher.start()
        root = doc.select_one("#root")

        def seal_one():
            watcher._on_mutations([_added(root, object())])
            watcher._seal()

        seal_one()
        await asyncio.sleep(0)  # consumer takes the first batch and blocks
        seal_one()  # queued
        with caplog.at_level(logging.WARNING, logger="calendar_tools.watcher"):
            seal_one()  # dropped

        assert watcher.batches_dropped == 1
        assert watcher.queue_depth == 1
        assert "Mutation queue full" in caplog.text

        gate.set()
        await watcher.flush()
        await watcher.stop()
        assert len(handled) == 2

    async def test_handler_error_does_not_stop_consumer(
        self, doc, caplog: pytest.LogCaptureFixture
    ):
        calls = 0

        async def handler(batch):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")

        watcher = _make_watcher(doc, handler)
        await watcher.start()
        root = doc.select_one("#root")
        with caplog.at_level(logging.ERROR, logger="calendar_tools.watcher"):
            doc.insert_html(root, "<span></span>")
            await watcher.flush()
            doc.insert_html(root, "<span></span>")
            await watcher.flush()
        await watcher.stop()

        assert calls == 2
        assert watcher.batches_processed == 1
        assert "Mutation batch handler failed" in caplog.text


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_stop_leaves_no_tasks_or_observers(self, doc):
        async def handler(batch):
            return None

        before = asyncio.all_tasks()
        watcher = _make_watcher(doc, handler, debounce_s=10.0)
        await watcher.start()
        assert watcher.running
        assert doc.observer_count == 1

        doc.insert_html(doc.select_one("#root"), "<span></span>")
        await watcher.stop()

        assert not watcher.running
        assert doc.observer_count == 0
        assert watcher._timer is None
        assert asyncio.all_tasks() - before == set()

    async def test_start_and_stop_are_idempotent(self, doc):
        async def handler(batch):
            return None

        watcher = _make_watcher(doc, handler)
        await watcher.start()
        await watcher.start()
        assert doc.observer_count == 1
        await watcher.stop()
        await watcher.stop()
        assert doc.observer_count == 0

    async def test_mutations_after_stop_are_ignored(self, doc):
        batches: list[MutationBatch] = []

        async def handler(batch):
            batches.append(batch)

        watcher = _make_watcher(doc, handler)
        await watcher.start()
        await watcher.stop()
        watcher._on_mutations([_added(doc.select_one("#root"), object())])
        assert watcher._pending == []

"""
Unit Tests — RetryQueue
═══════════════════════

Coverage targets:
  ✅ Successful operation runs once and is removed
  ✅ Failing operation is retained with 2**n backoff and last error recorded
  ✅ Operation is not retried before its retry time
  ✅ Operation is dropped once current_retry reaches max_retries
  ✅ Re-adding an id replaces the pending operation
  ✅ Only one pass runs at a time; the follow-up scan picks up absorbed work
  ✅ aclose() warns about pending operations
"""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from skimmer.events.retry_queue import RetryQueue


async def _until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.mark.unit
class TestRetryQueueSuccess:

    async def test_successful_operation_is_removed(self, clock):
        queue = RetryQueue(clock=clock)
        op = AsyncMock(return_value=None)

        queue.add_operation("search_index_f1_meilisearch", op)
        await queue.wait_idle()

        op.assert_awaited_once()
        assert queue.get_queue_status() == {"pending": 0, "operations": []}
        await queue.aclose()

    async def test_kept_until_success_after_max_retries_minus_one_failures(self, clock):
        queue = RetryQueue(rescan_delay=3600, clock=clock)
        op = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("still down"), None])

        queue.add_operation("op", op, max_retries=3)
        await queue.wait_idle()
        assert queue.get_queue_status()["pending"] == 1

        clock.advance(2)
        await queue.process_queue()
        [entry] = queue.get_queue_status()["operations"]
        assert (entry["currentRetry"], entry["lastError"]) == (2, "still down")

        clock.advance(4)
        await queue.process_queue()

        assert op.await_count == 3
        assert queue.get_queue_status()["pending"] == 0
        await queue.aclose()


@pytest.mark.unit
class TestRetryQueueBackoff:

    async def test_failure_is_retained_with_backoff(self, clock):
        queue = RetryQueue(rescan_delay=3600, clock=clock)
        op = AsyncMock(side_effect=ConnectionError("backend down"))

        queue.add_operation("op", op, max_retries=3)
        await queue.wait_idle()

        [entry] = queue.get_queue_status()["operations"]
        assert entry == {
            "id":           "op",
            "currentRetry": 1,
            "maxRetries":   3,
            "lastError":    "backend down",
            "nextRetryIn":  2.0,
        }
        await queue.aclose()

    async def test_not_retried_before_due(self, clock):
        queue = RetryQueue(rescan_delay=3600, clock=clock)
        op = AsyncMock(side_effect=ConnectionError("down"))

        queue.add_operation("op", op)
        await queue.wait_idle()
        clock.advance(1.5)
        await queue.process_queue()

        op.assert_awaited_once()
        await queue.aclose()

    async def test_backoff_doubles_and_drops_at_max_retries(self, clock, caplog):
        queue = RetryQueue(rescan_delay=3600, clock=clock)
        op = AsyncMock(side_effect=ConnectionError("down"))

        queue.add_operation("op", op, max_retries=3)
        await queue.wait_idle()

        clock.advance(2)
        await queue.process_queue()
        [entry] = queue.get_queue_status()["operations"]
        assert entry["currentRetry"] == 2
        assert entry["nextRetryIn"] == 4.0

        clock.advance(4)
        with caplog.at_level(logging.ERROR, logger="skimmer.events.retry_queue"):
            await queue.process_queue()

        assert op.await_count == 3
        assert queue.get_queue_status()["pending"] == 0
        assert "dropping operation" in caplog.text
        await queue.aclose()

    async def test_single_attempt_budget(self, clock):
        queue = RetryQueue(rescan_delay=3600, clock=clock)
        op = AsyncMock(side_effect=ConnectionError("down"))

        queue.add_operation("op", op, max_retries=1)
        await queue.wait_idle()

        op.assert_awaited_once()
        assert queue.get_queue_status()["pending"] == 0
        await queue.aclose()


@pytest.mark.unit
class TestRetryQueueScheduling:

    async def test_same_id_replaces_pending_operation(self, clock):
        queue = RetryQueue(rescan_delay=3600, clock=clock)
        failing = AsyncMock(side_effect=ConnectionError("down"))
        replacement = AsyncMock(return_value=None)

        queue.add_operation("search_index_f1_pinecone", failing)
        await queue.wait_idle()
        queue.add_operation("search_index_f1_pinecone", replacement)
        await queue.wait_idle()

        failing.assert_awaited_once()
        replacement.assert_awaited_once()
        assert queue.get_queue_status()["pending"] == 0
        await queue.aclose()

    async def test_one_pass_at_a_time(self, clock):
        queue = RetryQueue(rescan_delay=0.01, clock=clock)
        release = asyncio.Event()
        running = 0
        peak = 0

        async def _blocking():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await release.wait()
            running -= 1

        second = AsyncMock(return_value=None)

        queue.add_operation("first", _blocking)
        await asyncio.sleep(0)
        queue.add_operation("second", second)
        await asyncio.sleep(0)

        # The second trigger was absorbed by the running pass.
        second.assert_not_awaited()

        release.set()
        await _until(lambda: second.await_count == 1)

        assert peak == 1
        assert queue.get_queue_status()["pending"] == 0
        await queue.aclose()

    async def test_aclose_warns_about_pending(self, clock, caplog):
        queue = RetryQueue(rescan_delay=3600, clock=clock)
        queue.add_operation("op", AsyncMock(side_effect=ConnectionError("down")))
        await queue.wait_idle()

        with caplog.at_level(logging.WARNING, logger="skimmer.events.retry_queue"):
            await queue.aclose()

        assert "pending operations" in caplog.text

"""
Retry Queue — In-Process Exponential Backoff for Side Effects

Used for work that must not block the main pipeline but should survive
transient failures, e.g. pushing a SearchDocument to every search backend.

Lifecycle of one operation:

  add_operation(id, op, max_retries=3)
      │  next_retry_at = now, pass triggered immediately
      ▼
  process pass ──► op() succeeds ──► removed
      │
      └─► op() raises ──► current_retry += 1
                           ├─ current_retry >= max_retries → dropped (logged)
                           └─ next_retry_at = now + 2**current_retry seconds

Scheduling rules:
  - Only one pass runs at a time. A trigger that arrives during a pass is
    absorbed; the running pass's follow-up scan picks the work up.
  - When operations remain after a pass, a new pass is scheduled after
    rescan_delay seconds (5 s by default).
  - Re-adding an id replaces the pending operation with that id.

Durability:
  The queue lives in process memory. Operations still pending when the
  process is suspended are lost; hosts that can wait should call
  wait_idle() before shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class RetryableOperation:
    id:            str
    operation:     Callable[[], Awaitable[Any]]
    max_retries:   int = 3
    current_retry: int = 0
    last_error:    str | None = None
    next_retry_at: float = field(default=0.0)


class RetryQueue:
    """Keyed set of retryable operations processed on the running event loop."""

    def __init__(
        self,
        rescan_delay: float = 5.0,
        clock:        Clock = time.monotonic,
    ) -> None:
        self._operations: dict[str, RetryableOperation] = {}
        self._rescan_delay  = rescan_delay
        self._clock         = clock
        self._is_processing = False
        self._tasks:  set[asyncio.Task] = set()
        self._rescan: asyncio.Task | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_operation(
        self,
        op_id:       str,
        operation:   Callable[[], Awaitable[Any]],
        max_retries: int = 3,
    ) -> None:
        """Register an operation and trigger a processing pass."""
        if op_id in self._operations:
            logger.debug("Retry queue replacing operation | id=%s", op_id)
        self._operations[op_id] = RetryableOperation(
            id=op_id,
            operation=operation,
            max_retries=max_retries,
            next_retry_at=self._clock(),
        )
        self._spawn(self.process_queue())

    async def process_queue(self) -> None:
        """Run every operation whose retry time has arrived."""
        if self._is_processing:
            return
        self._is_processing = True
        try:
            now = self._clock()
            due = [op for op in self._operations.values() if op.next_retry_at <= now]
            for op in due:
                await self._attempt(op, now)
        finally:
            self._is_processing = False

        if self._operations and not self._closed:
            self._schedule_rescan()

    def get_queue_status(self) -> dict[str, Any]:
        return {
            "pending": len(self._operations),
            "operations": [
                {
                    "id":            op.id,
                    "currentRetry":  op.current_retry,
                    "maxRetries":    op.max_retries,
                    "lastError":     op.last_error,
                    "nextRetryIn":   max(0.0, op.next_retry_at - self._clock()),
                }
                for op in self._operations.values()
            ],
        }

    async def wait_idle(self) -> None:
        """Wait until every triggered pass has finished. A scheduled rescan is not awaited."""
        while True:
            pending = [t for t in self._tasks if t is not self._rescan]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Stop scheduling new passes and wait for in-flight ones."""
        self._closed = True
        if self._rescan is not None:
            self._rescan.cancel()
        await self.wait_idle()
        if self._operations:
            logger.warning(
                "Retry queue closed with pending operations | pending=%d ids=%s",
                len(self._operations), list(self._operations),
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _attempt(self, op: RetryableOperation, now: float) -> None:
        try:
            await op.operation()
        except Exception as exc:
            # The entry may have been replaced while we were awaiting.
            if self._operations.get(op.id) is not op:
                return
            op.current_retry += 1
            op.last_error     = str(exc)
            if op.current_retry >= op.max_retries:
                del self._operations[op.id]
                logger.error(
                    "Retry queue dropping operation | id=%s attempts=%d error=%s",
                    op.id, op.current_retry, exc,
                )
                return
            op.next_retry_at = now + 2 ** op.current_retry
            logger.warning(
                "Retry queue attempt failed | id=%s attempt=%d/%d next_in=%ds error=%s",
                op.id, op.current_retry, op.max_retries, 2 ** op.current_retry, exc,
            )
            return

        if self._operations.get(op.id) is op:
            del self._operations[op.id]
        logger.debug("Retry queue operation succeeded | id=%s", op.id)

    def _schedule_rescan(self) -> None:
        if self._rescan is not None and not self._rescan.done():
            return
        self._rescan = self._spawn(self._delayed_pass())

    async def _delayed_pass(self) -> None:
        await asyncio.sleep(self._rescan_delay)
        self._rescan = None
        await self.process_queue()

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

"""
Event Bus — In-Process Publish/Subscribe

Decouples post-analysis side effects (search synchronization, failure-status
recording) from the processing pipeline.

  emit(type, payload)
      │  wraps payload in an Event envelope (type, payload, timestamp, id)
      ▼
  asyncio.gather(_invoke(handler_1), _invoke(handler_2), ..., return_exceptions=True)

A failing handler, including one that raises as soon as it is called, is
logged and never affects the emitter or the other handlers registered for
the same type.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

ANALYSIS_COMPLETED = "analysis_completed"
ANALYSIS_FAILED    = "analysis_failed"


@dataclass(frozen=True)
class Event:
    type:      str
    payload:   Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id:        str = field(default_factory=lambda: str(uuid.uuid4()))


EventHandler = Callable[[Event], Awaitable[None]]


async def _invoke(handler: EventHandler, event: Event) -> None:
    result = handler(event)
    if inspect.isawaitable(result):
        await result


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event_type: str, payload: Any) -> Event:
        """Run every handler for ``event_type`` concurrently; never raises."""
        event    = Event(type=event_type, payload=payload)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            logger.debug("Event emitted with no handlers | type=%s id=%s", event_type, event.id)
            return event

        results = await asyncio.gather(
            *(_invoke(handler, event) for handler in handlers),
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Event handler failed | type=%s id=%s handler=%s error=%s",
                    event_type, event.id, getattr(handler, "__qualname__", handler), result,
                    exc_info=result,
                )
        return event

"""
Metrics & Health Checks — In-Process

MetricsCollector
  Four kinds of samples, all kept in one bounded buffer (last 1 000):
    counter    increment("file.processing.started")
    gauge      gauge("retry_queue.pending", 3)
    timer      timing("file.processing.duration", 1234.5)   (milliseconds)
    histogram  histogram("ai.entities", 12)

  get_processing_metrics() summarises the last 5 minutes of pipeline
  counters for the /metrics endpoint.

HealthChecker
  Named async checks, each bounded by a timeout (5 s by default):
    healthy   → contributes nothing
    degraded  → overall "degraded"
    unhealthy / raised / timed out → overall "unhealthy"

Counter names emitted by the pipeline:
  file.processing.started | .completed | .failed
  file.content.downloaded
  ai.analysis.completed
  search.index.queued | .updated | .failed
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

MAX_SAMPLES = 1000


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------

@dataclass
class MetricSample:
    name:      str
    kind:      str              # counter | gauge | timer | histogram
    value:     float
    timestamp: float
    tags:      dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock   = clock
        self._samples: deque[MetricSample] = deque(maxlen=MAX_SAMPLES)
        self._counters: dict[str, float] = {}

    def _record(self, name: str, kind: str, value: float, tags: dict[str, str] | None) -> None:
        self._samples.append(MetricSample(name, kind, value, self._clock(), dict(tags or {})))

    def increment(self, name: str, value: float = 1, tags: dict[str, str] | None = None) -> None:
        self._counters[name] = self._counters.get(name, 0) + value
        self._record(name, "counter", value, tags)

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self._record(name, "gauge", value, tags)

    def timing(self, name: str, duration_ms: float, tags: dict[str, str] | None = None) -> None:
        self._record(name, "timer", duration_ms, tags)

    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self._record(name, "histogram", value, tags)

    def counter_total(self, name: str) -> float:
        """Lifetime total, independent of the sample buffer."""
        return self._counters.get(name, 0)

    def get_metrics(self, name: str | None = None, since: float | None = None) -> list[MetricSample]:
        return [
            s for s in self._samples
            if (name is None or s.name == name) and (since is None or s.timestamp >= since)
        ]

    def get_processing_metrics(self, window_seconds: float = 300.0) -> dict[str, Any]:
        since = self._clock() - window_seconds

        def _count(name: str) -> float:
            return sum(s.value for s in self.get_metrics(name, since))

        durations = [s.value for s in self.get_metrics("file.processing.duration", since)]
        started   = _count("file.processing.started")
        completed = _count("file.processing.completed")
        failed    = _count("file.processing.failed")
        finished  = completed + failed
        return {
            "window_seconds":     window_seconds,
            "files_started":      started,
            "files_completed":    completed,
            "files_failed":       failed,
            "success_rate":       round(completed / finished, 4) if finished else None,
            "avg_duration_ms":    round(sum(durations) / len(durations), 1) if durations else None,
            "search_index_queued":  _count("search.index.queued"),
            "search_index_updated": _count("search.index.updated"),
            "search_index_failed":  _count("search.index.failed"),
        }


# ---------------------------------------------------------------------------
# HealthChecker
# ---------------------------------------------------------------------------

HEALTHY   = "healthy"
DEGRADED  = "degraded"
UNHEALTHY = "unhealthy"

HealthCheck = Callable[[], Awaitable[dict[str, Any]]]


class HealthChecker:
    """
    Each check returns {"status": healthy|degraded|unhealthy, ...details}.
    A check that raises or exceeds the timeout is reported unhealthy.
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout
        self._checks: dict[str, HealthCheck] = {}

    def register(self, name: str, check: HealthCheck) -> None:
        self._checks[name] = check

    async def run(self) -> dict[str, Any]:
        names   = list(self._checks)
        results = await asyncio.gather(*(self._run_one(n) for n in names))
        checks  = dict(zip(names, results))

        statuses = {c["status"] for c in checks.values()}
        if UNHEALTHY in statuses:
            overall = UNHEALTHY
        elif DEGRADED in statuses:
            overall = DEGRADED
        else:
            overall = HEALTHY

        return {
            "status":    overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks":    checks,
        }

    async def _run_one(self, name: str) -> dict[str, Any]:
        t0 = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._checks[name](), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Health check timed out | check=%s timeout=%.1fs", name, self._timeout)
            result = {"status": UNHEALTHY, "error": f"timed out after {self._timeout}s"}
        except Exception as exc:
            logger.warning("Health check failed | check=%s error=%s", name, exc)
            result = {"status": UNHEALTHY, "error": str(exc)}
        result.setdefault("status", HEALTHY)
        result["duration_ms"] = round((time.perf_counter() - t0) * 1000, 1)
        return result

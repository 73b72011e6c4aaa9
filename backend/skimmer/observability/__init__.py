"""
Observability Package — Tracing, Metrics + Cost Tracking

Provides:
  enable_langsmith   — LangSmith tracing of remote-model calls
  traced             — per-file span timing for pipeline steps
  MetricsCollector   — in-process counters, gauges, timers, histograms
  HealthChecker      — timeout-bounded dependency checks
  DailySpendTracker  — remote-model spend per day
"""

from skimmer.observability.cost_tracker import DailySpendTracker
from skimmer.observability.metrics import HealthChecker, MetricsCollector
from skimmer.observability.tracing import enable_langsmith, traced

__all__ = ["DailySpendTracker", "HealthChecker", "MetricsCollector", "enable_langsmith", "traced"]

"""
Cost Policy — Should This File Go to the Remote Model?

The policy is the decision engine that answers:
  "Is a remote model call worth its cost for this content, and how much of
   the content should it see?"

Decision order (first match wins):

  1. Result cached for (content, mime)              → cached   (no call)
  2. Remote model not configured                    → basic
  3. Content shorter than min_content_length        → basic
  4. Daily budget exhausted                         → basic
  5. Estimated cost above per-file cap              → basic
  6. File larger than size threshold (priority≠high)→ basic
  7. Content longer than length threshold (≠high)   → ai-light (truncated input)
  8. High-value content or priority=high            → ai-full
  9. Everything else                                → ai-light

"basic" means the rule-based enrichment is the whole result.

High-value content:
  - PDF / Word documents mentioning contract, agreement, proposal, financial,
    revenue, budget or strategy
  - any JSON or XML payload
  - long (> 5 000 chars) analytical text: analysis, report, research,
    technical, specification(s)

Cost profiles:
  ┌─────────────┬────────────┬───────────┬─────────────┬────────┬──────────┐
  │ profile     │ max tokens │ size (KB) │ length (ch) │ budget │ per file │
  ├─────────────┼────────────┼───────────┼─────────────┼────────┼──────────┤
  │ development │ 2 000      │  50       │  5 000      │ $10    │ $0.10    │
  │ default     │ 4 000      │ 100       │ 10 000      │ $50    │ $0.25    │
  │ production  │ 8 000      │ 200       │ 20 000      │ $100   │ $0.50    │
  │ high_volume │ 4 000      │ 100       │ 10 000      │ $200   │ $0.25    │
  └─────────────┴────────────┴───────────┴─────────────┴────────┴──────────┘

Result cache:
  SHA-256 of content + MIME type; 24 h TTL; at most 1 000 entries, the
  oldest inserted entry is evicted first.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from skimmer.analysis.base import AnalysisResult
from skimmer.observability.cost_tracker import (
    DailySpendTracker,
    compute_cost,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

ESTIMATED_OUTPUT_TOKENS = 300

_BUSINESS_KEYWORDS = (
    "contract", "agreement", "proposal", "financial", "revenue", "budget", "strategy",
)
_ANALYTICAL_RE = re.compile(r"\b(analysis|report|research|technical|specifications?)\b", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class ProcessingStrategy(str, Enum):
    BASIC    = "basic"
    AI_LIGHT = "ai-light"
    AI_FULL  = "ai-full"
    CACHED   = "cached"


@dataclass(frozen=True)
class CostProfile:
    name:                     str
    max_tokens_per_request:   int
    file_size_threshold_kb:   int
    content_length_threshold: int
    daily_budget_usd:         float
    max_cost_per_file:        float
    enable_caching:           bool = True


COST_PROFILES: dict[str, CostProfile] = {
    "default":     CostProfile("default",     4000, 100, 10000,  50.0, 0.25),
    "development": CostProfile("development", 2000,  50,  5000,  10.0, 0.10),
    "production":  CostProfile("production",  8000, 200, 20000, 100.0, 0.50),
    "high_volume": CostProfile("high_volume", 4000, 100, 10000, 200.0, 0.25),
}


def resolve_cost_profile(name: str = "", app_env: str = "") -> CostProfile:
    """Explicit profile name wins; otherwise the app environment picks one."""
    key = (name or app_env or "default").lower()
    profile = COST_PROFILES.get(key)
    if profile is None:
        logger.warning("Unknown cost profile '%s' — using default", key)
        return COST_PROFILES["default"]
    return profile


@dataclass
class ProcessingDecision:
    use_remote_model: bool
    strategy:         ProcessingStrategy
    estimated_cost:   float
    reasoning:        str
    content_preview:  str | None = None


@dataclass
class _CacheEntry:
    result:    AnalysisResult
    stored_at: float


# ---------------------------------------------------------------------------
# CostOptimizer
# ---------------------------------------------------------------------------

class CostOptimizer:
    """
    Pure decision logic plus the two pieces of process-wide state it needs:
    the result cache and today's spend.
    """

    def __init__(
        self,
        profile:            CostProfile | None = None,
        model:              str = "gpt-4o-mini",
        remote_enabled:     bool = True,
        min_content_length: int = 200,
        cache_capacity:     int = 1000,
        cache_ttl_seconds:  float = 24 * 3600,
        clock:              Callable[[], float] = time.time,
        today:              Callable[[], date] = date.today,
    ) -> None:
        self.profile             = profile or COST_PROFILES["default"]
        self._model              = model
        self._remote_enabled     = remote_enabled
        self._min_content_length = min_content_length
        self._cache_capacity     = cache_capacity
        self._cache_ttl          = cache_ttl_seconds
        self._clock              = clock
        self._spend              = DailySpendTracker(today=today)
        self._cache: dict[str, _CacheEntry] = {}
        self._cache_lookups = 0
        self._cache_hits    = 0

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def decide(
        self,
        content:   str,
        file_size: int,
        mime_type: str,
        priority:  str = "medium",
    ) -> ProcessingDecision:
        preview = content[:200]

        if self._lookup(content, mime_type, count=False) is not None:
            return ProcessingDecision(False, ProcessingStrategy.CACHED, 0.0, "Content found in cache")

        if not self._remote_enabled:
            return ProcessingDecision(False, ProcessingStrategy.BASIC, 0.0, "Remote model not configured")

        if len(content.strip()) < self._min_content_length:
            return ProcessingDecision(
                False, ProcessingStrategy.BASIC, 0.0,
                f"Content length {len(content.strip())} below remote-analysis minimum",
            )

        if self._spend.spend >= Decimal(str(self.profile.daily_budget_usd)):
            return ProcessingDecision(False, ProcessingStrategy.BASIC, 0.0, "Daily budget exceeded")

        estimated = self.estimate_cost(content)
        if estimated > self.profile.max_cost_per_file:
            return ProcessingDecision(
                False, ProcessingStrategy.BASIC, estimated,
                f"Estimated cost ${estimated:.4f} exceeds per-file limit",
            )

        high_priority = priority == "high"
        size_kb = file_size / 1024
        if size_kb > self.profile.file_size_threshold_kb and not high_priority:
            return ProcessingDecision(
                False, ProcessingStrategy.BASIC, estimated,
                f"File size {size_kb:.1f}KB exceeds threshold",
            )

        light_limit = self.profile.max_tokens_per_request * 3
        if len(content) > self.profile.content_length_threshold and not high_priority:
            return ProcessingDecision(
                True, ProcessingStrategy.AI_LIGHT,
                self.estimate_cost(content[:light_limit]),
                "Content truncated for cost optimization",
                preview,
            )

        if high_priority or self.is_high_value_content(content, mime_type):
            return ProcessingDecision(
                True, ProcessingStrategy.AI_FULL, estimated,
                "High-value content warrants full remote analysis",
                preview,
            )

        return ProcessingDecision(
            True, ProcessingStrategy.AI_LIGHT,
            self.estimate_cost(content[:light_limit]),
            "Light remote analysis for cost efficiency",
            preview,
        )

    def estimate_cost(self, content: str) -> float:
        return float(compute_cost(self._model, estimate_tokens(content), ESTIMATED_OUTPUT_TOKENS))

    @staticmethod
    def is_high_value_content(content: str, mime_type: str) -> bool:
        lower = content.lower()
        if "pdf" in mime_type or "word" in mime_type:
            if any(k in lower for k in _BUSINESS_KEYWORDS):
                return True
        if "json" in mime_type or "xml" in mime_type:
            return True
        return len(content) > 5000 and bool(_ANALYTICAL_RE.search(content))

    def optimize_content(self, content: str, strategy: ProcessingStrategy) -> str:
        """Trim what the remote model sees according to the chosen strategy."""
        max_tokens = self.profile.max_tokens_per_request
        if strategy is ProcessingStrategy.AI_LIGHT:
            paragraphs = [p.strip() for p in re.split(r"\n\s*\n", content) if len(p.strip()) > 50]
            condensed = "\n\n".join(paragraphs[:5]) if paragraphs else content
            return condensed[: max_tokens * 3]
        return content[: max_tokens * 4]

    # ------------------------------------------------------------------
    # Spend
    # ------------------------------------------------------------------

    def record_usage(self, cost: float) -> None:
        self._spend.record(cost)
        remaining = Decimal(str(self.profile.daily_budget_usd)) - self._spend.spend
        logger.info("Remote model usage | cost=$%.4f budget_remaining=$%.4f", cost, remaining)

    def get_spending_report(self) -> dict[str, Any]:
        spend     = float(self._spend.spend)
        processed = self._spend.processed
        return {
            "profile":         self.profile.name,
            "dailySpend":      round(spend, 6),
            "budgetRemaining": round(self.profile.daily_budget_usd - spend, 6),
            "costPerFile":     round(spend / max(1, processed), 6),
            "totalProcessed":  processed,
            "cacheSize":       len(self._cache),
            "cacheHitRate":    round(self._cache_hits / self._cache_lookups, 4) if self._cache_lookups else 0.0,
        }

    # ------------------------------------------------------------------
    # Result cache
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(content: str, mime_type: str) -> str:
        return hashlib.sha256(f"{mime_type}\x00{content}".encode("utf-8")).hexdigest()

    def get_cached(self, content: str, mime_type: str) -> AnalysisResult | None:
        return self._lookup(content, mime_type, count=True)

    def cache_result(self, content: str, mime_type: str, result: AnalysisResult) -> None:
        if not self.profile.enable_caching:
            return
        key = self.cache_key(content, mime_type)
        self._cache.pop(key, None)
        self._cache[key] = _CacheEntry(copy.deepcopy(result), self._clock())
        while len(self._cache) > self._cache_capacity:
            oldest = next(iter(self._cache))
            del self._cache[oldest]

    def _lookup(self, content: str, mime_type: str, count: bool) -> AnalysisResult | None:
        if not self.profile.enable_caching:
            return None
        if count:
            self._cache_lookups += 1
        key   = self.cache_key(content, mime_type)
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self._cache_ttl:
            del self._cache[key]
            return None
        if count:
            self._cache_hits += 1
        return copy.deepcopy(entry.result)

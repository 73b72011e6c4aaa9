"""
Cost Tracker — Daily Remote-Model Spend Accounting

Keeps a running total of what the remote analysis model has cost today, so
the cost policy can stop calling it once the daily budget is gone.

  record(cost)  → adds to today's spend, counts the file
  spend         → today's total (resets automatically when the date changes)

Model pricing catalogue (USD per 1 000 tokens):
  All prices are public list prices. Update MODEL_PRICING when rates change.

Cost accuracy:
  The token counts used here are ESTIMATED (4 chars ≈ 1 token) from the
  prompt text, not read back from the API response. They are good enough
  for budget gating; they are not billing-grade.

The tracker is in-process only: each process enforces its own budget.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from decimal import Decimal
from typing import Callable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pricing catalogue (public list prices, USD per 1K tokens)
# ---------------------------------------------------------------------------

# (input_price_per_1k, output_price_per_1k)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4":         (0.0300,  0.0600),
    "gpt-4o":        (0.0050,  0.0150),
    "gpt-4o-mini":   (0.00015, 0.0006),
    "gpt-4-turbo":   (0.0100,  0.0300),
    "gpt-3.5-turbo": (0.0005,  0.0015),
}

_DEFAULT_PRICING = (0.001, 0.002)   # fallback for unknown models

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def compute_cost(model: str, input_tokens: int, output_tokens: int) -> Decimal:
    """
    Compute USD cost for a single LLM call.

    Returns a Decimal (exact arithmetic) so that summing many
    micro-payments does not drift.
    """
    price_in, price_out = MODEL_PRICING.get(model, _DEFAULT_PRICING)
    cost = (input_tokens / 1000.0 * price_in) + (output_tokens / 1000.0 * price_out)
    return Decimal(str(round(cost, 9)))


# ---------------------------------------------------------------------------
# Daily spend
# ---------------------------------------------------------------------------

class DailySpendTracker:
    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today     = today
        self._day       = today()
        self._spend     = Decimal("0")
        self._processed = 0

    def _roll_over(self) -> None:
        current = self._today()
        if current != self._day:
            logger.info(
                "Daily spend reset | previous_day=%s spend=%s files=%d",
                self._day, self._spend, self._processed,
            )
            self._day       = current
            self._spend     = Decimal("0")
            self._processed = 0

    def record(self, cost: Decimal | float) -> None:
        self._roll_over()
        self._spend     += Decimal(str(cost))
        self._processed += 1

    @property
    def spend(self) -> Decimal:
        self._roll_over()
        return self._spend

    @property
    def processed(self) -> int:
        self._roll_over()
        return self._processed

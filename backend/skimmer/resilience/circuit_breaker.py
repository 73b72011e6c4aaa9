"""
Circuit Breaker — Per-Dependency Failure Isolation

Every outbound dependency (metadata store reads, metadata store writes,
webhook delivery, content store) is wrapped in a named breaker so that a
failing collaborator is short-circuited instead of being hammered with
requests that are doomed to time out.

State machine:

    ┌────────┐  failures >= threshold   ┌────────┐
    │ CLOSED │ ───────────────────────► │  OPEN  │ ◄──────────────┐
    └────────┘                          └────────┘                │
        ▲                                    │ recovery_timeout   │ trial fails
        │ trial succeeds                     ▼ elapsed            │
        │                              ┌───────────┐              │
        └───────────────────────────── │ HALF_OPEN │ ─────────────┘
                                       └───────────┘
                                   (exactly one trial call)

Fallback contract:
  execute(operation, fallback) returns fallback() whenever the breaker
  rejects the call OR the operation raises. Without a fallback a rejected
  call raises CircuitOpenError and a failing call re-raises the original
  exception.

Failure window:
  Consecutive failures only accumulate while they are no more than
  monitoring_window apart; an isolated failure long after the previous one
  starts the count again from one.

The registry is process-wide and owned by the application root. All state
lives in memory, so a breaker resets whenever the process is recycled.
"""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from skimmer.core.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class CircuitState(str, Enum):
    CLOSED    = "CLOSED"
    OPEN      = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int   = 5
    recovery_timeout:  float = 60.0     # seconds OPEN before a trial is allowed
    monitoring_window: float = 300.0    # max gap between counted failures


@dataclass
class CircuitBreakerState:
    failures:          int          = 0
    last_failure_time: float | None = None
    state:             CircuitState = CircuitState.CLOSED
    next_attempt_time: float | None = None


# ---------------------------------------------------------------------------
# CircuitBreaker
# ---------------------------------------------------------------------------

class CircuitBreaker:
    """
    A single named breaker.

    Usage::

        breaker = CircuitBreaker("metadata-store-read")
        meta = await breaker.execute(
            lambda: client.get(f"/files/{file_id}"),
            fallback=lambda: {"fileId": file_id, "fallback": True},
        )
    """

    def __init__(
        self,
        name:   str,
        config: CircuitBreakerConfig | None = None,
        clock:  Clock = time.monotonic,
    ) -> None:
        self.name    = name
        self.config  = config or CircuitBreakerConfig()
        self._clock  = clock
        self._state  = CircuitBreakerState()
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state.state

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback:  Callable[[], Any] | None = None,
    ) -> T:
        if self._should_reject():
            logger.warning(
                "Circuit breaker rejected call | breaker=%s state=%s fallback=%s",
                self.name, self._state.state.value, fallback is not None,
            )
            if fallback is not None:
                return await _resolve(fallback)
            raise CircuitOpenError(self.name)

        is_trial = self._state.state is CircuitState.HALF_OPEN
        try:
            result = await operation()
        except Exception as exc:
            self._on_failure()
            if fallback is not None:
                logger.warning(
                    "Circuit breaker fallback | breaker=%s error=%s", self.name, exc,
                )
                return await _resolve(fallback)
            raise
        finally:
            # A cancelled trial must not leave the breaker waiting forever.
            if is_trial and self._state.state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False

        self._on_success()
        return result

    # -----------------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------------

    def _should_reject(self) -> bool:
        if self._state.state is CircuitState.OPEN:
            next_attempt = self._state.next_attempt_time or 0.0
            if self._clock() < next_attempt:
                return True
            self._state.state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info("Circuit breaker half-open | breaker=%s", self.name)

        if self._state.state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                return True
            self._trial_in_flight = True

        return False

    def _on_success(self) -> None:
        if self._state.state is not CircuitState.CLOSED:
            logger.info("Circuit breaker closed | breaker=%s", self.name)
        self._state.failures          = 0
        self._state.state             = CircuitState.CLOSED
        self._state.next_attempt_time = None
        self._trial_in_flight         = False

    def _on_failure(self) -> None:
        now = self._clock()
        last = self._state.last_failure_time
        if (
            self._state.state is CircuitState.CLOSED
            and last is not None
            and now - last > self.config.monitoring_window
        ):
            self._state.failures = 0

        self._state.failures         += 1
        self._state.last_failure_time = now

        if (
            self._state.state is CircuitState.HALF_OPEN
            or self._state.failures >= self.config.failure_threshold
        ):
            self._state.state             = CircuitState.OPEN
            self._state.next_attempt_time = now + self.config.recovery_timeout
            self._trial_in_flight         = False
            logger.warning(
                "Circuit breaker opened | breaker=%s failures=%d retry_in=%.0fs",
                self.name, self._state.failures, self.config.recovery_timeout,
            )

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        status = asdict(self._state)
        status["state"] = self._state.state.value
        status["name"]  = self.name
        return status

    def reset(self) -> None:
        self._state = CircuitBreakerState()
        self._trial_in_flight = False
        logger.info("Circuit breaker reset | breaker=%s", self.name)


async def _resolve(fallback: Callable[[], Any]) -> Any:
    value = fallback()
    if inspect.isawaitable(value):
        value = await value
    return value


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class CircuitBreakerRegistry:
    """Keyed collection of breakers; a breaker is created on first use."""

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock:          Clock = time.monotonic,
    ) -> None:
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock    = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config or self._default_config, clock=self._clock)
            self._breakers[name] = breaker
        return breaker

    def all_status(self) -> dict[str, dict[str, Any]]:
        return {name: b.get_status() for name, b in self._breakers.items()}

    def open_breakers(self) -> list[str]:
        return [
            name for name, b in self._breakers.items()
            if b.state is CircuitState.OPEN
        ]

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

"""Circuit breaker: isolates providers that keep failing.

State machine:
    CLOSED    → (N failures)                  → OPEN
    OPEN      → (reset timeout, next call)    → HALF_OPEN
    HALF_OPEN → (M consecutive successes)     → CLOSED
    HALF_OPEN → (any failure)                 → OPEN

Breakers are per provider, never per credential.  Credential exhaustion
belongs to the key manager.
"""

from __future__ import annotations

import asyncio
import enum
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from insight_core.domain.exceptions import CircuitOpenError, OperationCancelledError
from insight_core.shared.observability.metrics import CIRCUIT_REJECTIONS

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_s: float = 60.0
    half_open_max_attempts: int = 2


@dataclass(frozen=True)
class CircuitSnapshot:
    provider: str
    state: CircuitState
    failures: int
    last_failure_time: float


class CircuitBreaker:
    """Per-provider circuit breaker with lazy half-open probing."""

    def __init__(
        self,
        provider: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._half_open_successes = 0
        self._last_failure_time: float = 0.0
        self._lock = threading.Lock()

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the breaker.

        Raises ``CircuitOpenError`` without calling ``fn`` while open.
        Cancellation passes through without touching the counters.
        """
        self._before_call()
        try:
            result = await fn()
        except (asyncio.CancelledError, OperationCancelledError):
            logger.debug("circuit_breaker_call_cancelled", provider=self._provider)
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self._config.half_open_max_attempts:
                    self._state = CircuitState.CLOSED
                    self._failures = 0
                    self._half_open_successes = 0
                    logger.info("circuit_breaker_closed", provider=self._provider)
            else:
                self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._half_open_successes = 0
                logger.warning(
                    "circuit_breaker_reopened",
                    provider=self._provider,
                    failures=self._failures,
                )
            elif (
                self._state == CircuitState.CLOSED
                and self._failures >= self._config.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    "circuit_breaker_opened",
                    provider=self._provider,
                    failures=self._failures,
                    reset_timeout_s=self._config.reset_timeout_s,
                )

    def reset(self) -> None:
        """Force-reset the circuit to CLOSED (for admin override)."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._half_open_successes = 0
            logger.info("circuit_breaker_force_reset", provider=self._provider)

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            return CircuitSnapshot(
                provider=self._provider,
                state=self._state,
                failures=self._failures,
                last_failure_time=self._last_failure_time,
            )

    def _before_call(self) -> None:
        with self._lock:
            if self._state != CircuitState.OPEN:
                return
            elapsed = self._clock() - self._last_failure_time
            if elapsed < self._config.reset_timeout_s:
                CIRCUIT_REJECTIONS.labels(provider=self._provider).inc()
                raise CircuitOpenError(self._provider)
            self._state = CircuitState.HALF_OPEN
            self._half_open_successes = 0
            logger.info(
                "circuit_breaker_half_open",
                provider=self._provider,
                elapsed_s=round(elapsed, 1),
            )


# Hugging Face's free inference tier recovers slowly.
DEFAULT_BREAKER_OVERRIDES: dict[str, CircuitBreakerConfig] = {
    "huggingface": CircuitBreakerConfig(failure_threshold=3, reset_timeout_s=120.0),
}


class CircuitBreakerRegistry:
    """Lazily creates one breaker per provider."""

    def __init__(
        self,
        default: CircuitBreakerConfig | None = None,
        overrides: dict[str, CircuitBreakerConfig] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default = default or CircuitBreakerConfig()
        self._overrides = (
            dict(DEFAULT_BREAKER_OVERRIDES) if overrides is None else dict(overrides)
        )
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, provider: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                breaker = CircuitBreaker(
                    provider,
                    self._overrides.get(provider, self._default),
                    clock=self._clock,
                )
                self._breakers[provider] = breaker
            return breaker

    def snapshots(self) -> list[CircuitSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.snapshot() for b in breakers]

    def reset(self, provider: str) -> None:
        with self._lock:
            breaker = self._breakers.get(provider)
        if breaker is not None:
            breaker.reset()

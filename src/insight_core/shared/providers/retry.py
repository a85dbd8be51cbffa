"""Bounded retry with exponential backoff and jitter.

Provider-agnostic: the policy only looks at ``status_code`` and
``retry_after`` attributes on the raised error.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from insight_core.domain.exceptions import OperationCancelledError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RetryHook = Callable[[int, Exception, float], None]


def _status_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )

    def is_retryable(self, exc: BaseException) -> bool:
        # Task cancellation is a BaseException and never retried
        if not isinstance(exc, Exception) or isinstance(exc, OperationCancelledError):
            return False
        status = _status_of(exc)
        return status is None or status in self.retryable_status_codes

    def delay_for(self, attempt: int, exc: BaseException | None = None) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is 0-based)."""
        delay = min(
            self.base_delay_s * (2 ** attempt) + random.random() * self.base_delay_s,
            self.max_delay_s,
        )
        retry_after = getattr(exc, "retry_after", None) if exc is not None else None
        if isinstance(retry_after, (int, float)) and retry_after > 0:
            delay = max(delay, float(retry_after))
        return delay

    def _wait(self, state: RetryCallState) -> float:
        exc = state.outcome.exception() if state.outcome is not None else None
        return self.delay_for(state.attempt_number - 1, exc)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        on_retry: RetryHook | None = None,
    ) -> T:
        """Call ``fn`` until it succeeds, a non-retryable error, or the cap.

        ``on_retry(attempt, exc, delay)`` runs before each backoff sleep.
        """

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome is not None else None
            delay = state.next_action.sleep if state.next_action is not None else 0.0
            if on_retry is not None and isinstance(exc, Exception):
                on_retry(state.attempt_number, exc, delay)
            logger.debug(
                "retry_scheduled",
                attempt=state.attempt_number,
                max_retries=self.max_retries,
                delay_s=round(delay, 3),
                error=f"{type(exc).__name__}: {exc}",
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(self.is_retryable),
            before_sleep=_before_sleep,
            reraise=True,
        )
        return await retrying(fn)

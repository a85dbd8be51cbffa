"""Resilient caller: the single entry-point for provider calls.

Composes the use-case router, key manager, circuit breakers and retry
policy.  Features hand in a generation function and the caller handles
credential selection, failure isolation, retries, and sequential fallback
across the provider chain.

Providers are tried one at a time so a single logical request never burns
quota on several providers at once.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

import structlog

from insight_core.domain.exceptions import (
    AllProvidersExhaustedError,
    CircuitOpenError,
    OperationCancelledError,
)
from insight_core.shared.observability.metrics import (
    AI_CALL_LATENCY,
    AI_CALLS_TOTAL,
    AI_EXHAUSTED_TOTAL,
    AI_FALLBACKS_TOTAL,
    AI_STREAM_FALLBACKS_TOTAL,
    AI_TOKENS_TOTAL,
)
from insight_core.shared.providers.cancellation import CancellationToken
from insight_core.shared.providers.circuit_breaker import CircuitBreakerRegistry
from insight_core.shared.providers.key_manager import KeyManager, ProviderCredential
from insight_core.shared.providers.retry import RetryPolicy
from insight_core.shared.providers.router import UseCase, get_route, provider_chain
from insight_core.shared.providers.types import GenerateOptions

if TYPE_CHECKING:
    from insight_core.ports.outbound import LLMProvider

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ProviderFactory = Callable[[ProviderCredential], "LLMProvider"]
ChunkHandler = Callable[[str], "Awaitable[None] | None"]

_END = object()


@dataclass(frozen=True)
class StreamResult:
    """Outcome of ``stream_call``.

    ``synthetic`` is true when every streaming attempt failed and the
    answer was delivered as one chunk from a one-shot call.
    """

    provider_used: str
    synthetic: bool = False
    attempts: int = 1


class ResilientCaller:
    """Router + key manager + breaker + retry, with full fallback traversal.

    Usage::

        caller = ResilientCaller(key_manager, provider_factory)

        text = await caller.call(
            UseCase.DIGEST,
            lambda provider: provider.generate_text(prompt, options),
        )
    """

    def __init__(
        self,
        key_manager: KeyManager,
        provider_factory: ProviderFactory,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        primary_retry: RetryPolicy | None = None,
        fallback_retry: RetryPolicy | None = None,
        attempt_timeout_s: float | None = None,
    ) -> None:
        self._keys = key_manager
        self._factory = provider_factory
        self._breakers = breakers or CircuitBreakerRegistry()
        self._primary_retry = primary_retry or RetryPolicy(max_retries=2)
        self._fallback_retry = fallback_retry or RetryPolicy(max_retries=1)
        self._attempt_timeout = attempt_timeout_s

    @property
    def key_manager(self) -> KeyManager:
        return self._keys

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    def options_for(
        self, use_case: UseCase | str, options: GenerateOptions | None = None
    ) -> GenerateOptions:
        """Fill in the route's temperature when the caller left it unset."""
        route = get_route(use_case)
        return (options or GenerateOptions()).with_defaults(temperature=route.temperature)

    # ── One-shot ─────────────────────────────────────────────
    async def call(
        self,
        use_case: UseCase | str,
        generate_fn: Callable[[LLMProvider], Awaitable[T]],
    ) -> T:
        """Run ``generate_fn`` against the first provider that succeeds.

        Raises:
            AllProvidersExhaustedError: If every provider in the chain
                failed or had no usable credential.
        """
        result, _ = await self._call_with_provider(UseCase(use_case), generate_fn)
        return result

    async def _call_with_provider(
        self,
        use_case: UseCase,
        generate_fn: Callable[[LLMProvider], Awaitable[T]],
    ) -> tuple[T, str]:
        errors: dict[str, str] = {}
        first_usable: str | None = None

        for name in provider_chain(use_case):
            credential = self._keys.acquire(name)
            if credential is None:
                errors[name] = "no_key_available"
                continue

            if first_usable is None:
                first_usable = name
                policy = self._primary_retry
            else:
                policy = self._fallback_retry

            provider = self._factory(credential)
            log = logger.bind(
                use_case=use_case.value, provider=name, key=credential.fingerprint
            )

            def _on_retry(attempt: int, exc: Exception, delay: float) -> None:
                self._keys.record_request(credential)
                log.warning(
                    "provider_retry",
                    attempt=attempt,
                    delay_s=round(delay, 3),
                    error=f"{type(exc).__name__}: {exc}",
                )

            async def _attempt() -> T:
                return await self._bounded(generate_fn(provider))

            tokens_before = provider.tokens_used
            start = time.monotonic()
            try:
                result = await self._breakers.get(name).execute(
                    lambda: policy.run(_attempt, on_retry=_on_retry)
                )
            except OperationCancelledError:
                log.info("provider_call_cancelled")
                raise
            except CircuitOpenError:
                self._keys.release(credential)
                errors[name] = "circuit_open"
                AI_CALLS_TOTAL.labels(use_case.value, name, "circuit_open").inc()
                log.info("provider_skipped_circuit_open")
                continue
            except Exception as exc:
                latency = time.monotonic() - start
                error_msg = f"{type(exc).__name__}: {exc}"
                errors[name] = error_msg
                self._keys.record_failure(credential, getattr(exc, "status_code", None))
                AI_CALLS_TOTAL.labels(use_case.value, name, "failure").inc()
                AI_CALL_LATENCY.labels(use_case.value, name).observe(latency)
                log.warning(
                    "provider_request_failed",
                    error=error_msg,
                    latency_ms=round(latency * 1000, 1),
                )
                continue

            latency = time.monotonic() - start
            self._record_success(use_case, credential, provider.tokens_used - tokens_before)
            AI_CALLS_TOTAL.labels(use_case.value, name, "success").inc()
            AI_CALL_LATENCY.labels(use_case.value, name).observe(latency)
            if name != first_usable:
                AI_FALLBACKS_TOTAL.labels(use_case.value, name).inc()
                log.info(
                    "provider_failover_success",
                    failed_providers=[p for p in errors if errors[p] != "no_key_available"],
                )
            log.info("provider_request_success", latency_ms=round(latency * 1000, 1))
            return result, name

        AI_EXHAUSTED_TOTAL.labels(use_case.value).inc()
        logger.error("all_providers_exhausted", use_case=use_case.value, errors=errors)
        raise AllProvidersExhaustedError(use_case.value, errors)

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        if self._attempt_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._attempt_timeout)

    def _record_success(
        self, use_case: UseCase, credential: ProviderCredential, tokens: int
    ) -> None:
        self._keys.record_success(credential, tokens)
        if tokens > 0:
            AI_TOKENS_TOTAL.labels(use_case.value, credential.provider).inc(tokens)

    # ── Streaming ────────────────────────────────────────────
    async def stream_call(
        self,
        use_case: UseCase | str,
        prompt: str,
        options: GenerateOptions | None,
        on_chunk: ChunkHandler,
        *,
        cancel_token: CancellationToken | None = None,
        on_restart: Callable[[str], Any] | None = None,
    ) -> StreamResult:
        """Stream an answer, falling back to a one-shot call if needed.

        Phase 1 walks the provider chain streaming chunks to ``on_chunk``.
        A provider that raises mid-stream counts as a failure and the next
        provider starts over; ``on_restart`` is told which provider was
        abandoned when chunks had already been delivered.  Phase 2, reached
        only when every streaming attempt failed, delivers a one-shot
        answer as a single chunk.

        Every wait on a provider, in both phases, is raced against
        ``cancel_token``.  Cancelling it (or the surrounding task) closes
        the provider stream and records nothing against breaker or
        credential.
        """
        use_case = UseCase(use_case)
        options = self.options_for(use_case, options)
        errors: dict[str, str] = {}
        attempts = 0

        for name in provider_chain(use_case):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            credential = self._keys.acquire(name)
            if credential is None:
                continue

            attempts += 1
            provider = self._factory(credential)
            log = logger.bind(
                use_case=use_case.value, provider=name, key=credential.fingerprint
            )
            tokens_before = provider.tokens_used
            delivered = 0

            async def _consume() -> None:
                nonlocal delivered
                async with aclosing(provider.generate_stream(prompt, options)) as stream:
                    while True:
                        chunk = await _until_cancelled(
                            cancel_token, lambda: anext(stream, _END)
                        )
                        if chunk is _END:
                            return
                        await _deliver(on_chunk, chunk)
                        delivered += 1

            try:
                await self._breakers.get(name).execute(_consume)
            except OperationCancelledError:
                log.info("stream_cancelled", chunks_delivered=delivered)
                raise
            except asyncio.CancelledError:
                log.info("stream_task_cancelled", chunks_delivered=delivered)
                raise
            except CircuitOpenError:
                self._keys.release(credential)
                errors[name] = "circuit_open"
                AI_CALLS_TOTAL.labels(use_case.value, name, "circuit_open").inc()
                continue
            except Exception as exc:
                errors[name] = f"{type(exc).__name__}: {exc}"
                self._keys.record_failure(credential, getattr(exc, "status_code", None))
                AI_CALLS_TOTAL.labels(use_case.value, name, "stream_failure").inc()
                log.warning(
                    "provider_stream_failed",
                    error=errors[name],
                    chunks_delivered=delivered,
                )
                if delivered and on_restart is not None:
                    on_restart(name)
                continue

            self._record_success(use_case, credential, provider.tokens_used - tokens_before)
            AI_CALLS_TOTAL.labels(use_case.value, name, "stream_success").inc()
            log.info("provider_stream_success", chunks=delivered)
            return StreamResult(provider_used=name, synthetic=False, attempts=attempts)

        AI_STREAM_FALLBACKS_TOTAL.labels(use_case.value).inc()
        logger.warning(
            "stream_fallback_to_one_shot", use_case=use_case.value, errors=errors
        )
        try:
            text, provider_used = await _until_cancelled(
                cancel_token,
                lambda: self._call_with_provider(
                    use_case, lambda p: p.generate_text(prompt, options)
                ),
            )
        except OperationCancelledError:
            logger.info("one_shot_fallback_cancelled", use_case=use_case.value)
            raise
        await _deliver(on_chunk, text)
        return StreamResult(provider_used=provider_used, synthetic=True, attempts=attempts + 1)


async def _until_cancelled(
    token: CancellationToken | None, fn: Callable[[], Awaitable[T]]
) -> T:
    if token is None:
        return await fn()
    return await token.guard(fn)


async def _deliver(handler: ChunkHandler, chunk: str) -> None:
    result = handler(chunk)
    if inspect.isawaitable(result):
        await result

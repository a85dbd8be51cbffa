"""Exception hierarchy for the generation core.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.  Only
``AllProvidersExhaustedError`` is meant to escape the resilient caller;
everything else is absorbed and logged per provider.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all generation-core errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class ConfigurationError(DomainError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR")


# ── Provider calls ───────────────────────────────────────────
class ProviderError(DomainError):
    """A single provider/credential call failed.

    ``status_code`` and ``retry_after`` (seconds) are read by the retry
    policy and the key manager's cooldown logic.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(f"[{provider}] {message}", code="PROVIDER_ERROR")


class CircuitOpenError(DomainError):
    """The breaker short-circuited a call without attempting it."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(
            f"Circuit breaker is open for {provider!r}; provider temporarily unavailable",
            code="CIRCUIT_OPEN",
        )


class AllProvidersExhaustedError(DomainError):
    """Every provider in the routing chain failed or had no credential."""

    def __init__(self, use_case: str, errors: dict[str, str] | None = None) -> None:
        self.use_case = use_case
        self.errors = dict(errors or {})
        super().__init__(
            f"All AI providers exhausted for use case: {use_case}",
            code="ALL_PROVIDERS_EXHAUSTED",
        )


class OperationCancelledError(DomainError):
    """A consumer abandoned an in-flight generation."""

    def __init__(self, message: str = "Operation cancelled by consumer") -> None:
        super().__init__(message, code="OPERATION_CANCELLED")

"""Multi-provider resilience framework.

Provides credential rotation, failover, circuit breaking, retries, and
use-case routing for language-model providers.
"""

from insight_core.shared.providers.cancellation import CancellationToken
from insight_core.shared.providers.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from insight_core.shared.providers.gateway import ResilientCaller, StreamResult
from insight_core.shared.providers.key_manager import KeyManager, ProviderCredential
from insight_core.shared.providers.retry import RetryPolicy
from insight_core.shared.providers.router import (
    ROUTING_TABLE,
    UseCase,
    UseCaseRoute,
    provider_chain,
    select_provider,
)
from insight_core.shared.providers.types import (
    GenerateOptions,
    JsonResult,
    Parsed,
    ProviderName,
    Unparsed,
)

__all__ = [
    "CancellationToken",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "GenerateOptions",
    "JsonResult",
    "KeyManager",
    "Parsed",
    "ProviderCredential",
    "ProviderName",
    "ROUTING_TABLE",
    "ResilientCaller",
    "RetryPolicy",
    "StreamResult",
    "Unparsed",
    "UseCase",
    "UseCaseRoute",
    "provider_chain",
    "select_provider",
]

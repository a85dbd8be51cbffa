"""Use-case router: static provider preference per feature.

Gemini: best JSON schema enforcement, cheapest batch work.
Groq/Cerebras: fastest inference, real-time chat.
xAI: strong reasoning, smart fallback.
Mistral: reliable quality, batch fallback.
OpenRouter: routes to the best free model, ultimate fallback.
Hugging Face: slowest, emergency only.

Everything here is data plus pure functions over it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol

from insight_core.shared.providers.key_manager import ProviderCredential


class UseCase(str, enum.Enum):
    BATCH_INSIGHT = "batch_insight"
    COMPARISON = "comparison"
    CHAT = "chat"
    DIGEST = "digest"
    ANOMALY_EXPLAIN = "anomaly_explain"
    RECOMMENDATION = "recommendation"
    PROJECT_IDEAS = "project_ideas"


@dataclass(frozen=True)
class UseCaseRoute:
    use_case: UseCase
    preferred_provider: str
    fallback_order: tuple[str, ...]
    max_latency_ms: int
    temperature: float


@dataclass(frozen=True)
class RouteSelection:
    provider: str
    credential: ProviderCredential


class KeySource(Protocol):
    def get_key(self, provider: str) -> ProviderCredential | None: ...


ROUTING_TABLE: dict[UseCase, UseCaseRoute] = {
    UseCase.BATCH_INSIGHT: UseCaseRoute(
        UseCase.BATCH_INSIGHT,
        preferred_provider="gemini",
        fallback_order=("mistral", "xai", "openrouter", "groq", "huggingface"),
        max_latency_ms=5000,
        temperature=0.3,
    ),
    UseCase.COMPARISON: UseCaseRoute(
        UseCase.COMPARISON,
        preferred_provider="gemini",
        fallback_order=("xai", "mistral", "openrouter", "groq", "huggingface"),
        max_latency_ms=5000,
        temperature=0.3,
    ),
    UseCase.CHAT: UseCaseRoute(
        UseCase.CHAT,
        preferred_provider="groq",
        fallback_order=("cerebras", "xai", "gemini", "openrouter", "mistral", "huggingface"),
        max_latency_ms=2000,
        temperature=0.5,
    ),
    UseCase.DIGEST: UseCaseRoute(
        UseCase.DIGEST,
        preferred_provider="gemini",
        fallback_order=("xai", "mistral", "openrouter"),
        max_latency_ms=15000,
        temperature=0.4,
    ),
    UseCase.ANOMALY_EXPLAIN: UseCaseRoute(
        UseCase.ANOMALY_EXPLAIN,
        preferred_provider="gemini",
        fallback_order=("xai", "groq", "cerebras", "mistral", "openrouter"),
        max_latency_ms=3000,
        temperature=0.3,
    ),
    UseCase.RECOMMENDATION: UseCaseRoute(
        UseCase.RECOMMENDATION,
        preferred_provider="gemini",
        fallback_order=("xai", "mistral", "openrouter", "groq"),
        max_latency_ms=5000,
        temperature=0.4,
    ),
    UseCase.PROJECT_IDEAS: UseCaseRoute(
        UseCase.PROJECT_IDEAS,
        preferred_provider="gemini",
        fallback_order=("xai", "mistral", "openrouter", "groq"),
        max_latency_ms=8000,
        temperature=0.7,
    ),
}


def get_route(use_case: UseCase | str) -> UseCaseRoute:
    return ROUTING_TABLE[UseCase(use_case)]


def provider_chain(use_case: UseCase | str) -> list[str]:
    """Preferred provider followed by fallbacks, each at most once."""
    route = get_route(use_case)
    chain: list[str] = []
    for name in (route.preferred_provider, *route.fallback_order):
        if name not in chain:
            chain.append(name)
    return chain


def select_provider(use_case: UseCase | str, keys: KeySource) -> RouteSelection | None:
    """First provider in the chain that has a usable credential."""
    for name in provider_chain(use_case):
        credential = keys.get_key(name)
        if credential is not None:
            return RouteSelection(provider=name, credential=credential)
    return None

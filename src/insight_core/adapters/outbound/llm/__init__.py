"""LLM provider adapters and the credential → provider factory.

Each adapter is a thin HTTP client.  The resilient caller handles
rotation, failover, circuit breaking and retries.
"""

from __future__ import annotations

from typing import Callable

import httpx

from insight_core.adapters.outbound.llm.gemini import GeminiProvider
from insight_core.adapters.outbound.llm.openai_compatible import (
    CerebrasProvider,
    GroqProvider,
    HuggingFaceProvider,
    MistralProvider,
    OpenAICompatibleProvider,
    OpenRouterProvider,
    XAIProvider,
)
from insight_core.domain.exceptions import ConfigurationError
from insight_core.ports.outbound import LLMProvider
from insight_core.shared.providers.key_manager import ProviderCredential

_OPENAI_COMPATIBLE: dict[str, type[OpenAICompatibleProvider]] = {
    "groq": GroqProvider,
    "xai": XAIProvider,
    "mistral": MistralProvider,
    "cerebras": CerebrasProvider,
    "openrouter": OpenRouterProvider,
    "huggingface": HuggingFaceProvider,
}


def create_provider(credential: ProviderCredential, client: httpx.AsyncClient) -> LLMProvider:
    """Instantiate the adapter for ``credential.provider``."""
    if credential.provider == "gemini":
        return GeminiProvider(credential.key, credential.model, client=client)
    cls = _OPENAI_COMPATIBLE.get(credential.provider)
    if cls is None:
        raise ConfigurationError(f"Unknown provider: {credential.provider!r}")
    return cls(credential.key, credential.model, client=client)


def provider_factory(client: httpx.AsyncClient) -> Callable[[ProviderCredential], LLMProvider]:
    """Bind a shared HTTP client for use as a ``ResilientCaller`` factory."""

    def _factory(credential: ProviderCredential) -> LLMProvider:
        return create_provider(credential, client)

    return _factory


__all__ = [
    "CerebrasProvider",
    "GeminiProvider",
    "GroqProvider",
    "HuggingFaceProvider",
    "MistralProvider",
    "OpenAICompatibleProvider",
    "OpenRouterProvider",
    "XAIProvider",
    "create_provider",
    "provider_factory",
]

"""Insight Core application configuration."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from insight_core.adapters.outbound.llm import provider_factory
from insight_core.shared.providers.circuit_breaker import (
    DEFAULT_BREAKER_OVERRIDES,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from insight_core.shared.providers.gateway import ResilientCaller
from insight_core.shared.providers.key_manager import KeyManager, ProviderCredential
from insight_core.shared.providers.retry import RetryPolicy


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "insight-core"
    app_env: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"
    json_logs: bool = False

    # ── Provider keys (empty = provider disabled) ────────────
    gemini_api_key: str = ""
    gemini_api_key_2: str = ""
    groq_api_key: str = ""
    xai_api_key: str = ""
    mistral_api_key: str = ""
    cerebras_api_key: str = ""
    openrouter_api_key: str = ""
    huggingface_api_key: str = ""

    # ── Provider Resilience ──────────────────────────────────
    # Circuit breaker (Hugging Face keeps its stricter built-in override)
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_reset_timeout_seconds: float = 60.0
    circuit_breaker_half_open_attempts: int = 2

    # Retry
    primary_max_retries: int = 2
    fallback_max_retries: int = 1
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0

    # Gateway settings
    attempt_timeout_seconds: float | None = None
    provider_timeout_seconds: float = 60.0

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("circuit_breaker_failure_threshold", "circuit_breaker_half_open_attempts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode="after")
    def _guard_production_keys(self) -> Settings:
        """Refuse to start production with no provider configured."""
        if self.is_production and not build_credentials(self):
            raise ValueError("at least one provider API key must be set in production")
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)


# ── Provider pool ────────────────────────────────────────────
@dataclass(frozen=True)
class ProviderDefaults:
    model: str
    rpm_limit: int
    tpm_limit: int
    daily_limit: int | None = None


PROVIDER_DEFAULTS: dict[str, ProviderDefaults] = {
    "gemini": ProviderDefaults("gemini-2.0-flash", 15, 1_000_000, 1500),
    "groq": ProviderDefaults("llama-3.3-70b-versatile", 30, 131_000, 14_400),
    "xai": ProviderDefaults("grok-2", 60, 400_000, 100),
    "mistral": ProviderDefaults("mistral-small-latest", 30, 500_000),
    "cerebras": ProviderDefaults("llama-3.3-70b", 30, 1_000_000),
    "openrouter": ProviderDefaults("meta-llama/llama-3.3-70b-instruct:free", 20, 200_000),
    "huggingface": ProviderDefaults("meta-llama/Llama-3.3-70B-Instruct", 10, 100_000),
}

# Settings fields holding keys, per provider
_KEY_FIELDS: dict[str, tuple[str, ...]] = {
    "gemini": ("gemini_api_key", "gemini_api_key_2"),
    "groq": ("groq_api_key",),
    "xai": ("xai_api_key",),
    "mistral": ("mistral_api_key",),
    "cerebras": ("cerebras_api_key",),
    "openrouter": ("openrouter_api_key",),
    "huggingface": ("huggingface_api_key",),
}


def build_credentials(settings: Settings) -> list[ProviderCredential]:
    """One credential per non-empty key, limits from ``PROVIDER_DEFAULTS``."""
    credentials: list[ProviderCredential] = []
    for provider, fields in _KEY_FIELDS.items():
        defaults = PROVIDER_DEFAULTS[provider]
        for field in fields:
            key = getattr(settings, field).strip()
            if not key:
                continue
            credentials.append(
                ProviderCredential(
                    provider=provider,
                    key=key,
                    model=defaults.model,
                    rpm_limit=defaults.rpm_limit,
                    tpm_limit=defaults.tpm_limit,
                    daily_limit=defaults.daily_limit,
                )
            )
    return credentials


def build_caller(settings: Settings, client: httpx.AsyncClient) -> ResilientCaller:
    """Wire key manager, breakers and retry policies from ``settings``."""
    breakers = CircuitBreakerRegistry(
        CircuitBreakerConfig(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            reset_timeout_s=settings.circuit_breaker_reset_timeout_seconds,
            half_open_max_attempts=settings.circuit_breaker_half_open_attempts,
        ),
        DEFAULT_BREAKER_OVERRIDES,
    )
    return ResilientCaller(
        KeyManager(build_credentials(settings)),
        provider_factory(client),
        breakers=breakers,
        primary_retry=RetryPolicy(
            max_retries=settings.primary_max_retries,
            base_delay_s=settings.retry_base_delay_seconds,
            max_delay_s=settings.retry_max_delay_seconds,
        ),
        fallback_retry=RetryPolicy(
            max_retries=settings.fallback_max_retries,
            base_delay_s=settings.retry_base_delay_seconds,
            max_delay_s=settings.retry_max_delay_seconds,
        ),
        attempt_timeout_s=settings.attempt_timeout_seconds,
    )


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.provider_timeout_seconds)

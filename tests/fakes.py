"""Test doubles: fake clock, scripted providers and credential builder."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any, Mapping

from insight_core.ports.outbound import LLMProvider
from insight_core.shared.providers.key_manager import ProviderCredential
from insight_core.shared.providers.types import GenerateOptions, JsonResult, Parsed


class FakeClock:
    """Manually advanced clock; callable like ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(LLMProvider):
    """Scripted provider.

    ``error`` is raised by every call; ``stream_error`` is raised after
    ``chunks`` have been yielded; ``delay`` sleeps before answering;
    ``stall`` hangs a stream after its chunks; ``tokens`` is the usage
    reported per successful call.
    """

    def __init__(
        self,
        name: str,
        *,
        text: str | None = None,
        chunks: tuple[str, ...] | None = None,
        error: Exception | None = None,
        stream_error: Exception | None = None,
        delay: float = 0.0,
        stall: float = 0.0,
        tokens: int = 0,
    ) -> None:
        self.name = name
        self.text = text if text is not None else f"{name}:text"
        self.chunks = chunks if chunks is not None else (f"{name}:", "chunk")
        self.error = error
        self.stream_error = stream_error
        self.delay = delay
        self.stall = stall
        self.tokens = tokens
        self.calls = 0
        self.stream_calls = 0
        self.stream_closed = False

    async def generate_text(self, prompt: str, options: GenerateOptions | None = None) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.record_usage(self.tokens)
        return self.text

    async def generate_json(
        self,
        prompt: str,
        schema: Mapping[str, Any] | None = None,
        options: GenerateOptions | None = None,
    ) -> JsonResult:
        return Parsed({"provider": await self.generate_text(prompt, options)})

    async def generate_stream(
        self, prompt: str, options: GenerateOptions | None = None
    ) -> AsyncIterator[str]:
        self.stream_calls += 1
        if self.error is not None:
            raise self.error
        try:
            for chunk in self.chunks:
                yield chunk
            if self.stall:
                await asyncio.sleep(self.stall)
            if self.stream_error is not None:
                raise self.stream_error
            self.record_usage(self.tokens)
        finally:
            self.stream_closed = True


class FakeProviders:
    """Provider factory keyed by provider name."""

    def __init__(self) -> None:
        self.providers: dict[str, FakeProvider] = {}

    def register(self, name: str, **behaviour: Any) -> FakeProvider:
        provider = FakeProvider(name, **behaviour)
        self.providers[name] = provider
        return provider

    def __call__(self, credential: ProviderCredential) -> FakeProvider:
        if credential.provider not in self.providers:
            self.register(credential.provider)
        return self.providers[credential.provider]


def make_credential(provider: str, key: str | None = None, **overrides: Any) -> ProviderCredential:
    fields: dict[str, Any] = {
        "provider": provider,
        "key": key or f"{provider}-secret-key",
        "model": f"{provider}-model",
        "rpm_limit": 30,
    }
    fields.update(overrides)
    return ProviderCredential(**fields)



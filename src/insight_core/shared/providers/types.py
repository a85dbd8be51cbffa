"""Core types for the multi-provider generation framework."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, replace
from typing import Any, Union


class ProviderName(str, enum.Enum):
    """Supported language-model backends."""

    GEMINI = "gemini"
    GROQ = "groq"
    XAI = "xai"
    MISTRAL = "mistral"
    CEREBRAS = "cerebras"
    OPENROUTER = "openrouter"
    HUGGINGFACE = "huggingface"


@dataclass(frozen=True)
class GenerateOptions:
    """Per-call generation options shared by every provider.

    ``None`` fields fall back to the provider's own defaults.
    """

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None

    def with_defaults(self, *, temperature: float | None = None) -> GenerateOptions:
        if self.temperature is None and temperature is not None:
            return replace(self, temperature=temperature)
        return self


# ── Tagged JSON result ───────────────────────────────────────
@dataclass(frozen=True)
class Parsed:
    """Model output that decoded as JSON."""

    value: Any


@dataclass(frozen=True)
class Unparsed:
    """Model output that could not be decoded; the raw text is kept."""

    raw_text: str


JsonResult = Union[Parsed, Unparsed]


def parse_json_output(text: str) -> JsonResult:
    """Decode model text as JSON, looking inside markdown fences if needed."""
    try:
        return Parsed(json.loads(text))
    except json.JSONDecodeError:
        pass

    for fence in ("```json", "```"):
        if fence not in text:
            continue
        start = text.index(fence) + len(fence)
        end = text.find("```", start)
        if end == -1:
            continue
        try:
            return Parsed(json.loads(text[start:end].strip()))
        except json.JSONDecodeError:
            continue

    return Unparsed(text)

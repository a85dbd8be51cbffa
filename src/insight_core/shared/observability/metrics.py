"""Prometheus metrics for the generation core."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── Provider calls ───────────────────────────────────────────
AI_CALLS_TOTAL = Counter(
    "ai_provider_calls_total",
    "Provider attempts made by the resilient caller",
    ["use_case", "provider", "outcome"],
)

AI_CALL_LATENCY = Histogram(
    "ai_provider_call_latency_seconds",
    "Provider attempt latency",
    ["use_case", "provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

AI_FALLBACKS_TOTAL = Counter(
    "ai_fallbacks_total",
    "Calls answered by a provider other than the first usable one",
    ["use_case", "provider"],
)

AI_EXHAUSTED_TOTAL = Counter(
    "ai_providers_exhausted_total",
    "Calls where every provider in the chain failed",
    ["use_case"],
)

AI_STREAM_FALLBACKS_TOTAL = Counter(
    "ai_stream_fallbacks_total",
    "Streaming calls answered with a single synthetic chunk",
    ["use_case"],
)

AI_TOKENS_TOTAL = Counter(
    "ai_tokens_total",
    "Tokens reported by providers on successful calls",
    ["use_case", "provider"],
)

CIRCUIT_REJECTIONS = Counter(
    "ai_circuit_rejections_total",
    "Calls rejected by an open circuit breaker",
    ["provider"],
)

# ── Quality / cache / safety ─────────────────────────────────
QUALITY_SCORES = Histogram(
    "ai_quality_score",
    "Quality score of generated insights",
    buckets=(20, 40, 60, 70, 80, 90, 100),
)

CACHE_LOOKUPS = Counter(
    "ai_cache_lookups_total",
    "Cached insight lookups by freshness tier",
    ["insight_type", "freshness"],
)

REGENERATIONS_TOTAL = Counter(
    "ai_regenerations_total",
    "Background regenerations by outcome",
    ["insight_type", "outcome"],
)

INPUTS_FLAGGED = Counter(
    "ai_inputs_flagged_total",
    "User inputs flagged by the safety filter",
    ["reason"],
)

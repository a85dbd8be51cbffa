"""Token budget management for LLM prompts.

Context windows are finite: a technology with fifty anomalies and thirty
peers would blow past them.  Every prompt is assembled within a budget that
keeps the most important context.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Mapping, Sequence, TypeVar

T = TypeVar("T")

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n[...truncated for length]"
MIN_TRUNCATED_CHARS = 100


@dataclass(frozen=True)
class PromptSection:
    """A piece of prompt context.

    Priority 1 is mandatory, 2 is important, 3 is optional.
    """

    key: str
    content: str
    priority: Literal[1, 2, 3]


@dataclass(frozen=True)
class TokenBudget:
    target_tokens: int
    max_tokens: int


BUDGETS: dict[str, TokenBudget] = {
    "tech_insight": TokenBudget(target_tokens=4000, max_tokens=8000),
    "comparison": TokenBudget(target_tokens=6000, max_tokens=10000),
    "digest": TokenBudget(target_tokens=8000, max_tokens=15000),
}

DEFAULT_BUDGET = BUDGETS["tech_insight"]


def estimate_tokens(text: str) -> int:
    """Rough token count; real tokenization varies by model."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def build_prompt_within_budget(
    sections: Sequence[PromptSection],
    budget: TokenBudget = DEFAULT_BUDGET,
) -> str:
    """Assemble sections into a prompt that respects ``budget``.

    Priority-1 sections are always included, even past the target.
    Lower priorities are added smallest-first while they fit the target;
    a priority-2 section that overflows is truncated to the space left
    under ``max_tokens`` and marked, and a priority-3 section that does
    not fit is dropped.  Included sections keep their input order.
    """
    order = sorted(
        range(len(sections)),
        key=lambda i: (sections[i].priority, len(sections[i].content)),
    )

    used = 0
    included: dict[int, str] = {}

    for idx in order:
        section = sections[idx]
        tokens = estimate_tokens(section.content)

        if section.priority == 1:
            included[idx] = section.content
            used += tokens
        elif used + tokens <= budget.target_tokens:
            included[idx] = section.content
            used += tokens
        elif section.priority == 2 and used < budget.max_tokens:
            remaining_chars = (budget.max_tokens - used) * CHARS_PER_TOKEN
            if remaining_chars > MIN_TRUNCATED_CHARS:
                included[idx] = section.content[:remaining_chars] + TRUNCATION_MARKER
                used = budget.max_tokens

    return "\n\n".join(included[i] for i in sorted(included))


# ── Truncation helpers ───────────────────────────────────────
def truncate_peers(
    peers: Sequence[Mapping[str, Any]], max_peers: int = 10
) -> list[Mapping[str, Any]]:
    """Keep the top five peers by score plus the top five by |momentum|."""
    if len(peers) <= max_peers:
        return list(peers)

    by_score = sorted(peers, key=lambda p: p["score"], reverse=True)[:5]
    by_momentum = sorted(peers, key=lambda p: abs(p["momentum"]), reverse=True)[:5]

    unique: dict[str, Mapping[str, Any]] = {}
    for peer in (*by_score, *by_momentum):
        unique[peer["name"]] = peer
    return list(unique.values())[:max_peers]


_SEVERITY_ORDER = {"critical": 0, "significant": 1, "notable": 2, "info": 3}


def _detected_at(anomaly: Mapping[str, Any]) -> float:
    value = anomaly["detected_at"]
    if isinstance(value, datetime):
        return value.timestamp()
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()


def truncate_anomalies(
    anomalies: Sequence[Mapping[str, Any]], max_anomalies: int = 5
) -> list[Mapping[str, Any]]:
    """Highest severity first, then most recent."""
    if len(anomalies) <= max_anomalies:
        return list(anomalies)
    ranked = sorted(
        anomalies,
        key=lambda a: (_SEVERITY_ORDER.get(a["severity"], 4), -_detected_at(a)),
    )
    return ranked[:max_anomalies]


def truncate_headlines(
    headlines: Sequence[Mapping[str, Any]], max_headlines: int = 3
) -> list[Mapping[str, Any]]:
    if len(headlines) <= max_headlines:
        return list(headlines)
    return sorted(headlines, key=lambda h: h["points"], reverse=True)[:max_headlines]


def truncate_history(history: Sequence[T], max_entries: int = 30) -> list[T]:
    """Most recent ``max_entries`` items, oldest first."""
    if len(history) <= max_entries:
        return list(history)
    return list(history[-max_entries:])

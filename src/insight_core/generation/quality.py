"""AI output quality monitoring.

Every generated insight is scored before it is cached.  Output scoring
below ``PASS_THRESHOLD`` should be regenerated or served as lower-trust;
this module never raises on low quality.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Mapping

import structlog

from insight_core.shared.observability.metrics import QUALITY_SCORES

logger = structlog.get_logger(__name__)

PASS_THRESHOLD = 60
MIN_LENGTH = 200
MAX_LENGTH = 5000
MIN_CITED_NUMBERS = 4

# Unmatched large numbers tolerated before output counts as hallucinated.
# Heuristic; absorbs formatting noise such as rounding or thousands separators.
HALLUCINATION_TOLERANCE = 2

LOW_CONFIDENCE_GRADES = frozenset({"D", "F"})

CHECK_WEIGHTS: dict[str, int] = {
    "cites_data": 25,
    "mentions_peers": 15,
    "matches_confidence": 15,
    "no_hallucination": 20,
    "has_actionable_advice": 15,
    "appropriate_length": 10,
}

_NUMBER = re.compile(r"\d+[,.]?\d*")
_LARGE_NUMBER = re.compile(r"\b\d{3,}\b")
_ANY_NUMBER = re.compile(r"\b\d+\b")

_PEER_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (
        r"compared to",
        r"vs\.?\s",
        r"more than",
        r"less than",
        r"higher than",
        r"lower than",
        r"#\d+\s+(in|of)",
        r"rank",
        r"ahead of",
        r"behind",
    )
)

_UNCERTAINTY_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (
        r"limited data",
        r"sparse",
        r"preliminary",
        r"uncertain",
        r"may change",
        r"few sources",
        r"short history",
    )
)

_ADVICE_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (
        r"recommend",
        r"should\s+(learn|consider|watch|skip|avoid|invest|wait)",
        r"worth\s+(learning|considering|watching)",
        r"priority",
        r"action",
        r"suggest",
    )
)


@dataclass(frozen=True)
class QualityChecks:
    cites_data: bool
    mentions_peers: bool
    matches_confidence: bool
    no_hallucination: bool
    has_actionable_advice: bool
    appropriate_length: bool


@dataclass(frozen=True)
class QualityResult:
    checks: QualityChecks
    score: int
    passed: bool


def score_checks(checks: QualityChecks) -> int:
    """Weighted sum of the passing checks (0–100)."""
    return sum(CHECK_WEIGHTS[name] for name, ok in asdict(checks).items() if ok)


def _serialize(insight: Mapping[str, Any] | str) -> str:
    if isinstance(insight, str):
        return insight
    return json.dumps(insight, ensure_ascii=False, default=str)


def _suspect_numbers(text: str, input_context: str) -> list[str]:
    known = set(_ANY_NUMBER.findall(input_context))
    return [n for n in _LARGE_NUMBER.findall(text) if int(n) >= 100 and n not in known]


def check_insight_quality(
    insight: Mapping[str, Any] | str,
    input_context: str,
    confidence_grade: str,
) -> QualityResult:
    """Score a generated insight against the prompt context it came from.

    Args:
        insight: The generated insight, structured or raw text.
        input_context: The prompt context, used for the hallucination check.
        confidence_grade: The subject's confidence grade (A–F).
    """
    text = _serialize(insight)

    matches_confidence = True
    if confidence_grade.upper() in LOW_CONFIDENCE_GRADES:
        matches_confidence = any(p.search(text) for p in _UNCERTAINTY_PATTERNS)

    suspects = _suspect_numbers(text, input_context)

    checks = QualityChecks(
        cites_data=len(_NUMBER.findall(text)) >= MIN_CITED_NUMBERS,
        mentions_peers=any(p.search(text) for p in _PEER_PATTERNS),
        matches_confidence=matches_confidence,
        no_hallucination=len(suspects) <= HALLUCINATION_TOLERANCE,
        has_actionable_advice=any(p.search(text) for p in _ADVICE_PATTERNS),
        appropriate_length=MIN_LENGTH <= len(text) <= MAX_LENGTH,
    )
    score = score_checks(checks)
    result = QualityResult(checks=checks, score=score, passed=score >= PASS_THRESHOLD)

    QUALITY_SCORES.observe(score)
    if not result.passed:
        logger.info(
            "insight_quality_failed",
            score=score,
            failed_checks=[k for k, v in asdict(checks).items() if not v],
            suspect_numbers=suspects[:5],
        )
    return result

"""Tests for prompt assembly within token budgets."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from insight_core.generation.token_budget import (
    BUDGETS,
    TRUNCATION_MARKER,
    PromptSection,
    TokenBudget,
    build_prompt_within_budget,
    estimate_tokens,
    truncate_anomalies,
    truncate_headlines,
    truncate_history,
    truncate_peers,
)


# ═══════════════════════════════════════════════════════════════
#  Estimation
# ═══════════════════════════════════════════════════════════════
class TestEstimateTokens:
    def test_four_chars_per_token_rounded_up(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_named_budgets(self) -> None:
        assert BUDGETS["tech_insight"] == TokenBudget(4000, 8000)
        assert BUDGETS["comparison"] == TokenBudget(6000, 10000)
        assert BUDGETS["digest"] == TokenBudget(8000, 15000)


# ═══════════════════════════════════════════════════════════════
#  build_prompt_within_budget
# ═══════════════════════════════════════════════════════════════
class TestBuildPrompt:
    def test_oversized_important_section_is_truncated_near_max(self) -> None:
        mandatory = "x" * 200  # 50 tokens
        important = "y" * 40_000  # 10,000 tokens
        prompt = build_prompt_within_budget(
            [
                PromptSection("core", mandatory, 1),
                PromptSection("peers", important, 2),
            ],
            TokenBudget(target_tokens=4000, max_tokens=8000),
        )

        assert prompt.startswith(mandatory + "\n\n")
        assert prompt.endswith(TRUNCATION_MARKER)
        assert prompt.count("y") == (8000 - 50) * 4
        assert estimate_tokens(prompt) <= 8000 + estimate_tokens(TRUNCATION_MARKER) + 1

    def test_mandatory_sections_ignore_budget(self) -> None:
        huge = "m" * 80_000
        prompt = build_prompt_within_budget(
            [PromptSection("core", huge, 1)], TokenBudget(100, 200)
        )
        assert prompt == huge

    def test_sections_that_fit_are_kept_whole_in_input_order(self) -> None:
        sections = [
            PromptSection("optional", "optional context", 3),
            PromptSection("core", "core facts", 1),
            PromptSection("important", "peer data", 2),
        ]
        prompt = build_prompt_within_budget(sections, TokenBudget(1000, 2000))
        assert prompt == "optional context\n\ncore facts\n\npeer data"

    def test_optional_section_dropped_when_over_target(self) -> None:
        sections = [
            PromptSection("core", "c" * 3_960, 1),  # 990 tokens
            PromptSection("extra", "e" * 400, 3),  # 100 tokens
        ]
        prompt = build_prompt_within_budget(sections, TokenBudget(1000, 2000))
        assert prompt == "c" * 3_960

    def test_smaller_sections_win_within_a_priority(self) -> None:
        sections = [
            PromptSection("big", "B" * 120, 3),  # 30 tokens
            PromptSection("small", "s" * 20, 3),  # 5 tokens
        ]
        prompt = build_prompt_within_budget(sections, TokenBudget(10, 20))
        assert prompt == "s" * 20

    def test_tiny_remainder_drops_instead_of_truncating(self) -> None:
        sections = [
            PromptSection("core", "c" * (7_990 * 4), 1),
            PromptSection("peers", "p" * 4_000, 2),
        ]
        prompt = build_prompt_within_budget(sections, TokenBudget(4000, 8000))
        # 10 tokens left = 40 chars, below the truncation floor
        assert "p" not in prompt
        assert TRUNCATION_MARKER not in prompt

    def test_only_one_important_section_is_truncated(self) -> None:
        sections = [
            PromptSection("a", "a" * 20_000, 2),
            PromptSection("b", "b" * 24_000, 2),
        ]
        prompt = build_prompt_within_budget(sections, TokenBudget(4000, 8000))
        assert prompt.count(TRUNCATION_MARKER) == 1
        assert "b" not in prompt.replace(TRUNCATION_MARKER, "")


# ═══════════════════════════════════════════════════════════════
#  Truncation helpers
# ═══════════════════════════════════════════════════════════════
class TestTruncationHelpers:
    def test_peers_keep_top_score_and_top_momentum(self) -> None:
        peers = [
            {"name": f"tech{i}", "score": i, "momentum": 0.0} for i in range(12)
        ]
        peers.append({"name": "rocket", "score": -1, "momentum": -99.0})
        kept = truncate_peers(peers)

        names = {p["name"] for p in kept}
        assert len(kept) <= 10
        assert {"tech11", "tech10", "tech9", "tech8", "tech7"} <= names
        assert "rocket" in names

    def test_small_peer_lists_untouched(self) -> None:
        peers = [{"name": "go", "score": 1, "momentum": 1}]
        assert truncate_peers(peers) == peers

    def test_anomalies_by_severity_then_recency(self) -> None:
        now = datetime(2026, 1, 10, tzinfo=timezone.utc)
        anomalies = [
            {"id": "old-critical", "severity": "critical", "detected_at": now - timedelta(days=3)},
            {"id": "info", "severity": "info", "detected_at": now},
            {"id": "new-critical", "severity": "critical", "detected_at": now.isoformat()},
            {"id": "notable", "severity": "notable", "detected_at": now},
            {"id": "significant", "severity": "significant", "detected_at": now},
            {"id": "unknown", "severity": "weird", "detected_at": now},
        ]
        kept = truncate_anomalies(anomalies, max_anomalies=4)
        assert [a["id"] for a in kept] == [
            "new-critical",
            "old-critical",
            "significant",
            "notable",
        ]

    def test_headlines_by_points(self) -> None:
        headlines = [{"title": str(p), "points": p} for p in (5, 50, 500, 1)]
        assert [h["points"] for h in truncate_headlines(headlines)] == [500, 50, 5]

    def test_history_keeps_most_recent(self) -> None:
        assert truncate_history(list(range(40))) == list(range(10, 40))
        assert truncate_history([1, 2], max_entries=5) == [1, 2]

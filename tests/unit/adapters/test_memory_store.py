"""Tests for the in-memory InsightStore adapter."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from insight_core.adapters.outbound.persistence import MemoryInsightStore

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


async def _seed(store: MemoryInsightStore) -> None:
    for i, kind in enumerate(("comparison", "comparison", "tech_insight")):
        await store.upsert(
            "ai_insights",
            {"subject_id": f"s{i}", "insight_type": kind, "last_accessed": T0 + timedelta(days=i)},
            conflict_keys=("subject_id", "insight_type"),
        )


class TestMemoryInsightStore:
    @pytest.mark.asyncio
    async def test_upsert_replaces_on_conflict(self, store: MemoryInsightStore) -> None:
        keys = ("subject_id", "insight_type")
        await store.upsert("t", {"subject_id": "a", "insight_type": "x", "v": 1}, conflict_keys=keys)
        await store.upsert("t", {"subject_id": "a", "insight_type": "x", "v": 2}, conflict_keys=keys)
        await store.upsert("t", {"subject_id": "a", "insight_type": "y", "v": 3}, conflict_keys=keys)

        rows = await store.select("t", filters={"subject_id": "a"}, order_by="v")
        assert [r["v"] for r in rows] == [2, 3]

    @pytest.mark.asyncio
    async def test_select_filters_orders_and_limits(self, store: MemoryInsightStore) -> None:
        await _seed(store)
        rows = await store.select(
            "ai_insights",
            filters={"insight_type": "comparison"},
            order_by="last_accessed",
            ascending=False,
            limit=1,
        )
        assert [r["subject_id"] for r in rows] == ["s1"]

    @pytest.mark.asyncio
    async def test_list_filter_matches_members(self, store: MemoryInsightStore) -> None:
        await _seed(store)
        rows = await store.select("ai_insights", filters={"subject_id": ["s0", "s2"]})
        assert {r["subject_id"] for r in rows} == {"s0", "s2"}

    @pytest.mark.asyncio
    async def test_delete_before_cutoff(self, store: MemoryInsightStore) -> None:
        await _seed(store)
        removed = await store.delete(
            "ai_insights",
            filters={"insight_type": "comparison"},
            before={"last_accessed": T0 + timedelta(hours=12)},
        )
        assert removed == 1
        assert await store.count("ai_insights") == 2
        assert await store.count("ai_insights", filters={"insight_type": "comparison"}) == 1

    @pytest.mark.asyncio
    async def test_rows_are_copies(self, store: MemoryInsightStore) -> None:
        await store.upsert("t", {"id": 1, "tags": ["a"]}, conflict_keys=("id",))
        row = (await store.select("t"))[0]
        row["tags"].append("mutated")
        assert (await store.select("t"))[0]["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_unknown_table_is_empty(self, store: MemoryInsightStore) -> None:
        assert await store.select("nope") == []
        assert await store.count("nope") == 0
        assert await store.delete("nope") == 0

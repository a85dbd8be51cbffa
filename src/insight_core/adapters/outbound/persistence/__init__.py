"""In-memory ``InsightStore`` adapter.

Used in tests and single-process deployments; durable backends implement
the same port.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Any, Mapping, Sequence

import structlog

from insight_core.ports.outbound import Filters, InsightStore

logger = structlog.get_logger(__name__)


def _matches(
    row: Mapping[str, Any],
    filters: Filters | None,
    before: Mapping[str, datetime] | None = None,
) -> bool:
    for column, expected in (filters or {}).items():
        value = row.get(column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    for column, cutoff in (before or {}).items():
        value = row.get(column)
        if value is None or not value < cutoff:
            return False
    return True


class MemoryInsightStore(InsightStore):
    """Dict-of-lists store guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        logger.info("insight_store_initialized_memory")

    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        async with self._lock:
            rows = [r for r in self._tables.get(table, []) if _matches(r, filters)]
        if order_by is not None:
            rows.sort(key=lambda r: r.get(order_by), reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(r) for r in rows]

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        conflict_keys: Sequence[str],
    ) -> None:
        new_row = copy.deepcopy(dict(row))
        key = {k: new_row.get(k) for k in conflict_keys}
        async with self._lock:
            rows = self._tables.setdefault(table, [])
            for idx, existing in enumerate(rows):
                if _matches(existing, key):
                    rows[idx] = {**existing, **new_row}
                    return
            rows.append(new_row)

    async def delete(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        before: Mapping[str, datetime] | None = None,
    ) -> int:
        async with self._lock:
            rows = self._tables.get(table, [])
            kept = [r for r in rows if not _matches(r, filters, before)]
            self._tables[table] = kept
            return len(rows) - len(kept)

    async def count(self, table: str, *, filters: Filters | None = None) -> int:
        async with self._lock:
            return sum(1 for r in self._tables.get(table, []) if _matches(r, filters))


__all__ = ["MemoryInsightStore"]

"""Stale cache handling and graceful degradation.

Freshness tiers:
1. FRESH   (< 24h, data hash matches): serve as-is.
2. STALE   (< 72h otherwise): serve, regenerate in the background.
3. EXPIRED (>= 72h): still serve, regenerate in the background.
4. NONE    (never generated): serve the template fallback, queue generation.

Something is always better than nothing: if any prior result exists it is
returned.
"""

from __future__ import annotations

import asyncio
import enum
import hashlib
import inspect
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping

import structlog

from insight_core.generation.quality import QualityResult
from insight_core.ports.outbound import InsightStore
from insight_core.shared.observability.metrics import CACHE_LOOKUPS, REGENERATIONS_TOTAL

logger = structlog.get_logger(__name__)

INSIGHTS_TABLE = "ai_insights"
INSIGHT_KEY = ("subject_id", "insight_type")

FRESH_HOURS = 24.0
STALE_HOURS = 72.0


class CacheFreshness(str, enum.Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"
    NONE = "none"


@dataclass(frozen=True)
class CachedInsight:
    subject_id: str
    insight_type: str
    content: Any
    generated_at: datetime
    input_data_hash: str
    last_accessed: datetime | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "insight_type": self.insight_type,
            "content": self.content,
            "generated_at": self.generated_at,
            "input_data_hash": self.input_data_hash,
            "last_accessed": self.last_accessed or self.generated_at,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CachedInsight:
        return cls(
            subject_id=row["subject_id"],
            insight_type=row["insight_type"],
            content=row["content"],
            generated_at=_as_utc(row["generated_at"]),
            input_data_hash=row["input_data_hash"],
            last_accessed=_as_utc(row["last_accessed"]) if row.get("last_accessed") else None,
        )


@dataclass(frozen=True)
class CacheResult:
    data: Any
    freshness: CacheFreshness
    age_hours: float | None
    should_regenerate: bool


@dataclass(frozen=True)
class ServedInsight:
    content: Any
    freshness: CacheFreshness
    from_template: bool
    regeneration_queued: bool


def _as_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_freshness(
    record: CachedInsight | None,
    current_hash: str,
    now: datetime | None = None,
) -> CacheResult:
    if record is None:
        return CacheResult(None, CacheFreshness.NONE, None, should_regenerate=True)

    now = now or _utcnow()
    age_hours = (now - record.generated_at).total_seconds() / 3600
    hash_matches = record.input_data_hash == current_hash

    if age_hours < FRESH_HOURS and hash_matches:
        return CacheResult(record.content, CacheFreshness.FRESH, age_hours, should_regenerate=False)
    if age_hours < STALE_HOURS:
        return CacheResult(record.content, CacheFreshness.STALE, age_hours, should_regenerate=True)
    return CacheResult(record.content, CacheFreshness.EXPIRED, age_hours, should_regenerate=True)


def compute_data_hash(data: Any) -> str:
    """Change-detection hash of the input data (canonical JSON, SHA-256)."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def comparison_cache_key(slugs: Iterable[str]) -> str:
    """Order-independent subject id for a comparison."""
    return "+".join(sorted(slugs))


# ── Background regeneration ──────────────────────────────────
class RegenerationQueue:
    """Runs background regenerations, at most one per subject and type."""

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(subject_id: str, insight_type: str) -> str:
        return f"{subject_id}:{insight_type}"

    def is_queued(self, subject_id: str, insight_type: str) -> bool:
        with self._lock:
            return self.key(subject_id, insight_type) in self._in_flight

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def queue(
        self,
        subject_id: str,
        insight_type: str,
        regenerate_fn: Callable[[], Awaitable[None]],
    ) -> bool:
        """Schedule ``regenerate_fn`` unless one is already running.

        Must be called from within a running event loop.  Returns whether
        a new regeneration was started.
        """
        key = self.key(subject_id, insight_type)
        with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight[key] = asyncio.create_task(
                self._run(key, insight_type, regenerate_fn), name=f"regenerate:{key}"
            )
        logger.info("regeneration_queued", key=key)
        return True

    async def wait_idle(self) -> None:
        while True:
            with self._lock:
                tasks = list(self._in_flight.values())
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(
        self,
        key: str,
        insight_type: str,
        regenerate_fn: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await regenerate_fn()
            REGENERATIONS_TOTAL.labels(insight_type, "success").inc()
            logger.info("regeneration_completed", key=key)
        except Exception:
            REGENERATIONS_TOTAL.labels(insight_type, "failure").inc()
            logger.exception("regeneration_failed", key=key)
        finally:
            with self._lock:
                self._in_flight.pop(key, None)


# ── Cache facade ─────────────────────────────────────────────
class InsightCache:
    """Freshness-aware reads and quality-gated writes over an ``InsightStore``."""

    def __init__(
        self,
        store: InsightStore,
        queue: RegenerationQueue | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._queue = queue or RegenerationQueue()
        self._clock = clock

    @property
    def queue(self) -> RegenerationQueue:
        return self._queue

    async def get(self, subject_id: str, insight_type: str) -> CachedInsight | None:
        rows = await self._store.select(
            INSIGHTS_TABLE,
            filters={"subject_id": subject_id, "insight_type": insight_type},
            limit=1,
        )
        return CachedInsight.from_row(rows[0]) if rows else None

    async def get_with_freshness(
        self, subject_id: str, insight_type: str, current_hash: str
    ) -> CacheResult:
        record = await self.get(subject_id, insight_type)
        result = classify_freshness(record, current_hash, self._clock())
        CACHE_LOOKUPS.labels(insight_type, result.freshness.value).inc()
        return result

    async def serve(
        self,
        subject_id: str,
        insight_type: str,
        current_hash: str,
        *,
        fallback_fn: Callable[[], Any],
        regenerate_fn: Callable[[], Awaitable[None]],
    ) -> ServedInsight:
        """Return cached content (or the template fallback) without blocking.

        Anything other than a fresh hit queues a background regeneration.
        """
        result = await self.get_with_freshness(subject_id, insight_type, current_hash)

        queued = False
        if result.should_regenerate:
            queued = self._queue.queue(subject_id, insight_type, regenerate_fn)

        if result.freshness is CacheFreshness.NONE:
            content = fallback_fn()
            if inspect.isawaitable(content):
                content = await content
            return ServedInsight(content, result.freshness, True, queued)

        await self.touch(subject_id, insight_type)
        return ServedInsight(result.data, result.freshness, False, queued)

    async def save(self, insight: CachedInsight, quality: QualityResult | None = None) -> bool:
        """Persist ``insight`` unless it failed the quality gate."""
        if quality is not None and not quality.passed:
            logger.warning(
                "insight_not_cached_low_quality",
                subject_id=insight.subject_id,
                insight_type=insight.insight_type,
                score=quality.score,
            )
            return False
        await self._store.upsert(INSIGHTS_TABLE, insight.to_row(), conflict_keys=INSIGHT_KEY)
        return True

    async def touch(self, subject_id: str, insight_type: str) -> None:
        """Bump ``last_accessed`` without rewriting the cached content.

        Only the key columns are written, so a regeneration saved since
        the last read is never overwritten.
        """
        key = {"subject_id": subject_id, "insight_type": insight_type}
        if not await self._store.count(INSIGHTS_TABLE, filters=key):
            return
        await self._store.upsert(
            INSIGHTS_TABLE,
            {**key, "last_accessed": self._clock()},
            conflict_keys=INSIGHT_KEY,
        )

    async def enforce_comparison_cache_limit(
        self, max_cached: int = 500, eviction_days: int = 7
    ) -> int:
        """Evict idle comparisons, then the least recently used over the cap."""
        filters = {"insight_type": "comparison"}
        cutoff = self._clock() - timedelta(days=eviction_days)
        removed = await self._store.delete(
            INSIGHTS_TABLE, filters=filters, before={"last_accessed": cutoff}
        )

        count = await self._store.count(INSIGHTS_TABLE, filters=filters)
        if count > max_cached:
            oldest = await self._store.select(
                INSIGHTS_TABLE,
                filters=filters,
                order_by="last_accessed",
                ascending=True,
                limit=count - max_cached,
            )
            if oldest:
                removed += await self._store.delete(
                    INSIGHTS_TABLE,
                    filters={**filters, "subject_id": [r["subject_id"] for r in oldest]},
                )

        if removed:
            logger.info("comparison_cache_evicted", removed=removed, max_cached=max_cached)
        return removed

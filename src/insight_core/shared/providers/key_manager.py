"""Key manager: rotation, quota windows, and cooldowns for API credentials.

Each credential tracks its own:
- per-minute request/token counters (reset when the wall-clock minute changes)
- daily request counter (reset when the UTC date changes)
- consecutive failures and an escalating cooldown

Windows and cooldowns are checked lazily on selection; there are no timers.
Requests are counted when a credential is acquired, not when it answers.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence

import structlog

if TYPE_CHECKING:
    from insight_core.ports.outbound import InsightStore

logger = structlog.get_logger(__name__)

USAGE_TABLE = "ai_key_usage"

RATE_LIMIT_COOLDOWN_S = 60.0

# (consecutive failures, cooldown seconds), highest rung first
COOLDOWN_LADDER: tuple[tuple[int, float], ...] = (
    (10, 2 * 60 * 60.0),
    (5, 30 * 60.0),
    (3, 5 * 60.0),
)


@dataclass
class ProviderCredential:
    """A rate-limited API key bound to one provider."""

    provider: str
    key: str
    model: str
    rpm_limit: int
    tpm_limit: int = 0
    daily_limit: int | None = None
    failure_threshold: int = 3
    current_rpm: int = 0
    current_tpm: int = 0
    daily_usage: int = 0
    minute_bucket: int = 0
    day_bucket: str = ""
    consecutive_failures: int = 0
    cooldown_until: float | None = None

    @property
    def fingerprint(self) -> str:
        """Stable, non-reversible id for logs and persisted usage."""
        return hashlib.sha256(self.key.encode("utf-8")).hexdigest()[:12]

    @property
    def usage_ratio(self) -> float:
        if self.rpm_limit <= 0:
            return 0.0
        return self.current_rpm / self.rpm_limit

    def __repr__(self) -> str:
        return (
            f"ProviderCredential(provider={self.provider!r}, model={self.model!r}, "
            f"key=…{self.fingerprint})"
        )


def _cooldown_for(failures: int) -> float:
    for rung, seconds in COOLDOWN_LADDER:
        if failures >= rung:
            return seconds
    return COOLDOWN_LADDER[-1][1]


class KeyManager:
    """Selects the least-loaded usable credential for a provider."""

    def __init__(
        self,
        credentials: Sequence[ProviderCredential],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credentials = list(credentials)
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def has_keys(self) -> bool:
        return bool(self._credentials)

    @property
    def providers(self) -> set[str]:
        return {c.provider for c in self._credentials}

    def get_key(self, provider: str) -> ProviderCredential | None:
        """Return the usable credential with the most headroom, or ``None``.

        Selection only; nothing is counted.  Callers about to send a
        request use ``acquire`` instead.
        """
        with self._lock:
            return self._select(provider, self._clock())

    def acquire(self, provider: str) -> ProviderCredential | None:
        """Select a credential and reserve one request on it atomically.

        The reservation counts against the minute and day windows before
        any request goes out, so concurrent callers cannot overrun a key.
        """
        with self._lock:
            now = self._clock()
            credential = self._select(provider, now)
            if credential is not None:
                self._count_request(credential, now)
            return credential

    def record_request(self, credential: ProviderCredential) -> None:
        """Count one more request sent on an acquired credential (a retry)."""
        with self._lock:
            self._count_request(credential, self._clock())

    def release(self, credential: ProviderCredential) -> None:
        """Hand back a reservation for a request that was never sent."""
        with self._lock:
            credential.current_rpm = max(credential.current_rpm - 1, 0)
            credential.daily_usage = max(credential.daily_usage - 1, 0)

    def record_success(self, credential: ProviderCredential, tokens_used: int = 0) -> None:
        with self._lock:
            self._roll_windows(credential, self._clock())
            credential.current_tpm += max(tokens_used, 0)
            credential.consecutive_failures = 0
            credential.cooldown_until = None

    def record_failure(
        self, credential: ProviderCredential, status_code: int | None = None
    ) -> None:
        """Apply the cooldown ladder after a failed attempt.

        429 cools the key down for a minute straight away; other failures
        only start a cooldown once the credential's threshold is reached.
        The request itself was already counted when it was acquired.
        """
        with self._lock:
            now = self._clock()
            credential.consecutive_failures += 1

            if status_code == 429:
                cooldown = RATE_LIMIT_COOLDOWN_S
            elif credential.consecutive_failures >= credential.failure_threshold:
                cooldown = _cooldown_for(credential.consecutive_failures)
            else:
                return

            credential.cooldown_until = now + cooldown
            logger.warning(
                "key_cooldown_started",
                provider=credential.provider,
                key=credential.fingerprint,
                failures=credential.consecutive_failures,
                status_code=status_code,
                cooldown_s=cooldown,
            )

    def stats(self) -> list[dict[str, Any]]:
        """Usage snapshot for monitoring. Never includes key material."""
        with self._lock:
            now = self._clock()
            return [
                {
                    "provider": c.provider,
                    "model": c.model,
                    "key": c.fingerprint,
                    "rpm": c.current_rpm,
                    "rpm_limit": c.rpm_limit,
                    "tpm": c.current_tpm,
                    "tpm_limit": c.tpm_limit,
                    "daily_usage": c.daily_usage,
                    "daily_limit": c.daily_limit,
                    "in_cooldown": c.cooldown_until is not None and now < c.cooldown_until,
                    "consecutive_failures": c.consecutive_failures,
                }
                for c in self._credentials
            ]

    # ── Durable usage ────────────────────────────────────────
    def export_usage(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "provider": c.provider,
                    "key_fingerprint": c.fingerprint,
                    "daily_usage": c.daily_usage,
                    "day_bucket": c.day_bucket,
                    "consecutive_failures": c.consecutive_failures,
                    "cooldown_until": c.cooldown_until,
                }
                for c in self._credentials
            ]

    def restore_usage(self, rows: Iterable[dict[str, Any]]) -> int:
        """Apply persisted counters to matching credentials; returns matches."""
        by_id = {(c.provider, c.fingerprint): c for c in self._credentials}
        restored = 0
        with self._lock:
            for row in rows:
                cred = by_id.get((row.get("provider"), row.get("key_fingerprint")))
                if cred is None:
                    continue
                cred.daily_usage = int(row.get("daily_usage") or 0)
                cred.day_bucket = str(row.get("day_bucket") or "")
                cred.consecutive_failures = int(row.get("consecutive_failures") or 0)
                cred.cooldown_until = row.get("cooldown_until")
                restored += 1
        return restored

    async def save_usage(self, store: InsightStore) -> None:
        for row in self.export_usage():
            await store.upsert(
                USAGE_TABLE, row, conflict_keys=("provider", "key_fingerprint")
            )

    async def load_usage(self, store: InsightStore) -> int:
        rows = await store.select(USAGE_TABLE)
        restored = self.restore_usage(rows)
        logger.info("key_usage_restored", credentials=restored)
        return restored

    # ── Internals (caller holds lock) ────────────────────────
    def _roll_windows(self, c: ProviderCredential, now: float) -> None:
        minute = int(now // 60)
        if c.minute_bucket != minute:
            c.current_rpm = 0
            c.current_tpm = 0
            c.minute_bucket = minute
        today = datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat()
        if c.day_bucket != today:
            c.daily_usage = 0
            c.day_bucket = today

    def _is_available(self, c: ProviderCredential, now: float) -> bool:
        if c.cooldown_until is not None:
            if now < c.cooldown_until:
                return False
            c.cooldown_until = None
        self._roll_windows(c, now)
        if c.daily_limit is not None and c.daily_usage >= c.daily_limit:
            return False
        if c.rpm_limit > 0 and c.current_rpm >= c.rpm_limit:
            return False
        if c.tpm_limit > 0 and c.current_tpm >= c.tpm_limit:
            return False
        return True

    def _select(self, provider: str, now: float) -> ProviderCredential | None:
        eligible = [
            c for c in self._credentials if c.provider == provider and self._is_available(c, now)
        ]
        if not eligible:
            logger.debug("no_key_available", provider=provider)
            return None
        return min(eligible, key=lambda c: c.usage_ratio)

    def _count_request(self, c: ProviderCredential, now: float) -> None:
        self._roll_windows(c, now)
        c.current_rpm += 1
        c.daily_usage += 1

"""Outbound ports: interfaces that infrastructure adapters must implement.

The generation core depends only on these abstractions, never on concrete
HTTP clients or storage drivers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any, Mapping, Sequence

from insight_core.shared.providers.types import GenerateOptions, JsonResult


# ═══════════════════════════════════════════════════════════════
#  Language-model provider port
# ═══════════════════════════════════════════════════════════════
class LLMProvider(ABC):
    """One interchangeable text/JSON/stream generation backend.

    Implementations raise ``ProviderError`` on any failure and add the
    token counts their backend reports to ``tokens_used``.
    """

    name: str
    tokens_used: int = 0

    def record_usage(self, tokens: Any) -> None:
        if isinstance(tokens, int) and tokens > 0:
            self.tokens_used += tokens

    @abstractmethod
    async def generate_text(
        self, prompt: str, options: GenerateOptions | None = None
    ) -> str: ...

    @abstractmethod
    async def generate_json(
        self,
        prompt: str,
        schema: Mapping[str, Any] | None = None,
        options: GenerateOptions | None = None,
    ) -> JsonResult: ...

    @abstractmethod
    def generate_stream(
        self, prompt: str, options: GenerateOptions | None = None
    ) -> AsyncIterator[str]:
        """Yield text chunks; implemented as an async generator."""
        ...


# ═══════════════════════════════════════════════════════════════
#  Persistence port
# ═══════════════════════════════════════════════════════════════
Filters = Mapping[str, Any]


class InsightStore(ABC):
    """Row-oriented external store.

    ``upsert`` merges ``row`` into the existing row matching
    ``conflict_keys``; columns absent from ``row`` keep their values.

    ``filters`` match on equality; a list/tuple/set value matches any of
    its members.  ``before`` matches rows whose column is strictly less
    than the given timestamp.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        conflict_keys: Sequence[str],
    ) -> None: ...

    @abstractmethod
    async def delete(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        before: Mapping[str, datetime] | None = None,
    ) -> int: ...

    @abstractmethod
    async def count(self, table: str, *, filters: Filters | None = None) -> int: ...

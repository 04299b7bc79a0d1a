"""Popular queries — a process-wide tally of executed searches.

Feeds the completion step of the suggestion drop-down with the most
searched queries beginning with the typed prefix. Counts are aggregated
across every identity and never carry who searched. The tally is bounded:
when full, the least searched query is dropped to make room.
"""

import logging
from bisect import insort
from collections import Counter

from bazar_search.config import settings
from bazar_search.indexes.base import prefix_range

logger = logging.getLogger(__name__)


class PopularQueries:
    """(canonical query, kind) → search count, prefix-searchable."""

    def __init__(self, max_entries: int | None = None):
        self.max_entries = max_entries or settings.popular_queries_max
        self._counts: Counter[tuple[str, str]] = Counter()
        self._queries: list[str] = []
        self._kinds: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._counts)

    def record(self, query: str, kind: str):
        if not query:
            return
        key = (query, kind)
        if key not in self._counts:
            if len(self._counts) >= self.max_entries:
                self._evict()
            kinds = self._kinds.get(query)
            if kinds is None:
                kinds = self._kinds[query] = set()
                insort(self._queries, query)
            kinds.add(kind)
        self._counts[key] += 1

    def _evict(self):
        query, kind = min(self._counts, key=lambda k: (self._counts[k], k))
        del self._counts[(query, kind)]
        kinds = self._kinds[query]
        kinds.discard(kind)
        if not kinds:
            del self._kinds[query]
            self._queries.pop(prefix_range(self._queries, query).start)

    async def top(self, prefix_key: str, kind: str = "all", limit: int = 5) -> list[tuple[str, str]]:
        """Most searched (query, kind) pairs starting with `prefix_key`.

        A concrete `kind` only sees queries searched under that kind.
        """
        if not prefix_key or limit <= 0:
            return []
        found = []
        for i in prefix_range(self._queries, prefix_key):
            query = self._queries[i]
            for k in self._kinds[query]:
                if kind == "all" or k == kind:
                    found.append((-self._counts[(query, k)], query, k))
        found.sort()
        return [(query, k) for _, query, k in found[:limit]]

"""Spelling Index.

Per-kind dictionary of high-frequency tokens with bounded edit-distance
correction (insert / delete / substitute / adjacent transposition).

Instances are immutable once built; rebuilds produce a new index that the
snapshot store swaps in atomically.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Mapping

from bazar_search.orchestrator.schemas import ENTITY_KINDS, SpellingCandidate
from bazar_search.pipelines.normalizer import canonicalize, tokenize

logger = logging.getLogger(__name__)


def edit_distance(a: str, b: str, max_edits: int) -> int | None:
    """Restricted Damerau-Levenshtein distance, or None when above `max_edits`."""
    if a == b:
        return 0
    if abs(len(a) - len(b)) > max_edits:
        return None

    prev2: list[int] = []
    prev = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        cur = [i] + [0] * len(b)
        row_min = cur[0]
        for j in range(1, len(b) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            cur[j] = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
            if i > 1 and j > 1 and a[i - 1] == b[j - 2] and a[i - 2] == b[j - 1]:
                cur[j] = min(cur[j], prev2[j - 2] + 1)
            row_min = min(row_min, cur[j])
        if row_min > max_edits:
            return None
        prev2, prev = prev, cur

    distance = prev[len(b)]
    return distance if distance <= max_edits else None


class SpellingIndex:
    """Token dictionary per entity kind, queried for corrections."""

    def __init__(self, frequencies: Mapping[str, Mapping[str, int]] | None = None):
        self._by_kind: dict[str, dict[str, int]] = {}
        for kind, table in (frequencies or {}).items():
            self._by_kind[kind] = {tok: int(freq) for tok, freq in table.items() if freq > 0}

        combined: Counter[str] = Counter()
        for table in self._by_kind.values():
            combined.update(table)
        self._by_kind["all"] = dict(combined)

        # candidates bucketed by length; only buckets within max_edits are compared
        self._by_length: dict[str, dict[int, list[str]]] = {}
        for kind, table in self._by_kind.items():
            buckets: dict[int, list[str]] = {}
            for tok in table:
                buckets.setdefault(len(tok), []).append(tok)
            self._by_length[kind] = buckets

    @classmethod
    def from_texts(
        cls,
        texts_by_kind: Mapping[str, Iterable[str]],
        extra: Mapping[str, Mapping[str, int]] | None = None,
    ) -> "SpellingIndex":
        """Build from raw field values using the ingest tokenizer."""
        frequencies: dict[str, Counter[str]] = {}
        for kind, texts in texts_by_kind.items():
            counter: Counter[str] = Counter()
            for text in texts:
                if text:
                    counter.update(tokenize(canonicalize(text)))
            frequencies[kind] = counter

        for kind, table in (extra or {}).items():
            counter = frequencies.setdefault(kind, Counter())
            for token, freq in table.items():
                for tok in tokenize(canonicalize(token)):
                    counter[tok] += int(freq)

        return cls(frequencies)

    def size(self, kind: str = "all") -> int:
        return len(self._by_kind.get(kind, {}))

    def frequency(self, token: str, kind: str = "all") -> int:
        return self._by_kind.get(kind, {}).get(token, 0)

    def corrections(
        self,
        token: str,
        kind: str = "all",
        max_edits: int = 1,
        max_return: int = 3,
    ) -> list[SpellingCandidate]:
        """Dictionary tokens within `max_edits` of `token`, best first.

        Order: edit distance asc, frequency desc, length asc, lexicographic.
        """
        if kind != "all" and kind not in ENTITY_KINDS:
            return []
        table = self._by_kind.get(kind, {})
        if not token or not table or max_return <= 0:
            return []

        buckets = self._by_length.get(kind, {})
        nearby = (
            candidate
            for size in range(len(token) - max_edits, len(token) + max_edits + 1)
            for candidate in buckets.get(size, ())
        )

        found = []
        for candidate in nearby:
            if candidate == token:
                continue
            freq = table[candidate]
            distance = edit_distance(token, candidate, max_edits)
            if distance is None:
                continue
            found.append(SpellingCandidate(candidate=candidate, edit_distance=distance, frequency=freq))

        found.sort(key=lambda c: (c.edit_distance, -c.frequency, len(c.candidate), c.candidate))
        return found[:max_return]

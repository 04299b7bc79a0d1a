"""Entity index base — deterministic lexical ranking over an immutable snapshot.

Match rule per query token and field:
  - field token equals the query token → field weight
  - field token begins with the query token → field weight × 0.5
A token contributes its best match per field, summed over fields.
Every query token must match at least one field (AND over tokens, OR over fields).

Tokens are held in an inverted index (token → postings) with a sorted
vocabulary, so prefix matches are a bisect range instead of a document scan.
Lookups run in a worker thread; the event loop stays free and callers can
enforce deadlines with `asyncio.wait_for`.
"""

import asyncio
import heapq
import logging
from bisect import bisect_left
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Generic, TypeVar

from bazar_search.orchestrator.schemas import CatalogRecord, Hit, MatchSpan, SearchFilters
from bazar_search.pipelines.normalizer import canonicalize, token_spans, tokenize
from bazar_search.services.categories import CategoryResolver

logger = logging.getLogger(__name__)

PREFIX_FACTOR = 0.5
DEFAULT_LIMIT = 5

R = TypeVar("R", bound=CatalogRecord)


@dataclass(frozen=True)
class SearchField:
    name: str
    weight: float


@dataclass(frozen=True)
class _Posting:
    doc: int
    field: str
    label: str
    start: int
    end: int


def timestamp(value: datetime | None) -> float:
    return value.timestamp() if value else 0.0


def _byte_offset(text: str, index: int) -> int:
    return len(text[:index].encode("utf-8"))


def prefix_range(sorted_values: list[str], prefix: str) -> range:
    """Indexes of the values in `sorted_values` that begin with `prefix`."""
    lo = bisect_left(sorted_values, prefix)
    hi = bisect_left(sorted_values, prefix + "\U0010ffff", lo)
    return range(lo, hi)


class EntityIndex(Generic[R]):
    """Uniform lookup / completions contract, specialised per entity kind."""

    kind: ClassVar[str] = ""
    fields: ClassVar[tuple[SearchField, ...]] = ()

    def __init__(self, records: list[R], categories: CategoryResolver | None = None):
        self.categories = categories if categories is not None else CategoryResolver()
        self._records: list[R] = list(records)
        self._signals: list[tuple] = [self.tie_break(r) for r in self._records]
        self._weights = {f.name: f.weight for f in self.fields}

        postings: dict[str, list[_Posting]] = defaultdict(list)
        for doc, record in enumerate(self._records):
            self._index(doc, record, postings)
        self._postings = dict(postings)
        self._vocabulary = sorted(self._postings)

        self._completions, self._completion_rank = self._build_completions()
        logger.info(
            "Index built | kind=%s | docs=%d | vocabulary=%d",
            self.kind, len(self._records), len(self._vocabulary),
        )

    def __len__(self) -> int:
        return len(self._records)

    # ── Per-kind hooks ──

    def field_values(self, record: R) -> dict[str, str | list[str]]:
        raise NotImplementedError

    def display_fields(self, record: R) -> dict[str, Any]:
        raise NotImplementedError

    def tie_break(self, record: R) -> tuple:
        """Sort signals applied after score; negate values that sort descending."""
        return ()

    def completion_values(self, record: R) -> list[str]:
        return []

    def matches_filters(self, record: R, filters: SearchFilters) -> bool:
        return True

    # ── Build ──

    def _index(self, doc: int, record: R, postings: dict[str, list[_Posting]]):
        values = self.field_values(record)
        for search_field in self.fields:
            raw = values.get(search_field.name)
            items = raw if isinstance(raw, list) else [raw]
            for i, item in enumerate(items):
                if not item:
                    continue
                canonical = canonicalize(item)
                label = f"{search_field.name}.{i}" if isinstance(raw, list) else search_field.name
                for text, start, end in token_spans(canonical):
                    postings[text].append(_Posting(
                        doc=doc,
                        field=search_field.name,
                        label=label,
                        start=_byte_offset(canonical, start),
                        end=_byte_offset(canonical, end),
                    ))

    def _build_completions(self) -> tuple[list[str], list[tuple]]:
        """Distinct canonical values sorted for bisect, with a popularity rank each."""
        rank: dict[str, tuple] = {}
        order = sorted(range(len(self._records)), key=lambda d: (*self._signals[d], self._records[d].id))
        for doc in order:
            for value in self.completion_values(self._records[doc]):
                canonical = canonicalize(value or "")
                if canonical and canonical not in rank:
                    rank[canonical] = (*self._signals[doc], canonical)
        values = sorted(rank)
        return values, [rank[v] for v in values]

    # ── Query ──

    def _match_token(self, query_token: str) -> dict[int, tuple[dict[str, float], list[_Posting]]]:
        """doc → (best weight per field, matching postings) for one query token."""
        matches: dict[int, tuple[dict[str, float], list[_Posting]]] = {}
        for i in prefix_range(self._vocabulary, query_token):
            token = self._vocabulary[i]
            factor = 1.0 if token == query_token else PREFIX_FACTOR
            for posting in self._postings[token]:
                best, hits = matches.setdefault(posting.doc, ({}, []))
                weight = self._weights[posting.field] * factor
                if weight > best.get(posting.field, 0.0):
                    best[posting.field] = weight
                hits.append(posting)
        return matches

    def search(
        self,
        canonical_query: str,
        limit: int = DEFAULT_LIMIT,
        filters: SearchFilters | None = None,
        offset: int = 0,
    ) -> list[Hit]:
        """Synchronous core of `lookup`: ranked hits `offset .. offset+limit`."""
        if limit <= 0:
            return []
        query_tokens = tokenize(canonical_query)
        if not query_tokens:
            return []
        filters = filters or SearchFilters()

        scores: dict[int, float] | None = None
        spans: dict[int, dict[tuple[str, int, int], MatchSpan]] = defaultdict(dict)
        for query_token in query_tokens:
            matches = self._match_token(query_token)
            if scores is not None:
                matches = {doc: m for doc, m in matches.items() if doc in scores}
            if not matches:
                return []
            next_scores = {}
            for doc, (best, postings) in matches.items():
                next_scores[doc] = (scores or {}).get(doc, 0.0) + sum(best.values())
                doc_spans = spans[doc]
                for p in postings:
                    doc_spans.setdefault((p.label, p.start, p.end), MatchSpan(field=p.label, start=p.start, end=p.end))
            scores = next_scores

        ranked = [
            (-score, *self._signals[doc], self._records[doc].id, doc)
            for doc, score in scores.items()
            if self.matches_filters(self._records[doc], filters)
        ]
        window = heapq.nsmallest(max(offset, 0) + limit, ranked)[max(offset, 0):]

        hits = []
        for key in window:
            doc = key[-1]
            record = self._records[doc]
            hits.append(Hit(
                kind=self.kind,
                id=record.id,
                display_fields=self.display_fields(record),
                score=-key[0],
                match_spans=sorted(spans[doc].values(), key=lambda s: (s.field, s.start)) or None,
            ))
        return hits

    async def lookup(
        self,
        canonical_query: str,
        limit: int = DEFAULT_LIMIT,
        filters: SearchFilters | None = None,
        offset: int = 0,
    ) -> list[Hit]:
        """Ranked hits, at most `limit`. Empty list when nothing matches."""
        return await asyncio.to_thread(self.search, canonical_query, limit, filters, offset)

    async def completions(self, prefix_key: str, limit: int = DEFAULT_LIMIT) -> list[str]:
        """Canonical primary-field values beginning with `prefix_key`, most popular first."""
        if not prefix_key or limit <= 0:
            return []
        span = prefix_range(self._completions, prefix_key)
        best = heapq.nsmallest(limit, (self._completion_rank[i] for i in span))
        return [rank[-1] for rank in best]


def same_value(a: str | None, b: str | None) -> bool:
    """Case- and form-insensitive equality used by result filters."""
    return canonicalize(a or "") == canonicalize(b or "")

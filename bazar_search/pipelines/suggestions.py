"""Suggestion Composer — history, completions and spelling variants merged.

Completions are the most searched queries for the prefix, then entity
names and titles per kind in scope.

Merge order is history → completions → spelling; duplicates by
(query, kind) keep the earliest occurrence; output is capped at
`max_suggestions`. Each source is independent: one that fails or misses the
deadline is dropped and the rest are still returned.
"""

import asyncio
import logging

from bazar_search.config import settings
from bazar_search.errors import SpellingUnavailable
from bazar_search.orchestrator.schemas import ENTITY_KINDS, NormalizedQuery, Suggestion
from bazar_search.pipelines.normalizer import token_spans
from bazar_search.services.deadline import gather_within
from bazar_search.services.history import HistoryStore
from bazar_search.services.popular import PopularQueries
from bazar_search.services.snapshots import IndexSnapshot

logger = logging.getLogger(__name__)


def kinds_in_scope(kind: str) -> tuple[str, ...]:
    return (kind,) if kind in ENTITY_KINDS else ENTITY_KINDS


def spelling_variants(snapshot: IndexSnapshot, canonical: str, kind: str) -> list[str]:
    """Corrected queries, each differing from `canonical` in exactly one token."""
    if snapshot.spelling is None:
        raise SpellingUnavailable()
    variants = []
    for token, start, end in token_spans(canonical):
        for candidate in snapshot.spelling.corrections(token, kind):
            variants.append(canonical[:start] + candidate.candidate + canonical[end:])
    return variants


class SuggestionComposer:
    """Builds the suggestion drop-down for one request. Never writes history."""

    def __init__(self, history: HistoryStore, popular: PopularQueries | None = None):
        self.history = history
        self.popular = popular

    async def _from_history(self, prefix_key: str, identity: str | None) -> list[Suggestion]:
        if not identity:
            return []
        entries = await self.history.recent(identity, settings.history_suggestions)
        return [
            Suggestion(query=e.query, kind=e.kind, source="history")
            for e in entries
            if e.query.startswith(prefix_key)
        ]

    async def _from_popular(self, prefix_key: str, kind: str) -> list[Suggestion]:
        if self.popular is None:
            return []
        top = await self.popular.top(prefix_key, kind, settings.popular_suggestions)
        return [Suggestion(query=q, kind=k, source="completion") for q, k in top]

    @staticmethod
    async def _from_index(snapshot: IndexSnapshot, kind: str, prefix_key: str) -> list[Suggestion]:
        values = await snapshot.indexes[kind].completions(prefix_key, settings.completions_per_kind)
        return [Suggestion(query=v, kind=kind, source="completion") for v in values]

    @staticmethod
    async def _from_spelling(snapshot: IndexSnapshot, canonical: str, kind: str) -> list[Suggestion]:
        variants = await asyncio.to_thread(spelling_variants, snapshot, canonical, kind)
        return [
            Suggestion(query=v, kind=kind, source="spelling", isSpellingCorrection=True)
            for v in variants
        ]

    async def compose(
        self,
        snapshot: IndexSnapshot,
        query: NormalizedQuery,
        kind: str = "all",
        identity: str | None = None,
        deadline_ms: int | None = None,
    ) -> tuple[list[Suggestion], bool]:
        """Return (suggestions, truncated). `snapshot` is read once by the caller."""
        scope = kinds_in_scope(kind)
        calls = {
            "history": self._from_history(query.prefix_key, identity),
            "popular": self._from_popular(query.prefix_key, kind),
        }
        for k in scope:
            calls[f"completion:{k}"] = self._from_index(snapshot, k, query.prefix_key)
        calls["spelling"] = self._from_spelling(snapshot, query.canonical, kind)

        timeout = (deadline_ms or settings.suggestions_deadline_ms) / 1000
        outcome = await gather_within(calls, timeout)

        for name, error in outcome.failures.items():
            logger.warning("Suggestion source skipped | source=%s | %s", name, str(error)[:200])
        if outcome.timed_out:
            logger.warning("Suggestion sources timed out | sources=%s", ",".join(outcome.timed_out))

        ordered = [outcome.results.get("history", []), outcome.results.get("popular", [])]
        ordered += [outcome.results.get(f"completion:{k}", []) for k in scope]
        ordered.append(outcome.results.get("spelling", []))

        merged: list[Suggestion] = []
        seen: set[tuple[str, str]] = set()
        for group in ordered:
            for suggestion in group:
                key = (suggestion.query, suggestion.kind)
                if key in seen:
                    continue
                seen.add(key)
                merged.append(suggestion)

        return merged[:settings.max_suggestions], outcome.truncated

"""Search Coordinator — entry point for search, suggestions and history.

Responsibilities:
  - Validate input (type, query string) and apply the minimum-length gate
  - Fan out lookups to the entity indexes for the requested kind set
  - Check the result cache per kind before running a lookup
  - Decorate hits with category names, shape the envelope
  - Best-effort history append for authenticated identities

Every request reads the snapshot reference once on entry. `natural_language`
is accepted but the lexical path is always used.
"""

import asyncio
import logging
import time

from bazar_search.config import settings
from bazar_search.errors import IndexUnavailable, InvalidInput, SearchServiceError
from bazar_search.orchestrator.schemas import (
    SEARCH_TYPES,
    UNCATEGORIZED,
    ClearHistoryResponse,
    Hit,
    HistoryResponse,
    SearchFilters,
    SearchRequest,
    SearchResponse,
    SuggestionsRequest,
    SuggestionsResponse,
)
from bazar_search.pipelines.normalizer import normalize
from bazar_search.pipelines.suggestions import SuggestionComposer, kinds_in_scope
from bazar_search.services.cache import CacheService, cache_service
from bazar_search.services.deadline import gather_within
from bazar_search.services.history import HistoryStore, MemoryHistoryStore
from bazar_search.services.popular import PopularQueries
from bazar_search.services.snapshots import IndexSnapshot, SnapshotStore, snapshot_store

logger = logging.getLogger(__name__)

CATEGORIZED_KINDS = ("products", "projects")


class SearchCoordinator:
    """Main dispatcher. Owns all history writes."""

    def __init__(
        self,
        snapshots: SnapshotStore | None = None,
        history: HistoryStore | None = None,
        cache: CacheService | None = None,
        popular: PopularQueries | None = None,
    ):
        self.snapshots = snapshots or snapshot_store
        self.history = history or MemoryHistoryStore()
        self.cache = cache or cache_service
        self.popular = popular if popular is not None else PopularQueries()

    @property
    def composer(self) -> SuggestionComposer:
        return SuggestionComposer(self.history, self.popular)

    # ── Search ──

    async def search(self, request: SearchRequest, identity: str | None = None) -> SearchResponse:
        start = time.monotonic()
        kind_type = _validate_type(request.type)
        query = normalize(request.q)
        if query.length < settings.min_query_length:
            return SearchResponse(success=True, results={})

        snapshot = self.snapshots.current
        limit = max(0, min(request.limit, settings.max_limit))
        page = max(1, min(request.page, settings.max_page))
        offset = (page - 1) * limit
        kinds = kinds_in_scope(kind_type)

        lookups = {
            k: self._lookup(snapshot, k, query.canonical, limit, _filters_for(k, request.filters, identity), offset)
            for k in kinds
        }
        outcome = await gather_within(lookups, settings.search_deadline_ms / 1000)

        truncated = outcome.truncated
        for kind, error in outcome.failures.items():
            if isinstance(error, asyncio.TimeoutError):
                truncated = True
                logger.warning("Index lookup timed out | kind=%s", kind)
            else:
                logger.warning("Index lookup failed — omitting kind | kind=%s | %s", kind, str(error)[:200])

        results: dict[str, list[dict]] = {}
        for kind in kinds:
            if kind not in outcome.results:
                continue
            results[kind] = await self._decorate(snapshot, kind, outcome.results[kind])

        counts = {kind: len(hits) for kind, hits in results.items()}
        total = sum(counts.values())
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Search | mode=lexical | type=%s | page=%d | version=%d | %s | total=%d | truncated=%s | %dms",
            kind_type, page, snapshot.version,
            " ".join(f"{k}={v}" for k, v in counts.items()) or "none",
            total, truncated, elapsed_ms,
        )

        self.popular.record(query.canonical, kind_type)
        if identity:
            await self._record(identity, query.canonical, kind_type, total)

        return SearchResponse(
            success=True,
            results=results,
            counts=counts,
            totalResults=total,
            truncated=True if truncated else None,
            query=query.canonical,
            type=kind_type,
            page=page,
            limit=limit,
        )

    async def _lookup(
        self,
        snapshot: IndexSnapshot,
        kind: str,
        canonical: str,
        limit: int,
        filters: SearchFilters,
        offset: int = 0,
    ) -> list[Hit]:
        index = snapshot.indexes.get(kind)
        if index is None:
            raise IndexUnavailable(f"{kind} index unavailable")

        cache_key = self.cache.make_key(snapshot.version, kind, canonical, filters.cache_fragment(), limit, offset)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit | kind=%s", kind)
            return [Hit.model_validate(h) for h in cached]

        hits = await asyncio.wait_for(
            index.lookup(canonical, limit, filters, offset),
            timeout=settings.index_deadline_ms / 1000,
        )
        await self.cache.set(cache_key, [h.model_dump() for h in hits])
        return hits

    @staticmethod
    async def _decorate(snapshot: IndexSnapshot, kind: str, hits: list[Hit]) -> list[dict]:
        payloads = [hit.to_payload() for hit in hits]
        if kind not in CATEGORIZED_KINDS or not payloads:
            return payloads

        try:
            names = await snapshot.categories.resolve_many(p.get("category") for p in payloads)
        except Exception as e:
            logger.warning("Category resolution failed | kind=%s | %s", kind, str(e)[:200])
            names = {}
        for payload in payloads:
            payload["categoryName"] = names.get(str(payload.get("category") or ""), UNCATEGORIZED)
        return payloads

    async def _record(self, identity: str, canonical: str, kind: str, result_count: int):
        """Best-effort, at-most-once history append. Never fails the search."""
        try:
            await asyncio.wait_for(
                self.history.append(identity, canonical, kind, result_count),
                timeout=settings.history_deadline_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning("History append timed out — dropped")
        except SearchServiceError as e:
            logger.warning("History append failed — dropped | %s", e.message)
        except Exception as e:
            logger.error("History append failed — dropped | %s", str(e)[:200])

    # ── Suggestions ──

    async def suggestions(self, request: SuggestionsRequest, identity: str | None = None) -> SuggestionsResponse:
        start = time.monotonic()
        kind_type = _validate_type(request.type)
        query = normalize(request.q)
        if query.length < settings.min_query_length:
            return SuggestionsResponse(success=True, suggestions=[])

        snapshot = self.snapshots.current
        suggestions, truncated = await self.composer.compose(snapshot, query, kind_type, identity)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Suggestions | type=%s | count=%d | truncated=%s | %dms",
            kind_type, len(suggestions), truncated, elapsed_ms,
        )
        return SuggestionsResponse(
            success=True,
            suggestions=suggestions,
            truncated=True if truncated else None,
        )

    # ── History ──

    async def recent_history(self, identity: str | None) -> HistoryResponse:
        entries = await self.history.recent(identity, settings.history_suggestions)
        return HistoryResponse(success=True, history=entries)

    async def clear_history(self, identity: str | None) -> ClearHistoryResponse:
        removed = await self.history.clear(identity)
        logger.info("History cleared | entries=%d", removed)
        return ClearHistoryResponse(success=True)


def _filters_for(kind: str, filters: SearchFilters, identity: str | None) -> SearchFilters:
    """Self-exclusion only applies to users; other kinds keep identity-free cache keys."""
    if kind == "users" and identity:
        return filters.model_copy(update={"exclude_user_id": identity})
    return filters


def _validate_type(value: str | None) -> str:
    kind = value or "all"
    if kind not in SEARCH_TYPES:
        raise InvalidInput(f"Unknown search type. Use one of: {', '.join(SEARCH_TYPES)}.")
    return kind


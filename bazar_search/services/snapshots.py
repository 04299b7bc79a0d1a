"""Index snapshots — immutable indexes + spelling dictionary, swapped atomically.

Requests read `snapshot_store.current` once on entry and use that reference
for their whole lifetime, so a rebuild never changes what an in-flight
request sees.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from bazar_search.config import settings
from bazar_search.errors import IndexUnavailable
from bazar_search.indexes import EntityIndex, build_indexes
from bazar_search.orchestrator.schemas import CatalogData
from bazar_search.pipelines.spelling import SpellingIndex
from bazar_search.services.categories import CategoryResolver

logger = logging.getLogger(__name__)

CatalogLoader = Callable[[], Awaitable[CatalogData]]


@dataclass(frozen=True)
class IndexSnapshot:
    version: int
    built_at: datetime
    indexes: dict[str, EntityIndex]
    spelling: SpellingIndex
    categories: CategoryResolver
    source: str = "demo"
    counts: dict[str, int] = field(default_factory=dict)


def build_snapshot(catalog: CatalogData, version: int, source: str = "demo", now: datetime | None = None) -> IndexSnapshot:
    """Filter hidden entities and build every index plus the spelling dictionary."""
    now = now or datetime.now(timezone.utc)
    visible = CatalogData(
        products=[r for r in catalog.products if r.is_visible(now)],
        jobs=[r for r in catalog.jobs if r.is_visible(now)],
        projects=[r for r in catalog.projects if r.is_visible(now)],
        users=[r for r in catalog.users if r.is_visible(now)],
        categories=[c for c in catalog.categories if c.is_visible(now)],
    )
    categories = CategoryResolver(visible.categories)
    indexes = build_indexes(visible, categories)

    texts = {
        "products": [t for p in visible.products for t in (p.name, p.tagline)],
        "jobs": [t for j in visible.jobs for t in (j.title, j.company.name)],
        "projects": [t for p in visible.projects for t in (p.title, *p.technologies)],
        "users": [t for u in visible.users for t in (u.name, u.username, u.company_name or "")],
    }
    spelling = SpellingIndex.from_texts(texts, extra=catalog.dictionary)

    counts = {kind: len(index) for kind, index in indexes.items()}
    logger.info(
        "Snapshot built | version=%d | source=%s | %s | dictionary=%d",
        version, source, " ".join(f"{k}={v}" for k, v in counts.items()), spelling.size(),
    )
    return IndexSnapshot(
        version=version,
        built_at=now,
        indexes=indexes,
        spelling=spelling,
        categories=categories,
        source=source,
        counts=counts,
    )


async def default_loader() -> CatalogData:
    """Catalog from the configured source: snapshot file, export API, or demo data."""
    if settings.catalog_snapshot_path:
        from bazar_search.integrations.catalog_api import load_catalog_file
        return await asyncio.to_thread(load_catalog_file, settings.catalog_snapshot_path)
    if settings.catalog_source_url:
        from bazar_search.integrations.catalog_api import CatalogAPIClient
        client = CatalogAPIClient(settings.catalog_source_url, timeout=settings.catalog_timeout_seconds)
        return await client.fetch()

    from bazar_search.orchestrator.demo_data import get_demo_catalog
    return get_demo_catalog()


def _source_name() -> str:
    if settings.catalog_snapshot_path:
        return "file"
    if settings.catalog_source_url:
        return "api"
    return "demo"


class SnapshotStore:
    """Holds the current snapshot; rebuilds swap the reference in one assignment."""

    def __init__(self, loader: CatalogLoader | None = None):
        self._loader = loader or default_loader
        self._current: IndexSnapshot | None = None
        self._version = 0
        self._rebuild_lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> IndexSnapshot:
        snapshot = self._current
        if snapshot is None:
            raise IndexUnavailable("Search index is warming up. Please try again shortly.")
        return snapshot

    def install(self, catalog: CatalogData, source: str = "manual") -> IndexSnapshot:
        """Build synchronously and swap in. Used at startup and by tests."""
        self._version += 1
        snapshot = build_snapshot(catalog, self._version, source=source)
        self._current = snapshot
        return snapshot

    async def rebuild(self) -> bool:
        """Load and build a new snapshot. The previous one stays live on failure."""
        async with self._rebuild_lock:
            try:
                catalog = await self._loader()
                version = self._version + 1
                snapshot = await asyncio.to_thread(build_snapshot, catalog, version, _source_name())
            except Exception as e:
                logger.error(
                    "Snapshot rebuild failed | keeping version=%s | %s",
                    self._current.version if self._current else None, str(e)[:200],
                )
                return False
            self._version = version
            self._current = snapshot
            return True

    async def run_periodic(self, interval_seconds: int):
        """Background refresh loop. Cancel the task to stop it."""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.rebuild()


# Singleton instance
snapshot_store = SnapshotStore()

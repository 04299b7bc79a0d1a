#!/usr/bin/env python3
"""Catalog verification script — run against a real catalog source.

Usage:
  1. Set CATALOG_SOURCE_URL or CATALOG_SNAPSHOT_PATH in .env
  2. Run: python scripts/verify_catalog.py [query ...]

Steps:
  Step 1: Verify .env configuration
  Step 2: Load the catalog from the configured source
  Step 3: Build an index snapshot
  Step 4: Run sample searches
  Step 5: Run sample suggestions
"""

import asyncio
import os
import sys
import time

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DEFAULT_QUERIES = ["flow", "python engineer", "desgin"]


def step_header(n: int, title: str) -> None:
    print(f"\n{'='*60}")
    print(f"  Step {n}: {title}")
    print(f"{'='*60}\n")


def ok(msg: str) -> None:
    print(f"  ✅ {msg}")


def fail(msg: str) -> None:
    print(f"  ❌ {msg}")


def info(msg: str) -> None:
    print(f"  ℹ️  {msg}")


async def step1_verify_env():
    step_header(1, "Verify .env Configuration")
    from bazar_search.config import settings

    if settings.catalog_snapshot_path:
        ok(f"CATALOG_SNAPSHOT_PATH: {settings.catalog_snapshot_path}")
    elif settings.catalog_source_url:
        ok(f"CATALOG_SOURCE_URL: {settings.catalog_source_url}")
    else:
        info("No catalog source configured — the demo catalog will be used")

    ok(f"History backend: {settings.history_backend}")
    ok(f"Deadlines: search={settings.search_deadline_ms}ms suggestions={settings.suggestions_deadline_ms}ms")
    return True


async def step2_load_catalog():
    step_header(2, "Load Catalog")
    from bazar_search.integrations.catalog_api import CatalogSourceError
    from bazar_search.services.snapshots import default_loader

    start = time.monotonic()
    try:
        catalog = await default_loader()
    except CatalogSourceError as e:
        fail(f"Catalog source failed: {e}")
        return None

    elapsed_ms = int((time.monotonic() - start) * 1000)
    ok(
        f"Loaded in {elapsed_ms}ms: products={len(catalog.products)} jobs={len(catalog.jobs)} "
        f"projects={len(catalog.projects)} users={len(catalog.users)} categories={len(catalog.categories)}"
    )
    return catalog


async def step3_build_snapshot(catalog):
    step_header(3, "Build Index Snapshot")
    from bazar_search.services.snapshots import SnapshotStore

    store = SnapshotStore()
    start = time.monotonic()
    snapshot = store.install(catalog, source="verify")
    elapsed_ms = int((time.monotonic() - start) * 1000)

    ok(f"Snapshot v{snapshot.version} built in {elapsed_ms}ms")
    for kind, count in snapshot.counts.items():
        print(f"    - {kind}: {count} visible")
    ok(f"Spelling dictionary: {snapshot.spelling.size()} tokens")
    return store


async def step4_search(store, queries):
    step_header(4, "Sample Searches")
    from bazar_search.orchestrator.router import SearchCoordinator
    from bazar_search.orchestrator.schemas import SearchRequest

    coordinator = SearchCoordinator(snapshots=store)
    passed = True
    for q in queries:
        result = await coordinator.search(SearchRequest(q=q, type="all", limit=3))
        info(f"'{q}' → {result.totalResults} hits{' (truncated)' if result.truncated else ''}")
        for kind, hits in result.results.items():
            for hit in hits:
                label = hit.get("name") or hit.get("title") or hit.get("username")
                print(f"    - [{kind}] {label} (score={hit['score']})")
        passed = passed and result.success
    return passed


async def step5_suggestions(store, queries):
    step_header(5, "Sample Suggestions")
    from bazar_search.orchestrator.router import SearchCoordinator
    from bazar_search.orchestrator.schemas import SuggestionsRequest

    coordinator = SearchCoordinator(snapshots=store)
    passed = True
    for q in queries:
        result = await coordinator.suggestions(SuggestionsRequest(q=q, type="all"))
        info(f"'{q}' → {len(result.suggestions)} suggestions")
        for s in result.suggestions:
            marker = " (spelling)" if s.isSpellingCorrection else ""
            print(f"    - {s.query} [{s.kind}/{s.source}]{marker}")
        passed = passed and result.success
    return passed


async def main():
    print("\n🔎 Product Bazar Search — Catalog Verification")
    print("=" * 60)

    queries = sys.argv[1:] or DEFAULT_QUERIES
    results = {}

    results[1] = await step1_verify_env()

    catalog = await step2_load_catalog()
    results[2] = catalog is not None

    if catalog is None:
        print("\n⚠️  Skipping index steps (catalog unavailable)")
        results[3] = results[4] = results[5] = False
    else:
        store = await step3_build_snapshot(catalog)
        results[3] = store.ready
        results[4] = await step4_search(store, queries)
        results[5] = await step5_suggestions(store, queries)

    # Summary
    print(f"\n{'='*60}")
    print("  SUMMARY")
    print(f"{'='*60}")
    for step_n, passed in sorted(results.items()):
        status = "✅ PASS" if passed else "❌ FAIL"
        print(f"  Step {step_n}: {status}")

    total_passed = sum(1 for v in results.values() if v)
    total = len(results)
    print(f"\n  {total_passed}/{total} steps passed")
    print(f"{'='*60}\n")

    sys.exit(0 if all(results.values()) else 1)


if __name__ == "__main__":
    asyncio.run(main())

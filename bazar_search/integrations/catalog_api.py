"""Product Bazar catalog export — read-only source for index snapshots.

The main API exposes a paginated export per entity kind:
  GET {base}/export/{kind}?page=N&limit=M → {"data": [...], "hasMore": bool}
Categories come from GET {base}/export/categories (single page).
"""

import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx

from bazar_search.orchestrator.schemas import ENTITY_KINDS, CatalogData

logger = logging.getLogger(__name__)

PAGE_SIZE = 500
MAX_PAGES = 200


class CatalogSourceError(Exception):
    """Catalog could not be fetched or parsed."""


class CatalogAPIClient:
    """Async client for the catalog export endpoints."""

    def __init__(self, base_url: str, timeout: int = 20, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def fetch(self) -> CatalogData:
        """Download the full catalog. Raises CatalogSourceError on any failure."""
        start = time.monotonic()
        payload: dict[str, Any] = {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                payload["categories"] = await self._fetch_pages(client, "categories", paged=False)
                for kind in ENTITY_KINDS:
                    payload[kind] = await self._fetch_pages(client, kind)
        except httpx.TimeoutException as e:
            raise CatalogSourceError("catalog export timed out") from e
        except httpx.HTTPError as e:
            raise CatalogSourceError(f"catalog export failed: {str(e)[:200]}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Catalog export OK | %s | %dms",
            " ".join(f"{k}={len(v)}" for k, v in payload.items()), elapsed_ms,
        )
        return parse_catalog(payload)

    async def _fetch_pages(self, client: httpx.AsyncClient, kind: str, paged: bool = True) -> list[dict]:
        url = f"{self.base_url}/export/{kind}"
        if not paged:
            resp = await client.get(url)
            resp.raise_for_status()
            return _extract_rows(resp.json())

        rows: list[dict] = []
        for page in range(1, MAX_PAGES + 1):
            resp = await client.get(url, params={"page": page, "limit": PAGE_SIZE})
            resp.raise_for_status()
            data = resp.json()
            rows.extend(_extract_rows(data))
            if not (isinstance(data, dict) and data.get("hasMore")):
                break
        else:
            logger.warning("Catalog export | kind=%s | stopped at %d pages", kind, MAX_PAGES)
        return rows


def load_catalog_file(path: str) -> CatalogData:
    """Load a JSON snapshot file with the same shape as the export payload."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise CatalogSourceError(f"catalog file unreadable: {str(e)[:200]}") from e
    return parse_catalog(data)


def parse_catalog(data: Any) -> CatalogData:
    if not isinstance(data, dict):
        raise CatalogSourceError("catalog payload must be an object")
    try:
        return CatalogData.model_validate(data)
    except ValueError as e:
        raise CatalogSourceError(f"catalog payload invalid: {str(e)[:200]}") from e


def _extract_rows(data: Any) -> list[dict]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        rows = data.get("data", [])
        return rows if isinstance(rows, list) else []
    return []

"""Product Bazar Search — FastAPI application entry point.

Serves the search modal, suggestion drop-down, history strip and results page:
  GET    /search
  GET    /search/suggestions
  GET    /search/history
  DELETE /search/history
"""

import asyncio
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager, suppress

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bazar_search.config import settings
from bazar_search.errors import RequestSuperseded, SearchServiceError
from bazar_search.orchestrator.router import SearchCoordinator
from bazar_search.orchestrator.schemas import (
    SearchFilters,
    SearchRequest,
    SuggestionsRequest,
    SuggestionsResponse,
)
from bazar_search.services.identity import Identity, get_identity
from bazar_search.services.sequencer import RequestSequencer, client_key

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("bazar_search")


# ═══════════════ RATE LIMITER ═══════════════

class RateLimiter:
    """Sliding-window rate limiter by identity, or by IP when anonymous."""

    def __init__(self, max_requests: int, window_seconds: int = 900):
        self.max_requests = max_requests
        self.window = window_seconds
        self._hits: dict[str, list[float]] = defaultdict(list)

    def is_limited(self, key: str) -> bool:
        now = time.monotonic()
        window_start = now - self.window
        # Remove expired entries
        hits = [t for t in self._hits[key] if t > window_start]
        if len(hits) >= self.max_requests:
            self._hits[key] = hits
            return True
        hits.append(now)
        self._hits[key] = hits
        return False

    def reset(self):
        self._hits.clear()


rate_limiter = RateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_seconds)
coordinator = SearchCoordinator()
search_sequencer = RequestSequencer("search")
suggestions_sequencer = RequestSequencer("suggestions")


def _client_ip(request: Request) -> str:
    client_ip = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


async def enforce_rate_limit(request: Request, identity: Identity | None = Depends(get_identity)):
    key = f"user:{identity.subject}" if identity else f"ip:{_client_ip(request)}"
    if rate_limiter.is_limited(key):
        raise SearchServiceError(
            "Too many search requests. Please slow down and try again shortly.",
            status_code=429,
        )


def _subject(identity: Identity | None) -> str | None:
    return identity.subject if identity else None


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=SearchServiceError().to_dict(),
        headers={"Cache-Control": "no-store"},
    )


# ═══════════════ LIFESPAN ═══════════════

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Bazar search starting | demo_mode=%s", settings.is_demo_mode)

    # History backend (graceful degradation to memory if the database is unavailable)
    db_ok = False
    if settings.history_backend == "database":
        from bazar_search.database import async_session_factory, init_db
        from bazar_search.services.history import SqlHistoryStore

        db_ok = await init_db()
        if db_ok:
            coordinator.history = SqlHistoryStore(async_session_factory)
    logger.info("History: %s", coordinator.history.backend)

    # Initialize Redis cache (graceful degradation if unavailable)
    from bazar_search.services.cache import cache_service
    redis_ok = await cache_service.connect()
    logger.info("Redis: %s", "connected" if redis_ok else "unavailable (using in-memory fallback)")

    # First snapshot; the demo catalog is the last resort so the service can always start
    if not await coordinator.snapshots.rebuild():
        from bazar_search.orchestrator.demo_data import get_demo_catalog
        coordinator.snapshots.install(get_demo_catalog(), source="demo")

    background = [
        asyncio.create_task(coordinator.snapshots.run_periodic(settings.index_refresh_seconds)),
        asyncio.create_task(coordinator.history.run_periodic_sweep(settings.history_sweep_interval_seconds)),
    ]

    yield

    for task in background:
        task.cancel()
    for task in background:
        with suppress(asyncio.CancelledError):
            await task

    await cache_service.disconnect()
    if db_ok:
        from bazar_search.database import close_db
        await close_db()
    logger.info("Bazar search shutting down")


# ═══════════════ APP ═══════════════

app = FastAPI(
    title="Product Bazar Search API",
    description="Unified search and discovery across products, jobs, projects and users",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Client-Id"],
)


@app.exception_handler(SearchServiceError)
async def service_error_handler(request: Request, exc: SearchServiceError):
    if exc.status_code >= 500:
        logger.warning("Request failed | path=%s | status=%d | %s", request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers={"Cache-Control": "no-store"})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(str(err.get("loc", ["?"])[-1]) for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"Invalid request parameter: {fields}."},
    )


# ═══════════════ ENDPOINTS ═══════════════

@app.get("/health")
async def health():
    from bazar_search.services.cache import cache_service

    store = coordinator.snapshots
    snapshot = store.current if store.ready else None
    return {
        "status": "ok" if snapshot else "warming_up",
        "demo_mode": settings.is_demo_mode,
        "index_version": snapshot.version if snapshot else None,
        "index_source": snapshot.source if snapshot else None,
        "indexed": snapshot.counts if snapshot else {},
        "history_backend": coordinator.history.backend,
        "redis": cache_service.redis_available,
    }


@app.get("/search", dependencies=[Depends(enforce_rate_limit)])
async def search(
    request: Request,
    q: str = "",
    type: str = "all",
    limit: int = Query(default=settings.default_limit),
    page: int = Query(default=1),
    natural_language: bool = False,
    category: str | None = None,
    job_type: str | None = Query(default=None, alias="jobType"),
    location_type: str | None = Query(default=None, alias="locationType"),
    role: str | None = None,
    identity: Identity | None = Depends(get_identity),
):
    """Unified search across the requested entity kinds."""
    search_req = SearchRequest(
        q=q,
        type=type,
        limit=limit,
        page=page,
        natural_language=natural_language,
        filters=SearchFilters(
            category=category,
            job_type=job_type,
            location_type=location_type,
            role=role,
        ),
    )
    subject = _subject(identity)
    start = time.monotonic()
    try:
        result = await search_sequencer.run(
            client_key(request, subject),
            coordinator.search(search_req, subject),
            request=request,
        )
    except SearchServiceError:
        raise
    except Exception as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.error("Search failed | %dms | %s", elapsed_ms, str(e)[:300])
        return _internal_error()
    return JSONResponse(
        content=result.model_dump(mode="json", exclude_none=True),
        headers={"Cache-Control": f"private, max-age={settings.http_max_age_search}"},
    )


@app.get("/search/suggestions", dependencies=[Depends(enforce_rate_limit)])
async def suggestions(
    request: Request,
    q: str = "",
    type: str = "all",
    identity: Identity | None = Depends(get_identity),
):
    """Suggestion drop-down: history, completions, spelling corrections."""
    subject = _subject(identity)
    try:
        result = await suggestions_sequencer.run(
            client_key(request, subject),
            coordinator.suggestions(SuggestionsRequest(q=q, type=type), subject),
            request=request,
        )
    except RequestSuperseded:
        result = SuggestionsResponse(success=True, suggestions=[])
    except SearchServiceError:
        raise
    except Exception as e:
        logger.error("Suggestions failed | %s", str(e)[:300])
        return _internal_error()
    return JSONResponse(
        content=result.model_dump(mode="json", exclude_none=True),
        headers={"Cache-Control": f"private, max-age={settings.http_max_age_suggestions}"},
    )


@app.get("/search/history")
async def get_history(identity: Identity | None = Depends(get_identity)):
    """Recent queries for the authenticated user, most recent first."""
    result = await coordinator.recent_history(_subject(identity))
    return JSONResponse(
        content=result.model_dump(mode="json", exclude_none=True),
        headers={"Cache-Control": "no-store"},
    )


@app.delete("/search/history")
async def delete_history(identity: Identity | None = Depends(get_identity)):
    """Remove every history entry for the authenticated user."""
    result = await coordinator.clear_history(_subject(identity))
    return JSONResponse(
        content=result.model_dump(mode="json", exclude_none=True),
        headers={"Cache-Control": "no-store"},
    )

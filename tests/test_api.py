"""End-to-end API tests — tests the FastAPI app against in-memory snapshots."""

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from bazar_search import main
from bazar_search.main import app
from bazar_search.services.cache import CacheService
from bazar_search.orchestrator.schemas import CatalogData, ProductRecord
from bazar_search.services.history import MemoryHistoryStore
from bazar_search.services.popular import PopularQueries
from bazar_search.services.snapshots import SnapshotStore


@pytest.fixture(autouse=True)
def fresh_state(demo_catalog):
    """ASGITransport skips lifespan; install a snapshot and reset shared state."""
    store = SnapshotStore()
    store.install(demo_catalog, source="demo")
    main.coordinator.snapshots = store
    main.coordinator.history = MemoryHistoryStore()
    main.coordinator.cache = CacheService()
    main.coordinator.popular = PopularQueries()
    main.rate_limiter.reset()
    yield store
    main.rate_limiter.reset()


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["demo_mode"] is True
        assert data["index_source"] == "demo"
        assert data["indexed"]["products"] == 4
        assert data["history_backend"] == "memory"

    @pytest.mark.asyncio
    async def test_health_warming_up(self, client):
        main.coordinator.snapshots = SnapshotStore()
        resp = await client.get("/health")
        assert resp.json()["status"] == "warming_up"


# ═══════════════ /search ═══════════════

class TestSearchEndpoint:
    @pytest.mark.asyncio
    async def test_prefix_match(self, client, fresh_state, flow_catalog):
        fresh_state.install(flow_catalog, source="test")
        resp = await client.get("/search", params={"q": "flow", "type": "all", "limit": 5})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["results"]["jobs"] == []
        assert data["results"]["projects"] == []
        assert data["results"]["users"] == []
        product = data["results"]["products"][0]
        assert product["slug"] == "flow-state"
        assert product["upvotes"] == 280
        assert product["categoryName"] == "Productivity"
        assert data["totalResults"] == 1
        assert "truncated" not in data

    @pytest.mark.asyncio
    async def test_page_and_echo(self, client, fresh_state):
        fresh_state.install(CatalogData(products=[
            ProductRecord(id=f"p{i}", slug=f"flow-{i}", name=f"Flow {i}", upvotes=i) for i in range(5)
        ]), source="test")
        resp = await client.get("/search", params={"q": "FLOW", "type": "products", "limit": 2, "page": 2})
        assert resp.status_code == 200
        data = resp.json()
        assert [p["_id"] for p in data["results"]["products"]] == ["p2", "p1"]
        assert (data["query"], data["type"], data["page"], data["limit"]) == ("flow", "products", 2, 2)

    @pytest.mark.asyncio
    async def test_invalid_page(self, client):
        resp = await client.get("/search", params={"q": "flow", "page": "last"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_cache_control(self, client):
        resp = await client.get("/search", params={"q": "flow"})
        assert resp.headers["cache-control"] == "private, max-age=300"

    @pytest.mark.asyncio
    async def test_short_query(self, client):
        resp = await client.get("/search", params={"q": "a"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "results": {}}

    @pytest.mark.asyncio
    async def test_missing_query(self, client):
        resp = await client.get("/search")
        assert resp.status_code == 200
        assert resp.json()["results"] == {}

    @pytest.mark.asyncio
    async def test_invalid_type(self, client):
        resp = await client.get("/search", params={"q": "flow", "type": "articles"})
        assert resp.status_code == 400
        data = resp.json()
        assert data["success"] is False
        assert "type" in data["error"].lower()
        assert resp.headers["cache-control"] == "no-store"

    @pytest.mark.asyncio
    async def test_invalid_limit(self, client):
        resp = await client.get("/search", params={"q": "flow", "limit": "many"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    @pytest.mark.asyncio
    async def test_filters(self, client):
        resp = await client.get("/search", params={"q": "engineer", "type": "jobs", "locationType": "remote"})
        assert [j["_id"] for j in resp.json()["results"]["jobs"]] == ["j1"]

        resp = await client.get("/search", params={"q": "engineer", "type": "jobs", "locationType": "hybrid"})
        assert resp.json()["results"]["jobs"] == []

    @pytest.mark.asyncio
    async def test_index_unavailable(self, client):
        main.coordinator.snapshots = SnapshotStore()
        resp = await client.get("/search", params={"q": "flow"})
        assert resp.status_code == 503
        assert resp.json()["success"] is False

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic(self, client, monkeypatch):
        monkeypatch.setattr(main.coordinator, "search", AsyncMock(side_effect=RuntimeError("pool exhausted at 10.0.0.5")))
        resp = await client.get("/search", params={"q": "flow"})
        assert resp.status_code == 500
        data = resp.json()
        assert data["success"] is False
        assert "10.0.0.5" not in data["error"]

    @pytest.mark.asyncio
    async def test_signed_in_user_excluded_and_recorded(self, client, token_factory):
        headers = {"Authorization": f"Bearer {token_factory('u1')}"}
        resp = await client.get("/search", params={"q": "flow", "type": "users"}, headers=headers)
        assert [u["_id"] for u in resp.json()["results"]["users"]] == ["u3"]

        history = await client.get("/search/history", headers=headers)
        assert [e["query"] for e in history.json()["history"]] == ["flow"]

    @pytest.mark.asyncio
    async def test_invalid_token_is_anonymous(self, client):
        resp = await client.get("/search", params={"q": "flow"}, headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 200


class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_limit_enforced(self, client, monkeypatch):
        monkeypatch.setattr(main, "rate_limiter", main.RateLimiter(max_requests=2))
        for _ in range(2):
            assert (await client.get("/search", params={"q": "flow"})).status_code == 200
        resp = await client.get("/search", params={"q": "flow"})
        assert resp.status_code == 429
        assert resp.json()["success"] is False

    def test_limiter_window(self):
        limiter = main.RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.is_limited("ip:1.2.3.4") is False
        assert limiter.is_limited("ip:1.2.3.4") is True
        assert limiter.is_limited("ip:5.6.7.8") is False


# ═══════════════ /search/suggestions ═══════════════

class TestSuggestionsEndpoint:
    @pytest.mark.asyncio
    async def test_spelling_correction(self, client):
        resp = await client.get("/search/suggestions", params={"q": "flappi", "type": "all"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert {"query": "flappy", "kind": "all", "source": "spelling", "isSpellingCorrection": True} in data["suggestions"]
        assert resp.headers["cache-control"] == "private, max-age=60"

    @pytest.mark.asyncio
    async def test_history_first_for_signed_in(self, client, auth_headers):
        await client.get("/search", params={"q": "flow state", "type": "products"}, headers=auth_headers)
        resp = await client.get("/search/suggestions", params={"q": "flo"}, headers=auth_headers)
        first = resp.json()["suggestions"][0]
        assert first["source"] == "history"
        assert first["query"] == "flow state"

    @pytest.mark.asyncio
    async def test_short_query(self, client):
        resp = await client.get("/search/suggestions", params={"q": "f"})
        assert resp.json()["suggestions"] == []

    @pytest.mark.asyncio
    async def test_invalid_type(self, client):
        resp = await client.get("/search/suggestions", params={"q": "flow", "type": "nope"})
        assert resp.status_code == 400


# ═══════════════ /search/history ═══════════════

class TestHistoryEndpoints:
    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        resp = await client.get("/search/history")
        assert resp.status_code == 401
        assert resp.json()["success"] is False

        resp = await client.delete("/search/history")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, client, token_factory):
        headers = {"Authorization": f"Bearer {token_factory(expires_in=-10)}"}
        resp = await client.get("/search/history", headers=headers)
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_list_and_clear(self, client, auth_headers):
        await client.get("/search", params={"q": "flow"}, headers=auth_headers)
        await client.get("/search", params={"q": "codepilot", "type": "products"}, headers=auth_headers)

        resp = await client.get("/search/history", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        history = resp.json()["history"]
        assert [(e["query"], e["kind"]) for e in history] == [("codepilot", "products"), ("flow", "all")]
        assert "recordedAt" in history[0]
        assert history[0]["resultCountSnapshot"] == 1

        resp = await client.delete("/search/history", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        resp = await client.get("/search/history", headers=auth_headers)
        assert resp.json()["history"] == []

    @pytest.mark.asyncio
    async def test_history_is_per_user(self, client, token_factory):
        alice = {"Authorization": f"Bearer {token_factory('alice')}"}
        bob = {"Authorization": f"Bearer {token_factory('bob')}"}
        await client.get("/search", params={"q": "flow"}, headers=alice)

        resp = await client.get("/search/history", headers=bob)
        assert resp.json()["history"] == []

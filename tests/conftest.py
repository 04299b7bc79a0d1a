"""Shared test fixtures and configuration."""

import os
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

# Demo catalog, memory history, no real upstreams during tests
os.environ.setdefault("CATALOG_SOURCE_URL", "")
os.environ.setdefault("CATALOG_SNAPSHOT_PATH", "")
os.environ.setdefault("HISTORY_BACKEND", "memory")
os.environ.setdefault("REDIS_URL", "redis://localhost:1")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from bazar_search.orchestrator.demo_data import get_demo_catalog  # noqa: E402
from bazar_search.orchestrator.schemas import CatalogData, Category, ProductRecord  # noqa: E402
from bazar_search.services.snapshots import SnapshotStore  # noqa: E402

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock for history retention tests."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def demo_catalog():
    return get_demo_catalog()


@pytest.fixture
def demo_store(demo_catalog):
    """Snapshot store with the demo catalog installed."""
    store = SnapshotStore()
    store.install(demo_catalog, source="demo")
    return store


@pytest.fixture
def flow_catalog():
    """A single product and its category."""
    return CatalogData(
        categories=[Category(id="c1", name="Productivity", slug="productivity")],
        products=[
            ProductRecord(
                id="p1", slug="flow-state", name="FlowState Task Manager",
                tagline="Focus without the noise", category="c1", upvotes=280,
            ),
        ],
    )


def make_token(subject: str = "user-1", secret: str = "test-secret", expires_in: int = 3600) -> str:
    claims = {"sub": subject, "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token('user-1')}"}


@pytest.fixture
def token_factory():
    return make_token

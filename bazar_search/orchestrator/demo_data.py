"""Demo catalog served when no catalog source is configured."""

from datetime import datetime, timedelta, timezone

from bazar_search.orchestrator.schemas import (
    Category,
    CatalogData,
    CompanyInfo,
    JobRecord,
    ProductRecord,
    ProjectRecord,
    UserRecord,
)


def get_demo_catalog(now: datetime | None = None) -> CatalogData:
    """Small, realistic catalog covering every entity kind."""
    now = now or datetime.now(timezone.utc)

    def days_ago(n: int) -> datetime:
        return now - timedelta(days=n)

    return CatalogData(
        categories=[
            Category(id="c1", name="Productivity", slug="productivity", icon="rocket"),
            Category(id="c2", name="Developer Tools", slug="developer-tools", icon="code"),
            Category(id="c3", name="Design", slug="design", icon="palette"),
            Category(id="c4", name="Games", slug="games", icon="gamepad"),
        ],
        products=[
            ProductRecord(
                id="p1", slug="flow-state", name="FlowState Task Manager",
                tagline="Deep-work sessions with zero context switching",
                category="c1", upvotes=280, views=5400, created_at=days_ago(30),
            ),
            ProductRecord(
                id="p2", slug="codepilot", name="CodePilot",
                tagline="Pair-programming assistant for your terminal",
                category="c2", upvotes=412, views=9100, created_at=days_ago(12),
            ),
            ProductRecord(
                id="p3", slug="pixel-forge", name="Pixel Forge",
                tagline="Collaborative design canvas for product teams",
                category="c3", upvotes=97, views=1500, created_at=days_ago(5),
            ),
            ProductRecord(
                id="p4", slug="flappy-rocket", name="Flappy Rocket",
                tagline="A happy little arcade game",
                category="c4", upvotes=55, views=800, created_at=days_ago(60),
            ),
            ProductRecord(
                id="p5", slug="draft-zero", name="Draft Zero",
                tagline="Unreleased writing tool", category="c1",
                upvotes=3, status="Draft", created_at=days_ago(1),
            ),
        ],
        jobs=[
            JobRecord(
                id="j1", title="Senior Python Engineer",
                company=CompanyInfo(name="FlowState Labs", profile_picture="https://cdn.bazar.dev/flowstate.png"),
                job_type="Full-time", location_type="Remote", posted_at=days_ago(3),
                expires_at=now + timedelta(days=27),
            ),
            JobRecord(
                id="j2", title="Product Designer",
                company=CompanyInfo(name="Pixel Forge"),
                job_type="Contract", location_type="Hybrid", posted_at=days_ago(9),
                expires_at=now + timedelta(days=20),
            ),
            JobRecord(
                id="j3", title="Frontend Developer",
                company=CompanyInfo(name="CodePilot"),
                job_type="Full-time", location_type="On-site", posted_at=days_ago(40),
                expires_at=days_ago(10),
            ),
        ],
        projects=[
            ProjectRecord(
                id="pr1", title="Open Flow Dashboard", category="c1",
                owner_name="Ana Ruiz", technologies=["React", "FastAPI", "PostgreSQL"],
                created_at=days_ago(14),
            ),
            ProjectRecord(
                id="pr2", title="Terminal Copilot Plugins", category="c2",
                owner_name="Dev Patel", technologies=["Python", "Rust"],
                created_at=days_ago(2),
            ),
        ],
        users=[
            UserRecord(
                id="u1", username="anaruiz", name="Ana Ruiz", role="maker",
                company_name="FlowState Labs", followers=340,
                profile_picture="https://cdn.bazar.dev/u/anaruiz.png",
            ),
            UserRecord(
                id="u2", username="devpatel", name="Dev Patel", role="developer",
                company_name="CodePilot", followers=120,
            ),
            UserRecord(
                id="u3", username="flowfan", name="Flo Wagner", role="user",
                followers=12,
            ),
        ],
    )

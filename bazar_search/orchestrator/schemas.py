"""Pydantic models for API input/output — shared across indexes and pipelines.

Split into: catalog records, pipeline values, and final API responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EntityKind = Literal["products", "jobs", "projects", "users"]
SearchType = Literal["all", "products", "jobs", "projects", "users"]
SuggestionSource = Literal["completion", "history", "spelling"]

ENTITY_KINDS: tuple[str, ...] = ("products", "jobs", "projects", "users")
SEARCH_TYPES: tuple[str, ...] = ("all", *ENTITY_KINDS)

UNCATEGORIZED = "Uncategorized"


# ═══════════════ CATALOG RECORDS (read-only snapshot input) ═══════════════

class CatalogRecord(BaseModel):
    """Accepts the upstream camelCase / Mongo `_id` shape as well as snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    hidden: bool = False
    deleted_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if isinstance(value, dict) and "$oid" in value:
            return str(value["$oid"])
        return str(value)

    def is_visible(self, now: datetime) -> bool:
        return not self.hidden and self.deleted_at is None


class Category(CatalogRecord):
    name: str
    slug: str = ""
    icon: str = ""


class CompanyInfo(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: str = ""
    profile_picture: str | None = None


class ProductRecord(CatalogRecord):
    slug: str
    name: str
    tagline: str = ""
    thumbnail: str | None = None
    category: str = ""
    upvotes: int = 0
    views: int = 0
    status: str = "Published"
    created_at: datetime | None = None

    @field_validator("upvotes", mode="before")
    @classmethod
    def _coerce_upvotes(cls, value: Any) -> int:
        """Legacy payloads carry `{count: n}` or the raw voter list."""
        if isinstance(value, dict):
            value = value.get("count", 0)
        elif isinstance(value, list):
            value = len(value)
        return max(int(value or 0), 0)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> str:
        if isinstance(value, dict):
            value = value.get("_id") or value.get("id") or ""
        return str(value or "")

    def is_visible(self, now: datetime) -> bool:
        return super().is_visible(now) and self.status == "Published"


class JobRecord(CatalogRecord):
    title: str
    company: CompanyInfo = Field(default_factory=CompanyInfo)
    job_type: str = ""
    location_type: str = ""
    status: str = "Published"
    posted_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("postedAt", "posted_at", "createdAt", "created_at"),
    )
    expires_at: datetime | None = None

    def is_visible(self, now: datetime) -> bool:
        if self.expires_at is not None and self.expires_at.timestamp() <= now.timestamp():
            return False
        return super().is_visible(now) and self.status == "Published"


class ProjectRecord(CatalogRecord):
    title: str
    thumbnail: str | None = None
    category: str = ""
    owner_name: str | None = None
    technologies: list[str] = Field(default_factory=list)
    visibility: str = "public"
    created_at: datetime | None = None

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> str:
        if isinstance(value, dict):
            value = value.get("_id") or value.get("id") or ""
        return str(value or "")

    def is_visible(self, now: datetime) -> bool:
        return super().is_visible(now) and self.visibility == "public"


class UserRecord(CatalogRecord):
    username: str
    name: str = ""
    role: str = "user"
    profile_picture: str | None = None
    company_name: str | None = None
    followers: int = 0
    is_active: bool = True

    @field_validator("profile_picture", mode="before")
    @classmethod
    def _coerce_picture(cls, value: Any) -> str | None:
        if isinstance(value, dict):
            return value.get("url")
        return value

    @field_validator("followers", mode="before")
    @classmethod
    def _coerce_followers(cls, value: Any) -> int:
        if isinstance(value, list):
            return len(value)
        return max(int(value or 0), 0)

    def is_visible(self, now: datetime) -> bool:
        return super().is_visible(now) and self.is_active


class CatalogData(BaseModel):
    """Raw catalog payload as delivered by ingestion."""

    model_config = ConfigDict(extra="ignore")

    products: list[ProductRecord] = Field(default_factory=list)
    jobs: list[JobRecord] = Field(default_factory=list)
    projects: list[ProjectRecord] = Field(default_factory=list)
    users: list[UserRecord] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    # token → frequency, keyed by entity kind; merged into the spelling index
    dictionary: dict[str, dict[str, int]] = Field(default_factory=dict)


# ═══════════════ PIPELINE VALUES ═══════════════

class NormalizedQuery(BaseModel):
    """Query Normalizer output."""
    canonical: str = ""
    prefix_key: str = ""
    length: int = 0


class SpellingCandidate(BaseModel):
    candidate: str
    edit_distance: int
    frequency: int


class MatchSpan(BaseModel):
    """Byte offsets of a matched token inside a canonical field value."""
    field: str
    start: int
    end: int


class Hit(BaseModel):
    """Single retrieval result. Ephemeral, built per request."""
    kind: EntityKind
    id: str
    display_fields: dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0
    match_spans: list[MatchSpan] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Flatten into the shape the client reads (`product.slug`, `job._id`, ...)."""
        payload = {"_id": self.id, **self.display_fields, "score": round(self.score, 4)}
        if self.match_spans:
            payload["matchSpans"] = [span.model_dump() for span in self.match_spans]
        return payload


class SearchFilters(BaseModel):
    """Optional per-kind result filters."""
    category: str | None = None
    job_type: str | None = None
    location_type: str | None = None
    role: str | None = None
    exclude_user_id: str | None = None

    def cache_fragment(self) -> dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v}


# ═══════════════ API REQUESTS ═══════════════

class SearchRequest(BaseModel):
    """Query parameters of GET /search."""
    q: Any = None
    type: str = "all"
    limit: int = 5
    page: int = 1
    natural_language: bool = False
    filters: SearchFilters = Field(default_factory=SearchFilters)


class SuggestionsRequest(BaseModel):
    q: Any = None
    type: str = "all"


# ═══════════════ API RESPONSES ═══════════════

class Suggestion(BaseModel):
    query: str
    kind: SearchType
    source: SuggestionSource
    isSpellingCorrection: bool = False


class HistoryEntry(BaseModel):
    query: str
    kind: SearchType
    recordedAt: datetime
    resultCountSnapshot: int = 0


class SearchResponse(BaseModel):
    """Final response sent to the client."""
    success: bool = True
    results: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    counts: dict[str, int] | None = None
    totalResults: int | None = None
    truncated: bool | None = None
    query: str | None = None
    type: str | None = None
    page: int | None = None
    limit: int | None = None
    error: str | None = None


class SuggestionsResponse(BaseModel):
    success: bool = True
    suggestions: list[Suggestion] = Field(default_factory=list)
    truncated: bool | None = None


class HistoryResponse(BaseModel):
    success: bool = True
    history: list[HistoryEntry] = Field(default_factory=list)
    error: str | None = None


class ClearHistoryResponse(BaseModel):
    success: bool = True
    error: str | None = None

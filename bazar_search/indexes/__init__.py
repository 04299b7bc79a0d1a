"""Entity indexes — one per searchable kind, sharing the lookup/completions contract."""

from bazar_search.indexes.base import EntityIndex, SearchField
from bazar_search.indexes.jobs import JobIndex
from bazar_search.indexes.products import ProductIndex
from bazar_search.indexes.projects import ProjectIndex
from bazar_search.indexes.users import UserIndex
from bazar_search.orchestrator.schemas import CatalogData
from bazar_search.services.categories import CategoryResolver


def build_indexes(catalog: CatalogData, categories: CategoryResolver) -> dict[str, EntityIndex]:
    """Build one index per kind from already-filtered catalog records."""
    return {
        "products": ProductIndex(catalog.products, categories),
        "jobs": JobIndex(catalog.jobs, categories),
        "projects": ProjectIndex(catalog.projects, categories),
        "users": UserIndex(catalog.users, categories),
    }


__all__ = [
    "EntityIndex",
    "JobIndex",
    "ProductIndex",
    "ProjectIndex",
    "SearchField",
    "UserIndex",
    "build_indexes",
]

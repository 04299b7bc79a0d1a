"""Products index — name, tagline and category name."""

from typing import Any

from bazar_search.indexes.base import EntityIndex, SearchField, same_value, timestamp
from bazar_search.orchestrator.schemas import ProductRecord, SearchFilters


class ProductIndex(EntityIndex[ProductRecord]):
    kind = "products"
    fields = (
        SearchField("name", 3.0),
        SearchField("tagline", 1.0),
        SearchField("categoryName", 0.5),
    )

    def field_values(self, record: ProductRecord) -> dict[str, str | list[str]]:
        category = self.categories.get(record.category)
        return {
            "name": record.name,
            "tagline": record.tagline,
            "categoryName": category.name if category else "",
        }

    def display_fields(self, record: ProductRecord) -> dict[str, Any]:
        return {
            "slug": record.slug,
            "name": record.name,
            "tagline": record.tagline,
            "thumbnail": record.thumbnail,
            "category": record.category,
            "upvotes": record.upvotes,
        }

    def tie_break(self, record: ProductRecord) -> tuple:
        return (-record.upvotes, -timestamp(record.created_at))

    def completion_values(self, record: ProductRecord) -> list[str]:
        return [record.name]

    def matches_filters(self, record: ProductRecord, filters: SearchFilters) -> bool:
        return not filters.category or same_value(record.category, filters.category)

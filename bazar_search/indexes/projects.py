"""Projects index — title, technologies and category name."""

from typing import Any

from bazar_search.indexes.base import EntityIndex, SearchField, same_value, timestamp
from bazar_search.orchestrator.schemas import ProjectRecord, SearchFilters


class ProjectIndex(EntityIndex[ProjectRecord]):
    kind = "projects"
    fields = (
        SearchField("title", 3.0),
        SearchField("technologies", 1.5),
        SearchField("categoryName", 0.5),
    )

    def field_values(self, record: ProjectRecord) -> dict[str, str | list[str]]:
        category = self.categories.get(record.category)
        return {
            "title": record.title,
            "technologies": list(record.technologies),
            "categoryName": category.name if category else "",
        }

    def display_fields(self, record: ProjectRecord) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "title": record.title,
            "thumbnail": record.thumbnail,
            "category": record.category,
            "ownerName": record.owner_name,
            "technologies": list(record.technologies),
        }
        if record.owner_name:
            fields["ownerDetails"] = [{"name": record.owner_name}]
        return fields

    def tie_break(self, record: ProjectRecord) -> tuple:
        return (-timestamp(record.created_at),)

    def completion_values(self, record: ProjectRecord) -> list[str]:
        return [record.title]

    def matches_filters(self, record: ProjectRecord, filters: SearchFilters) -> bool:
        return not filters.category or same_value(record.category, filters.category)

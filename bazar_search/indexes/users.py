"""Users index — name, username, company name and role."""

from typing import Any

from bazar_search.indexes.base import EntityIndex, SearchField, same_value
from bazar_search.orchestrator.schemas import SearchFilters, UserRecord


class UserIndex(EntityIndex[UserRecord]):
    kind = "users"
    fields = (
        SearchField("name", 3.0),
        SearchField("username", 2.5),
        SearchField("company", 1.0),
        SearchField("role", 0.5),
    )

    def field_values(self, record: UserRecord) -> dict[str, str | list[str]]:
        return {
            "name": record.name,
            "username": record.username,
            "company": record.company_name or "",
            "role": record.role,
        }

    def display_fields(self, record: UserRecord) -> dict[str, Any]:
        return {
            "username": record.username,
            "name": record.name,
            "role": record.role,
            "profilePicture": {"url": record.profile_picture} if record.profile_picture else None,
            "company": {"name": record.company_name},
        }

    def tie_break(self, record: UserRecord) -> tuple:
        return (-record.followers,)

    def completion_values(self, record: UserRecord) -> list[str]:
        return [v for v in (record.name, record.username) if v]

    def matches_filters(self, record: UserRecord, filters: SearchFilters) -> bool:
        if filters.exclude_user_id and record.id == filters.exclude_user_id:
            return False
        return not filters.role or same_value(record.role, filters.role)

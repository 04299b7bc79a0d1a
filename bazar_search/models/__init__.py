"""SQLAlchemy ORM models."""

from bazar_search.models.base import Base
from bazar_search.models.search_history import SearchHistory

__all__ = ["Base", "SearchHistory"]

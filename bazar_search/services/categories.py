"""Category Resolver — read-only mapping from category id to {name, slug, icon}."""

from collections.abc import Iterable

from bazar_search.orchestrator.schemas import UNCATEGORIZED, Category


class CategoryResolver:
    """Immutable per snapshot; safe to share between concurrent requests."""

    def __init__(self, categories: Iterable[Category] = ()):
        self._by_id: dict[str, Category] = {c.id: c for c in categories}

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, category_id: str | None) -> Category | None:
        if not category_id:
            return None
        return self._by_id.get(str(category_id))

    def name_for(self, category_id: str | None, default: str = UNCATEGORIZED) -> str:
        category = self.get(category_id)
        return category.name if category and category.name else default

    async def resolve_many(self, category_ids: Iterable[str | None]) -> dict[str, str]:
        return {str(cid or ""): self.name_for(cid) for cid in category_ids}

"""SearchHistory model — per-identity recent queries (database history backend)."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bazar_search.models.base import Base


class SearchHistory(Base):
    """One row per (identity, canonical query); re-running a query replaces its row."""

    __tablename__ = "search_history"
    __table_args__ = (
        Index("ix_search_history_identity_recorded", "identity_hash", "recorded_at"),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    query: Mapped[str] = mapped_column(String(512), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, insert_default="all")
    result_count: Mapped[int] = mapped_column(Integer, nullable=False, insert_default=0)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

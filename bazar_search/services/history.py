"""History Store — per-identity bounded log of executed queries.

Invariants:
  - at most `max_entries` per identity, oldest evicted on insert
  - re-running a query removes its prior entry and appends a new one
  - recordedAt strictly increases per identity (ties bumped by 1µs)
  - entries older than the retention horizon are evicted lazily on read
    and by the periodic sweep

Writes for one identity are serialized by a per-identity lock. Reads never
take the lock: the memory backend swaps whole lists (copy-on-write), the SQL
backend reads one committed state.
"""

import asyncio
import hashlib
import logging
from collections import Counter
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bazar_search.config import settings
from bazar_search.errors import HistoryUnavailable, Unauthorized
from bazar_search.models.search_history import SearchHistory
from bazar_search.orchestrator.schemas import HistoryEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def hash_identity(identity: str) -> str:
    return hashlib.sha256(identity.encode()).hexdigest()


def _require(identity: str | None) -> str:
    if not identity:
        raise Unauthorized("Sign in to use search history.")
    return identity


class IdentityLocks:
    """One asyncio.Lock per identity, dropped when nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, identity: str):
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._users[identity] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[identity] -= 1
            if self._users[identity] <= 0:
                del self._users[identity]
                self._locks.pop(identity, None)


class HistoryStore:
    """Common contract; see MemoryHistoryStore and SqlHistoryStore."""

    backend = "base"

    def __init__(
        self,
        max_entries: int | None = None,
        retention_days: int | None = None,
        clock: Clock = utcnow,
    ):
        self.max_entries = max_entries or settings.history_max_entries
        self.retention = timedelta(days=retention_days or settings.history_retention_days)
        self._clock = clock
        self._locks = IdentityLocks()

    def _cutoff(self) -> datetime:
        return self._clock() - self.retention

    def _next_timestamp(self, last: datetime | None) -> datetime:
        now = self._clock()
        if last is not None and now <= _aware(last):
            return _aware(last) + TICK
        return now

    async def append(self, identity: str | None, query: str, kind: str, result_count: int) -> HistoryEntry:
        raise NotImplementedError

    async def recent(self, identity: str | None, limit: int | None = 10) -> list[HistoryEntry]:
        raise NotImplementedError

    async def clear(self, identity: str | None) -> int:
        raise NotImplementedError

    async def sweep(self) -> int:
        """Remove expired entries for every identity. Returns the number removed."""
        raise NotImplementedError

    async def run_periodic_sweep(self, interval_seconds: int):
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                removed = await self.sweep()
                if removed:
                    logger.info("History sweep | backend=%s | removed=%d", self.backend, removed)
            except HistoryUnavailable as e:
                logger.warning("History sweep failed | %s", e.message)


class MemoryHistoryStore(HistoryStore):
    """Per-process store. Lists are oldest-first and replaced on every write."""

    backend = "memory"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._entries: dict[str, list[HistoryEntry]] = {}

    async def append(self, identity, query, kind, result_count):
        identity = _require(identity)
        async with self._locks.hold(identity):
            current = self._entries.get(identity, [])
            last = current[-1].recordedAt if current else None
            entry = HistoryEntry(
                query=query,
                kind=kind,
                recordedAt=self._next_timestamp(last),
                resultCountSnapshot=max(int(result_count), 0),
            )
            cutoff = self._cutoff()
            updated = [e for e in current if e.query != query and e.recordedAt >= cutoff]
            updated.append(entry)
            self._entries[identity] = updated[-self.max_entries:]
            return entry

    async def recent(self, identity, limit=10):
        identity = _require(identity)
        current = self._entries.get(identity, [])
        cutoff = self._cutoff()
        live = [e for e in current if e.recordedAt >= cutoff]
        if len(live) != len(current) and self._entries.get(identity) is current:
            # lazy eviction; no await between read and write
            self._entries[identity] = live
        newest_first = list(reversed(live))
        return newest_first if limit is None else newest_first[:limit]

    async def clear(self, identity):
        identity = _require(identity)
        async with self._locks.hold(identity):
            removed = self._entries.pop(identity, [])
        return len(removed)

    async def sweep(self):
        cutoff = self._cutoff()
        removed = 0
        for identity in list(self._entries):
            async with self._locks.hold(identity):
                current = self._entries.get(identity, [])
                live = [e for e in current if e.recordedAt >= cutoff]
                removed += len(current) - len(live)
                if live:
                    self._entries[identity] = live
                else:
                    self._entries.pop(identity, None)
        return removed


class SqlHistoryStore(HistoryStore):
    """SQLAlchemy-backed store; identities are stored as SHA-256 hashes."""

    backend = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._session_factory = session_factory

    @staticmethod
    def _to_entry(row: SearchHistory) -> HistoryEntry:
        return HistoryEntry(
            query=row.query,
            kind=row.kind,
            recordedAt=_aware(row.recorded_at),
            resultCountSnapshot=row.result_count,
        )

    async def append(self, identity, query, kind, result_count):
        identity = _require(identity)
        key = hash_identity(identity)
        try:
            async with self._locks.hold(identity):
                async with self._session_factory() as session:
                    async with session.begin():
                        last = await session.scalar(
                            select(func.max(SearchHistory.recorded_at))
                            .where(SearchHistory.identity_hash == key)
                        )
                        row = SearchHistory(
                            identity_hash=key,
                            query=query,
                            kind=kind,
                            result_count=max(int(result_count), 0),
                            recorded_at=self._next_timestamp(last),
                        )
                        await session.execute(
                            delete(SearchHistory).where(
                                SearchHistory.identity_hash == key,
                                SearchHistory.query == query,
                            )
                        )
                        session.add(row)
                        await session.flush()

                        seqs = (await session.scalars(
                            select(SearchHistory.seq)
                            .where(SearchHistory.identity_hash == key)
                            .order_by(SearchHistory.recorded_at.desc(), SearchHistory.seq.desc())
                        )).all()
                        stale = list(seqs[self.max_entries:])
                        if stale:
                            await session.execute(
                                delete(SearchHistory).where(SearchHistory.seq.in_(stale))
                            )
                    return self._to_entry(row)
        except SQLAlchemyError as e:
            logger.error("History append failed | %s", str(e)[:200])
            raise HistoryUnavailable() from e

    async def recent(self, identity, limit=10):
        identity = _require(identity)
        key = hash_identity(identity)
        cutoff = self._cutoff()
        try:
            async with self._session_factory() as session:
                stmt = (
                    select(SearchHistory)
                    .where(SearchHistory.identity_hash == key, SearchHistory.recorded_at >= cutoff)
                    .order_by(SearchHistory.recorded_at.desc(), SearchHistory.seq.desc())
                )
                if limit is not None:
                    stmt = stmt.limit(limit)
                rows = (await session.scalars(stmt)).all()

                expired = await session.execute(
                    delete(SearchHistory).where(
                        SearchHistory.identity_hash == key,
                        SearchHistory.recorded_at < cutoff,
                    )
                )
                if expired.rowcount:
                    await session.commit()
                return [self._to_entry(r) for r in rows]
        except SQLAlchemyError as e:
            logger.error("History read failed | %s", str(e)[:200])
            raise HistoryUnavailable() from e

    async def clear(self, identity):
        identity = _require(identity)
        key = hash_identity(identity)
        try:
            async with self._locks.hold(identity):
                async with self._session_factory() as session:
                    async with session.begin():
                        result = await session.execute(
                            delete(SearchHistory).where(SearchHistory.identity_hash == key)
                        )
                    return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error("History clear failed | %s", str(e)[:200])
            raise HistoryUnavailable() from e

    async def sweep(self):
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(SearchHistory).where(SearchHistory.recorded_at < self._cutoff())
                    )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error("History sweep failed | %s", str(e)[:200])
            raise HistoryUnavailable() from e

"""Cache of computed aggregates.

Entries are keyed by ``PeriodKey`` and carry the UTC time their computation
started. Freshness is derived from that timestamp and the clock on every
lookup, so an entry never has to be marked stale. Entries are only ever
replaced whole or removed.

Each subject has a generation number that ``invalidate`` bumps. A compute
that began under an older generation is returned to its caller but never
written back.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional, Protocol, Union

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from aggregation import Aggregate, CategoryLine, MonthSlot
from clock import Clock, SystemClock
from models import AnalyticsSnapshot, TransactionType
from periods import Granularity, PeriodKey


logger = logging.getLogger(__name__)

FRESHNESS_WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class CacheEntry:
    key: PeriodKey
    aggregate: Aggregate
    computed_at: datetime

    def is_fresh(self, now: datetime, window: timedelta = FRESHNESS_WINDOW) -> bool:
        return now - self.computed_at < window


class CacheBackend(Protocol):
    def get(self, key: PeriodKey) -> Optional[CacheEntry]: ...

    def set(self, key: PeriodKey, entry: CacheEntry) -> None: ...

    def delete(self, key: PeriodKey) -> bool: ...

    def keys(self) -> list[PeriodKey]: ...


class MemoryCacheBackend:
    """Entries held in this process only."""

    def __init__(self) -> None:
        self._entries: dict[PeriodKey, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: PeriodKey) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: PeriodKey, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: PeriodKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def keys(self) -> list[PeriodKey]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[PeriodKey]:
        return iter(self.keys())


def _cache_key(key: PeriodKey) -> str:
    return f"{key.subject_id}:{key.granularity.value}:{key.slug}"


def _snapshot_payload(aggregate: Aggregate) -> dict[str, Any]:
    monthly = None
    if aggregate.monthly_breakdown is not None:
        monthly = [
            {
                "month": slot.month,
                "income": str(slot.income),
                "expenses": str(slot.expenses),
                "transaction_count": slot.transaction_count,
            }
            for slot in aggregate.monthly_breakdown
        ]
    return {
        "total_income": str(aggregate.total_income),
        "total_expenses": str(aggregate.total_expenses),
        "transaction_count": aggregate.transaction_count,
        "average_transaction_amount": str(aggregate.average_transaction_amount),
        "category_breakdown": [
            {
                "category": line.category,
                "kind": line.kind.value,
                "amount": str(line.amount),
                "count": line.count,
                "percentage_of_total": line.percentage_of_total,
            }
            for line in aggregate.category_breakdown
        ],
        "monthly_breakdown": monthly,
    }


def _aggregate_from_payload(key: PeriodKey, payload: dict[str, Any]) -> Aggregate:
    monthly = payload.get("monthly_breakdown")
    return Aggregate(
        key=key,
        total_income=Decimal(payload["total_income"]),
        total_expenses=Decimal(payload["total_expenses"]),
        transaction_count=int(payload["transaction_count"]),
        average_transaction_amount=Decimal(payload["average_transaction_amount"]),
        category_breakdown=tuple(
            CategoryLine(
                category=line["category"],
                kind=TransactionType(line["kind"]),
                amount=Decimal(line["amount"]),
                count=int(line["count"]),
                percentage_of_total=int(line["percentage_of_total"]),
            )
            for line in payload.get("category_breakdown", [])
        ),
        monthly_breakdown=(
            tuple(
                MonthSlot(
                    month=int(slot["month"]),
                    income=Decimal(slot["income"]),
                    expenses=Decimal(slot["expenses"]),
                    transaction_count=int(slot["transaction_count"]),
                )
                for slot in monthly
            )
            if monthly is not None
            else None
        ),
    )


class SqlCacheBackend:
    """Entries stored in ``analytics_snapshots``, visible to every worker.

    Each call runs in its own short session so the backend can be shared
    across request threads and the scheduler.
    """

    def __init__(self, session_factory: Optional[sessionmaker[Session]] = None) -> None:
        if session_factory is None:
            from database import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    def get(self, key: PeriodKey) -> Optional[CacheEntry]:
        with self.session_factory() as session:
            row = session.scalar(
                select(AnalyticsSnapshot).where(
                    AnalyticsSnapshot.cache_key == _cache_key(key)
                )
            )
            if row is None:
                return None
            return CacheEntry(
                key=key,
                aggregate=_aggregate_from_payload(key, row.payload),
                computed_at=row.computed_at,
            )

    def set(self, key: PeriodKey, entry: CacheEntry) -> None:
        with self.session_factory() as session, session.begin():
            row = session.scalar(
                select(AnalyticsSnapshot).where(
                    AnalyticsSnapshot.cache_key == _cache_key(key)
                )
            )
            if row is None:
                row = AnalyticsSnapshot(
                    cache_key=_cache_key(key),
                    subject_id=key.subject_id,
                    granularity=key.granularity.value,
                    year=key.year,
                    month=key.month,
                )
                session.add(row)
            row.payload = _snapshot_payload(entry.aggregate)
            row.computed_at = entry.computed_at

    def delete(self, key: PeriodKey) -> bool:
        with self.session_factory() as session, session.begin():
            result = session.execute(
                delete(AnalyticsSnapshot).where(
                    AnalyticsSnapshot.cache_key == _cache_key(key)
                )
            )
            return bool(result.rowcount)

    def keys(self) -> list[PeriodKey]:
        with self.session_factory() as session:
            rows = session.execute(
                select(
                    AnalyticsSnapshot.subject_id,
                    AnalyticsSnapshot.granularity,
                    AnalyticsSnapshot.year,
                    AnalyticsSnapshot.month,
                ).order_by(AnalyticsSnapshot.id)
            ).all()
        return [
            PeriodKey(row.subject_id, Granularity(row.granularity), row.year, row.month)
            for row in rows
        ]


class AnalyticsCache:
    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        clock: Optional[Clock] = None,
        *,
        freshness_window: timedelta = FRESHNESS_WINDOW,
    ) -> None:
        self.backend: CacheBackend = backend or MemoryCacheBackend()
        self.clock: Clock = clock or SystemClock()
        self.freshness_window = freshness_window
        self._generations: dict[str, int] = {}
        # Held across the generation check and the backend write, and across
        # the bump and the deletes, so neither can interleave with the other.
        self._write_lock = threading.RLock()

    def generation(self, subject_id: str) -> int:
        with self._write_lock:
            return self._generations.get(subject_id, 0)

    def lookup(self, key: PeriodKey) -> Optional[CacheEntry]:
        """Return the entry for ``key`` if it is still fresh."""
        entry = self.backend.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self.clock.utcnow(), self.freshness_window):
            return None
        return entry

    def store(
        self,
        key: PeriodKey,
        aggregate: Aggregate,
        *,
        computed_at: Optional[datetime] = None,
        expected_generation: Optional[int] = None,
    ) -> Optional[CacheEntry]:
        """Write ``aggregate``; skipped when the subject was invalidated since
        ``expected_generation`` was read."""
        with self._write_lock:
            if (
                expected_generation is not None
                and expected_generation != self._generations.get(key.subject_id, 0)
            ):
                logger.info(
                    f"cache_write_skipped: period={key.slug} "
                    f"subject={key.subject_id} reason=invalidated"
                )
                return None
            entry = CacheEntry(
                key=key,
                aggregate=aggregate,
                computed_at=computed_at or self.clock.utcnow(),
            )
            self.backend.set(key, entry)
            return entry

    def get_or_compute(
        self,
        key: PeriodKey,
        compute_fn: Callable[[], Aggregate],
        *,
        force_refresh: bool = False,
    ) -> Aggregate:
        if not force_refresh:
            entry = self.lookup(key)
            if entry is not None:
                logger.debug(f"cache_hit: period={key.slug} subject={key.subject_id}")
                return entry.aggregate

        # Concurrent misses on the same key may both recompute; last write wins.
        generation = self.generation(key.subject_id)
        started_at = self.clock.utcnow()
        aggregate = compute_fn()
        try:
            self.store(
                key,
                aggregate,
                computed_at=started_at,
                expected_generation=generation,
            )
        except Exception:
            logger.warning(
                f"cache_write_failed: period={key.slug} subject={key.subject_id}",
                exc_info=True,
            )
        return aggregate

    def invalidate(self, target: Union[PeriodKey, str]) -> int:
        subject_id = target.subject_id if isinstance(target, PeriodKey) else target
        with self._write_lock:
            self._generations[subject_id] = self._generations.get(subject_id, 0) + 1
            if isinstance(target, PeriodKey):
                removed = int(self.backend.delete(target))
            else:
                removed = 0
                for key in self.backend.keys():
                    if key.subject_id == subject_id and self.backend.delete(key):
                        removed += 1
        logger.info(f"cache_invalidated: subject={subject_id} entries={removed}")
        return removed

    def purge_stale(self) -> int:
        now = self.clock.utcnow()
        removed = 0
        with self._write_lock:
            for key in self.backend.keys():
                entry = self.backend.get(key)
                if entry is not None and not entry.is_fresh(now, self.freshness_window):
                    if self.backend.delete(key):
                        removed += 1
        return removed

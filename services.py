from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.orm import Session

from aggregation import Aggregate, PeriodAggregator
from cache import AnalyticsCache
from clock import Clock, SystemClock
from errors import InputError
from forecast import ForecastEstimator, ForecastResult
from periods import MIN_YEAR, Granularity, PeriodKey
from source_client import SourceClient, TransactionSource
from store import ProfileStore, TransactionStore
from sync import SyncOutcome, SyncReconciler
from trends import TrendResult, trend


logger = logging.getLogger(__name__)

MONTH_LABELS = [
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
]

YEARS_IN_TREND = 3


@dataclass(frozen=True)
class Recalculation:
    yearly: Aggregate
    monthly: tuple[Aggregate, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "yearly": self.yearly.to_dict(),
            "monthly": [aggregate.to_dict() for aggregate in self.monthly],
        }


@dataclass(frozen=True)
class SyncStatus:
    subject_id: str
    transaction_count: int
    last_synced_at: Optional[datetime]
    profile_synced: bool
    profile_last_synced_at: Optional[datetime]

    def to_dict(self) -> dict[str, object]:
        return {
            "subject_id": self.subject_id,
            "transaction_count": self.transaction_count,
            "last_synced_at": _iso(self.last_synced_at),
            "profile_synced": self.profile_synced,
            "profile_last_synced_at": _iso(self.profile_last_synced_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AnalyticsService:
    def __init__(
        self,
        session: Session,
        cache: AnalyticsCache,
        *,
        clock: Optional[Clock] = None,
        source: Optional[TransactionSource] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.clock = clock or SystemClock()
        self.store = TransactionStore(session)
        self.profiles = ProfileStore(session)
        self.aggregator = PeriodAggregator(self.store, cache=cache, clock=self.clock)
        self.forecaster = ForecastEstimator(self.store, self.clock)
        self._source = source

    @property
    def source(self) -> TransactionSource:
        if self._source is None:
            self._source = SourceClient()
        return self._source

    def _cached(self, key: PeriodKey, *, force_refresh: bool = False) -> Aggregate:
        return self.cache.get_or_compute(
            key, lambda: self.aggregator.compute(key), force_refresh=force_refresh
        )

    def get_stats(
        self,
        subject_id: str,
        year: int,
        month: Optional[int] = None,
        *,
        force_sync: bool = False,
        auth_token: Optional[str] = None,
    ) -> Aggregate:
        key = PeriodKey.resolve(subject_id, year, month)
        if force_sync:
            if not auth_token:
                raise InputError("forceSync needs an auth token to reach the source")
            self.sync(subject_id, auth_token)
        return self._cached(key, force_refresh=force_sync)

    def period_trend(
        self, subject_id: str, year: int, month: Optional[int] = None
    ) -> TrendResult:
        key = PeriodKey.resolve(subject_id, year, month)
        previous = self._cached(key.previous()) if key.has_previous else None
        return trend(self._cached(key), previous)

    def get_trends(
        self,
        subject_id: str,
        year: int,
        period: Union[Granularity, str] = Granularity.monthly,
        month: Optional[int] = None,
    ) -> Union[TrendResult, dict[int, float]]:
        try:
            granularity = Granularity(period)
        except ValueError as exc:
            raise InputError(f"Unknown trend period: {period!r}") from exc
        PeriodKey.for_year(subject_id, year)  # rejects a bad subject or year up front

        if granularity is Granularity.yearly:
            balances: dict[int, float] = {}
            first = max(MIN_YEAR, year - YEARS_IN_TREND + 1)
            for target in range(first, year + 1):
                aggregate = self._cached(PeriodKey.for_year(subject_id, target))
                balances[target] = float(aggregate.net_balance)
            return balances

        if month is None:
            today = self.clock.now().date()
            month = today.month if today.year == year else 12
        return self.period_trend(subject_id, year, month)

    def get_forecast(self, subject_id: str) -> ForecastResult:
        if not subject_id:
            raise InputError("Subject id is required")
        return self.forecaster.forecast(subject_id)

    def sync(self, subject_id: str, auth_token: str) -> SyncOutcome:
        if not subject_id:
            raise InputError("Subject id is required")
        reconciler = SyncReconciler(
            self.store, self.profiles, self.source, self.cache, self.clock
        )
        return reconciler.sync(subject_id, auth_token)

    def recalculate_all(self, subject_id: str, year: int) -> Recalculation:
        yearly_key = PeriodKey.for_year(subject_id, year)
        logger.info(f"recalculate_start: subject={subject_id} year={year}")
        yearly = self._cached(yearly_key, force_refresh=True)
        monthly = tuple(
            self._cached(month_key, force_refresh=True)
            for month_key in yearly_key.months()
        )
        logger.info(f"recalculate_done: subject={subject_id} year={year}")
        return Recalculation(yearly=yearly, monthly=monthly)

    def chart_data(self, subject_id: str, year: int) -> dict[str, object]:
        aggregate = self._cached(PeriodKey.for_year(subject_id, year))
        income = [0.0] * 12
        expenses = [0.0] * 12
        for slot in aggregate.monthly_breakdown or ():
            income[slot.month - 1] = float(slot.income)
            expenses[slot.month - 1] = float(slot.expenses)
        return {
            "labels": list(MONTH_LABELS),
            "income": income,
            "expenses": expenses,
            "totals": {
                "income": float(aggregate.total_income),
                "expenses": float(aggregate.total_expenses),
                "balance": float(aggregate.net_balance),
            },
            "year": year,
        }

    def sync_status(self, subject_id: str) -> SyncStatus:
        profile = self.profiles.get(subject_id)
        return SyncStatus(
            subject_id=subject_id,
            transaction_count=self.store.count_by_subject(subject_id),
            last_synced_at=self.store.most_recent_synced_at(subject_id),
            profile_synced=profile is not None and not profile.is_default,
            profile_last_synced_at=profile.last_synced_at if profile else None,
        )

    def clear(self, subject_id: str) -> dict[str, int]:
        transactions_deleted = self.store.delete_subject(subject_id)
        profiles_deleted = self.profiles.delete(subject_id)
        self.session.commit()
        self.cache.invalidate(subject_id)
        return {
            "transactions_deleted": transactions_deleted,
            "profile_deleted": profiles_deleted,
        }

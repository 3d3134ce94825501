from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Iterable, Optional

from clock import Clock, SystemClock
from models import TransactionCopy, TransactionType, cents_to_amount
from periods import Granularity, PeriodKey
from store import TransactionStore

if TYPE_CHECKING:  # pragma: no cover
    from cache import AnalyticsCache


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CategoryLine:
    category: str
    kind: TransactionType
    amount: Decimal
    count: int
    percentage_of_total: int

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category,
            "kind": self.kind.value,
            "amount": float(self.amount),
            "count": self.count,
            "percentage_of_total": self.percentage_of_total,
        }


@dataclass(frozen=True)
class MonthSlot:
    month: int
    income: Decimal
    expenses: Decimal
    transaction_count: int

    @property
    def balance(self) -> Decimal:
        return self.income - self.expenses

    def to_dict(self) -> dict[str, object]:
        return {
            "month": self.month,
            "income": float(self.income),
            "expenses": float(self.expenses),
            "balance": float(self.balance),
            "transaction_count": self.transaction_count,
        }


@dataclass(frozen=True)
class Aggregate:
    """Summary of one subject's completed transactions over one period."""

    key: PeriodKey
    total_income: Decimal
    total_expenses: Decimal
    transaction_count: int
    average_transaction_amount: Decimal
    category_breakdown: tuple[CategoryLine, ...] = ()
    monthly_breakdown: Optional[tuple[MonthSlot, ...]] = None

    @property
    def net_balance(self) -> Decimal:
        return self.total_income - self.total_expenses

    @classmethod
    def empty(cls, key: PeriodKey, *, include_monthly: bool = False) -> "Aggregate":
        monthly = None
        if include_monthly:
            monthly = tuple(
                MonthSlot(month, Decimal(0), Decimal(0), 0) for month in range(1, 13)
            )
        return cls(
            key=key,
            total_income=Decimal(0),
            total_expenses=Decimal(0),
            transaction_count=0,
            average_transaction_amount=Decimal(0),
            monthly_breakdown=monthly,
        )

    def lines_for(self, kind: TransactionType) -> list[CategoryLine]:
        return [line for line in self.category_breakdown if line.kind == kind]

    def to_dict(self) -> dict[str, object]:
        return {
            "subject_id": self.key.subject_id,
            "period": self.key.granularity.value,
            "year": self.key.year,
            "month": self.key.month,
            "total_income": float(self.total_income),
            "total_expenses": float(self.total_expenses),
            "net_balance": float(self.net_balance),
            "transaction_count": self.transaction_count,
            "average_transaction_amount": float(self.average_transaction_amount),
            "category_breakdown": [line.to_dict() for line in self.category_breakdown],
            "monthly_breakdown": (
                [slot.to_dict() for slot in self.monthly_breakdown]
                if self.monthly_breakdown is not None
                else None
            ),
        }


def _share_percentages(amounts: list[int]) -> list[int]:
    """Integer percentages of ``amounts`` that add up to exactly 100.

    Largest-remainder method: floor every share, then hand the missing points
    to the largest remainders (earlier entries win ties).
    """
    total = sum(amounts)
    if total <= 0:
        return [0] * len(amounts)
    floors = [(amount * 100) // total for amount in amounts]
    remainders = [(amount * 100) % total for amount in amounts]
    missing = 100 - sum(floors)
    order = sorted(range(len(amounts)), key=lambda i: (-remainders[i], i))
    for index in order[:missing]:
        floors[index] += 1
    return floors


def build_category_breakdown(
    transactions: Iterable[TransactionCopy],
) -> tuple[CategoryLine, ...]:
    grouped: dict[tuple[str, TransactionType], list[int]] = {}
    for txn in transactions:
        bucket = grouped.setdefault((txn.category, txn.type), [0, 0])
        bucket[0] += txn.amount_cents
        bucket[1] += 1

    ordered = sorted(
        grouped.items(),
        key=lambda item: (-item[1][0], item[0][0], item[0][1].value),
    )

    percentages: dict[tuple[str, TransactionType], int] = {}
    for kind in TransactionType:
        keys = [key for key, _ in ordered if key[1] == kind]
        shares = _share_percentages([grouped[key][0] for key in keys])
        percentages.update(zip(keys, shares))

    return tuple(
        CategoryLine(
            category=category,
            kind=kind,
            amount=cents_to_amount(cents),
            count=count,
            percentage_of_total=percentages[(category, kind)],
        )
        for (category, kind), (cents, count) in ordered
    )


def _totals(transactions: list[TransactionCopy]) -> tuple[int, int]:
    income = sum(t.amount_cents for t in transactions if t.type == TransactionType.income)
    expenses = sum(
        t.amount_cents for t in transactions if t.type == TransactionType.expense
    )
    return income, expenses


class PeriodAggregator:
    def __init__(
        self,
        store: TransactionStore,
        cache: Optional["AnalyticsCache"] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.clock = clock or SystemClock()

    def aggregate(
        self,
        subject_id: str,
        granularity: Granularity,
        year: int,
        month: Optional[int] = None,
    ) -> Aggregate:
        key = PeriodKey(subject_id, granularity, year, month)
        generation = self.cache.generation(subject_id) if self.cache else None
        started_at = self.clock.utcnow()
        result = self.compute(key)
        self._remember(result, generation, started_at)
        return result

    def compute(self, key: PeriodKey, *, include_monthly: bool = True) -> Aggregate:
        """Aggregate ``key`` from the store without touching the cache.

        Period bounds are local wall time; stored ``occurred_at`` values are
        UTC, so the window is translated before querying.
        """
        transactions = self.store.find(
            key.subject_id, self.clock.to_utc(key.start), self.clock.to_utc(key.end)
        )
        with_months = include_monthly and not key.is_monthly

        if not transactions:
            return Aggregate.empty(key, include_monthly=with_months)

        income, expenses = _totals(transactions)
        count = len(transactions)
        average = (cents_to_amount(income + expenses) / count).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        monthly = self._monthly_breakdown(key) if with_months else None
        return Aggregate(
            key=key,
            total_income=cents_to_amount(income),
            total_expenses=cents_to_amount(expenses),
            transaction_count=count,
            average_transaction_amount=average,
            category_breakdown=build_category_breakdown(transactions),
            monthly_breakdown=monthly,
        )

    def _monthly_breakdown(self, key: PeriodKey) -> tuple[MonthSlot, ...]:
        slots = []
        for month_key in key.months():
            month_aggregate = self.compute(month_key)
            slots.append(
                MonthSlot(
                    month=month_key.month,  # type: ignore[arg-type]
                    income=month_aggregate.total_income,
                    expenses=month_aggregate.total_expenses,
                    transaction_count=month_aggregate.transaction_count,
                )
            )
        return tuple(slots)

    def _remember(
        self, result: Aggregate, generation: Optional[int], started_at: datetime
    ) -> None:
        if self.cache is None:
            return
        try:
            self.cache.store(
                result.key,
                result,
                computed_at=started_at,
                expected_generation=generation,
            )
        except Exception:
            logger.warning(
                f"cache_write_failed: period={result.key.slug} "
                f"subject={result.key.subject_id}",
                exc_info=True,
            )

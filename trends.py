from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from aggregation import Aggregate

NO_CATEGORY = "none"

_HUNDREDTH = Decimal("0.01")


@dataclass(frozen=True)
class TrendResult:
    income_change_percent: Decimal
    expense_change_percent: Decimal
    top_category: str
    average_transaction: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "income_change_percent": float(self.income_change_percent),
            "expense_change_percent": float(self.expense_change_percent),
            "top_category": self.top_category,
            "average_transaction": float(self.average_transaction),
        }


def change_percent(current: Decimal, previous: Decimal) -> Decimal:
    """Relative change in percent, 0 when there is nothing to compare against."""
    if previous <= 0:
        return Decimal("0.00")
    change = (current - previous) / previous * 100
    return change.quantize(_HUNDREDTH, rounding=ROUND_HALF_UP)


def trend(current: Aggregate, previous: Optional[Aggregate]) -> TrendResult:
    """Compare ``current`` with ``previous``; a missing previous period counts as zero."""
    previous_income = previous.total_income if previous is not None else Decimal(0)
    previous_expenses = previous.total_expenses if previous is not None else Decimal(0)
    top_category = (
        current.category_breakdown[0].category
        if current.category_breakdown
        else NO_CATEGORY
    )
    return TrendResult(
        income_change_percent=change_percent(
            current.total_income, previous_income
        ),
        expense_change_percent=change_percent(
            current.total_expenses, previous_expenses
        ),
        top_category=top_category,
        average_transaction=current.average_transaction_amount,
    )

from decimal import Decimal

from aggregation import Aggregate, CategoryLine
from models import TransactionType
from periods import PeriodKey
from trends import NO_CATEGORY, change_percent, trend


def _aggregate(income, expenses, lines=()) -> Aggregate:
    return Aggregate(
        key=PeriodKey.for_month("user-1", 2025, 3),
        total_income=Decimal(income),
        total_expenses=Decimal(expenses),
        transaction_count=2,
        average_transaction_amount=Decimal("12.50"),
        category_breakdown=tuple(lines),
    )


def test_zero_previous_income_gives_zero_change() -> None:
    result = trend(_aggregate(500, 0), _aggregate(0, 0))
    assert result.income_change_percent == 0
    assert result.expense_change_percent == 0


def test_change_percent_is_rounded_to_two_decimals() -> None:
    assert change_percent(Decimal(200), Decimal(300)) == Decimal("-33.33")
    assert change_percent(Decimal(100), Decimal(300)) == Decimal("-66.67")
    assert change_percent(Decimal(450), Decimal(300)) == Decimal("50.00")


def test_trend_compares_income_and_expenses_independently() -> None:
    result = trend(_aggregate(1100, 900), _aggregate(1000, 1200))
    assert result.income_change_percent == Decimal("10.00")
    assert result.expense_change_percent == Decimal("-25.00")
    assert result.average_transaction == Decimal("12.50")


def test_top_category_comes_from_current_period() -> None:
    current = _aggregate(
        0,
        100,
        [CategoryLine("Rent", TransactionType.expense, Decimal(100), 1, 100)],
    )
    previous = _aggregate(
        0,
        50,
        [CategoryLine("Food", TransactionType.expense, Decimal(50), 1, 100)],
    )
    assert trend(current, previous).top_category == "Rent"


def test_top_category_sentinel_when_empty() -> None:
    result = trend(_aggregate(0, 0), _aggregate(0, 0))
    assert result.top_category == NO_CATEGORY
    assert result.to_dict()["top_category"] == "none"


def test_missing_previous_period_counts_as_zero() -> None:
    result = trend(_aggregate(300, 100), None)
    assert result.income_change_percent == 0
    assert result.expense_change_percent == 0
    assert result.average_transaction == Decimal("12.50")

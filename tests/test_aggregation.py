from datetime import datetime
from decimal import Decimal

from aggregation import PeriodAggregator
from conftest import ManualClock
from models import TransactionStatus, TransactionType
from periods import Granularity, PeriodKey
from store import TransactionStore

income = TransactionType.income
expense = TransactionType.expense


def test_march_scenario_totals(session, add_txn) -> None:
    add_txn(3000, income, "Salary", datetime(2025, 3, 1))
    add_txn(2200, expense, "Rent", datetime(2025, 3, 5))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    assert result.total_income == Decimal("3000")
    assert result.total_expenses == Decimal("2200")
    assert result.net_balance == Decimal("800")
    assert result.transaction_count == 2
    assert result.average_transaction_amount == Decimal("2600")
    assert result.monthly_breakdown is None


def test_empty_year_has_zero_totals_and_twelve_zero_months(session) -> None:
    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.yearly, 2025
    )

    assert result.total_income == 0
    assert result.total_expenses == 0
    assert result.net_balance == 0
    assert result.transaction_count == 0
    assert result.average_transaction_amount == 0
    assert result.category_breakdown == ()
    assert len(result.monthly_breakdown) == 12
    assert [slot.month for slot in result.monthly_breakdown] == list(range(1, 13))
    assert all(
        slot.income == 0 and slot.expenses == 0 and slot.transaction_count == 0
        for slot in result.monthly_breakdown
    )


def test_window_boundaries_are_inclusive_and_exclusive_at_the_edges(
    session, add_txn
) -> None:
    add_txn(10, expense, "Food", datetime(2025, 2, 28, 23, 59, 59))
    add_txn(20, expense, "Food", datetime(2025, 3, 1, 0, 0, 0))
    add_txn(30, expense, "Food", datetime(2025, 3, 31, 23, 59, 59))
    add_txn(40, expense, "Food", datetime(2025, 4, 1, 0, 0, 0))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    assert result.total_expenses == Decimal("50")
    assert result.transaction_count == 2


def test_leap_day_is_counted_in_february(session, add_txn) -> None:
    add_txn(99, expense, "Food", datetime(2024, 2, 29, 18, 0))

    aggregator = PeriodAggregator(TransactionStore(session))
    assert aggregator.aggregate("user-1", Granularity.monthly, 2024, 2).transaction_count == 1
    assert aggregator.aggregate("user-1", Granularity.monthly, 2024, 3).transaction_count == 0


def test_only_completed_transactions_are_included(session, add_txn) -> None:
    add_txn(100, income, "Salary", datetime(2025, 3, 1))
    add_txn(500, income, "Bonus", datetime(2025, 3, 2), status=TransactionStatus.pending)
    add_txn(70, expense, "Food", datetime(2025, 3, 3), status=TransactionStatus.failed)

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    assert result.total_income == Decimal("100")
    assert result.total_expenses == 0
    assert result.transaction_count == 1


def test_other_subjects_are_not_mixed_in(session, add_txn) -> None:
    add_txn(100, income, "Salary", datetime(2025, 3, 1))
    add_txn(900, income, "Salary", datetime(2025, 3, 1), subject_id="user-2")

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )
    assert result.total_income == Decimal("100")


def test_same_category_name_is_split_by_kind(session, add_txn) -> None:
    add_txn(300, income, "Gifts", datetime(2025, 3, 1))
    add_txn(120, expense, "Gifts", datetime(2025, 3, 2))
    add_txn(80, expense, "Gifts", datetime(2025, 3, 3))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    lines = [(l.category, l.kind, l.amount, l.count) for l in result.category_breakdown]
    assert lines == [
        ("Gifts", income, Decimal("300"), 1),
        ("Gifts", expense, Decimal("200"), 2),
    ]
    assert result.lines_for(income)[0].percentage_of_total == 100
    assert result.lines_for(expense)[0].percentage_of_total == 100


def test_breakdown_sorted_by_amount_then_name(session, add_txn) -> None:
    add_txn(50, expense, "Transport", datetime(2025, 3, 1))
    add_txn(50, expense, "Leisure", datetime(2025, 3, 2))
    add_txn(400, expense, "Rent", datetime(2025, 3, 3))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    assert [l.category for l in result.category_breakdown] == [
        "Rent",
        "Leisure",
        "Transport",
    ]


def test_expense_percentages_sum_to_hundred(session, add_txn) -> None:
    for name in ["A", "B", "C", "D", "E", "F", "G"]:
        add_txn(10, expense, name, datetime(2025, 3, 1))
    add_txn(1000, income, "Salary", datetime(2025, 3, 1))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    expense_shares = [l.percentage_of_total for l in result.lines_for(expense)]
    assert len(expense_shares) == 7
    assert abs(sum(expense_shares) - 100) <= 1
    assert max(expense_shares) - min(expense_shares) <= 1
    assert [l.percentage_of_total for l in result.lines_for(income)] == [100]


def test_percentages_are_zero_for_a_kind_without_amount(session, add_txn) -> None:
    add_txn(0, expense, "Free sample", datetime(2025, 3, 1))
    add_txn(100, income, "Salary", datetime(2025, 3, 2))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    assert result.total_expenses == 0
    assert [l.percentage_of_total for l in result.lines_for(expense)] == [0]


def test_yearly_monthly_breakdown_matches_month_totals(session, add_txn) -> None:
    add_txn(1000, income, "Salary", datetime(2025, 1, 31))
    add_txn(250.5, expense, "Food", datetime(2025, 2, 1))
    add_txn(400, expense, "Rent", datetime(2025, 12, 31, 12, 0))
    add_txn(999, expense, "Rent", datetime(2026, 1, 1))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.yearly, 2025
    )

    assert result.total_income == Decimal("1000")
    assert result.total_expenses == Decimal("650.5")
    slots = {slot.month: slot for slot in result.monthly_breakdown}
    assert slots[1].income == Decimal("1000")
    assert slots[2].expenses == Decimal("250.5")
    assert slots[12].expenses == Decimal("400")
    assert slots[12].balance == Decimal("-400")
    assert sum(slot.transaction_count for slot in slots.values()) == 3


def test_net_balance_always_matches_totals(session, add_txn) -> None:
    add_txn(12.34, income, "Refund", datetime(2025, 5, 1))
    add_txn(56.78, expense, "Food", datetime(2025, 5, 2))

    result = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 5
    )
    assert result.net_balance == result.total_income - result.total_expenses
    assert result.net_balance == Decimal("-44.44")
    assert result.average_transaction_amount == Decimal("34.56")


def test_aggregation_is_idempotent(session, add_txn) -> None:
    add_txn(300, income, "Salary", datetime(2025, 3, 1))
    add_txn(20, expense, "Food", datetime(2025, 3, 4))
    add_txn(35, expense, "Transport", datetime(2025, 3, 9))
    aggregator = PeriodAggregator(TransactionStore(session))

    first = aggregator.aggregate("user-1", Granularity.yearly, 2025)
    second = aggregator.aggregate("user-1", Granularity.yearly, 2025)

    assert first == second
    assert first.to_dict() == second.to_dict()


def test_aggregate_is_written_to_cache(session, add_txn, cache) -> None:
    add_txn(300, income, "Salary", datetime(2025, 3, 1))

    result = PeriodAggregator(TransactionStore(session), cache=cache).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    )

    entry = cache.lookup(PeriodKey.for_month("user-1", 2025, 3))
    assert entry is not None
    assert entry.aggregate == result


class _BrokenCache:
    def generation(self, subject_id):
        return 0

    def store(self, key, aggregate, **kwargs):
        raise RuntimeError("cache backend down")


def test_cache_write_failure_does_not_fail_aggregation(session, add_txn) -> None:
    add_txn(300, income, "Salary", datetime(2025, 3, 1))

    result = PeriodAggregator(
        TransactionStore(session), cache=_BrokenCache()  # type: ignore[arg-type]
    ).aggregate("user-1", Granularity.monthly, 2025, 3)

    assert result.total_income == Decimal("300")


def test_to_dict_is_json_friendly(session, add_txn) -> None:
    add_txn(3000, income, "Salary", datetime(2025, 3, 1))
    add_txn(2200, expense, "Rent", datetime(2025, 3, 5))

    data = PeriodAggregator(TransactionStore(session)).aggregate(
        "user-1", Granularity.monthly, 2025, 3
    ).to_dict()

    assert data["period"] == "monthly"
    assert data["net_balance"] == 800.0
    assert data["category_breakdown"][0] == {
        "category": "Salary",
        "kind": "income",
        "amount": 3000.0,
        "count": 1,
        "percentage_of_total": 100,
    }


def test_months_are_bucketed_in_local_time(session, add_txn) -> None:
    paris = ManualClock(datetime(2025, 6, 15, 10, 0), tz_name="Europe/Paris")
    # Stored in UTC: 1 March 00:30 and 1 April 00:30 Paris wall time.
    add_txn(10, expense, "Food", datetime(2025, 2, 28, 23, 30))
    add_txn(20, expense, "Food", datetime(2025, 3, 31, 22, 30))
    add_txn(40, expense, "Food", datetime(2025, 3, 31, 21, 59, 59))

    aggregator = PeriodAggregator(TransactionStore(session), clock=paris)
    march = aggregator.aggregate("user-1", Granularity.monthly, 2025, 3)
    april = aggregator.aggregate("user-1", Granularity.monthly, 2025, 4)

    assert march.total_expenses == Decimal("50")
    assert april.total_expenses == Decimal("20")

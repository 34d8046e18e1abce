"""Tests for dashboard totals, budget warnings and spending limit windows."""

from datetime import date, datetime, timezone
from decimal import Decimal

from family_ledger.models.family_models import LimitLevel, LimitPeriod
from family_ledger.models.ledger_models import Category, Transaction, TransactionType, WarningLevel
from family_ledger.utils.aggregation import (
    annotate_categories,
    budget_warning,
    compute_stats,
    limit_usage,
    period_window,
)

TODAY = date(2024, 5, 20)
CREATED = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _category(category_id, kind=TransactionType.EXPENSE, budget=None, name=None):
    return Category(
        id=category_id,
        name=name or category_id.title(),
        icon="sell",
        type=kind,
        budget_limit=Decimal(budget) if budget is not None else None,
        created_at=CREATED,
    )


def _transaction(transaction_id, amount, kind, category_id, day=TODAY, user_id="alice"):
    return Transaction(
        id=transaction_id,
        user_id=user_id,
        amount=Decimal(amount),
        description=transaction_id,
        date=day,
        category_id=category_id,
        type=kind,
        created_at=CREATED,
    )


class TestBudgetWarning:
    def test_thresholds(self):
        limit = Decimal("100")
        assert budget_warning(Decimal("79.99"), limit) == WarningLevel.NONE
        assert budget_warning(Decimal("80"), limit) == WarningLevel.WARNING
        assert budget_warning(Decimal("99.99"), limit) == WarningLevel.WARNING
        assert budget_warning(Decimal("100"), limit) == WarningLevel.DANGER
        assert budget_warning(Decimal("150"), limit) == WarningLevel.DANGER

    def test_no_limit_means_no_warning(self):
        assert budget_warning(Decimal("5000"), None) == WarningLevel.NONE
        assert budget_warning(Decimal("5000"), Decimal("0")) == WarningLevel.NONE


class TestComputeStats:
    def test_income_expense_and_balance(self):
        categories = [_category("salary", TransactionType.INCOME), _category("groceries", budget="3000")]
        transactions = [
            _transaction("t1", "1000", TransactionType.INCOME, "salary"),
            _transaction("t2", "500", TransactionType.EXPENSE, "groceries"),
        ]

        stats = compute_stats(transactions, categories, TODAY)

        assert stats.total_income == Decimal("1000")
        assert stats.total_expense == Decimal("500")
        assert stats.balance == Decimal("500")
        assert stats.monthly_spent == Decimal("500")
        assert stats.monthly_budget == Decimal("3000")

    def test_two_expenses_against_one_income(self):
        categories = [_category("salary", TransactionType.INCOME), _category("groceries")]
        transactions = [
            _transaction("t1", "1000", TransactionType.INCOME, "salary"),
            _transaction("t2", "300", TransactionType.EXPENSE, "groceries"),
            _transaction("t3", "200", TransactionType.EXPENSE, "groceries"),
        ]

        stats = compute_stats(transactions, categories, TODAY)

        assert (stats.total_income, stats.total_expense, stats.balance) == (
            Decimal("1000"),
            Decimal("500"),
            Decimal("500"),
        )

    def test_empty_ledger_is_all_zero(self):
        stats = compute_stats([], [], TODAY)
        assert stats.total_income == stats.total_expense == stats.balance == Decimal("0")
        assert stats.monthly_spent == stats.monthly_budget == Decimal("0")
        assert stats.categories == []

    def test_monthly_figures_ignore_other_months(self):
        categories = [_category("dining", budget="200")]
        transactions = [
            _transaction("may", "150", TransactionType.EXPENSE, "dining"),
            _transaction("april", "900", TransactionType.EXPENSE, "dining", day=date(2024, 4, 30)),
            _transaction("last_year", "40", TransactionType.EXPENSE, "dining", day=date(2023, 5, 20)),
        ]

        stats = compute_stats(transactions, categories, TODAY)

        assert stats.total_expense == Decimal("1090")
        assert stats.monthly_spent == Decimal("150")
        [dining] = stats.categories
        assert dining.current_spent == Decimal("150")
        assert dining.warning_level == WarningLevel.NONE

    def test_breakdown_lists_only_expense_categories(self):
        categories = [
            _category("salary", TransactionType.INCOME),
            _category("bills", budget="100"),
            _category("other"),
        ]
        transactions = [_transaction("t1", "120", TransactionType.EXPENSE, "bills")]

        stats = compute_stats(transactions, categories, TODAY)

        assert [c.category_id for c in stats.categories] == ["bills", "other"]
        assert stats.categories[0].warning_level == WarningLevel.DANGER
        assert stats.monthly_budget == Decimal("100")

    def test_income_in_expense_category_is_not_spending(self):
        categories = [_category("groceries", budget="100")]
        transactions = [_transaction("refund", "30", TransactionType.INCOME, "groceries")]

        [annotated] = annotate_categories(categories, transactions, TODAY)

        assert annotated.current_spent == Decimal("0")
        assert annotated.warning_level == WarningLevel.NONE


class TestPeriodWindow:
    def test_weekly_window_starts_monday(self):
        assert period_window(LimitPeriod.WEEKLY, date(2024, 5, 22)) == (date(2024, 5, 20), date(2024, 5, 26))
        assert period_window(LimitPeriod.WEEKLY, date(2024, 5, 20)) == (date(2024, 5, 20), date(2024, 5, 26))

    def test_monthly_window_handles_leap_february(self):
        assert period_window(LimitPeriod.MONTHLY, date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))

    def test_yearly_window(self):
        assert period_window(LimitPeriod.YEARLY, TODAY) == (date(2024, 1, 1), date(2024, 12, 31))


class TestLimitUsage:
    def test_filters_by_category_and_user(self):
        window = period_window(LimitPeriod.MONTHLY, TODAY)
        transactions = [
            _transaction("t1", "40", TransactionType.EXPENSE, "dining", user_id="bob"),
            _transaction("t2", "25", TransactionType.EXPENSE, "dining", user_id="alice"),
            _transaction("t3", "60", TransactionType.EXPENSE, "groceries", user_id="bob"),
            _transaction("t4", "500", TransactionType.INCOME, "dining", user_id="bob"),
        ]

        spent, percent, level = limit_usage(
            transactions, Decimal("50"), 80, window, category_id="dining", user_id="bob"
        )

        assert spent == Decimal("40")
        assert percent == Decimal("80.00")
        assert level == LimitLevel.WARNING

    def test_family_wide_limit_exceeded(self):
        window = period_window(LimitPeriod.MONTHLY, TODAY)
        transactions = [
            _transaction("t1", "70", TransactionType.EXPENSE, "dining", user_id="bob"),
            _transaction("t2", "50", TransactionType.EXPENSE, "groceries", user_id="alice"),
        ]

        spent, percent, level = limit_usage(transactions, Decimal("100"), 80, window)

        assert spent == Decimal("120")
        assert percent == Decimal("120.00")
        assert level == LimitLevel.EXCEEDED

    def test_transactions_outside_window_are_ignored(self):
        window = period_window(LimitPeriod.WEEKLY, TODAY)
        transactions = [_transaction("old", "90", TransactionType.EXPENSE, "dining", day=date(2024, 5, 19))]

        spent, percent, level = limit_usage(transactions, Decimal("100"), 80, window)

        assert spent == Decimal("0")
        assert percent == Decimal("0.00")
        assert level == LimitLevel.OK

    def test_just_under_the_limit_is_not_exceeded(self):
        window = period_window(LimitPeriod.MONTHLY, TODAY)
        transactions = [_transaction("t1", "99999", TransactionType.EXPENSE, "dining")]

        spent, percent, level = limit_usage(transactions, Decimal("100000"), 80, window)

        assert spent == Decimal("99999")
        assert percent == Decimal("100.00")
        assert level == LimitLevel.WARNING

    def test_exactly_at_the_limit_is_exceeded(self):
        window = period_window(LimitPeriod.MONTHLY, TODAY)
        transactions = [_transaction("t1", "100000", TransactionType.EXPENSE, "dining")]

        assert limit_usage(transactions, Decimal("100000"), 80, window)[2] == LimitLevel.EXCEEDED

    def test_threshold_boundary_uses_exact_amounts(self):
        window = period_window(LimitPeriod.MONTHLY, TODAY)
        just_under = [_transaction("t1", "79.999", TransactionType.EXPENSE, "dining")]
        at_threshold = [_transaction("t1", "80", TransactionType.EXPENSE, "dining")]

        _, under_percent, under_level = limit_usage(just_under, Decimal("100"), 80, window)

        assert under_percent == Decimal("80.00")
        assert under_level == LimitLevel.OK
        assert limit_usage(at_threshold, Decimal("100"), 80, window)[2] == LimitLevel.WARNING

"""
Dashboard aggregation over a ledger's transactions and categories.

Everything here is a pure function of its inputs: no storage access, no clock reads (callers pass ``today``).
Balance and income/expense totals are lifetime figures; ``monthlySpent`` and per-category spending cover the
calendar month containing ``today``.
"""

import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from family_ledger.models.family_models import LimitLevel, LimitPeriod
from family_ledger.models.ledger_models import (
    Category,
    CategoryBudgetStatus,
    DashboardStats,
    Transaction,
    TransactionType,
    WarningLevel,
)

ZERO = Decimal("0")
WARNING_RATIO = Decimal("0.8")
HUNDRED = Decimal("100")


def _in_month(day: date, today: date) -> bool:
    return day.year == today.year and day.month == today.month


def _magnitude(transaction: Transaction) -> Decimal:
    # The type carries the sign; stored amounts are magnitudes.
    return abs(transaction.amount)


def budget_warning(spent: Decimal, budget_limit: Optional[Decimal]) -> WarningLevel:
    """none below 80% of the limit, warning from 80% up to 100%, danger at or above 100%."""
    if budget_limit is None or budget_limit <= ZERO:
        return WarningLevel.NONE
    if spent >= budget_limit:
        return WarningLevel.DANGER
    if spent >= budget_limit * WARNING_RATIO:
        return WarningLevel.WARNING
    return WarningLevel.NONE


def category_spent(transactions: Iterable[Transaction], category_id: str, today: date) -> Decimal:
    return sum(
        (
            _magnitude(t)
            for t in transactions
            if t.category_id == category_id and t.type == TransactionType.EXPENSE and _in_month(t.date, today)
        ),
        ZERO,
    )


def category_breakdown(
    transactions: Sequence[Transaction], categories: Iterable[Category], today: date
) -> List[CategoryBudgetStatus]:
    breakdown = []
    for category in categories:
        if category.type != TransactionType.EXPENSE:
            continue
        spent = category_spent(transactions, category.id, today)
        breakdown.append(
            CategoryBudgetStatus(
                category_id=category.id,
                name=category.name,
                budget_limit=category.budget_limit,
                current_spent=spent,
                warning_level=budget_warning(spent, category.budget_limit),
            )
        )
    return breakdown


def annotate_categories(categories: Iterable[Category], transactions: Sequence[Transaction], today: date) -> List[Category]:
    """Copy each category with its current-month spending and warning level filled in."""
    annotated = []
    for category in categories:
        spent = category_spent(transactions, category.id, today)
        annotated.append(
            category.model_copy(
                update={"current_spent": spent, "warning_level": budget_warning(spent, category.budget_limit)}
            )
        )
    return annotated


def compute_stats(transactions: Sequence[Transaction], categories: Sequence[Category], today: date) -> DashboardStats:
    total_income = ZERO
    total_expense = ZERO
    monthly_spent = ZERO
    for transaction in transactions:
        amount = _magnitude(transaction)
        if transaction.type == TransactionType.INCOME:
            total_income += amount
        else:
            total_expense += amount
            if _in_month(transaction.date, today):
                monthly_spent += amount

    monthly_budget = sum(
        (c.budget_limit for c in categories if c.type == TransactionType.EXPENSE and c.budget_limit is not None),
        ZERO,
    )

    return DashboardStats(
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
        monthly_budget=monthly_budget,
        monthly_spent=monthly_spent,
        categories=category_breakdown(transactions, categories, today),
    )


def period_window(period: LimitPeriod, today: date) -> Tuple[date, date]:
    """Inclusive bounds of the period containing ``today``; weeks start on Monday."""
    if period == LimitPeriod.WEEKLY:
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    if period == LimitPeriod.YEARLY:
        return date(today.year, 1, 1), date(today.year, 12, 31)
    last_day = calendar.monthrange(today.year, today.month)[1]
    return date(today.year, today.month, 1), date(today.year, today.month, last_day)


def limit_usage(
    transactions: Iterable[Transaction],
    limit_amount: Decimal,
    alert_threshold: int,
    window: Tuple[date, date],
    category_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Tuple[Decimal, Decimal, LimitLevel]:
    """Spent amount, percent of the limit used, and the alert level for one spending limit."""
    start, end = window
    spent = sum(
        (
            _magnitude(t)
            for t in transactions
            if t.type == TransactionType.EXPENSE
            and start <= t.date <= end
            and (category_id is None or t.category_id == category_id)
            and (user_id is None or t.user_id == user_id)
        ),
        ZERO,
    )
    if limit_amount <= ZERO:
        return spent, ZERO, LimitLevel.OK

    # Levels compare exact amounts; only the reported percent is rounded.
    percent = (spent * HUNDRED / limit_amount).quantize(Decimal("0.01"))
    if spent >= limit_amount:
        level = LimitLevel.EXCEEDED
    elif spent * HUNDRED >= alert_threshold * limit_amount:
        level = LimitLevel.WARNING
    else:
        level = LimitLevel.OK
    return spent, percent, level

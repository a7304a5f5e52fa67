"""Dashboard statistics derived from a user's transactions and budgets.

Everything here is a pure function of its arguments. The clock is always
passed in by the caller, inputs are never mutated, and nothing raises on
well-formed records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence

from models import TransactionType
from periods import Period, add_months, month_start, same_month

SERIES_MONTHS = 6
MONTH_ABBREVIATIONS = (
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
)


class TransactionLike(Protocol):
    type: TransactionType
    amount: float
    category: str
    description: str
    date: date


class BudgetLike(Protocol):
    category_name: str
    amount: float


class Severity(str, Enum):
    ok = "ok"
    warning = "warning"
    critical = "critical"


@dataclass(frozen=True)
class Totals:
    balance: float
    total_income: float
    total_expense: float
    monthly_income: float
    monthly_expense: float
    category_totals: dict[str, float]
    monthly_category_totals: dict[str, float]


@dataclass(frozen=True)
class MonthBucket:
    year: int
    month: int
    label: str
    income: float = 0.0
    expense: float = 0.0


@dataclass(frozen=True)
class BudgetProgress:
    category_name: str
    limit: float
    spent: float
    percent: float
    severity: Severity


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    query: Optional[str] = None
    period: Optional[Period] = None


@dataclass(frozen=True)
class SpendingSummary:
    income: float
    expense: float
    categories: dict[str, float] = field(default_factory=dict)


def month_label(d: date) -> str:
    return f"{MONTH_ABBREVIATIONS[d.month - 1]} {d.year}"


def compute_totals(transactions: Iterable[TransactionLike], now: date) -> Totals:
    total_income = 0.0
    total_expense = 0.0
    monthly_income = 0.0
    monthly_expense = 0.0
    category_totals: dict[str, float] = {}
    monthly_category_totals: dict[str, float] = {}

    for txn in transactions:
        is_current_month = same_month(txn.date, now)
        if txn.type == TransactionType.income:
            total_income += txn.amount
            if is_current_month:
                monthly_income += txn.amount
            continue

        total_expense += txn.amount
        category_totals[txn.category] = (
            category_totals.get(txn.category, 0.0) + txn.amount
        )
        if is_current_month:
            monthly_expense += txn.amount
            monthly_category_totals[txn.category] = (
                monthly_category_totals.get(txn.category, 0.0) + txn.amount
            )

    return Totals(
        balance=total_income - total_expense,
        total_income=total_income,
        total_expense=total_expense,
        monthly_income=monthly_income,
        monthly_expense=monthly_expense,
        category_totals=category_totals,
        monthly_category_totals=monthly_category_totals,
    )


def build_category_breakdown(
    category_totals: dict[str, float],
) -> list[tuple[str, float]]:
    # sorted() is stable with reverse=True, so equal totals keep insertion order.
    return sorted(category_totals.items(), key=lambda item: item[1], reverse=True)


def build_monthly_series(
    transactions: Iterable[TransactionLike], now: date
) -> list[MonthBucket]:
    current = month_start(now)
    months = [add_months(current, -offset) for offset in range(SERIES_MONTHS - 1, -1, -1)]

    income: dict[tuple[int, int], float] = {(m.year, m.month): 0.0 for m in months}
    expense: dict[tuple[int, int], float] = {(m.year, m.month): 0.0 for m in months}

    for txn in transactions:
        key = (txn.date.year, txn.date.month)
        if key not in income:
            continue
        if txn.type == TransactionType.income:
            income[key] += txn.amount
        else:
            expense[key] += txn.amount

    return [
        MonthBucket(
            year=m.year,
            month=m.month,
            label=month_label(m),
            income=income[(m.year, m.month)],
            expense=expense[(m.year, m.month)],
        )
        for m in months
    ]


def budget_severity(percent: float) -> Severity:
    if percent > 90:
        return Severity.critical
    if percent > 70:
        return Severity.warning
    return Severity.ok


def compute_budget_progress(
    budgets: Iterable[BudgetLike], monthly_category_totals: dict[str, float]
) -> list[BudgetProgress]:
    rows: list[BudgetProgress] = []
    for budget in budgets:
        limit = budget.amount
        spent = monthly_category_totals.get(budget.category_name, 0.0)
        if limit <= 0:
            percent = 0.0
        else:
            # spent * 100 / limit keeps exact values like 45/50 -> 90.0
            percent = max(0.0, min(spent * 100 / limit, 100.0))
        rows.append(
            BudgetProgress(
                category_name=budget.category_name,
                limit=limit,
                spent=spent,
                percent=percent,
                severity=budget_severity(percent),
            )
        )
    rows.sort(key=lambda row: row.percent, reverse=True)
    return rows


def filter_transactions(
    transactions: Sequence[TransactionLike], filters: TransactionFilters
) -> list[TransactionLike]:
    query = (filters.query or "").strip().lower()
    out = []
    for txn in transactions:
        if filters.type is not None and txn.type != filters.type:
            continue
        if filters.category and txn.category != filters.category:
            continue
        if filters.period is not None and not filters.period.contains(txn.date):
            continue
        if query and not (
            query in (txn.description or "").lower() or query in txn.category.lower()
        ):
            continue
        out.append(txn)
    out.sort(key=lambda txn: txn.date, reverse=True)
    return out


def summarize(transactions: Iterable[TransactionLike]) -> SpendingSummary:
    """Totals per type plus per-category sums across both types."""
    income = 0.0
    expense = 0.0
    categories: dict[str, float] = {}
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += txn.amount
        else:
            expense += txn.amount
        categories[txn.category] = categories.get(txn.category, 0.0) + txn.amount
    return SpendingSummary(income=income, expense=expense, categories=categories)

"""Budget progress and period reporting.

Everything here is a pure function over already-fetched rows: no session,
no caching. Callers fetch fresh ``Budget``/``Transaction`` rows per request
and hand them in. Amounts are integer cents throughout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from models import Budget, Transaction, TransactionType
from money import percent_of
from periods import Period, month_period


@dataclass(frozen=True)
class BudgetProgress:
    budget: Budget
    spent_cents: int
    progress_percent: int
    is_exceeded: bool
    exceed_cents: int
    remaining_cents: int


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    category_name: str
    total_cents: int
    percent: int = 0


@dataclass(frozen=True)
class PeriodSummary:
    month: int
    year: int
    start: date
    end: date
    total_income_cents: int
    total_expense_cents: int
    net_cents: int
    expenses_by_category: list[CategoryTotal] = field(default_factory=list)
    transaction_count: int = 0


@dataclass(frozen=True)
class Dashboard:
    current_balance_cents: int
    this_month: PeriodSummary
    recent_transactions: list[Transaction] = field(default_factory=list)


def in_budget_period(budget: Budget, txn: Transaction) -> bool:
    return txn.date.year == budget.year and txn.date.month == budget.month


def compute_progress(
    budget: Budget, transactions: Iterable[Transaction]
) -> BudgetProgress:
    spent = sum(
        txn.amount_cents
        for txn in transactions
        if txn.category_id == budget.category_id
        and txn.type == TransactionType.expense
        and in_budget_period(budget, txn)
    )
    allocated = budget.amount_cents
    # Exceedance uses the uncapped comparison; only the percentage is capped.
    progress = min(percent_of(spent, allocated), 100) if allocated > 0 else 0
    return BudgetProgress(
        budget=budget,
        spent_cents=spent,
        progress_percent=progress,
        is_exceeded=spent > allocated,
        exceed_cents=max(spent - allocated, 0),
        remaining_cents=max(allocated - spent, 0),
    )


def compute_progress_for_all(
    budgets: Iterable[Budget], transactions: Iterable[Transaction]
) -> list[BudgetProgress]:
    txns = list(transactions)
    return [compute_progress(budget, txns) for budget in budgets]


def _category_name(txn: Transaction) -> str:
    return txn.category.name if txn.category else ""


def summarize(
    period: Period,
    transactions: Iterable[Transaction],
    *,
    user_id: Optional[int] = None,
) -> tuple[int, int, list[CategoryTotal], int]:
    income = 0
    expense = 0
    count = 0
    by_category: dict[int, list] = {}
    for txn in transactions:
        if user_id is not None and txn.user_id != user_id:
            continue
        if not period.contains(txn.date):
            continue
        count += 1
        if txn.type == TransactionType.income:
            income += txn.amount_cents
            continue
        expense += txn.amount_cents
        entry = by_category.get(txn.category_id)
        if entry is None:
            by_category[txn.category_id] = [_category_name(txn), txn.amount_cents]
        else:
            entry[1] += txn.amount_cents

    breakdown = [
        CategoryTotal(
            category_id=category_id,
            category_name=name,
            total_cents=total,
            percent=percent_of(total, expense),
        )
        for category_id, (name, total) in by_category.items()
    ]
    breakdown.sort(key=lambda row: row.total_cents, reverse=True)
    return income, expense, breakdown, count


def compute_period_summary(
    user_id: int, month: int, year: int, transactions: Iterable[Transaction]
) -> PeriodSummary:
    period = month_period(year, month)
    income, expense, breakdown, count = summarize(
        period, transactions, user_id=user_id
    )
    return PeriodSummary(
        month=month,
        year=year,
        start=period.start,
        end=period.end,
        total_income_cents=income,
        total_expense_cents=expense,
        net_cents=income - expense,
        expenses_by_category=breakdown,
        transaction_count=count,
    )


def compute_balance(transactions: Iterable[Transaction]) -> int:
    balance = 0
    for txn in transactions:
        if txn.type == TransactionType.income:
            balance += txn.amount_cents
        else:
            balance -= txn.amount_cents
    return balance

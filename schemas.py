import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aggregation import BudgetProgress, CategoryTotal, Dashboard, PeriodSummary
from models import Budget, Category, Transaction, TransactionType, User
from money import cents_to_decimal
from periods import parse_date

USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _parse_date_field(value):
    if value is None:
        return value
    return parse_date(value)


class UserRegisterIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None


class TransactionIn(BaseModel):
    category_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    type: TransactionType
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=255)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value):
        return _parse_date_field(value)


class TransactionUpdate(BaseModel):
    """Partial update. ``description=None`` clears; leaving it out keeps it."""

    category_id: Optional[int] = Field(default=None, gt=0)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=14, decimal_places=2
    )
    type: Optional[TransactionType] = None
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=255)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value):
        return _parse_date_field(value)


class BudgetIn(BaseModel):
    category_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)


class BudgetUpdate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str

    @classmethod
    def from_row(cls, user: User) -> "UserOut":
        return cls.model_validate(user)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType

    @classmethod
    def from_row(cls, category: Category) -> "CategoryOut":
        return cls.model_validate(category)


class CategoryRef(BaseModel):
    name: str
    type: TransactionType


class TransactionOut(BaseModel):
    id: int
    category_id: int
    type: TransactionType
    amount_cents: int
    amount: Decimal
    description: Optional[str]
    date: dt.date
    category: Optional[CategoryRef] = None

    @classmethod
    def from_row(cls, txn: Transaction) -> "TransactionOut":
        category = None
        if txn.category is not None:
            category = CategoryRef(name=txn.category.name, type=txn.category.type)
        return cls(
            id=txn.id,
            category_id=txn.category_id,
            type=txn.type,
            amount_cents=txn.amount_cents,
            amount=cents_to_decimal(txn.amount_cents),
            description=txn.description,
            date=txn.date,
            category=category,
        )


class BudgetOut(BaseModel):
    id: int
    category_id: int
    amount_cents: int
    amount: Decimal
    month: int
    year: int
    category: Optional[CategoryRef] = None

    @classmethod
    def from_row(cls, budget: Budget) -> "BudgetOut":
        category = None
        if budget.category is not None:
            category = CategoryRef(
                name=budget.category.name, type=budget.category.type
            )
        return cls(
            id=budget.id,
            category_id=budget.category_id,
            amount_cents=budget.amount_cents,
            amount=cents_to_decimal(budget.amount_cents),
            month=budget.month,
            year=budget.year,
            category=category,
        )


class BudgetProgressOut(BaseModel):
    budget: BudgetOut
    spent_cents: int
    spent: Decimal
    progress_percent: int
    is_exceeded: bool
    exceed_cents: int
    exceed_amount: Decimal
    remaining_cents: int

    @classmethod
    def from_progress(cls, progress: BudgetProgress) -> "BudgetProgressOut":
        return cls(
            budget=BudgetOut.from_row(progress.budget),
            spent_cents=progress.spent_cents,
            spent=cents_to_decimal(progress.spent_cents),
            progress_percent=progress.progress_percent,
            is_exceeded=progress.is_exceeded,
            exceed_cents=progress.exceed_cents,
            exceed_amount=cents_to_decimal(progress.exceed_cents),
            remaining_cents=progress.remaining_cents,
        )


class CategoryTotalOut(BaseModel):
    category_id: int
    category_name: str
    total_cents: int
    total: Decimal
    percent: int

    @classmethod
    def from_total(cls, row: CategoryTotal) -> "CategoryTotalOut":
        return cls(
            category_id=row.category_id,
            category_name=row.category_name,
            total_cents=row.total_cents,
            total=cents_to_decimal(row.total_cents),
            percent=row.percent,
        )


class PeriodSummaryOut(BaseModel):
    month: int
    year: int
    start_date: dt.date
    end_date: dt.date
    total_income_cents: int
    total_expense_cents: int
    net_cents: int
    total_income: Decimal
    total_expense: Decimal
    net_amount: Decimal
    expenses_by_category: list[CategoryTotalOut]
    transaction_count: int

    @classmethod
    def from_summary(cls, summary: PeriodSummary) -> "PeriodSummaryOut":
        return cls(
            month=summary.month,
            year=summary.year,
            start_date=summary.start,
            end_date=summary.end,
            total_income_cents=summary.total_income_cents,
            total_expense_cents=summary.total_expense_cents,
            net_cents=summary.net_cents,
            total_income=cents_to_decimal(summary.total_income_cents),
            total_expense=cents_to_decimal(summary.total_expense_cents),
            net_amount=cents_to_decimal(summary.net_cents),
            expenses_by_category=[
                CategoryTotalOut.from_total(row)
                for row in summary.expenses_by_category
            ],
            transaction_count=summary.transaction_count,
        )


class DashboardOut(BaseModel):
    current_balance_cents: int
    current_balance: Decimal
    this_month: PeriodSummaryOut
    recent_transactions: list[TransactionOut]

    @classmethod
    def from_dashboard(cls, dashboard: Dashboard) -> "DashboardOut":
        return cls(
            current_balance_cents=dashboard.current_balance_cents,
            current_balance=cents_to_decimal(dashboard.current_balance_cents),
            this_month=PeriodSummaryOut.from_summary(dashboard.this_month),
            recent_transactions=[
                TransactionOut.from_row(txn) for txn in dashboard.recent_transactions
            ],
        )

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import String, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from aggregation import (
    BudgetProgress,
    Dashboard,
    PeriodSummary,
    compute_balance,
    compute_period_summary,
    compute_progress,
    compute_progress_for_all,
)
from auth import hash_password, verify_password
from errors import (
    DuplicateBudgetError,
    DuplicateNameError,
    InUseError,
    InvalidCategoryError,
    InputValidationError,
    NotFoundError,
    TypeMismatchError,
    UnauthenticatedError,
)
from models import Budget, Category, Transaction, TransactionType, User
from money import parse_amount
from periods import Period, local_today, month_period, resolve_period, validate_month
from schemas import (
    BudgetIn,
    CategoryIn,
    CategoryUpdate,
    TransactionIn,
    TransactionUpdate,
    UserRegisterIn,
)

logger = logging.getLogger(__name__)


def _commit_or_raise(session: Session, error: Exception) -> None:
    """Commit, turning a uniqueness violation from the store into ``error``.

    Pre-checks race with concurrent writers, so the constraint is what
    decides. The session is rolled back so nothing partial stays visible.
    """
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise error from exc


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: UserRegisterIn) -> User:
        username = data.username.strip()
        email = data.email.strip().lower()
        if self.session.scalar(select(User).where(User.email == email)):
            raise DuplicateNameError("Email is already registered", field="email")
        if self.session.scalar(select(User).where(User.username == username)):
            raise DuplicateNameError("Username is already taken", field="username")

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        _commit_or_raise(
            self.session, DuplicateNameError("Username or email is already taken")
        )
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, identifier: str, password: str) -> User:
        ident = identifier.strip()
        user = self.session.scalar(
            select(User).where(
                or_(User.username == ident, User.email == ident.lower())
            )
        )
        if not user or not verify_password(password, user.password_hash):
            logger.info("login_failed")
            raise UnauthenticatedError("Invalid username or password")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name.asc(), Category.id.asc())
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def _name_taken(self, name: str, *, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id, Category.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def usage(self, category_id: int) -> tuple[int, int]:
        txn_count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category_id
            )
        ).scalar_one()
        budget_count = self.session.execute(
            select(func.count(Budget.id)).where(Budget.category_id == category_id)
        ).scalar_one()
        return int(txn_count or 0), int(budget_count or 0)

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise InputValidationError("Category name cannot be empty", field="name")
        if self._name_taken(name):
            raise DuplicateNameError(
                f'Category "{name}" already exists', field="name"
            )
        category = Category(user_id=self.user_id, name=name, type=data.type)
        self.session.add(category)
        _commit_or_raise(
            self.session,
            DuplicateNameError(f'Category "{name}" already exists', field="name"),
        )
        self.session.refresh(category)
        logger.info(
            f"category_created: user_id={self.user_id} category_id={category.id}"
        )
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)

        name = data.name.strip() if data.name is not None else None
        if name is not None and not name:
            raise InputValidationError("Category name cannot be empty", field="name")
        if name is not None and name != category.name and self._name_taken(
            name, exclude_id=category.id
        ):
            raise DuplicateNameError(
                f'Category "{name}" already exists', field="name"
            )

        if data.type is not None and data.type != category.type:
            txn_count, budget_count = self.usage(category.id)
            if txn_count or budget_count:
                raise InUseError(
                    "Category type cannot change while transactions or budgets use it",
                    field="type",
                )

        if name is not None:
            category.name = name
        if data.type is not None:
            category.type = data.type
        _commit_or_raise(
            self.session,
            DuplicateNameError(
                f'Category "{category.name}" already exists', field="name"
            ),
        )
        self.session.refresh(category)
        logger.info(
            f"category_updated: user_id={self.user_id} category_id={category.id}"
        )
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        txn_count, budget_count = self.usage(category.id)
        if txn_count or budget_count:
            raise InUseError(
                "Category is still used by "
                f"{txn_count} transaction(s) and {budget_count} budget(s)"
            )
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: user_id={self.user_id} category_id={category_id}")


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    query: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None
    month: Optional[int] = None
    year: Optional[int] = None

    def period(self) -> Optional[Period]:
        return resolve_period(self.start, self.end, self.month, self.year)


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _owned_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise InvalidCategoryError(
                "Category not found for this user", field="category_id"
            )
        return category

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        amount_cents = parse_amount(data.amount)
        category = self._owned_category(data.category_id)
        if category.type != data.type:
            raise TypeMismatchError(
                f"Transaction type ({data.type.value}) does not match "
                f"category type ({category.type.value})",
                field="type",
            )
        txn = Transaction(
            user_id=self.user_id,
            category_id=category.id,
            type=data.type,
            amount_cents=amount_cents,
            description=data.description,
            date=data.date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} transaction_id={txn.id}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_fields_set

        amount_cents = None
        if "amount" in fields:
            if data.amount is None:
                raise InputValidationError("Amount cannot be empty", field="amount")
            amount_cents = parse_amount(data.amount)
        if "date" in fields and data.date is None:
            raise InputValidationError("Date cannot be empty", field="date")

        new_type = data.type
        if data.category_id is not None:
            category = self._owned_category(data.category_id)
            if new_type is not None and new_type != category.type:
                raise TypeMismatchError(
                    f"Transaction type ({new_type.value}) does not match "
                    f"category type ({category.type.value})",
                    field="type",
                )
            new_type = category.type
            txn.category_id = category.id
            txn.category = category
        elif new_type is not None and new_type != txn.category.type:
            raise TypeMismatchError(
                f"Transaction type ({new_type.value}) does not match "
                f"category type ({txn.category.type.value})",
                field="type",
            )

        if new_type is not None:
            txn.type = new_type
        if amount_cents is not None:
            txn.amount_cents = amount_cents
        if data.date is not None:
            txn.date = data.date
        if "description" in fields:
            txn.description = data.description

        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: user_id={self.user_id} transaction_id={txn.id}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        self.session.delete(txn)
        self.session.commit()
        logger.info(
            f"transaction_deleted: user_id={self.user_id} "
            f"transaction_id={transaction_id}"
        )

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.query:
            stmt = stmt.where(self._description_matches(filters.query))
        period = filters.period()
        if period:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def _description_matches(self, query: str):
        description = func.coalesce(Transaction.description, "")
        if self.session.get_bind().dialect.name == "sqlite":
            # casefold is registered on each SQLite connection in database.py
            return func.casefold(description, type_=String).contains(
                query.casefold(), autoescape=True
            )
        return func.lower(description).contains(query.lower(), autoescape=True)

    def all_for_period(self, period: Period) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def recent(self, limit: int = 5) -> list[Transaction]:
        return self.list(limit=limit)


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, budget_id: int) -> Budget:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        budget = self.session.scalar(stmt)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def list_all(
        self, *, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.year.desc(), Budget.month.desc(), Budget.id.asc())
        )
        if month is not None:
            validate_month(month)
            stmt = stmt.where(Budget.month == month)
        if year is not None:
            stmt = stmt.where(Budget.year == year)
        return self.session.scalars(stmt).all()

    def _existing(self, category_id: int, month: int, year: int) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.category_id == category_id,
                Budget.month == month,
                Budget.year == year,
            )
        )

    def create(self, data: BudgetIn) -> Budget:
        validate_month(data.month)
        amount_cents = parse_amount(data.amount)

        category = self.session.get(Category, data.category_id)
        if (
            not category
            or category.user_id != self.user_id
            or category.type != TransactionType.expense
        ):
            raise InvalidCategoryError(
                "Expense category not found for this user", field="category_id"
            )

        duplicate = DuplicateBudgetError(
            f"A budget for this category already exists for "
            f"{data.month:02d}/{data.year}"
        )
        if self._existing(category.id, data.month, data.year):
            raise duplicate

        budget = Budget(
            user_id=self.user_id,
            category_id=category.id,
            amount_cents=amount_cents,
            month=data.month,
            year=data.year,
        )
        self.session.add(budget)
        _commit_or_raise(self.session, duplicate)
        self.session.refresh(budget)
        logger.info(f"budget_created: user_id={self.user_id} budget_id={budget.id}")
        return budget

    def update_amount(self, budget_id: int, amount) -> Budget:
        budget = self.get(budget_id)
        budget.amount_cents = parse_amount(amount)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(f"budget_updated: user_id={self.user_id} budget_id={budget.id}")
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: user_id={self.user_id} budget_id={budget_id}")


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)
        self.budgets = BudgetService(session, user_id)

    def income_expense_summary(self, month: int, year: int) -> PeriodSummary:
        period = month_period(year, month)
        txns = self.transactions.all_for_period(period)
        return compute_period_summary(self.user_id, month, year, txns)

    def _expenses_for_budgets(self, budgets: list[Budget]) -> list[Transaction]:
        periods = {(b.year, b.month) for b in budgets}
        category_ids = {b.category_id for b in budgets}
        if not periods:
            return []
        starts = [month_period(y, m).start for y, m in periods]
        ends = [month_period(y, m).end for y, m in periods]
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.category_id.in_(category_ids),
                Transaction.date.between(min(starts), max(ends)),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def budget_progress(
        self, *, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[BudgetProgress]:
        budgets = self.budgets.list_all(month=month, year=year)
        return compute_progress_for_all(budgets, self._expenses_for_budgets(budgets))

    def progress_for_budget(self, budget_id: int) -> BudgetProgress:
        budget = self.budgets.get(budget_id)
        return compute_progress(budget, self._expenses_for_budgets([budget]))

    def dashboard(self, today: Optional[date] = None, recent_limit: int = 5) -> Dashboard:
        today = today or local_today()
        return Dashboard(
            current_balance_cents=compute_balance(self.transactions.list()),
            this_month=self.income_expense_summary(today.month, today.year),
            recent_transactions=self.transactions.recent(recent_limit),
        )

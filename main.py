import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import get_current_user_id, issue_token
from config import get_settings
from database import get_db
from errors import DomainError
from models import TransactionType
from periods import parse_date, validate_month
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetProgressOut,
    BudgetUpdate,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    DashboardOut,
    LoginIn,
    PeriodSummaryOut,
    TokenOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    UserOut,
    UserRegisterIn,
)
from services import (
    BudgetService,
    CategoryService,
    ReportService,
    TransactionFilters,
    TransactionService,
    UserService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [
        str(part)
        for part in first.get("loc", ())
        if part not in ("body", "query", "path")
    ]
    content: dict[str, object] = {
        "error": "validation_error",
        "detail": first.get("msg", "Invalid request"),
    }
    if loc:
        content["field"] = ".".join(loc)
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(
        status_code=500, content={"error": "internal_error", "detail": "Internal error"}
    )


def category_service(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
) -> CategoryService:
    return CategoryService(db, user_id)


def transaction_service(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
) -> TransactionService:
    return TransactionService(db, user_id)


def budget_service(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
) -> BudgetService:
    return BudgetService(db, user_id)


def report_service(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
) -> ReportService:
    return ReportService(db, user_id)


def filters_from_query(
    q: Optional[str] = None,
    category_id: Optional[int] = None,
    type: Optional[TransactionType] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> TransactionFilters:
    return TransactionFilters(
        type=type,
        category_id=category_id,
        query=q or None,
        start=parse_date(start, field="start") if start else None,
        end=parse_date(end, field="end") if end else None,
        month=month,
        year=year,
    )


# Users & sessions


@app.post("/api/users/register", status_code=201, response_model=UserOut)
def register(data: UserRegisterIn, db: Session = Depends(get_db)):
    user = UserService(db).register(data)
    return UserOut.from_row(user)


@app.post("/api/auth/login", response_model=TokenOut)
def login(data: LoginIn, response: Response, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data.identifier, data.password)
    token = issue_token(user.id)
    settings = get_settings()
    response.set_cookie(
        "session",
        token,
        max_age=settings.token_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
    )
    logger.info(f"login: user_id={user.id}")
    return TokenOut(access_token=token)


@app.post("/api/auth/logout", status_code=204)
def logout():
    response = Response(status_code=204)
    response.delete_cookie("session")
    return response


@app.get("/api/users/me", response_model=UserOut)
def me(db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)):
    return UserOut.from_row(UserService(db).get(user_id))


# Categories


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    type: Optional[TransactionType] = None,
    service: CategoryService = Depends(category_service),
):
    return [CategoryOut.from_row(c) for c in service.list_all(type=type)]


@app.post("/api/categories", status_code=201, response_model=CategoryOut)
def create_category(
    data: CategoryIn, service: CategoryService = Depends(category_service)
):
    return CategoryOut.from_row(service.create(data))


@app.get("/api/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, service: CategoryService = Depends(category_service)):
    return CategoryOut.from_row(service.get(category_id))


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    data: CategoryUpdate,
    service: CategoryService = Depends(category_service),
):
    return CategoryOut.from_row(service.update(category_id, data))


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int, service: CategoryService = Depends(category_service)
):
    service.delete(category_id)
    return Response(status_code=204)


# Transactions


@app.get("/api/transactions")
def list_transactions(
    filters: TransactionFilters = Depends(filters_from_query),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: TransactionService = Depends(transaction_service),
):
    offset = (page - 1) * limit if limit else 0
    fetch = limit + 1 if limit else None
    items = service.list(filters, limit=fetch, offset=offset)
    has_more = bool(limit) and len(items) > limit
    if limit:
        items = items[:limit]
    return {
        "transactions": [
            TransactionOut.from_row(txn).model_dump(mode="json") for txn in items
        ],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/transactions", status_code=201, response_model=TransactionOut)
def create_transaction(
    data: TransactionIn, service: TransactionService = Depends(transaction_service)
):
    txn = service.create(data)
    return TransactionOut.from_row(service.get(txn.id))


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int, service: TransactionService = Depends(transaction_service)
):
    return TransactionOut.from_row(service.get(transaction_id))


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    service: TransactionService = Depends(transaction_service),
):
    txn = service.update(transaction_id, data)
    return TransactionOut.from_row(service.get(txn.id))


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int, service: TransactionService = Depends(transaction_service)
):
    service.delete(transaction_id)
    return Response(status_code=204)


# Budgets


@app.get("/api/budgets", response_model=list[BudgetOut])
def list_budgets(
    month: Optional[int] = None,
    year: Optional[int] = None,
    service: BudgetService = Depends(budget_service),
):
    return [BudgetOut.from_row(b) for b in service.list_all(month=month, year=year)]


@app.get("/api/budgets/progress", response_model=list[BudgetProgressOut])
def list_budget_progress(
    month: Optional[int] = None,
    year: Optional[int] = None,
    service: ReportService = Depends(report_service),
):
    return [
        BudgetProgressOut.from_progress(p)
        for p in service.budget_progress(month=month, year=year)
    ]


@app.post("/api/budgets", status_code=201, response_model=BudgetOut)
def create_budget(data: BudgetIn, service: BudgetService = Depends(budget_service)):
    budget = service.create(data)
    return BudgetOut.from_row(service.get(budget.id))


@app.get("/api/budgets/{budget_id}", response_model=BudgetOut)
def get_budget(budget_id: int, service: BudgetService = Depends(budget_service)):
    return BudgetOut.from_row(service.get(budget_id))


@app.get("/api/budgets/{budget_id}/progress", response_model=BudgetProgressOut)
def get_budget_progress(
    budget_id: int, service: ReportService = Depends(report_service)
):
    return BudgetProgressOut.from_progress(service.progress_for_budget(budget_id))


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    service: BudgetService = Depends(budget_service),
):
    budget = service.update_amount(budget_id, data.amount)
    return BudgetOut.from_row(service.get(budget.id))


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, service: BudgetService = Depends(budget_service)):
    service.delete(budget_id)
    return Response(status_code=204)


# Reports


@app.get("/api/reports/income-expense-summary", response_model=PeriodSummaryOut)
def income_expense_summary(
    month: int,
    year: int,
    service: ReportService = Depends(report_service),
):
    validate_month(month)
    return PeriodSummaryOut.from_summary(service.income_expense_summary(month, year))


@app.get("/api/dashboard", response_model=DashboardOut)
def dashboard(service: ReportService = Depends(report_service)):
    return DashboardOut.from_dashboard(service.dashboard())


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()

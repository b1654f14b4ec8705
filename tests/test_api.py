import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import get_db
from main import app
from tests.helpers import make_engine


@pytest.fixture
def client():
    engine = make_engine()
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _register(client: TestClient, username: str) -> dict[str, str]:
    resp = client.post(
        "/api/users/register",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": "secret123",
        },
    )
    assert resp.status_code == 201
    resp = client.post(
        "/api/auth/login", json={"identifier": username, "password": "secret123"}
    )
    assert resp.status_code == 200
    client.cookies.clear()
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def _category(client, headers, name: str, type: str) -> int:
    resp = client.post("/api/categories", json={"name": name, "type": type}, headers=headers)
    assert resp.status_code == 201
    return resp.json()["id"]


def test_requests_without_credentials_are_rejected(client) -> None:
    resp = client.get("/api/categories")
    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthenticated"

    resp = client.get("/api/categories", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_register_login_and_me(client) -> None:
    headers = _register(client, "alice")

    resp = client.get("/api/users/me", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["username"] == "alice"
    assert "password_hash" not in resp.json()

    duplicate = client.post(
        "/api/users/register",
        json={"username": "alice2", "email": "ALICE@example.com", "password": "secret123"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["field"] == "email"

    bad = client.post("/api/auth/login", json={"identifier": "alice", "password": "nope"})
    assert bad.status_code == 401


def test_login_cookie_authenticates(client) -> None:
    client.post(
        "/api/users/register",
        json={"username": "carol", "email": "carol@example.com", "password": "secret123"},
    )
    client.post("/api/auth/login", json={"identifier": "carol@example.com", "password": "secret123"})

    assert client.get("/api/users/me").json()["username"] == "carol"


def test_category_errors_map_to_status_codes(client) -> None:
    headers = _register(client, "alice")
    food = _category(client, headers, "Food", "expense")

    dup = client.post("/api/categories", json={"name": "Food", "type": "income"}, headers=headers)
    assert dup.status_code == 409
    assert dup.json()["error"] == "duplicate_name"

    invalid = client.post("/api/categories", json={"name": "X", "type": "gift"}, headers=headers)
    assert invalid.status_code == 422
    assert invalid.json()["error"] == "validation_error"

    other = _register(client, "bob")
    assert client.get(f"/api/categories/{food}", headers=other).status_code == 404
    assert client.delete(f"/api/categories/{food}", headers=other).status_code == 404

    assert client.delete(f"/api/categories/{food}", headers=headers).status_code == 204
    assert client.get("/api/categories", headers=headers).json() == []


def test_transaction_flow(client) -> None:
    headers = _register(client, "alice")
    food = _category(client, headers, "Food", "expense")
    salary = _category(client, headers, "Salary", "income")

    created = client.post(
        "/api/transactions",
        json={
            "category_id": food,
            "amount": "1500.50",
            "type": "expense",
            "date": "2024-06-05",
            "description": "Groceries",
        },
        headers=headers,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["amount_cents"] == 150_050
    assert body["category"] == {"name": "Food", "type": "expense"}

    mismatch = client.post(
        "/api/transactions",
        json={"category_id": salary, "amount": "1", "type": "expense", "date": "2024-06-05"},
        headers=headers,
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["error"] == "type_mismatch"

    missing = client.post(
        "/api/transactions",
        json={"category_id": 9999, "amount": "1", "type": "expense", "date": "2024-06-05"},
        headers=headers,
    )
    assert missing.status_code == 400
    assert missing.json()["error"] == "invalid_category"

    negative = client.post(
        "/api/transactions",
        json={"category_id": food, "amount": "-1", "type": "expense", "date": "2024-06-05"},
        headers=headers,
    )
    assert negative.status_code == 422
    assert negative.json()["field"] == "amount"

    updated = client.put(
        f"/api/transactions/{body['id']}", json={"description": None}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["description"] is None
    assert updated.json()["amount_cents"] == 150_050

    listing = client.get("/api/transactions?month=6&year=2024&limit=10", headers=headers)
    assert listing.status_code == 200
    assert [t["id"] for t in listing.json()["transactions"]] == [body["id"]]
    assert listing.json()["has_more"] is False

    bad_range = client.get(
        "/api/transactions?start=2024-07-01&end=2024-06-01", headers=headers
    )
    assert bad_range.status_code == 422

    other = _register(client, "bob")
    assert client.get(f"/api/transactions/{body['id']}", headers=other).status_code == 404
    assert client.delete(f"/api/transactions/{body['id']}", headers=headers).status_code == 204


def test_budget_and_summary_flow(client) -> None:
    headers = _register(client, "alice")
    food = _category(client, headers, "Food", "expense")
    salary = _category(client, headers, "Salary", "income")
    for category, amount, type, on in [
        (food, "400000", "expense", "2024-06-05"),
        (food, "700000", "expense", "2024-06-20"),
        (food, "100000", "expense", "2024-07-01"),
        (salary, "2000000", "income", "2024-06-10"),
    ]:
        resp = client.post(
            "/api/transactions",
            json={"category_id": category, "amount": amount, "type": type, "date": on},
            headers=headers,
        )
        assert resp.status_code == 201

    budget = client.post(
        "/api/budgets",
        json={"category_id": food, "amount": "1000000", "month": 6, "year": 2024},
        headers=headers,
    )
    assert budget.status_code == 201
    budget_id = budget.json()["id"]

    dup = client.post(
        "/api/budgets",
        json={"category_id": food, "amount": "5", "month": 6, "year": 2024},
        headers=headers,
    )
    assert dup.status_code == 409
    assert dup.json()["error"] == "duplicate_budget"

    income_budget = client.post(
        "/api/budgets",
        json={"category_id": salary, "amount": "5", "month": 6, "year": 2024},
        headers=headers,
    )
    assert income_budget.status_code == 400
    assert income_budget.json()["error"] == "invalid_category"

    progress = client.get(f"/api/budgets/{budget_id}/progress", headers=headers).json()
    assert progress["spent_cents"] == 110_000_000
    assert progress["progress_percent"] == 100
    assert progress["is_exceeded"] is True
    assert progress["exceed_cents"] == 10_000_000

    all_progress = client.get("/api/budgets/progress?month=6&year=2024", headers=headers)
    assert [p["budget"]["id"] for p in all_progress.json()] == [budget_id]

    in_use = client.delete(f"/api/categories/{food}", headers=headers)
    assert in_use.status_code == 409
    assert in_use.json()["error"] == "in_use"

    summary = client.get(
        "/api/reports/income-expense-summary?month=6&year=2024", headers=headers
    ).json()
    assert summary["total_income_cents"] == 200_000_000
    assert summary["total_expense_cents"] == 110_000_000
    assert summary["net_cents"] == 90_000_000
    assert summary["start_date"] == "2024-06-01"
    assert summary["end_date"] == "2024-06-30"
    assert summary["transaction_count"] == 3
    assert summary["expenses_by_category"][0]["category_name"] == "Food"
    assert summary["expenses_by_category"][0]["percent"] == 100

    bad_month = client.get(
        "/api/reports/income-expense-summary?month=13&year=2024", headers=headers
    )
    assert bad_month.status_code == 422

    updated = client.put(f"/api/budgets/{budget_id}", json={"amount": "2200000"}, headers=headers)
    assert updated.json()["amount_cents"] == 220_000_000
    assert client.get(f"/api/budgets/{budget_id}/progress", headers=headers).json()[
        "progress_percent"
    ] == 50

    dashboard = client.get("/api/dashboard", headers=headers)
    assert dashboard.status_code == 200
    assert dashboard.json()["current_balance_cents"] == 200_000_000 - 120_000_000


def test_logout_clears_session_cookie(client) -> None:
    client.post(
        "/api/users/register",
        json={"username": "dave", "email": "dave@example.com", "password": "secret123"},
    )
    client.post("/api/auth/login", json={"identifier": "dave", "password": "secret123"})
    assert client.get("/api/users/me").status_code == 200

    assert client.post("/api/auth/logout").status_code == 204
    client.cookies.clear()
    assert client.get("/api/users/me").status_code == 401


def test_out_of_range_years_are_validation_errors(client) -> None:
    headers = _register(client, "alice")

    resp = client.get("/api/reports/income-expense-summary?month=1&year=0", headers=headers)
    assert resp.status_code == 422
    assert resp.json() == {
        "error": "validation_error",
        "detail": "Year must be between 1 and 9999",
        "field": "year",
    }

    resp = client.get("/api/transactions?month=1&year=10000", headers=headers)
    assert resp.status_code == 422
    assert resp.json()["field"] == "year"

    resp = client.get("/api/transactions?month=12&year=9999", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["transactions"] == []

    resp = client.get(
        "/api/reports/income-expense-summary?month=12&year=9999", headers=headers
    )
    assert resp.status_code == 200
    assert resp.json()["end_date"] == "9999-12-31"


def test_path_parameter_errors_name_the_bare_field(client) -> None:
    headers = _register(client, "alice")

    resp = client.get("/api/categories/not-a-number", headers=headers)

    assert resp.status_code == 422
    assert resp.json()["field"] == "category_id"

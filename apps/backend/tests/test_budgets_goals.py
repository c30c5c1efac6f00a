from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from folio_finance import models
from folio_finance.services.budget_service import budget_status, period_window


@pytest.mark.parametrize(
    "period,today,expected",
    [
        (models.BudgetPeriod.WEEKLY, date(2024, 5, 15), (date(2024, 5, 12), date(2024, 5, 18))),
        (models.BudgetPeriod.WEEKLY, date(2024, 5, 12), (date(2024, 5, 12), date(2024, 5, 18))),
        (models.BudgetPeriod.MONTHLY, date(2024, 2, 10), (date(2024, 2, 1), date(2024, 2, 29))),
        (models.BudgetPeriod.QUARTERLY, date(2024, 8, 3), (date(2024, 7, 1), date(2024, 9, 30))),
        (models.BudgetPeriod.YEARLY, date(2024, 8, 3), (date(2024, 1, 1), date(2024, 12, 31))),
    ],
)
def test_period_window(period, today, expected):
    assert period_window(period, today) == expected


@pytest.mark.parametrize(
    "pct,status",
    [(0, "ok"), (74.99, "ok"), (75, "warning"), (90, "danger"), (99.9, "danger"), (100, "exceeded"), (140, "exceeded")],
)
def test_budget_status_thresholds(pct, status):
    assert budget_status(pct) == status


def test_budget_tracks_category_spending(client, admin_headers, create_account, category_id):
    acc = create_account(admin_headers, "Gastos", 500000)
    food = category_id("Alimentación")
    created = client.post(
        "/api/finance/budgets",
        json={"category_id": food, "amount": 100000, "period": "MONTHLY"},
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    budget = created.json()["data"]
    assert budget["status"] == "ok"
    assert Decimal(budget["spent"]) == Decimal("0")

    for amount, cat in ((80000, food), (5000, category_id("Transporte"))):
        client.post(
            "/api/finance/transactions",
            json={"type": "EXPENSE", "amount": amount, "account_id": acc["id"], "category_id": cat},
            headers=admin_headers,
        )
    # outside the window
    client.post(
        "/api/finance/transactions",
        json={
            "type": "EXPENSE",
            "amount": 70000,
            "account_id": acc["id"],
            "category_id": food,
            "transaction_date": (date.today() - timedelta(days=400)).isoformat(),
        },
        headers=admin_headers,
    )

    detail = client.get(f"/api/finance/budgets/{budget['id']}", headers=admin_headers).json()["data"]
    assert Decimal(detail["spent"]) == Decimal("80000")
    assert Decimal(detail["remaining"]) == Decimal("20000")
    assert detail["percentage"] == 80.0
    assert detail["status"] == "warning"
    assert len(detail["transactions"]) == 1

    listing = client.get("/api/finance/budgets", headers=admin_headers).json()
    assert listing["meta"]["budgets_in_warning"] == 1
    assert Decimal(listing["meta"]["total_spent"]) == Decimal("80000")


def test_duplicate_budget_and_income_category_are_rejected(client, admin_headers, category_id):
    body = {"category_id": category_id("Salud"), "amount": 1000, "period": "WEEKLY"}
    assert client.post("/api/finance/budgets", json=body, headers=admin_headers).status_code == 201
    assert client.post("/api/finance/budgets", json=body, headers=admin_headers).status_code == 409

    income = {"category_id": category_id("Salario"), "amount": 1000}
    assert client.post("/api/finance/budgets", json=income, headers=admin_headers).status_code == 400


def test_deleted_transactions_do_not_count(client, admin_headers, create_account, category_id):
    acc = create_account(admin_headers, "Diario", 10000)
    budget = client.post(
        "/api/finance/budgets", json={"amount": 1000, "period": "YEARLY"}, headers=admin_headers
    ).json()["data"]
    txn = client.post(
        "/api/finance/transactions",
        json={"type": "EXPENSE", "amount": 1200, "account_id": acc["id"], "category_id": category_id("Salud")},
        headers=admin_headers,
    ).json()["data"]
    assert client.get(f"/api/finance/budgets/{budget['id']}", headers=admin_headers).json()["data"]["status"] == "exceeded"

    client.delete(f"/api/finance/transactions/{txn['id']}", headers=admin_headers)
    after = client.get(f"/api/finance/budgets/{budget['id']}", headers=admin_headers).json()["data"]
    assert Decimal(after["spent"]) == Decimal("0")
    assert after["status"] == "ok"


def _contribute(client, headers, goal_id: int, amount) -> dict:
    resp = client.post(f"/api/finance/goals/{goal_id}/contribute", json={"amount": amount}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def test_goal_contributions_cross_milestones(client, admin_headers):
    created = client.post(
        "/api/finance/goals",
        json={"name": "Vacaciones", "target_amount": 1000, "deadline": (models.today_local() + timedelta(days=30)).isoformat()},
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    goal = created.json()["data"]
    assert goal["completed"] is False
    assert Decimal(goal["required_daily"]) == Decimal("33.33")

    step = _contribute(client, admin_headers, goal["id"], 300)
    assert step["milestones_reached"] == [25]
    assert step["milestone_25"] is True

    step = _contribute(client, admin_headers, goal["id"], 500)
    assert step["milestones_reached"] == [50, 75]
    assert step["percentage"] == 80.0

    step = _contribute(client, admin_headers, goal["id"], 400)
    assert step["milestones_reached"] == [100]
    assert step["just_completed"] is True
    assert step["completed"] is True
    assert step["percentage"] == 100.0

    step = _contribute(client, admin_headers, goal["id"], -5000)
    assert Decimal(step["current_amount"]) == Decimal("0")
    assert step["completed"] is False
    assert step["milestones_reached"] == []


def test_goal_validation_and_listing(client, admin_headers, other_headers):
    assert client.post("/api/finance/goals", json={"name": "Cero", "target_amount": 0}, headers=admin_headers).status_code == 400
    goal = client.post("/api/finance/goals", json={"name": "Auto", "target_amount": 500, "current_amount": 500}, headers=admin_headers).json()["data"]
    assert goal["completed"] is True

    zero = client.post(f"/api/finance/goals/{goal['id']}/contribute", json={"amount": 0}, headers=admin_headers)
    assert zero.status_code == 400
    assert client.get(f"/api/finance/goals/{goal['id']}", headers=other_headers).status_code == 404

    listing = client.get("/api/finance/goals", headers=admin_headers).json()
    assert listing["meta"]["completed_goals"] == 1
    assert listing["meta"]["overall_percentage"] == 100.0

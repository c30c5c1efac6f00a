from __future__ import annotations

from decimal import Decimal

from folio_finance import models


def test_first_account_becomes_default_and_default_moves(client, admin_headers, create_account):
    first = create_account(admin_headers, "Cuenta RUT", 1000)
    assert first["is_default"] is True
    assert first["currency"]["code"] == "CLP"
    assert Decimal(first["current_balance"]) == Decimal("1000")

    second = create_account(admin_headers, "Tarjeta", 0, type="CREDIT_CARD", is_default=True)
    assert second["is_default"] is True

    rows = client.get("/api/finance/accounts", headers=admin_headers).json()["data"]
    defaults = [a["name"] for a in rows if a["is_default"]]
    assert defaults == ["Tarjeta"]


def test_duplicate_name_is_case_insensitive(client, admin_headers, other_headers, create_account):
    create_account(admin_headers, "Ahorro")
    dup = client.post(
        "/api/finance/accounts",
        json={"name": "  AHORRO ", "type": "SAVINGS"},
        headers=admin_headers,
    )
    assert dup.status_code == 409
    # another user may reuse the name
    create_account(other_headers, "Ahorro")


def test_update_cannot_touch_balance(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Efectivo", 500)
    bad = client.patch(f"/api/finance/accounts/{acc['id']}", json={"current_balance": 9999}, headers=admin_headers)
    assert bad.status_code == 400

    ok = client.patch(f"/api/finance/accounts/{acc['id']}", json={"name": "Caja chica", "color": "#00AA00"}, headers=admin_headers)
    assert ok.status_code == 200, ok.text
    assert ok.json()["data"]["name"] == "Caja chica"
    assert Decimal(ok.json()["data"]["current_balance"]) == Decimal("500")


def test_archive_refused_while_transactions_exist(client, admin_headers, create_account):
    main = create_account(admin_headers, "Principal", 1000)
    spare = create_account(admin_headers, "Secundaria")
    txn = client.post(
        "/api/finance/transactions",
        json={"type": "EXPENSE", "amount": 100, "account_id": main["id"]},
        headers=admin_headers,
    ).json()["data"]

    refused = client.delete(f"/api/finance/accounts/{main['id']}", headers=admin_headers)
    assert refused.status_code == 400

    client.delete(f"/api/finance/transactions/{txn['id']}", headers=admin_headers)
    archived = client.delete(f"/api/finance/accounts/{main['id']}", headers=admin_headers)
    assert archived.status_code == 200, archived.text

    active = client.get("/api/finance/accounts", headers=admin_headers).json()["data"]
    assert [a["id"] for a in active] == [spare["id"]]
    assert active[0]["is_default"] is True

    everything = client.get("/api/finance/accounts", params={"include_archived": True}, headers=admin_headers).json()["data"]
    assert {a["id"] for a in everything} == {main["id"], spare["id"]}

    # archived accounts take no new transactions
    late = client.post(
        "/api/finance/transactions",
        json={"type": "INCOME", "amount": 100, "account_id": main["id"]},
        headers=admin_headers,
    )
    assert late.status_code == 400


def test_reconcile_reports_and_fixes_drift(client, db_session, admin_headers, create_account):
    src = create_account(admin_headers, "Fuente", 10000)
    dst = create_account(admin_headers, "Sumidero")
    client.post(
        "/api/finance/transactions",
        json={"type": "TRANSFER", "amount": 2500, "account_id": src["id"], "to_account_id": dst["id"]},
        headers=admin_headers,
    )
    client.post(
        "/api/finance/transactions",
        json={"type": "INCOME", "amount": 500, "account_id": src["id"]},
        headers=admin_headers,
    )

    report = client.get(f"/api/finance/accounts/{src['id']}/reconcile", headers=admin_headers).json()["data"]
    assert report["in_sync"] is True
    assert report["transaction_count"] == 2
    assert Decimal(report["computed_balance"]) == Decimal("8000")

    incoming = client.get(f"/api/finance/accounts/{dst['id']}/reconcile", headers=admin_headers).json()["data"]
    assert incoming["in_sync"] is True
    assert Decimal(incoming["computed_balance"]) == Decimal("2500")

    db_session.query(models.Account).filter(models.Account.id == src["id"]).update(
        {models.Account.current_balance: Decimal("1")}
    )
    db_session.commit()

    drifted = client.get(f"/api/finance/accounts/{src['id']}/reconcile", headers=admin_headers).json()["data"]
    assert drifted["in_sync"] is False
    assert Decimal(drifted["drift"]) == Decimal("-7999")

    fixed = client.post(f"/api/finance/accounts/{src['id']}/reconcile", headers=admin_headers)
    assert fixed.status_code == 200, fixed.text
    assert fixed.json()["data"]["in_sync"] is True
    assert Decimal(fixed.json()["data"]["stored_balance"]) == Decimal("8000")


def _active_defaults(client, headers) -> list[str]:
    rows = client.get("/api/finance/accounts", headers=headers).json()["data"]
    return [a["name"] for a in rows if a["is_default"]]


def test_archived_account_cannot_take_the_default(client, admin_headers, create_account):
    create_account(admin_headers, "Principal")
    old = create_account(admin_headers, "Vieja")
    assert client.delete(f"/api/finance/accounts/{old['id']}", headers=admin_headers).status_code == 200

    resp = client.patch(f"/api/finance/accounts/{old['id']}", json={"is_default": True}, headers=admin_headers)
    assert resp.status_code == 404
    assert _active_defaults(client, admin_headers) == ["Principal"]


def test_unsetting_default_promotes_another_account(client, admin_headers, create_account):
    main = create_account(admin_headers, "Principal")
    create_account(admin_headers, "Ahorro", type="SAVINGS")

    resp = client.patch(f"/api/finance/accounts/{main['id']}", json={"is_default": False}, headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["is_default"] is False
    assert _active_defaults(client, admin_headers) == ["Ahorro"]


def test_lone_account_keeps_the_default(client, admin_headers, create_account):
    only = create_account(admin_headers, "Unica")

    resp = client.patch(f"/api/finance/accounts/{only['id']}", json={"is_default": False}, headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["is_default"] is True
    assert _active_defaults(client, admin_headers) == ["Unica"]

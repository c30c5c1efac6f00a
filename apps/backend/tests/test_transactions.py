from __future__ import annotations

from decimal import Decimal

from folio_finance import models


def _balance(client, headers, account_id: int) -> Decimal:
    resp = client.get(f"/api/finance/accounts/{account_id}", headers=headers)
    assert resp.status_code == 200, resp.text
    return Decimal(resp.json()["data"]["current_balance"])


def _post_txn(client, headers, **body):
    return client.post("/api/finance/transactions", json=body, headers=headers)


def test_expenses_then_deletes_restore_initial_balance(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Cuenta Corriente", 100000)

    r1 = _post_txn(client, admin_headers, type="EXPENSE", amount=20000, account_id=acc["id"], description="Supermercado")
    assert r1.status_code == 201, r1.text
    assert _balance(client, admin_headers, acc["id"]) == Decimal("80000")

    r2 = _post_txn(client, admin_headers, type="EXPENSE", amount=15000, account_id=acc["id"], description="Bencina")
    assert r2.status_code == 201, r2.text
    assert _balance(client, admin_headers, acc["id"]) == Decimal("65000")

    for resp in (r1, r2):
        d = client.delete(f"/api/finance/transactions/{resp.json()['data']['id']}", headers=admin_headers)
        assert d.status_code == 200, d.text
        assert d.json()["data"] == {"id": resp.json()["data"]["id"], "deleted": True}
    assert _balance(client, admin_headers, acc["id"]) == Decimal("100000")


def test_edit_amount_shifts_balance_by_difference(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Billetera", 50000)
    txn = _post_txn(client, admin_headers, type="EXPENSE", amount=20000, account_id=acc["id"]).json()["data"]
    assert _balance(client, admin_headers, acc["id"]) == Decimal("30000")

    u = client.patch(f"/api/finance/transactions/{txn['id']}", json={"amount": 35000}, headers=admin_headers)
    assert u.status_code == 200, u.text
    assert Decimal(u.json()["data"]["amount"]) == Decimal("35000")
    assert u.json()["data"]["was_manually_edited"] is True
    assert _balance(client, admin_headers, acc["id"]) == Decimal("15000")


def test_edit_moves_transaction_between_accounts(client, admin_headers, create_account):
    a1 = create_account(admin_headers, "A1")
    a2 = create_account(admin_headers, "A2")
    txn = _post_txn(client, admin_headers, type="INCOME", amount=1000, account_id=a1["id"]).json()["data"]

    u = client.patch(
        f"/api/finance/transactions/{txn['id']}",
        json={"amount": 1500, "account_id": a2["id"]},
        headers=admin_headers,
    )
    assert u.status_code == 200, u.text
    assert _balance(client, admin_headers, a1["id"]) == Decimal("0")
    assert _balance(client, admin_headers, a2["id"]) == Decimal("1500")


def test_type_change_flips_sign_and_drops_mismatched_category(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Sueldo")
    created = _post_txn(
        client, admin_headers, type="INCOME", amount=10000, account_id=acc["id"], description="Sueldo octubre"
    )
    assert created.status_code == 201, created.text
    txn = created.json()["data"]
    assert txn["category"]["name"] == "Salario"
    assert txn["auto_categorization_score"] is not None
    assert _balance(client, admin_headers, acc["id"]) == Decimal("10000")

    u = client.patch(f"/api/finance/transactions/{txn['id']}", json={"type": "EXPENSE"}, headers=admin_headers)
    assert u.status_code == 200, u.text
    assert u.json()["data"]["category"] is None
    assert _balance(client, admin_headers, acc["id"]) == Decimal("-10000")


def test_transfer_moves_money_and_edits_both_sides(client, admin_headers, create_account):
    src = create_account(admin_headers, "Origen", 100000)
    dst = create_account(admin_headers, "Destino")

    r = _post_txn(client, admin_headers, type="TRANSFER", amount=30000, account_id=src["id"], to_account_id=dst["id"])
    assert r.status_code == 201, r.text
    txn = r.json()["data"]
    assert txn["to_account"]["id"] == dst["id"]
    assert txn["category"] is None
    assert _balance(client, admin_headers, src["id"]) == Decimal("70000")
    assert _balance(client, admin_headers, dst["id"]) == Decimal("30000")

    u = client.patch(f"/api/finance/transactions/{txn['id']}", json={"amount": 50000}, headers=admin_headers)
    assert u.status_code == 200, u.text
    assert _balance(client, admin_headers, src["id"]) == Decimal("50000")
    assert _balance(client, admin_headers, dst["id"]) == Decimal("50000")

    d = client.delete(f"/api/finance/transactions/{txn['id']}", headers=admin_headers)
    assert d.status_code == 200
    assert _balance(client, admin_headers, src["id"]) == Decimal("100000")
    assert _balance(client, admin_headers, dst["id"]) == Decimal("0")


def test_transfer_destination_rules(client, admin_headers, other_headers, create_account):
    src = create_account(admin_headers, "Principal", 1000)
    foreign = create_account(other_headers, "Ajena", 500)

    missing = _post_txn(client, admin_headers, type="TRANSFER", amount=100, account_id=src["id"])
    assert missing.status_code == 400

    same = _post_txn(
        client, admin_headers, type="TRANSFER", amount=100, account_id=src["id"], to_account_id=src["id"]
    )
    assert same.status_code == 400

    other = _post_txn(
        client, admin_headers, type="TRANSFER", amount=100, account_id=src["id"], to_account_id=foreign["id"]
    )
    assert other.status_code == 404
    assert other.json() == {"error": "Destination account not found"}

    assert _balance(client, admin_headers, src["id"]) == Decimal("1000")
    assert _balance(client, other_headers, foreign["id"]) == Decimal("500")


def test_foreign_account_and_transaction_are_invisible(client, admin_headers, other_headers, create_account):
    mine = create_account(admin_headers, "Mia", 1000)
    r = _post_txn(client, other_headers, type="EXPENSE", amount=100, account_id=mine["id"])
    assert r.status_code == 404

    txn = _post_txn(client, admin_headers, type="EXPENSE", amount=100, account_id=mine["id"]).json()["data"]
    assert client.get(f"/api/finance/transactions/{txn['id']}", headers=other_headers).status_code == 404
    assert client.delete(f"/api/finance/transactions/{txn['id']}", headers=other_headers).status_code == 404
    assert _balance(client, admin_headers, mine["id"]) == Decimal("900")


def test_double_delete_is_rejected_and_balance_reverted_once(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Ahorro", 5000)
    txn = _post_txn(client, admin_headers, type="EXPENSE", amount=1000, account_id=acc["id"]).json()["data"]

    assert client.delete(f"/api/finance/transactions/{txn['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/finance/transactions/{txn['id']}", headers=admin_headers).status_code == 404
    assert client.get(f"/api/finance/transactions/{txn['id']}", headers=admin_headers).status_code == 404
    assert client.patch(
        f"/api/finance/transactions/{txn['id']}", json={"amount": 10}, headers=admin_headers
    ).status_code == 404
    assert _balance(client, admin_headers, acc["id"]) == Decimal("5000")


def test_rejects_non_positive_amount_and_mismatched_category(client, admin_headers, create_account, category_id):
    acc = create_account(admin_headers, "Caja")
    zero = _post_txn(client, admin_headers, type="EXPENSE", amount=0, account_id=acc["id"])
    assert zero.status_code == 400
    assert zero.json()["error"] == "Invalid data"
    assert zero.json()["details"][0]["field"] == "amount"

    wrong = _post_txn(
        client, admin_headers, type="EXPENSE", amount=10, account_id=acc["id"], category_id=category_id("Salario")
    )
    assert wrong.status_code == 400
    assert _balance(client, admin_headers, acc["id"]) == Decimal("0")


def test_foreign_currency_is_converted_with_stored_rate(client, db_session, admin_headers, create_account):
    from folio_finance.services.exchange_rate_service import ExchangeRateService

    ExchangeRateService(db_session).upsert_rates({"USD": Decimal("1.08"), "CLP": Decimal("1010")})
    acc = create_account(admin_headers, "Pesos")

    r = _post_txn(client, admin_headers, type="EXPENSE", amount=100, currency="usd", account_id=acc["id"])
    assert r.status_code == 201, r.text
    txn = r.json()["data"]
    assert txn["currency"]["code"] == "CLP"
    assert txn["original_currency"] == "USD"
    assert Decimal(txn["original_amount"]) == Decimal("100")
    assert Decimal(txn["exchange_rate"]) == Decimal("935.18518519")
    assert Decimal(txn["amount"]) == Decimal("93519")
    assert _balance(client, admin_headers, acc["id"]) == Decimal("-93519")

    u = client.patch(f"/api/finance/transactions/{txn['id']}", json={"amount": 200}, headers=admin_headers)
    assert u.status_code == 200, u.text
    assert Decimal(u.json()["data"]["original_amount"]) == Decimal("200")
    assert Decimal(u.json()["data"]["amount"]) == Decimal("187037")
    assert _balance(client, admin_headers, acc["id"]) == Decimal("-187037")


def test_unknown_rate_is_rejected(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Sin tasa")
    r = _post_txn(client, admin_headers, type="EXPENSE", amount=100, currency="JPY", account_id=acc["id"])
    assert r.status_code == 400
    assert _balance(client, admin_headers, acc["id"]) == Decimal("0")


def test_list_filters_and_paginates(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Lista", 100000)
    for i in range(3):
        _post_txn(client, admin_headers, type="EXPENSE", amount=100 + i, account_id=acc["id"], description=f"Uber {i}")
    _post_txn(client, admin_headers, type="INCOME", amount=5000, account_id=acc["id"], description="Freelance")

    resp = client.get(
        "/api/finance/transactions",
        params={"type": "EXPENSE", "limit": 2, "sort_by": "amount", "sort_order": "asc"},
        headers=admin_headers,
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}
    assert [Decimal(t["amount"]) for t in body["data"]] == [Decimal("100"), Decimal("101")]

    found = client.get("/api/finance/transactions", params={"search": "freel"}, headers=admin_headers).json()
    assert found["pagination"]["total"] == 1


def test_items_and_audit_entries_are_recorded(client, db_session, admin_headers, create_account):
    acc = create_account(admin_headers, "Items", 10000)
    r = _post_txn(
        client,
        admin_headers,
        type="EXPENSE",
        amount=3000,
        account_id=acc["id"],
        source="ocr",
        items=[{"description": "Pan", "quantity": 2, "unit_price": 1000}, {"description": "Leche", "unit_price": 1000}],
    )
    assert r.status_code == 201, r.text
    items = r.json()["data"]["items"]
    assert [i["description"] for i in items] == ["Pan", "Leche"]
    assert Decimal(items[0]["total_price"]) == Decimal("2000")

    actions = [a for (a,) in db_session.query(models.AuditLog.action).all()]
    assert "transaction.created" in actions


def test_search_treats_wildcards_literally(client, admin_headers, create_account):
    acc = create_account(admin_headers, "Busqueda", 10000)
    for description in ("Descuento 50% off", "Descuento 500 pesos", "cuota_1 gimnasio", "cuotaX1 gimnasio"):
        assert _post_txn(client, admin_headers, type="EXPENSE", amount=100, account_id=acc["id"],
                         description=description).status_code == 201

    def search(term: str) -> list[str]:
        body = client.get("/api/finance/transactions", params={"search": term}, headers=admin_headers).json()
        return sorted(t["description"] for t in body["data"])

    assert search("50%") == ["Descuento 50% off"]
    assert search("cuota_1") == ["cuota_1 gimnasio"]
    assert search("%") == ["Descuento 50% off"]

from __future__ import annotations

import pytest

from folio_finance import models
from folio_finance.services.categorization_service import CategorySuggester, RULE_CONFIDENCE


def _categorize(client, headers, **body):
    resp = client.post("/api/finance/categorize", json=body, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def test_longest_keyword_relative_to_text_wins(client, admin_headers):
    hit = _categorize(client, admin_headers, description="Compra en farmacia cruz verde")
    assert hit["category_name"] == "Salud"
    assert hit["source"] == "keyword"
    assert hit["matched"] == "cruz verde"
    assert hit["confidence"] == pytest.approx(0.6667)


def test_tie_keeps_category_seen_first(client, admin_headers):
    # "uber" (Transporte) and "pago" (Transferencias) score the same
    hit = _categorize(client, admin_headers, description="Pago Uber viaje")
    assert hit["category_name"] == "Transporte"
    assert hit["confidence"] == pytest.approx(0.5)


def test_confidence_is_capped(client, admin_headers):
    hit = _categorize(client, admin_headers, description="uber")
    assert hit["category_name"] == "Transporte"
    assert hit["confidence"] == pytest.approx(0.8)


def test_income_type_uses_income_categories(client, admin_headers):
    hit = _categorize(client, admin_headers, description="pago sueldo", type="income")
    assert hit["category_name"] == "Salario"


def test_no_match_and_transfer_return_null(client, admin_headers):
    assert _categorize(client, admin_headers, description="xyzzy qwerty") is None
    assert _categorize(client, admin_headers, description="uber", type="TRANSFER") is None


def test_blank_input_is_rejected(client, admin_headers):
    resp = client.post("/api/finance/categorize", json={"description": "   "}, headers=admin_headers)
    assert resp.status_code == 400


def test_rule_beats_keywords(client, admin_headers, category_id):
    rule = client.post(
        "/api/finance/categories/rules",
        json={"category_id": category_id("Entretenimiento"), "description_pattern": "Uber", "priority": 10},
        headers=admin_headers,
    )
    assert rule.status_code == 201, rule.text

    hit = _categorize(client, admin_headers, description="Pago Uber viaje")
    assert hit["category_name"] == "Entretenimiento"
    assert hit["source"] == "rule"
    assert hit["confidence"] == RULE_CONFIDENCE

    off = client.patch(
        f"/api/finance/categories/rules/{rule.json()['data']['id']}", json={"is_active": False}, headers=admin_headers
    )
    assert off.status_code == 200
    assert _categorize(client, admin_headers, description="Pago Uber viaje")["source"] == "keyword"


def test_rules_are_per_user(client, admin_headers, other_headers, category_id):
    client.post(
        "/api/finance/categories/rules",
        json={"category_id": category_id("Mascotas"), "merchant_pattern": "Lider"},
        headers=admin_headers,
    )
    mine = _categorize(client, admin_headers, description="compra", merchant="LIDER Express")
    theirs = _categorize(client, other_headers, description="compra", merchant="LIDER Express")
    assert mine["category_name"] == "Mascotas"
    assert theirs["category_name"] == "Compras"


def test_batch_returns_one_result_per_item(client, admin_headers):
    data = _categorize(
        client,
        admin_headers,
        transactions=[
            {"description": "Netflix"},
            {"description": "nada que ver"},
            {"merchant_name": "Starbucks"},
        ],
    )
    assert len(data) == 3
    assert data[0]["category_name"] == "Entretenimiento"
    assert data[1] is None
    assert data[2]["category_name"] == "Restaurantes"


def test_batch_size_is_limited(client, admin_headers):
    resp = client.post(
        "/api/finance/categorize",
        json={"transactions": [{"description": "uber"}] * 101},
        headers=admin_headers,
    )
    assert resp.status_code == 400


def test_user_category_keywords_participate(client, db_session, admin_headers, users):
    created = client.post(
        "/api/finance/categories",
        json={"name": "Gimnasio", "type": "EXPENSE", "keywords": [" Smartfit ", "smartfit", "gym"]},
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    assert created.json()["data"]["keywords"] == ["smartfit", "gym"]
    assert created.json()["data"]["is_global"] is False

    hit = CategorySuggester(db_session).suggest(users["admin"], "Mensualidad Smartfit", None, models.TxnType.EXPENSE)
    assert hit is not None and hit.category_name == "Gimnasio"
    assert CategorySuggester(db_session).suggest(users["other"], "Smartfit", None) is None


def test_global_categories_are_read_only(client, admin_headers, category_id):
    resp = client.patch(
        f"/api/finance/categories/{category_id('Salud')}", json={"name": "Mi salud"}, headers=admin_headers
    )
    assert resp.status_code == 404

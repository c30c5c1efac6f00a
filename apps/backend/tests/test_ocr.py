from __future__ import annotations

import base64
from decimal import Decimal

import pytest

from folio_finance import models, schemas
from folio_finance.core.config import settings
from folio_finance.core.deps import get_receipt_scanner
from folio_finance.main import app
from folio_finance.services.ocr_service import ReceiptScanError, detect_file_type, validate_data_url

PNG_HEADER = b"\x89PNG\r\n\x1a\n"
JPEG_HEADER = b"\xff\xd8\xff\xe0"


def _data_url(content: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def _png(size: int = 300) -> str:
    return _data_url(PNG_HEADER + b"\x00" * size)


class FakeScanner:
    def __init__(self, receipt: schemas.ReceiptData | None = None, error: Exception | None = None) -> None:
        self.receipt = receipt
        self.error = error
        self.calls: list[str] = []

    def scan(self, content: bytes, mime: str) -> schemas.ReceiptData:
        self.calls.append(mime)
        if self.error:
            raise self.error
        return self.receipt


@pytest.fixture()
def use_scanner():
    def _install(scanner: FakeScanner) -> FakeScanner:
        app.dependency_overrides[get_receipt_scanner] = lambda: scanner
        return scanner

    return _install


def _scan(client, headers, image: str):
    return client.post("/api/finance/ocr", json={"image": image}, headers=headers)


def _actions(db_session) -> list[str]:
    return [a for (a,) in db_session.query(models.AuditLog.action).order_by(models.AuditLog.id).all()]


def test_detect_file_type():
    assert detect_file_type(PNG_HEADER + b"rest") == (True, "image/png", None)
    assert detect_file_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp") == (True, "image/webp", None)
    assert detect_file_type(b"RIFF\x00\x00\x00\x00WAVEfmt ") == (False, None, "UNKNOWN_FILE_TYPE")
    assert detect_file_type(PNG_HEADER + b"rest", "image/jpeg") == (False, "image/png", "TYPE_MISMATCH")
    assert detect_file_type(b"\xff\xd8") == (False, None, "FILE_TOO_SMALL")


def test_validate_data_url_rejects_garbage():
    assert validate_data_url("not a data url").reason == "INVALID_DATA_URL"
    ok = validate_data_url(_data_url(JPEG_HEADER + b"\x00" * 20, "image/jpeg"))
    assert ok.valid and ok.mime == "image/jpeg"


def test_without_scanner_answers_503(client, admin_headers):
    resp = _scan(client, admin_headers, _png())
    assert resp.status_code == 503
    assert resp.json() == {"error": "OCR service is not configured"}


def test_requires_permission(client, member_headers):
    assert _scan(client, member_headers, _png()).status_code == 403


def test_short_image_is_rejected(client, admin_headers):
    resp = _scan(client, admin_headers, "data:image/png;base64,AAAA")
    assert resp.status_code == 400
    assert resp.json()["details"][0]["field"] == "image"


def test_magic_bytes_must_match_declared_type(client, db_session, admin_headers, use_scanner):
    scanner = use_scanner(FakeScanner(schemas.ReceiptData(is_valid_document=True)))
    resp = _scan(client, admin_headers, _data_url(PNG_HEADER + b"\x00" * 300, "image/jpeg"))
    assert resp.status_code == 400
    assert resp.json()["details"] == "TYPE_MISMATCH"
    assert scanner.calls == []
    actions = _actions(db_session)
    assert "security.suspicious_file_upload" in actions
    assert "ocr.security_blocked" in actions


def test_script_payload_is_blocked(client, db_session, admin_headers, use_scanner):
    scanner = use_scanner(FakeScanner(schemas.ReceiptData(is_valid_document=True)))
    # one pad byte aligns the script tag on a base64 group boundary
    image = _data_url(PNG_HEADER + b"\x00" + b"<script></script>" + b"\x00" * 200)
    assert "PHNjcmlwdD4" in image

    resp = _scan(client, admin_headers, image)
    assert resp.status_code == 400
    assert scanner.calls == []
    assert "ocr.xss_blocked" in _actions(db_session)


def test_repeated_attacks_block_the_actor(client, admin_headers, use_scanner):
    use_scanner(FakeScanner(schemas.ReceiptData(is_valid_document=True)))
    image = _data_url(PNG_HEADER + b"\x00" + b"<script></script>" + b"\x00" * 200)
    assert _scan(client, admin_headers, image).status_code == 400
    assert _scan(client, admin_headers, image).status_code == 400

    blocked = _scan(client, admin_headers, _png())
    assert blocked.status_code == 429
    assert blocked.json()["error"] == "Too many suspicious requests, try again later"


def test_rate_limit_returns_retry_after(client, admin_headers, other_headers, monkeypatch):
    monkeypatch.setattr(settings, "OCR_MAX_PER_HOUR", 2)
    assert _scan(client, admin_headers, _png()).status_code == 503
    assert _scan(client, admin_headers, _png()).status_code == 503

    limited = _scan(client, admin_headers, _png())
    assert limited.status_code == 429
    body = limited.json()
    assert body["error"] == "Rate limit exceeded"
    assert 0 < body["retry_after"] <= 3600
    assert limited.headers["Retry-After"] == str(body["retry_after"])

    # the limit is per user
    assert _scan(client, other_headers, _png()).status_code == 503


def test_invalid_document_is_422(client, db_session, admin_headers, use_scanner):
    use_scanner(
        FakeScanner(
            schemas.ReceiptData(
                is_valid_document=False, document_type="screenshot", validation_message="Not a receipt"
            )
        )
    )
    resp = _scan(client, admin_headers, _png())
    assert resp.status_code == 422
    assert resp.json()["error"] == "Not a receipt"
    assert resp.json()["details"]["document_type"] == "screenshot"
    assert "ocr.invalid_document" in _actions(db_session)


def test_scanner_failure_is_503(client, admin_headers, use_scanner):
    use_scanner(FakeScanner(error=ReceiptScanError("upstream timeout")))
    assert _scan(client, admin_headers, _png()).status_code == 503


def test_successful_scan_suggests_category_and_account(client, db_session, admin_headers, create_account, use_scanner):
    acc = create_account(admin_headers, "Debito")
    receipt = schemas.ReceiptData(
        is_valid_document=True,
        document_type="boleta",
        document_number="123456",
        merchant_name="Farmacia Cruz Verde",
        total=Decimal("5990"),
        items=[schemas.OcrLineItem(description="Paracetamol", total_price=Decimal("5990"))],
    )
    scanner = use_scanner(FakeScanner(receipt))

    resp = _scan(client, admin_headers, _png())
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert scanner.calls == ["image/png"]
    assert data["suggested_category"]["name"] == "Salud"
    assert data["default_account"]["id"] == acc["id"]
    assert data["receipt"]["document_number"] == "123456"
    assert "ocr.processed" in _actions(db_session)


def test_named_category_from_scanner_wins_and_fallback_applies(client, admin_headers, use_scanner):
    use_scanner(FakeScanner(schemas.ReceiptData(is_valid_document=True, suggested_category="mascotas")))
    named = _scan(client, admin_headers, _png()).json()["data"]
    assert named["suggested_category"]["name"] == "Mascotas"
    assert named["default_account"] is None

    use_scanner(FakeScanner(schemas.ReceiptData(is_valid_document=True, merchant_name="Zzz Ltda")))
    fallback = _scan(client, admin_headers, _png()).json()["data"]
    assert fallback["suggested_category"]["name"] == "Otros Gastos"

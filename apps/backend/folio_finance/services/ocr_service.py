"""Receipt image ingestion.

The image travels as a base64 data URL. Before it reaches a scanner it must
pass the threat check, the per-user rate limit, size limits, a magic-byte
check against the declared MIME type and a scan for script payloads. The
scanner itself is pluggable; without one the endpoint answers 503.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi import HTTPException
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.config import settings
from folio_finance.services.account_service import AccountService
from folio_finance.services.audit_service import AuditService
from folio_finance.services.categorization_service import CategorySuggester
from folio_finance.services.category_service import CategoryService
from folio_finance.services.security import (
    RateLimiter,
    RequestContext,
    SecurityEvent,
    SecurityRecorder,
    ThreatTracker,
)


logger = logging.getLogger(__name__)

MIN_IMAGE_CHARS = 100
FALLBACK_CATEGORY = "Otros Gastos"

# (mime, signature, offset)
FILE_SIGNATURES: list[tuple[str, bytes, int]] = [
    ("image/jpeg", b"\xff\xd8\xff", 0),
    ("image/png", b"\x89PNG\r\n\x1a\n", 0),
    ("image/gif", b"GIF8", 0),
    ("image/webp", b"RIFF", 0),
    ("application/pdf", b"%PDF", 0),
]
WEBP_MARKER = (b"WEBP", 8)

# base64 fragments of <script>, javascript:, onerror=, onload=, eval(, atob(
SCRIPT_PAYLOAD_PATTERNS = (
    "PHNjcmlwdD4",
    "amF2YXNjcmlwdDo",
    "b25lcnJvcj0",
    "b25sb2FkPQ",
    "ZXZhbCg",
    "YXRvYig",
)

_DATA_URL = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class ImageCheck:
    valid: bool
    mime: Optional[str] = None
    reason: Optional[str] = None
    content: bytes = b""


def detect_file_type(content: bytes, expected: Optional[str] = None) -> tuple[bool, Optional[str], Optional[str]]:
    """Return ``(valid, detected_mime, reason)`` for ``content``."""
    if len(content) < 8:
        return False, None, "FILE_TOO_SMALL"
    for mime, signature, offset in FILE_SIGNATURES:
        if content[offset:offset + len(signature)] != signature:
            continue
        if mime == "image/webp":
            marker, marker_offset = WEBP_MARKER
            if content[marker_offset:marker_offset + len(marker)] != marker:
                continue
        if expected and mime != expected:
            return False, mime, "TYPE_MISMATCH"
        return True, mime, None
    return False, None, "UNKNOWN_FILE_TYPE"


def validate_data_url(data_url: str) -> ImageCheck:
    match = _DATA_URL.match(data_url)
    if not match:
        return ImageCheck(False, reason="INVALID_DATA_URL")
    declared, payload = match.group(1).strip().lower(), match.group(2)
    try:
        content = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError):
        return ImageCheck(False, reason="INVALID_BASE64")
    valid, _detected, reason = detect_file_type(content, declared)
    if not valid:
        return ImageCheck(False, mime=declared, reason=reason)
    return ImageCheck(True, mime=declared, content=content)


def contains_script_payload(data_url: str) -> bool:
    _, _, payload = data_url.partition(",")
    return any(pattern in payload for pattern in SCRIPT_PAYLOAD_PATTERNS)


class ReceiptScanError(RuntimeError):
    pass


class ReceiptScanner(Protocol):
    """Turns a validated receipt image into structured fields."""

    def scan(self, content: bytes, mime: str) -> schemas.ReceiptData: ...


class OcrService:
    def __init__(
        self,
        db: Session,
        *,
        ctx: RequestContext,
        recorder: SecurityRecorder,
        tracker: ThreatTracker,
        limiter: RateLimiter,
        scanner: Optional[ReceiptScanner],
    ) -> None:
        self.db = db
        self.ctx = ctx
        self.recorder = recorder
        self.tracker = tracker
        self.limiter = limiter
        self.scanner = scanner
        self.audit = AuditService(db)

    def _audit_now(self, action: str, user: models.User, details: dict) -> None:
        self.audit.record_now(
            action,
            user_id=user.id,
            target_type="receipt",
            details=details,
            ip_address=self.ctx.ip_address,
            user_agent=self.ctx.user_agent,
        )

    def process(self, user: models.User, image: str) -> schemas.OcrResult:
        if self.tracker.is_blocked(self.ctx.actor):
            logger.warning("blocked actor %s attempted OCR", self.ctx.actor, extra={"user_id": user.id})
            raise HTTPException(status_code=429, detail="Too many suspicious requests, try again later")

        limit = self.limiter.hit(str(user.id))
        if not limit.allowed:
            self.recorder.record(SecurityEvent.RATE_LIMIT_EXCEEDED, self.ctx, endpoint="ocr", limit=limit.limit)
            raise HTTPException(
                status_code=429,
                detail={"error": "Rate limit exceeded", "retry_after": limit.retry_after},
                headers={"Retry-After": str(limit.retry_after)},
            )

        if len(image) < MIN_IMAGE_CHARS:
            raise HTTPException(
                status_code=400,
                detail={"error": "Invalid data", "details": [{"field": "image", "message": "image is too short"}]},
            )
        if len(image) > settings.OCR_MAX_IMAGE_CHARS:
            raise HTTPException(status_code=400, detail="Image too large")

        check = validate_data_url(image)
        if not check.valid:
            self.recorder.record(
                SecurityEvent.SUSPICIOUS_FILE_UPLOAD,
                self.ctx,
                declared_type=image[5:30],
                reason=check.reason,
            )
            self._audit_now("ocr.security_blocked", user, {"reason": check.reason})
            raise HTTPException(
                status_code=400, detail={"error": "Image blocked for security reasons", "details": check.reason}
            )

        if contains_script_payload(image):
            self.recorder.record(SecurityEvent.XSS_INJECTION_ATTEMPT, self.ctx, location="ocr")
            self._audit_now("ocr.xss_blocked", user, {"reason": "script pattern detected in base64"})
            raise HTTPException(status_code=400, detail="Image blocked for security reasons")

        if self.scanner is None:
            raise HTTPException(status_code=503, detail="OCR service is not configured")
        try:
            receipt = self.scanner.scan(check.content, check.mime or "")
        except ReceiptScanError as exc:
            logger.error("receipt scanner failed: %s", exc, extra={"user_id": user.id})
            raise HTTPException(status_code=503, detail="OCR service unavailable") from exc

        if not receipt.is_valid_document:
            self._audit_now(
                "ocr.invalid_document",
                user,
                {
                    "document_type": receipt.document_type or "unknown",
                    "validation_message": receipt.validation_message,
                },
            )
            raise HTTPException(
                status_code=422,
                detail={
                    "error": receipt.validation_message or "Document is not a valid receipt",
                    "details": {"document_type": receipt.document_type, "is_valid_document": False},
                },
            )

        category = self._suggest_category(user, receipt)
        account = AccountService(self.db).default_account(user.id)
        self._audit_now(
            "ocr.processed",
            user,
            {
                "document_type": receipt.document_type,
                "document_number": receipt.document_number,
                "items_count": len(receipt.items),
                "total": str(receipt.total) if receipt.total is not None else None,
            },
        )
        return schemas.OcrResult(
            receipt=receipt,
            suggested_category=schemas.CategoryBrief.model_validate(category) if category else None,
            default_account=schemas.AccountBrief.model_validate(account) if account else None,
        )

    def _suggest_category(self, user: models.User, receipt: schemas.ReceiptData) -> Optional[models.Category]:
        categories = CategoryService(self.db)
        if receipt.suggested_category:
            named = categories.find_by_name(user.id, receipt.suggested_category, models.CategoryType.EXPENSE)
            if named:
                return named
        description = " ".join(item.description for item in receipt.items)
        suggestion = CategorySuggester(self.db).suggest(
            user.id, description, receipt.merchant_name, models.TxnType.EXPENSE
        )
        if suggestion:
            return categories.get_visible(user.id, suggestion.category_id)
        return categories.find_by_name(user.id, FALLBACK_CATEGORY, models.CategoryType.EXPENSE)

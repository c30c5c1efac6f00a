from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import (
    get_ocr_rate_limiter,
    get_receipt_scanner,
    get_request_context,
    get_security_recorder,
    get_threat_tracker,
    require_permission,
)
from folio_finance.services.ocr_service import OcrService
from folio_finance.services.security import RateLimiter, RequestContext, SecurityRecorder, ThreatTracker


router = APIRouter(prefix="/ocr", tags=["ocr"])


@router.post("", response_model=schemas.Envelope[schemas.OcrResult])
def scan_receipt(
    payload: schemas.OcrRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    recorder: SecurityRecorder = Depends(get_security_recorder),
    tracker: ThreatTracker = Depends(get_threat_tracker),
    limiter: RateLimiter = Depends(get_ocr_rate_limiter),
    scanner=Depends(get_receipt_scanner),
    user: models.User = Depends(require_permission("finance.ocr.use")),
):
    svc = OcrService(db, ctx=ctx, recorder=recorder, tracker=tracker, limiter=limiter, scanner=scanner)
    return {"data": svc.process(user, payload.image)}

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import require_permission
from folio_finance.services.audit_service import AuditService
from folio_finance.services.exchange_rate_service import ExchangeRateService, quantize_for


router = APIRouter(tags=["currencies"])


@router.get("/currencies", response_model=schemas.Envelope[list[schemas.CurrencyOut]])
def list_currencies(
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.view")),
):
    return {"data": ExchangeRateService(db).list_currencies()}


@router.get("/exchange-rates", response_model=schemas.Envelope[list[schemas.ExchangeRateOut]])
def list_exchange_rates(
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.view")),
):
    return {"data": ExchangeRateService(db).list_rates()}


@router.put("/exchange-rates", response_model=schemas.Envelope[list[schemas.ExchangeRateOut]])
def upsert_exchange_rates(
    payload: schemas.ExchangeRateUpsert,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.manage")),
):
    AuditService(db).record(
        "finance.exchange_rates.updated",
        user_id=user.id,
        target_type="exchange_rate",
        details={code: str(rate) for code, rate in payload.rates.items()},
    )
    return {"data": ExchangeRateService(db).upsert_rates(payload.rates)}


@router.post("/exchange-rates/convert", response_model=schemas.Envelope[schemas.ConvertOut])
def convert_amount(
    payload: schemas.ConvertIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.view")),
):
    svc = ExchangeRateService(db)
    source = svc.get_currency(payload.from_currency)
    converted, rate = svc.convert(payload.amount, source.code, payload.to_currency)
    return {
        "data": {
            "amount": quantize_for(payload.amount, source.decimals),
            "from_currency": source.code,
            "to_currency": payload.to_currency.upper(),
            "rate": rate,
            "converted": converted,
        }
    }

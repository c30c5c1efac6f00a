from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from folio_finance import models

BASE_CURRENCY = "EUR"
RATE_QUANT = Decimal("0.00000001")


def quantize_for(amount: Decimal, decimals: int) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


class ExchangeRateService:
    """Cross rates through the stored EUR-based snapshot table.

    Rates are only read from the database; refreshing them is an admin upsert.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _eur_rate(self, code: str) -> Decimal:
        code = code.upper()
        if code == BASE_CURRENCY:
            return Decimal("1")
        row = (
            self.db.query(models.ExchangeRate)
            .filter(
                models.ExchangeRate.base_currency == BASE_CURRENCY,
                models.ExchangeRate.target_currency == code,
            )
            .first()
        )
        if row is None:
            raise HTTPException(status_code=400, detail=f"No exchange rate available for {code}")
        return Decimal(row.rate)

    def get_rate(self, from_code: str, to_code: str) -> Decimal:
        """Units of ``to_code`` per one unit of ``from_code``."""
        if from_code.upper() == to_code.upper():
            return Decimal("1")
        rate = self._eur_rate(to_code) / self._eur_rate(from_code)
        return rate.quantize(RATE_QUANT, rounding=ROUND_HALF_UP)

    def convert(self, amount: Decimal, from_code: str, to_code: str) -> tuple[Decimal, Decimal]:
        """Return ``(converted_amount, rate)`` rounded to the target currency decimals."""
        rate = self.get_rate(from_code, to_code)
        target = self.get_currency(to_code)
        return quantize_for(Decimal(amount) * rate, target.decimals), rate

    def get_currency(self, code: str) -> models.Currency:
        cur = (
            self.db.query(models.Currency)
            .filter(models.Currency.code == code.upper(), models.Currency.is_active.is_(True))
            .first()
        )
        if not cur:
            raise HTTPException(status_code=400, detail=f"Unsupported currency: {code}")
        return cur

    def list_currencies(self) -> list[models.Currency]:
        return (
            self.db.query(models.Currency)
            .filter(models.Currency.is_active.is_(True))
            .order_by(models.Currency.code)
            .all()
        )

    def list_rates(self) -> list[models.ExchangeRate]:
        return (
            self.db.query(models.ExchangeRate)
            .filter(models.ExchangeRate.base_currency == BASE_CURRENCY)
            .order_by(models.ExchangeRate.target_currency)
            .all()
        )

    def upsert_rates(self, rates: dict[str, Decimal], fetched_at: Optional[datetime] = None) -> list[models.ExchangeRate]:
        when = fetched_at or models.now_local_naive()
        try:
            for code, rate in rates.items():
                if code == BASE_CURRENCY:
                    continue
                row = (
                    self.db.query(models.ExchangeRate)
                    .filter(
                        models.ExchangeRate.base_currency == BASE_CURRENCY,
                        models.ExchangeRate.target_currency == code,
                    )
                    .first()
                )
                if row is None:
                    row = models.ExchangeRate(base_currency=BASE_CURRENCY, target_currency=code, rate=rate, fetched_at=when)
                    self.db.add(row)
                else:
                    row.rate = rate
                    row.fetched_at = when
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self.list_rates()

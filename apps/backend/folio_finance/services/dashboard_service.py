"""Period summary for the finance dashboard.

Totals only count active INCOME and EXPENSE rows; transfers move money
between the user's own accounts and are left out. Every figure is
expressed in the requested currency through the stored exchange rates.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from folio_finance import models, schemas
from folio_finance.core.config import settings
from folio_finance.services.budget_service import BudgetService, period_window
from folio_finance.services.exchange_rate_service import ExchangeRateService, quantize_for
from folio_finance.services.transaction_service import TransactionService

TOP_CATEGORIES = 6
RECENT_TRANSACTIONS = 5
SPIKE_FACTOR = Decimal("1.2")


def _pct(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return float((part / whole * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class DashboardService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.rates = ExchangeRateService(db)

    def _to(self, amount: Decimal, code: str, target: models.Currency) -> Decimal:
        if code == target.code:
            return quantize_for(Decimal(amount), target.decimals)
        converted, _rate = self.rates.convert(Decimal(amount), code, target.code)
        return converted

    def _grouped(self, user_id: int, start: date, end: date):
        Txn = models.Transaction
        return (
            self.db.query(
                Txn.type,
                Txn.category_id,
                models.Currency.code,
                func.count(Txn.id),
                func.coalesce(func.sum(Txn.amount), 0),
            )
            .join(models.Currency, Txn.currency_id == models.Currency.id)
            .filter(
                Txn.user_id == user_id,
                Txn.is_active,
                Txn.type != models.TxnType.TRANSFER,
                Txn.transaction_date >= start,
                Txn.transaction_date <= end,
            )
            .group_by(Txn.type, Txn.category_id, models.Currency.code)
            .all()
        )

    def summary(
        self,
        user_id: int,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
        currency: Optional[str] = None,
        today: Optional[date] = None,
    ) -> schemas.DashboardOut:
        today = today or models.today_local()
        month_start, month_end = period_window(models.BudgetPeriod.MONTHLY, today)
        start = start or month_start
        end = end or month_end
        if start > end:
            raise HTTPException(status_code=400, detail="start_date must not be after end_date")
        target = self.rates.get_currency(currency or settings.DEFAULT_CURRENCY)

        accounts = (
            self.db.query(models.Account)
            .options(joinedload(models.Account.currency))
            .filter(models.Account.user_id == user_id, models.Account.is_active.is_(True))
            .all()
        )
        total_balance = sum(
            (self._to(Decimal(a.current_balance), a.currency.code, target) for a in accounts), Decimal("0")
        )

        income = expenses = Decimal("0")
        by_category: dict[Optional[int], list] = defaultdict(lambda: [Decimal("0"), 0])
        for txn_type, category_id, code, count, total in self._grouped(user_id, start, end):
            amount = self._to(Decimal(str(total)), code, target)
            if models.TxnType(txn_type) == models.TxnType.INCOME:
                income += amount
                continue
            expenses += amount
            by_category[category_id][0] += amount
            by_category[category_id][1] += count

        days_in_period = (end - start).days + 1
        previous_end = start - timedelta(days=1)
        previous_start = previous_end - timedelta(days=days_in_period - 1)
        previous_expenses = sum(
            (
                self._to(Decimal(str(total)), code, target)
                for txn_type, _cat, code, _count, total in self._grouped(user_id, previous_start, previous_end)
                if models.TxnType(txn_type) == models.TxnType.EXPENSE
            ),
            Decimal("0"),
        )

        if today < start:
            days_elapsed = 0
        else:
            days_elapsed = (min(today, end) - start).days + 1
        daily_average = quantize_for(expenses / days_elapsed, target.decimals) if days_elapsed else Decimal("0")

        categories = {
            c.id: c
            for c in self.db.query(models.Category).filter(
                models.Category.id.in_([cid for cid in by_category if cid is not None])
            )
        }
        ranked = sorted(by_category.items(), key=lambda kv: (-kv[1][0], kv[0] is None, kv[0] or 0))
        spending = [
            schemas.CategorySpending(
                category=schemas.CategoryBrief.model_validate(categories[cid]) if cid in categories else None,
                amount=amount,
                percentage=_pct(amount, expenses),
                transaction_count=count,
            )
            for cid, (amount, count) in ranked[:TOP_CATEGORIES]
        ]

        recent, _total = TransactionService(self.db).list(
            user_id, limit=RECENT_TRANSACTIONS, start_date=start, end_date=end
        )
        alerts = [b for b in BudgetService(self.db).list(user_id, today).data if b.status != "ok"]

        return schemas.DashboardOut(
            summary=schemas.DashboardSummary(
                currency=target.code,
                period_start=start,
                period_end=end,
                total_balance=total_balance,
                total_income=income,
                total_expenses=expenses,
                net_flow=income - expenses,
                savings_rate=_pct(income - expenses, income),
                previous_expenses=previous_expenses,
                expense_change_pct=_pct(expenses - previous_expenses, previous_expenses) if previous_expenses > 0 else None,
                days_elapsed=days_elapsed,
                days_in_period=days_in_period,
                daily_average=daily_average,
                projected_expenses=daily_average * days_in_period,
                account_count=len(accounts),
            ),
            expenses_by_category=spending,
            recent_transactions=[schemas.TransactionOut.model_validate(t) for t in recent],
            budget_alerts=alerts,
            expense_spike=previous_expenses > 0 and expenses > previous_expenses * SPIKE_FACTOR,
        )

from __future__ import annotations

import csv
import io
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session, joinedload

from folio_finance import models
from folio_finance.services.exchange_rate_service import quantize_for

CSV_COLUMNS = [
    "date",
    "type",
    "amount",
    "currency",
    "original_amount",
    "original_currency",
    "description",
    "category",
    "account",
    "to_account",
    "merchant",
    "notes",
]


def _money(amount: Optional[Decimal], decimals: int) -> Optional[str]:
    if amount is None:
        return None
    return str(quantize_for(Decimal(amount), decimals))


class ExportService:
    """Dump a user's own finance data. Soft-deleted transactions are never exported."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def transactions(
        self, user_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[models.Transaction]:
        q = (
            self.db.query(models.Transaction)
            .options(
                joinedload(models.Transaction.account),
                joinedload(models.Transaction.to_account),
                joinedload(models.Transaction.category),
                joinedload(models.Transaction.currency),
            )
            .filter(models.Transaction.user_id == user_id, models.Transaction.is_active)
        )
        if start is not None:
            q = q.filter(models.Transaction.transaction_date >= start)
        if end is not None:
            q = q.filter(models.Transaction.transaction_date <= end)
        return q.order_by(models.Transaction.transaction_date.desc(), models.Transaction.id.desc()).all()

    def _row(self, txn: models.Transaction) -> dict[str, Any]:
        decimals = txn.currency.decimals
        return {
            "date": txn.transaction_date.isoformat(),
            "type": models.TxnType(txn.type).value,
            "amount": _money(txn.amount, decimals),
            "currency": txn.currency.code,
            "original_amount": str(txn.original_amount) if txn.original_amount is not None else None,
            "original_currency": txn.original_currency,
            "description": txn.description,
            "category": txn.category.name if txn.category else None,
            "account": txn.account.name,
            "to_account": txn.to_account.name if txn.to_account else None,
            "merchant": txn.merchant,
            "notes": txn.notes,
        }

    def transactions_csv(self, user_id: int, start: Optional[date] = None, end: Optional[date] = None) -> str:
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for txn in self.transactions(user_id, start, end):
            writer.writerow({k: ("" if v is None else v) for k, v in self._row(txn).items()})
        return output.getvalue()

    def snapshot(self, user_id: int, start: Optional[date] = None, end: Optional[date] = None) -> dict[str, Any]:
        accounts = (
            self.db.query(models.Account)
            .options(joinedload(models.Account.currency))
            .filter(models.Account.user_id == user_id)
            .order_by(models.Account.id)
            .all()
        )
        categories = (
            self.db.query(models.Category)
            .filter(models.Category.user_id == user_id)
            .order_by(models.Category.id)
            .all()
        )
        budgets = (
            self.db.query(models.Budget)
            .options(joinedload(models.Budget.category))
            .filter(models.Budget.user_id == user_id)
            .order_by(models.Budget.id)
            .all()
        )
        goals = (
            self.db.query(models.SavingsGoal)
            .filter(models.SavingsGoal.user_id == user_id)
            .order_by(models.SavingsGoal.id)
            .all()
        )
        return {
            "exported_at": models.now_local_naive().isoformat(timespec="seconds"),
            "accounts": [
                {
                    "name": a.name,
                    "type": models.AccountType(a.type).value,
                    "currency": a.currency.code,
                    "initial_balance": _money(a.initial_balance, a.currency.decimals),
                    "current_balance": _money(a.current_balance, a.currency.decimals),
                    "is_active": a.is_active,
                }
                for a in accounts
            ],
            "categories": [
                {"name": c.name, "type": models.CategoryType(c.type).value, "keywords": list(c.keywords or [])}
                for c in categories
            ],
            "transactions": [self._row(t) for t in self.transactions(user_id, start, end)],
            "budgets": [
                {
                    "name": b.name,
                    "amount": str(b.amount),
                    "period": models.BudgetPeriod(b.period).value,
                    "category": b.category.name if b.category else None,
                    "is_active": b.is_active,
                }
                for b in budgets
            ],
            "goals": [
                {
                    "name": g.name,
                    "target_amount": str(g.target_amount),
                    "current_amount": str(g.current_amount),
                    "deadline": g.deadline.isoformat() if g.deadline else None,
                    "completed": g.completed,
                }
                for g in goals
            ],
        }

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload, selectinload

from folio_finance import models, schemas
from folio_finance.services.audit_service import AuditService
from folio_finance.services.balance_service import BalanceEffect, TransactionBalanceService
from folio_finance.services.categorization_service import CategorySuggester
from folio_finance.services.exchange_rate_service import ExchangeRateService, quantize_for
from folio_finance.services.security import RequestContext


logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "transaction_date": models.Transaction.transaction_date,
    "amount": models.Transaction.amount,
    "created_at": models.Transaction.created_at,
}
MAX_PAGE_SIZE = 100


def escape_like(term: str) -> str:
    """Make ``%`` and ``_`` in user input match literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _audit_snapshot(txn: models.Transaction) -> dict[str, Any]:
    return {
        "type": models.TxnType(txn.type).value,
        "amount": str(txn.amount),
        "account_id": txn.account_id,
        "to_account_id": txn.to_account_id,
        "category_id": txn.category_id,
    }


class TransactionService:
    """Create, edit and soft-delete transactions while keeping balances exact.

    Each mutation validates everything first, then writes the row and the
    balance deltas, and commits once. Any failure rolls the whole unit back.
    """

    def __init__(self, db: Session, ctx: Optional[RequestContext] = None) -> None:
        self.db = db
        self.ctx = ctx or RequestContext()
        self.balances = TransactionBalanceService(db)
        self.audit = AuditService(db)

    # ----- lookups -----

    def _base_query(self, user_id: int):
        return (
            self.db.query(models.Transaction)
            .options(
                joinedload(models.Transaction.account),
                joinedload(models.Transaction.to_account),
                joinedload(models.Transaction.category),
                joinedload(models.Transaction.currency),
                selectinload(models.Transaction.items),
            )
            .filter(models.Transaction.user_id == user_id, models.Transaction.is_active)
        )

    def get(self, user_id: int, txn_id: int) -> models.Transaction:
        txn = self._base_query(user_id).filter(models.Transaction.id == txn_id).first()
        if not txn:
            raise HTTPException(status_code=404, detail="Transaction not found")
        return txn

    def _lock_active(self, user_id: int, txn_id: int) -> models.Transaction:
        txn = (
            self.db.query(models.Transaction)
            .filter(
                models.Transaction.id == txn_id,
                models.Transaction.user_id == user_id,
                models.Transaction.is_active,
            )
            .with_for_update()
            .first()
        )
        if not txn:
            raise HTTPException(status_code=404, detail="Transaction not found")
        return txn

    def _owned_account(self, user_id: int, account_id: int, *, label: str = "Account") -> models.Account:
        account = (
            self.db.query(models.Account)
            .filter(models.Account.id == account_id, models.Account.user_id == user_id)
            .first()
        )
        if not account:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        if not account.is_active:
            raise HTTPException(status_code=400, detail=f"{label} is archived")
        return account

    def _resolve_destination(
        self, user_id: int, txn_type: models.TxnType, source: models.Account, to_account_id: Optional[int]
    ) -> Optional[models.Account]:
        if txn_type != models.TxnType.TRANSFER:
            return None
        if to_account_id is None:
            raise HTTPException(status_code=400, detail="Transfers require a destination account")
        if to_account_id == source.id:
            raise HTTPException(status_code=400, detail="Source and destination accounts must differ")
        dest = self._owned_account(user_id, to_account_id, label="Destination account")
        if dest.currency_id != source.currency_id:
            raise HTTPException(status_code=400, detail="Transfer accounts must share the same currency")
        return dest

    def _validate_category(
        self, user_id: int, category_id: Optional[int], txn_type: models.TxnType
    ) -> Optional[models.Category]:
        if category_id is None:
            return None
        category = (
            self.db.query(models.Category)
            .filter(
                models.Category.id == category_id,
                models.Category.is_active.is_(True),
                or_(models.Category.user_id.is_(None), models.Category.user_id == user_id),
            )
            .first()
        )
        if not category:
            raise HTTPException(status_code=400, detail="Category not found")
        if txn_type != models.TxnType.TRANSFER and category.type != models.CategoryType.for_transaction(txn_type):
            raise HTTPException(status_code=400, detail="Category type does not match transaction type")
        return category

    # ----- reads -----

    def list(
        self,
        user_id: int,
        *,
        page: int = 1,
        limit: int = 20,
        txn_type: Optional[models.TxnType] = None,
        category_id: Optional[int] = None,
        account_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        sort_by: str = "transaction_date",
        sort_order: str = "desc",
    ) -> tuple[list[models.Transaction], int]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)
        q = self._base_query(user_id)
        if txn_type is not None:
            q = q.filter(models.Transaction.type == txn_type)
        if category_id is not None:
            q = q.filter(models.Transaction.category_id == category_id)
        if account_id is not None:
            q = q.filter(
                or_(models.Transaction.account_id == account_id, models.Transaction.to_account_id == account_id)
            )
        if start_date is not None:
            q = q.filter(models.Transaction.transaction_date >= start_date)
        if end_date is not None:
            q = q.filter(models.Transaction.transaction_date <= end_date)
        if search:
            pattern = f"%{escape_like(search.strip())}%"
            q = q.filter(
                or_(
                    models.Transaction.description.ilike(pattern, escape="\\"),
                    models.Transaction.merchant.ilike(pattern, escape="\\"),
                    models.Transaction.notes.ilike(pattern, escape="\\"),
                )
            )
        total = q.order_by(None).count()
        column = SORTABLE_FIELDS.get(sort_by, models.Transaction.transaction_date)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        rows = q.order_by(ordering, models.Transaction.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    # ----- mutations -----

    def create(self, user: models.User, payload: schemas.TransactionCreate) -> models.Transaction:
        txn_type = payload.type
        account = self._owned_account(user.id, payload.account_id)
        dest = self._resolve_destination(user.id, txn_type, account, payload.to_account_id)
        category = self._validate_category(user.id, payload.category_id, txn_type)

        amount = payload.amount
        original_amount = original_currency = rate = None
        account_code = account.currency.code
        if payload.currency and payload.currency != account_code:
            amount, rate = ExchangeRateService(self.db).convert(payload.amount, payload.currency, account_code)
            if amount <= 0:
                raise HTTPException(status_code=400, detail="Converted amount must be positive")
            original_amount, original_currency = payload.amount, payload.currency

        score: Optional[float] = None
        if category is None and txn_type != models.TxnType.TRANSFER:
            suggestion = CategorySuggester(self.db).suggest(user.id, payload.description, payload.merchant, txn_type)
            if suggestion:
                category_id, score = suggestion.category_id, suggestion.confidence
            else:
                category_id = None
        else:
            category_id = category.id if category else None

        try:
            txn = models.Transaction(
                user_id=user.id,
                type=txn_type,
                amount=amount,
                original_amount=original_amount,
                original_currency=original_currency,
                exchange_rate=rate,
                currency_id=account.currency_id,
                account_id=account.id,
                to_account_id=dest.id if dest else None,
                category_id=category_id,
                description=payload.description,
                merchant=payload.merchant,
                notes=payload.notes,
                transaction_date=payload.transaction_date or models.today_local(),
                source=payload.source,
                auto_categorization_score=score,
                document_type=payload.document_type,
                document_number=payload.document_number,
                merchant_rut=payload.merchant_rut,
            )
            for item in payload.items:
                txn.items.append(
                    models.TransactionItem(
                        description=item.description,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        total_price=item.total_price,
                    )
                )
            self.db.add(txn)
            self.db.flush()
            self.balances.apply(BalanceEffect.of(txn))
            self.audit.record(
                "transaction.created",
                user_id=user.id,
                target_id=txn.id,
                target_type="transaction",
                details=_audit_snapshot(txn),
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("transaction %s created", txn.id, extra={"user_id": user.id, "action": "transaction.created"})
        return self.get(user.id, txn.id)

    def update(self, user: models.User, txn_id: int, payload: schemas.TransactionUpdate) -> models.Transaction:
        txn = self._lock_active(user.id, txn_id)
        data = payload.model_dump(exclude_unset=True)

        new_type = models.TxnType(data.get("type") or txn.type)
        account = self._owned_account(user.id, data.get("account_id") or txn.account_id)
        if account.id != txn.account_id and account.currency_id != txn.currency_id:
            raise HTTPException(status_code=400, detail="Cannot move a transaction to an account in another currency")
        to_account_id = data["to_account_id"] if "to_account_id" in data else txn.to_account_id
        dest = self._resolve_destination(user.id, new_type, account, to_account_id)

        category_changed = "category_id" in data
        if category_changed:
            category = self._validate_category(user.id, data["category_id"], new_type)
            category_id = category.id if category else None
        else:
            category_id = txn.category_id
            if category_id is not None and txn.category is not None and new_type != models.TxnType.TRANSFER:
                if txn.category.type != models.CategoryType.for_transaction(new_type):
                    category_id = None
                    category_changed = True

        new_amount = Decimal(txn.amount)
        new_original = txn.original_amount
        if data.get("amount") is not None:
            if txn.exchange_rate is not None and txn.original_amount is not None:
                # Edited amount is in the original currency; reuse the stored rate
                new_original = data["amount"]
                new_amount = quantize_for(new_original * Decimal(txn.exchange_rate), account.currency.decimals)
                if new_amount <= 0:
                    raise HTTPException(status_code=400, detail="Converted amount must be positive")
            else:
                new_amount = data["amount"]

        before = _audit_snapshot(txn)
        try:
            self.balances.revert(BalanceEffect.of(txn))
            txn.type = new_type
            txn.amount = new_amount
            txn.original_amount = new_original
            txn.account_id = account.id
            txn.to_account_id = dest.id if dest else None
            if category_changed:
                txn.category_id = category_id
                txn.auto_categorization_score = None
            for field in (
                "description",
                "merchant",
                "notes",
                "transaction_date",
                "document_type",
                "document_number",
                "merchant_rut",
            ):
                if field in data and not (field == "transaction_date" and data[field] is None):
                    setattr(txn, field, data[field])
            txn.was_manually_edited = True
            self.db.flush()
            self.balances.apply(BalanceEffect.of(txn))
            self.audit.record(
                "transaction.updated",
                user_id=user.id,
                target_id=txn.id,
                target_type="transaction",
                details={"before": before, "after": _audit_snapshot(txn), "fields": sorted(data)},
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("transaction %s updated", txn.id, extra={"user_id": user.id, "action": "transaction.updated"})
        self.db.expire_all()
        return self.get(user.id, txn.id)

    def delete(self, user: models.User, txn_id: int) -> int:
        txn = self._lock_active(user.id, txn_id)
        try:
            self.balances.revert(BalanceEffect.of(txn))
            txn.is_deleted = True
            txn.deleted_at = models.now_local_naive()
            self.audit.record(
                "transaction.deleted",
                user_id=user.id,
                target_id=txn.id,
                target_type="transaction",
                details=_audit_snapshot(txn),
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("transaction %s deleted", txn_id, extra={"user_id": user.id, "action": "transaction.deleted"})
        return txn_id

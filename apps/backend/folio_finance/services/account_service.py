from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from folio_finance import models, schemas
from folio_finance.core.config import settings
from folio_finance.services.audit_service import AuditService
from folio_finance.services.balance_service import TransactionBalanceService
from folio_finance.services.security import RequestContext


logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: Session, ctx: Optional[RequestContext] = None) -> None:
        self.db = db
        self.ctx = ctx or RequestContext()
        self.audit = AuditService(db)

    def list(self, user_id: int, *, include_archived: bool = False) -> list[models.Account]:
        q = (
            self.db.query(models.Account)
            .options(joinedload(models.Account.currency))
            .filter(models.Account.user_id == user_id)
        )
        if not include_archived:
            q = q.filter(models.Account.is_active.is_(True))
        return q.order_by(models.Account.sort_order.asc(), models.Account.name.asc()).all()

    def get(self, user_id: int, account_id: int) -> models.Account:
        account = (
            self.db.query(models.Account)
            .options(joinedload(models.Account.currency))
            .filter(models.Account.id == account_id, models.Account.user_id == user_id)
            .first()
        )
        if not account:
            raise HTTPException(status_code=404, detail="Account not found")
        return account

    def default_account(self, user_id: int) -> Optional[models.Account]:
        return (
            self.db.query(models.Account)
            .filter(models.Account.user_id == user_id, models.Account.is_active.is_(True))
            .order_by(models.Account.is_default.desc(), models.Account.sort_order.asc(), models.Account.id.asc())
            .first()
        )

    def _successor(self, user_id: int, exclude_id: int) -> Optional[models.Account]:
        return (
            self.db.query(models.Account)
            .filter(
                models.Account.user_id == user_id,
                models.Account.is_active.is_(True),
                models.Account.id != exclude_id,
            )
            .order_by(models.Account.sort_order.asc(), models.Account.id.asc())
            .first()
        )

    def _resolve_currency(self, payload: schemas.AccountCreate) -> models.Currency:
        q = self.db.query(models.Currency).filter(models.Currency.is_active.is_(True))
        if payload.currency_id is not None:
            currency = q.filter(models.Currency.id == payload.currency_id).first()
        else:
            code = (payload.currency_code or settings.DEFAULT_CURRENCY).upper()
            currency = q.filter(models.Currency.code == code).first()
        if not currency:
            raise HTTPException(status_code=400, detail="Currency not found")
        return currency

    def _ensure_unique_name(self, user_id: int, name: str, exclude_id: Optional[int] = None) -> None:
        q = self.db.query(models.Account.id).filter(
            models.Account.user_id == user_id,
            models.Account.is_active.is_(True),
            func.lower(models.Account.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            q = q.filter(models.Account.id != exclude_id)
        if q.first():
            raise HTTPException(status_code=409, detail="An account with that name already exists")

    def _clear_default(self, user_id: int, keep_id: Optional[int] = None) -> None:
        q = self.db.query(models.Account).filter(models.Account.user_id == user_id, models.Account.is_default.is_(True))
        if keep_id is not None:
            q = q.filter(models.Account.id != keep_id)
        q.update({models.Account.is_default: False}, synchronize_session="fetch")

    def create(self, user: models.User, payload: schemas.AccountCreate) -> models.Account:
        currency = self._resolve_currency(payload)
        self._ensure_unique_name(user.id, payload.name)
        has_accounts = (
            self.db.query(models.Account.id)
            .filter(models.Account.user_id == user.id, models.Account.is_active.is_(True))
            .first()
            is not None
        )
        make_default = payload.is_default or not has_accounts
        try:
            if make_default:
                self._clear_default(user.id)
            account = models.Account(
                user_id=user.id,
                name=payload.name,
                type=payload.type,
                currency_id=currency.id,
                initial_balance=payload.initial_balance,
                current_balance=payload.initial_balance,
                is_default=make_default,
                icon=payload.icon,
                color=payload.color,
                sort_order=payload.sort_order,
            )
            self.db.add(account)
            self.db.flush()
            self.audit.record(
                "finance.account.created",
                user_id=user.id,
                target_id=account.id,
                target_type="account",
                details={"name": account.name, "type": payload.type.value, "currency": currency.code,
                         "initial_balance": str(payload.initial_balance)},
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self.get(user.id, account.id)

    def update(self, user: models.User, account_id: int, payload: schemas.AccountUpdate) -> models.Account:
        account = self.get(user.id, account_id)
        if not account.is_active:
            raise HTTPException(status_code=404, detail="Account not found")
        data = payload.model_dump(exclude_unset=True)
        if data.get("name"):
            data["name"] = data["name"].strip()
            self._ensure_unique_name(user.id, data["name"], exclude_id=account.id)
        try:
            was_default = account.is_default
            if data.get("is_default"):
                self._clear_default(user.id, keep_id=account.id)
            for field, value in data.items():
                if value is None and field in ("name", "sort_order", "is_default"):
                    continue
                setattr(account, field, value)
            if was_default and not account.is_default:
                # the flag moves to another active account; a lone account keeps it
                successor = self._successor(user.id, exclude_id=account.id)
                if successor:
                    successor.is_default = True
                else:
                    account.is_default = True
            self.audit.record(
                "finance.account.updated",
                user_id=user.id,
                target_id=account.id,
                target_type="account",
                details={"fields": sorted(data)},
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(account)
        return account

    def archive(self, user: models.User, account_id: int) -> int:
        account = self.get(user.id, account_id)
        if not account.is_active:
            raise HTTPException(status_code=404, detail="Account not found")
        in_use = (
            self.db.query(models.Transaction.id)
            .filter(
                models.Transaction.is_active,
                or_(models.Transaction.account_id == account.id, models.Transaction.to_account_id == account.id),
            )
            .first()
        )
        if in_use:
            raise HTTPException(status_code=400, detail="Account has active transactions")
        try:
            account.is_active = False
            was_default = account.is_default
            account.is_default = False
            self.db.flush()
            if was_default:
                successor = self._successor(user.id, exclude_id=account.id)
                if successor:
                    successor.is_default = True
            self.audit.record(
                "finance.account.deleted",
                user_id=user.id,
                target_id=account.id,
                target_type="account",
                details={"name": account.name},
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return account_id

    def reconcile(self, user_id: int, account_id: int, *, fix: bool = False) -> schemas.ReconcileOut:
        account = self.get(user_id, account_id)
        balances = TransactionBalanceService(self.db)
        computed, count = balances.computed_balance(account)
        stored = Decimal(account.current_balance)
        drift = stored - computed
        if fix and drift != 0:
            try:
                balances.recalculate(account)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            logger.warning("account %s balance corrected by %s", account.id, -drift, extra={"user_id": user_id})
            stored = computed
            drift = Decimal("0")
        return schemas.ReconcileOut(
            account_id=account.id,
            stored_balance=stored,
            computed_balance=computed,
            drift=drift,
            transaction_count=count,
            in_sync=drift == 0,
        )

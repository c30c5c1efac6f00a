from __future__ import annotations

import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from folio_finance import models, schemas
from folio_finance.services.audit_service import AuditService
from folio_finance.services.security import RequestContext

WARNING_PCT = 75
DANGER_PCT = 90
EXCEEDED_PCT = 100


def period_window(period: models.BudgetPeriod, today: date) -> tuple[date, date]:
    """Inclusive window containing ``today``. Weeks run Sunday to Saturday."""
    if period == models.BudgetPeriod.WEEKLY:
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period == models.BudgetPeriod.MONTHLY:
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1), today.replace(day=last)
    if period == models.BudgetPeriod.QUARTERLY:
        first_month = ((today.month - 1) // 3) * 3 + 1
        last_month = first_month + 2
        last = calendar.monthrange(today.year, last_month)[1]
        return date(today.year, first_month, 1), date(today.year, last_month, last)
    return date(today.year, 1, 1), date(today.year, 12, 31)


def budget_status(percentage: float) -> str:
    if percentage >= EXCEEDED_PCT:
        return "exceeded"
    if percentage >= DANGER_PCT:
        return "danger"
    if percentage >= WARNING_PCT:
        return "warning"
    return "ok"


class BudgetService:
    def __init__(self, db: Session, ctx: Optional[RequestContext] = None) -> None:
        self.db = db
        self.ctx = ctx or RequestContext()
        self.audit = AuditService(db)

    def _get(self, user_id: int, budget_id: int) -> models.Budget:
        budget = (
            self.db.query(models.Budget)
            .options(joinedload(models.Budget.category))
            .filter(models.Budget.id == budget_id, models.Budget.user_id == user_id)
            .first()
        )
        if not budget:
            raise HTTPException(status_code=404, detail="Budget not found")
        return budget

    def _spending_filter(self, budget: models.Budget, start: date, end: date):
        Txn = models.Transaction
        conditions = [
            Txn.user_id == budget.user_id,
            Txn.type == models.TxnType.EXPENSE,
            Txn.is_active,
            Txn.transaction_date >= start,
            Txn.transaction_date <= end,
        ]
        if budget.category_id is not None:
            conditions.append(Txn.category_id == budget.category_id)
        return conditions

    def spent(self, budget: models.Budget, start: date, end: date) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(models.Transaction.amount), 0))
            .filter(*self._spending_filter(budget, start, end))
            .scalar()
        )
        return Decimal(str(total or 0))

    def with_progress(self, budget: models.Budget, today: Optional[date] = None) -> schemas.BudgetOut:
        start, end = period_window(models.BudgetPeriod(budget.period), today or models.today_local())
        spent = self.spent(budget, start, end)
        amount = Decimal(budget.amount)
        percentage = float(spent / amount * 100) if amount > 0 else 0.0
        percentage = round(percentage, 2)
        return schemas.BudgetOut(
            id=budget.id,
            name=budget.name,
            category=schemas.CategoryBrief.model_validate(budget.category) if budget.category else None,
            amount=amount,
            period=budget.period,
            period_start=start,
            period_end=end,
            alert_at_75=budget.alert_at_75,
            alert_at_90=budget.alert_at_90,
            alert_at_100=budget.alert_at_100,
            is_active=budget.is_active,
            spent=spent,
            remaining=max(Decimal("0"), amount - spent),
            percentage=percentage,
            status=budget_status(percentage),
        )

    def list(self, user_id: int, today: Optional[date] = None) -> schemas.BudgetListOut:
        budgets = (
            self.db.query(models.Budget)
            .options(joinedload(models.Budget.category))
            .filter(models.Budget.user_id == user_id, models.Budget.is_active.is_(True))
            .order_by(models.Budget.created_at.desc(), models.Budget.id.desc())
            .all()
        )
        rows = [self.with_progress(b, today) for b in budgets]
        total_budgeted = sum((r.amount for r in rows), Decimal("0"))
        total_spent = sum((r.spent for r in rows), Decimal("0"))
        overall = round(float(total_spent / total_budgeted * 100), 2) if total_budgeted > 0 else 0.0
        summary = schemas.BudgetSummary(
            total_budgeted=total_budgeted,
            total_spent=total_spent,
            total_remaining=max(Decimal("0"), total_budgeted - total_spent),
            overall_percentage=overall,
            budgets_over_limit=sum(1 for r in rows if r.status == "exceeded"),
            budgets_in_warning=sum(1 for r in rows if r.status in ("warning", "danger")),
        )
        return schemas.BudgetListOut(data=rows, meta=summary)

    def detail(self, user_id: int, budget_id: int, today: Optional[date] = None, recent: int = 10) -> schemas.BudgetDetailOut:
        budget = self._get(user_id, budget_id)
        progress = self.with_progress(budget, today)
        txns = (
            self.db.query(models.Transaction)
            .filter(*self._spending_filter(budget, progress.period_start, progress.period_end))
            .order_by(models.Transaction.transaction_date.desc(), models.Transaction.id.desc())
            .limit(recent)
            .all()
        )
        return schemas.BudgetDetailOut(
            **progress.model_dump(),
            transactions=[schemas.TransactionOut.model_validate(t) for t in txns],
        )

    def _ensure_no_duplicate(self, user_id: int, category_id: Optional[int], period: models.BudgetPeriod, exclude_id: Optional[int] = None) -> None:
        q = self.db.query(models.Budget.id).filter(
            models.Budget.user_id == user_id,
            models.Budget.is_active.is_(True),
            models.Budget.period == period,
        )
        if category_id is None:
            q = q.filter(models.Budget.category_id.is_(None))
        else:
            q = q.filter(models.Budget.category_id == category_id)
        if exclude_id is not None:
            q = q.filter(models.Budget.id != exclude_id)
        if q.first():
            raise HTTPException(status_code=409, detail="A budget for this category and period already exists")

    def create(self, user: models.User, payload: schemas.BudgetCreate, today: Optional[date] = None) -> schemas.BudgetOut:
        if payload.category_id is not None:
            category = (
                self.db.query(models.Category)
                .filter(
                    models.Category.id == payload.category_id,
                    models.Category.type == models.CategoryType.EXPENSE,
                    (models.Category.user_id.is_(None)) | (models.Category.user_id == user.id),
                )
                .first()
            )
            if not category:
                raise HTTPException(status_code=400, detail="Category not found")
        self._ensure_no_duplicate(user.id, payload.category_id, payload.period)
        start, end = period_window(payload.period, today or models.today_local())
        budget = models.Budget(
            user_id=user.id,
            name=payload.name,
            category_id=payload.category_id,
            amount=payload.amount,
            period=payload.period,
            alert_at_75=payload.alert_at_75,
            alert_at_90=payload.alert_at_90,
            alert_at_100=payload.alert_at_100,
            period_start=start,
            period_end=end,
        )
        try:
            self.db.add(budget)
            self.db.flush()
            self.audit.record(
                "budget.created",
                user_id=user.id,
                target_id=budget.id,
                target_type="budget",
                details={"amount": str(payload.amount), "period": payload.period.value, "category_id": payload.category_id},
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self.with_progress(self._get(user.id, budget.id), today)

    def update(self, user: models.User, budget_id: int, payload: schemas.BudgetUpdate, today: Optional[date] = None) -> schemas.BudgetOut:
        budget = self._get(user.id, budget_id)
        data = payload.model_dump(exclude_unset=True)
        if data.get("period") and data["period"] != budget.period:
            self._ensure_no_duplicate(user.id, budget.category_id, data["period"], exclude_id=budget.id)
            start, end = period_window(data["period"], today or models.today_local())
            budget.period_start, budget.period_end = start, end
        for field, value in data.items():
            if value is None:
                continue
            setattr(budget, field, value)
        try:
            self.audit.record(
                "budget.updated",
                user_id=user.id,
                target_id=budget.id,
                target_type="budget",
                details={"fields": sorted(data)},
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(budget)
        return self.with_progress(budget, today)

    def delete(self, user: models.User, budget_id: int) -> int:
        budget = self._get(user.id, budget_id)
        try:
            self.db.delete(budget)
            self.audit.record(
                "budget.deleted",
                user_id=user.id,
                target_id=budget_id,
                target_type="budget",
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return budget_id

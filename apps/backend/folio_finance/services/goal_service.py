from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.services.audit_service import AuditService
from folio_finance.services.security import RequestContext

MILESTONES = (25, 50, 75)
CENT = Decimal("0.01")


def _pct(current: Decimal, target: Decimal) -> Decimal:
    return current / target * 100 if target > 0 else Decimal("0")


def progress(goal: models.SavingsGoal, today: date) -> dict:
    current = Decimal(goal.current_amount)
    target = Decimal(goal.target_amount)
    pct = _pct(current, target)
    remaining = max(Decimal("0"), target - current)
    days_left = (goal.deadline - today).days if goal.deadline else None
    required_daily = required_monthly = None
    if days_left and days_left > 0 and remaining > 0:
        required_daily = (remaining / days_left).quantize(CENT, rounding=ROUND_HALF_UP)
        required_monthly = (remaining / (Decimal(days_left) / 30)).quantize(CENT, rounding=ROUND_HALF_UP)
    return {
        "id": goal.id,
        "name": goal.name,
        "icon": goal.icon,
        "color": goal.color,
        "target_amount": target,
        "current_amount": current,
        "deadline": goal.deadline,
        "milestone_25": goal.milestone_25,
        "milestone_50": goal.milestone_50,
        "milestone_75": goal.milestone_75,
        "completed": goal.completed,
        "percentage": min(100.0, round(float(pct), 2)),
        "remaining": remaining,
        "days_left": days_left,
        "required_daily": required_daily,
        "required_monthly": required_monthly,
        "is_overdue": days_left is not None and days_left < 0 and not goal.completed,
    }


class GoalService:
    def __init__(self, db: Session, ctx: Optional[RequestContext] = None) -> None:
        self.db = db
        self.ctx = ctx or RequestContext()
        self.audit = AuditService(db)

    def _get(self, user_id: int, goal_id: int, *, lock: bool = False) -> models.SavingsGoal:
        q = self.db.query(models.SavingsGoal).filter(
            models.SavingsGoal.id == goal_id, models.SavingsGoal.user_id == user_id
        )
        if lock:
            q = q.with_for_update()
        goal = q.first()
        if not goal:
            raise HTTPException(status_code=404, detail="Goal not found")
        return goal

    def _audit(self, action: str, user: models.User, goal_id: int, details: Optional[dict] = None) -> None:
        self.audit.record(
            action,
            user_id=user.id,
            target_id=goal_id,
            target_type="savings_goal",
            details=details,
            ip_address=self.ctx.ip_address,
            user_agent=self.ctx.user_agent,
        )

    def list(self, user_id: int, *, include_completed: bool = True, today: Optional[date] = None) -> schemas.GoalListOut:
        today = today or models.today_local()
        q = self.db.query(models.SavingsGoal).filter(models.SavingsGoal.user_id == user_id)
        if not include_completed:
            q = q.filter(models.SavingsGoal.completed.is_(False))
        goals = q.order_by(
            models.SavingsGoal.completed.asc(),
            models.SavingsGoal.deadline.is_(None),
            models.SavingsGoal.deadline.asc(),
            models.SavingsGoal.created_at.desc(),
        ).all()
        total_target = sum((Decimal(g.target_amount) for g in goals), Decimal("0"))
        total_saved = sum((Decimal(g.current_amount) for g in goals), Decimal("0"))
        completed = sum(1 for g in goals if g.completed)
        summary = schemas.GoalSummary(
            total_goals=len(goals),
            completed_goals=completed,
            active_goals=len(goals) - completed,
            total_target=total_target,
            total_saved=total_saved,
            overall_percentage=round(float(_pct(total_saved, total_target)), 2),
        )
        return schemas.GoalListOut(data=[schemas.GoalOut(**progress(g, today)) for g in goals], meta=summary)

    def detail(self, user_id: int, goal_id: int, today: Optional[date] = None) -> schemas.GoalDetailOut:
        goal = self._get(user_id, goal_id)
        pct = _pct(Decimal(goal.current_amount), Decimal(goal.target_amount))
        flags = {25: goal.milestone_25, 50: goal.milestone_50, 75: goal.milestone_75}
        pending = [m for m in MILESTONES if pct >= m and not flags[m]]
        return schemas.GoalDetailOut(**progress(goal, today or models.today_local()), pending_milestones=pending)

    def create(self, user: models.User, payload: schemas.GoalCreate) -> schemas.GoalOut:
        goal = models.SavingsGoal(
            user_id=user.id,
            name=payload.name.strip(),
            icon=payload.icon,
            color=payload.color,
            target_amount=payload.target_amount,
            current_amount=payload.current_amount,
            deadline=payload.deadline,
            completed=payload.current_amount >= payload.target_amount,
        )
        try:
            self.db.add(goal)
            self.db.flush()
            self._audit("goal.created", user, goal.id, {"target_amount": str(payload.target_amount)})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(goal)
        return schemas.GoalOut(**progress(goal, models.today_local()))

    def update(self, user: models.User, goal_id: int, payload: schemas.GoalUpdate) -> schemas.GoalOut:
        goal = self._get(user.id, goal_id, lock=True)
        data = payload.model_dump(exclude_unset=True)
        for field, value in data.items():
            if value is None and field != "deadline":
                continue
            setattr(goal, field, value)
        goal.completed = Decimal(goal.current_amount) >= Decimal(goal.target_amount)
        try:
            self._audit("goal.updated", user, goal.id, {"fields": sorted(data)})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(goal)
        return schemas.GoalOut(**progress(goal, models.today_local()))

    def contribute(self, user: models.User, goal_id: int, payload: schemas.GoalContribute) -> schemas.GoalContributionOut:
        goal = self._get(user.id, goal_id, lock=True)
        target = Decimal(goal.target_amount)
        previous = Decimal(goal.current_amount)
        new_amount = max(Decimal("0"), previous + payload.amount)
        old_pct, new_pct = _pct(previous, target), _pct(new_amount, target)
        was_completed = goal.completed

        reached: list[int] = []
        for milestone in MILESTONES:
            if old_pct < milestone <= new_pct:
                setattr(goal, f"milestone_{milestone}", True)
                reached.append(milestone)
        goal.current_amount = new_amount
        goal.completed = new_amount >= target
        just_completed = goal.completed and not was_completed
        if just_completed:
            reached.append(100)
        try:
            self._audit(
                "goal.contribution",
                user,
                goal.id,
                {"previous": str(previous), "contribution": str(payload.amount), "new": str(new_amount), "note": payload.note},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(goal)
        return schemas.GoalContributionOut(
            **progress(goal, models.today_local()),
            milestones_reached=reached,
            just_completed=just_completed,
        )

    def delete(self, user: models.User, goal_id: int) -> int:
        goal = self._get(user.id, goal_id)
        try:
            self.db.delete(goal)
            self._audit("goal.deleted", user, goal_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return goal_id

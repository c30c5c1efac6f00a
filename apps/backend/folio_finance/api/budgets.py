from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import get_request_context, require_permission
from folio_finance.services.budget_service import BudgetService
from folio_finance.services.security import RequestContext


router = APIRouter(prefix="/budgets", tags=["budgets"])


@router.get("", response_model=schemas.BudgetListOut)
def list_budgets(
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.budgets.view")),
):
    return BudgetService(db).list(user.id)


@router.post("", response_model=schemas.Envelope[schemas.BudgetOut], status_code=201)
def create_budget(
    payload: schemas.BudgetCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.budgets.manage")),
):
    return {"data": BudgetService(db, ctx).create(user, payload)}


@router.get("/{budget_id}", response_model=schemas.Envelope[schemas.BudgetDetailOut])
def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.budgets.view")),
):
    return {"data": BudgetService(db).detail(user.id, budget_id)}


@router.patch("/{budget_id}", response_model=schemas.Envelope[schemas.BudgetOut])
def update_budget(
    budget_id: int,
    payload: schemas.BudgetUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.budgets.manage")),
):
    return {"data": BudgetService(db, ctx).update(user, budget_id, payload)}


@router.delete("/{budget_id}", response_model=schemas.Envelope[schemas.DeletedOut])
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.budgets.manage")),
):
    return {"data": {"id": BudgetService(db, ctx).delete(user, budget_id)}}

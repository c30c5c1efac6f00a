from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import get_request_context, require_permission
from folio_finance.services.goal_service import GoalService
from folio_finance.services.security import RequestContext


router = APIRouter(prefix="/goals", tags=["goals"])


@router.get("", response_model=schemas.GoalListOut)
def list_goals(
    include_completed: bool = Query(True),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.goals.view")),
):
    return GoalService(db).list(user.id, include_completed=include_completed)


@router.post("", response_model=schemas.Envelope[schemas.GoalOut], status_code=201)
def create_goal(
    payload: schemas.GoalCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.goals.manage")),
):
    return {"data": GoalService(db, ctx).create(user, payload)}


@router.get("/{goal_id}", response_model=schemas.Envelope[schemas.GoalDetailOut])
def get_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.goals.view")),
):
    return {"data": GoalService(db).detail(user.id, goal_id)}


@router.patch("/{goal_id}", response_model=schemas.Envelope[schemas.GoalOut])
def update_goal(
    goal_id: int,
    payload: schemas.GoalUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.goals.manage")),
):
    return {"data": GoalService(db, ctx).update(user, goal_id, payload)}


@router.post("/{goal_id}/contribute", response_model=schemas.Envelope[schemas.GoalContributionOut])
def contribute_to_goal(
    goal_id: int,
    payload: schemas.GoalContribute,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.goals.manage")),
):
    return {"data": GoalService(db, ctx).contribute(user, goal_id, payload)}


@router.delete("/{goal_id}", response_model=schemas.Envelope[schemas.DeletedOut])
def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.goals.manage")),
):
    return {"data": {"id": GoalService(db, ctx).delete(user, goal_id)}}

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import get_request_context, require_permission
from folio_finance.services.account_service import AccountService
from folio_finance.services.security import RequestContext


router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("", response_model=schemas.Envelope[list[schemas.AccountOut]])
def list_accounts(
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.accounts.view")),
):
    return {"data": AccountService(db).list(user.id, include_archived=include_archived)}


@router.post("", response_model=schemas.Envelope[schemas.AccountOut], status_code=201)
def create_account(
    payload: schemas.AccountCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.accounts.manage")),
):
    return {"data": AccountService(db, ctx).create(user, payload)}


@router.get("/{account_id}", response_model=schemas.Envelope[schemas.AccountOut])
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.accounts.view")),
):
    return {"data": AccountService(db).get(user.id, account_id)}


@router.patch("/{account_id}", response_model=schemas.Envelope[schemas.AccountOut])
def update_account(
    account_id: int,
    payload: schemas.AccountUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.accounts.manage")),
):
    return {"data": AccountService(db, ctx).update(user, account_id, payload)}


@router.delete("/{account_id}", response_model=schemas.Envelope[schemas.DeletedOut])
def archive_account(
    account_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.accounts.manage")),
):
    return {"data": {"id": AccountService(db, ctx).archive(user, account_id)}}


@router.get("/{account_id}/reconcile", response_model=schemas.Envelope[schemas.ReconcileOut])
def reconcile_account(
    account_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.accounts.view")),
):
    return {"data": AccountService(db).reconcile(user.id, account_id)}


@router.post("/{account_id}/reconcile", response_model=schemas.Envelope[schemas.ReconcileOut])
def fix_account_balance(
    account_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.accounts.manage")),
):
    """Rewrite the stored balance from the transaction history when it drifted."""
    return {"data": AccountService(db).reconcile(user.id, account_id, fix=True)}

from __future__ import annotations

import math
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import get_request_context, require_permission
from folio_finance.services.security import RequestContext
from folio_finance.services.transaction_service import MAX_PAGE_SIZE, TransactionService


router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=schemas.Page[schemas.TransactionOut])
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    type: Optional[models.TxnType] = Query(None),
    category_id: Optional[int] = Query(None),
    account_id: Optional[int] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: Literal["transaction_date", "amount", "created_at"] = Query("transaction_date"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.transactions.view")),
):
    rows, total = TransactionService(db).list(
        user.id,
        page=page,
        limit=limit,
        txn_type=type,
        category_id=category_id,
        account_id=account_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


@router.post("", response_model=schemas.Envelope[schemas.TransactionOut], status_code=201)
def create_transaction(
    payload: schemas.TransactionCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.transactions.create")),
):
    return {"data": TransactionService(db, ctx).create(user, payload)}


@router.get("/{txn_id}", response_model=schemas.Envelope[schemas.TransactionOut])
def get_transaction(
    txn_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.transactions.view")),
):
    return {"data": TransactionService(db).get(user.id, txn_id)}


@router.patch("/{txn_id}", response_model=schemas.Envelope[schemas.TransactionOut])
def update_transaction(
    txn_id: int,
    payload: schemas.TransactionUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.transactions.edit")),
):
    return {"data": TransactionService(db, ctx).update(user, txn_id, payload)}


@router.delete("/{txn_id}", response_model=schemas.Envelope[schemas.DeletedOut])
def delete_transaction(
    txn_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    user: models.User = Depends(require_permission("finance.transactions.delete")),
):
    return {"data": {"id": TransactionService(db, ctx).delete(user, txn_id)}}

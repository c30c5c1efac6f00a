from __future__ import annotations

from dataclasses import asdict
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import require_permission
from folio_finance.services.categorization_service import CategorySuggester
from folio_finance.services.category_service import CategoryService


router = APIRouter(tags=["categories"])


@router.get("/categories", response_model=schemas.Envelope[list[schemas.CategoryOut]])
def list_categories(
    type: Optional[models.CategoryType] = Query(None),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.view")),
):
    return {"data": CategoryService(db).list(user.id, category_type=type, include_inactive=include_inactive)}


@router.post("/categories", response_model=schemas.Envelope[schemas.CategoryOut], status_code=201)
def create_category(
    payload: schemas.CategoryCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.categories.manage")),
):
    return {"data": CategoryService(db).create(user.id, payload)}


@router.patch("/categories/{category_id}", response_model=schemas.Envelope[schemas.CategoryOut])
def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.categories.manage")),
):
    return {"data": CategoryService(db).update(user.id, category_id, payload)}


@router.delete("/categories/{category_id}", response_model=schemas.Envelope[schemas.DeletedOut])
def deactivate_category(
    category_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.categories.manage")),
):
    return {"data": {"id": CategoryService(db).deactivate(user.id, category_id)}}


@router.get("/categories/rules", response_model=schemas.Envelope[list[schemas.RuleOut]])
def list_rules(
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.categories.manage")),
):
    return {"data": CategoryService(db).list_rules(user.id)}


@router.post("/categories/rules", response_model=schemas.Envelope[schemas.RuleOut], status_code=201)
def create_rule(
    payload: schemas.RuleCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.categories.manage")),
):
    return {"data": CategoryService(db).create_rule(user.id, payload)}


@router.patch("/categories/rules/{rule_id}", response_model=schemas.Envelope[schemas.RuleOut])
def update_rule(
    rule_id: int,
    payload: schemas.RuleUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.categories.manage")),
):
    return {"data": CategoryService(db).update_rule(user.id, rule_id, payload)}


@router.delete("/categories/rules/{rule_id}", response_model=schemas.Envelope[schemas.DeletedOut])
def delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.categories.manage")),
):
    return {"data": {"id": CategoryService(db).delete_rule(user.id, rule_id)}}


def _suggest(suggester: CategorySuggester, user_id: int, item: schemas.CategorizeIn) -> Optional[dict]:
    hit = suggester.suggest(user_id, item.description, item.merchant, item.type)
    return asdict(hit) if hit else None


@router.post(
    "/categorize",
    response_model=schemas.Envelope[Union[Optional[schemas.SuggestionOut], list[Optional[schemas.SuggestionOut]]]],
)
def categorize(
    payload: Union[schemas.CategorizeBatchIn, schemas.CategorizeIn],
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.transactions.create")),
):
    """Suggest a category for one transaction or for a batch of up to 100."""
    suggester = CategorySuggester(db)
    if isinstance(payload, schemas.CategorizeBatchIn):
        return {"data": [_suggest(suggester, user.id, item) for item in payload.transactions]}
    return {"data": _suggest(suggester, user.id, payload)}

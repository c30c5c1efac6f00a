from __future__ import annotations

from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from folio_finance import models, schemas


class CategoryService:
    """Global categories are shared and read-only; users manage their own."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _visible(self, user_id: int):
        return self.db.query(models.Category).filter(
            or_(models.Category.user_id.is_(None), models.Category.user_id == user_id)
        )

    def list(
        self, user_id: int, *, category_type: Optional[models.CategoryType] = None, include_inactive: bool = False
    ) -> list[models.Category]:
        q = self._visible(user_id)
        if category_type is not None:
            q = q.filter(models.Category.type == category_type)
        if not include_inactive:
            q = q.filter(models.Category.is_active.is_(True))
        return q.order_by(models.Category.type, models.Category.sort_order, models.Category.name).all()

    def get_visible(self, user_id: int, category_id: int) -> models.Category:
        category = self._visible(user_id).filter(models.Category.id == category_id).first()
        if not category:
            raise HTTPException(status_code=404, detail="Category not found")
        return category

    def get_owned(self, user_id: int, category_id: int) -> models.Category:
        category = (
            self.db.query(models.Category)
            .filter(models.Category.id == category_id, models.Category.user_id == user_id)
            .first()
        )
        if not category:
            raise HTTPException(status_code=404, detail="Category not found")
        return category

    def find_by_name(self, user_id: int, name: str, category_type: models.CategoryType) -> Optional[models.Category]:
        # User categories shadow global ones with the same name
        return (
            self._visible(user_id)
            .filter(
                func.lower(models.Category.name) == name.strip().lower(),
                models.Category.type == category_type,
                models.Category.is_active.is_(True),
            )
            .order_by(models.Category.user_id.is_(None), models.Category.id)
            .first()
        )

    def _ensure_unique(self, user_id: int, name: str, category_type: models.CategoryType, exclude_id: Optional[int] = None) -> None:
        q = self.db.query(models.Category.id).filter(
            models.Category.user_id == user_id,
            models.Category.type == category_type,
            func.lower(models.Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            q = q.filter(models.Category.id != exclude_id)
        if q.first():
            raise HTTPException(status_code=409, detail="Category already exists")

    def create(self, user_id: int, payload: schemas.CategoryCreate) -> models.Category:
        self._ensure_unique(user_id, payload.name, payload.type)
        if payload.parent_id is not None:
            parent = self.get_visible(user_id, payload.parent_id)
            if parent.type != payload.type:
                raise HTTPException(status_code=400, detail="Parent category type does not match")
        category = models.Category(
            user_id=user_id,
            name=payload.name.strip(),
            type=payload.type,
            icon=payload.icon,
            color=payload.color,
            keywords=payload.keywords,
            parent_id=payload.parent_id,
            sort_order=payload.sort_order,
        )
        try:
            self.db.add(category)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(category)
        return category

    def update(self, user_id: int, category_id: int, payload: schemas.CategoryUpdate) -> models.Category:
        category = self.get_owned(user_id, category_id)
        data = payload.model_dump(exclude_unset=True)
        if data.get("name"):
            self._ensure_unique(user_id, data["name"], category.type, exclude_id=category.id)
            data["name"] = data["name"].strip()
        for field, value in data.items():
            if value is None:
                continue
            setattr(category, field, value)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(category)
        return category

    def deactivate(self, user_id: int, category_id: int) -> int:
        category = self.get_owned(user_id, category_id)
        try:
            category.is_active = False
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return category_id

    # ----- categorization rules -----

    def list_rules(self, user_id: int) -> list[models.CategorizationRule]:
        return (
            self.db.query(models.CategorizationRule)
            .options(joinedload(models.CategorizationRule.category))
            .filter(models.CategorizationRule.user_id == user_id)
            .order_by(models.CategorizationRule.priority, models.CategorizationRule.id)
            .all()
        )

    def _get_rule(self, user_id: int, rule_id: int) -> models.CategorizationRule:
        rule = (
            self.db.query(models.CategorizationRule)
            .filter(models.CategorizationRule.id == rule_id, models.CategorizationRule.user_id == user_id)
            .first()
        )
        if not rule:
            raise HTTPException(status_code=404, detail="Rule not found")
        return rule

    def _rule_category(self, user_id: int, category_id: int) -> models.Category:
        category = self._visible(user_id).filter(models.Category.id == category_id).first()
        if not category or not category.is_active:
            raise HTTPException(status_code=400, detail="Category not found")
        return category

    def create_rule(self, user_id: int, payload: schemas.RuleCreate) -> models.CategorizationRule:
        self._rule_category(user_id, payload.category_id)
        rule = models.CategorizationRule(
            user_id=user_id,
            category_id=payload.category_id,
            merchant_pattern=payload.merchant_pattern,
            description_pattern=payload.description_pattern,
            priority=payload.priority,
        )
        try:
            self.db.add(rule)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(rule)
        return rule

    def update_rule(self, user_id: int, rule_id: int, payload: schemas.RuleUpdate) -> models.CategorizationRule:
        rule = self._get_rule(user_id, rule_id)
        data = payload.model_dump(exclude_unset=True)
        if data.get("category_id") is not None:
            self._rule_category(user_id, data["category_id"])
        for field in ("merchant_pattern", "description_pattern"):
            if field in data:
                data[field] = (data[field] or "").strip() or None
        merchant = data.get("merchant_pattern", rule.merchant_pattern)
        description = data.get("description_pattern", rule.description_pattern)
        if not merchant and not description:
            raise HTTPException(status_code=400, detail="merchant_pattern or description_pattern is required")
        for field, value in data.items():
            if value is None and field in ("category_id", "priority", "is_active"):
                continue
            setattr(rule, field, value)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(rule)
        return rule

    def delete_rule(self, user_id: int, rule_id: int) -> int:
        rule = self._get_rule(user_id, rule_id)
        try:
            self.db.delete(rule)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return rule_id

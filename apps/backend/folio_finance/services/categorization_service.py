from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from folio_finance import models


logger = logging.getLogger(__name__)

RULE_CONFIDENCE = 0.95
KEYWORD_SCORE_WEIGHT = 2.0
KEYWORD_CONFIDENCE_CAP = 0.8


@dataclass(frozen=True)
class Suggestion:
    category_id: int
    category_name: str
    confidence: float
    source: str
    matched: Optional[str] = None


def _contains(pattern: Optional[str], value: str) -> bool:
    token = (pattern or "").strip().lower()
    return bool(token) and token in value


class CategorySuggester:
    """Suggest a category from the user's rules, then from category keywords.

    Rules are checked in ascending ``priority`` (ties by id) and the first hit
    wins with a fixed confidence. Otherwise every keyword contained in the
    search text scores ``len(keyword) / len(text)``; the highest score wins
    and ties keep the category seen first.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def suggest(
        self,
        user_id: int,
        description: Optional[str],
        merchant: Optional[str] = None,
        txn_type: models.TxnType | str = models.TxnType.EXPENSE,
    ) -> Optional[Suggestion]:
        txn_type = models.TxnType(txn_type)
        if txn_type == models.TxnType.TRANSFER:
            return None
        description_l = (description or "").lower()
        merchant_l = (merchant or "").lower()
        text = f"{description_l} {merchant_l}"
        if not text.strip():
            return None

        hit = self._match_rules(user_id, description_l, merchant_l)
        if hit:
            return hit
        return self._match_keywords(user_id, text, models.CategoryType.for_transaction(txn_type))

    def _match_rules(self, user_id: int, description: str, merchant: str) -> Optional[Suggestion]:
        rules = (
            self.db.query(models.CategorizationRule)
            .join(models.Category, models.Category.id == models.CategorizationRule.category_id)
            .filter(
                models.CategorizationRule.user_id == user_id,
                models.CategorizationRule.is_active.is_(True),
                models.Category.is_active.is_(True),
            )
            .order_by(models.CategorizationRule.priority.asc(), models.CategorizationRule.id.asc())
            .all()
        )
        for rule in rules:
            if _contains(rule.merchant_pattern, merchant):
                matched = rule.merchant_pattern
            elif _contains(rule.description_pattern, description):
                matched = rule.description_pattern
            else:
                continue
            return Suggestion(rule.category_id, rule.category.name, RULE_CONFIDENCE, "rule", matched)
        return None

    def _match_keywords(self, user_id: int, text: str, category_type: models.CategoryType) -> Optional[Suggestion]:
        categories = (
            self.db.query(models.Category)
            .filter(
                models.Category.type == category_type,
                models.Category.is_active.is_(True),
                or_(models.Category.user_id.is_(None), models.Category.user_id == user_id),
            )
            .order_by(models.Category.sort_order.asc(), models.Category.id.asc())
            .all()
        )
        best: Optional[models.Category] = None
        best_keyword: Optional[str] = None
        best_score = 0.0
        for category in categories:
            for keyword in category.keywords or []:
                kw = keyword.strip().lower()
                if not kw or kw not in text:
                    continue
                score = len(kw) / len(text)
                if score > best_score:
                    best, best_keyword, best_score = category, kw, score
        if best is None:
            return None
        confidence = min(best_score * KEYWORD_SCORE_WEIGHT, KEYWORD_CONFIDENCE_CAP)
        return Suggestion(best.id, best.name, round(confidence, 4), "keyword", best_keyword)

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from folio_finance import models


logger = logging.getLogger(__name__)


class AuditService:
    """Append entries to the audit log.

    Entries are added to the caller's session and committed together with the
    business change that produced them. ``record_now`` commits on its own and
    is meant for events that have no surrounding unit of work (blocked
    uploads, permission denials).
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        action: str,
        *,
        category: models.AuditCategory | str = models.AuditCategory.FINANCE,
        user_id: Optional[int] = None,
        target_id: Any = None,
        target_type: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> models.AuditLog:
        entry = models.AuditLog(
            action=action,
            category=category.value if isinstance(category, models.AuditCategory) else str(category),
            user_id=user_id,
            target_id=str(target_id) if target_id is not None else None,
            target_type=target_type,
            details=dict(details or {}),
            ip_address=ip_address,
            user_agent=(user_agent or None) and user_agent[:255],
        )
        self.db.add(entry)
        logger.info(
            "audit %s",
            action,
            extra={"user_id": user_id, "action": action, "resource": target_type, "target_id": entry.target_id},
        )
        return entry

    def record_now(self, action: str, **kwargs: Any) -> models.AuditLog:
        entry = self.record(action, **kwargs)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return entry

    def list(
        self,
        *,
        category: Optional[str] = None,
        action: Optional[str] = None,
        user_id: Optional[int] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[models.AuditLog], int]:
        q = self.db.query(models.AuditLog)
        if category:
            q = q.filter(models.AuditLog.category == category)
        if action:
            q = q.filter(models.AuditLog.action == action)
        if user_id is not None:
            q = q.filter(models.AuditLog.user_id == user_id)
        total = q.count()
        rows = (
            q.order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

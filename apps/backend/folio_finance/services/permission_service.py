from __future__ import annotations

from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from folio_finance import models


class PermissionService:
    """Resolve effective permissions: per-user override first, then role defaults."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def effective_codes(self, user: models.User) -> set[str]:
        perms = self.db.query(models.Permission).all()
        if user.role == models.Role.SUPERADMIN:
            return {p.code for p in perms}
        overrides = {
            row.permission_id: row.granted
            for row in self.db.query(models.UserPermission).filter(models.UserPermission.user_id == user.id)
        }
        codes: set[str] = set()
        for perm in perms:
            granted = overrides.get(perm.id)
            if granted is None:
                granted = user.role.value in (perm.default_roles or [])
            if granted:
                codes.add(perm.code)
        return codes

    def has_permission(self, user: models.User, code: str) -> bool:
        if user.role == models.Role.SUPERADMIN:
            return True
        perm = self.db.query(models.Permission).filter(models.Permission.code == code).first()
        if perm is None:
            return False
        override = (
            self.db.query(models.UserPermission)
            .filter(models.UserPermission.user_id == user.id, models.UserPermission.permission_id == perm.id)
            .first()
        )
        if override is not None:
            return bool(override.granted)
        return user.role.value in (perm.default_roles or [])

    def list_permissions(self, category: Optional[str] = None) -> list[models.Permission]:
        q = self.db.query(models.Permission)
        if category:
            q = q.filter(models.Permission.category == category)
        return q.order_by(models.Permission.category, models.Permission.code).all()

    def set_override(self, user_id: int, code: str, granted: Optional[bool]) -> Optional[models.UserPermission]:
        """Grant/revoke ``code`` for a user; ``granted=None`` drops the override."""
        user = self.db.get(models.User, user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        perm = self.db.query(models.Permission).filter(models.Permission.code == code).first()
        if not perm:
            raise HTTPException(status_code=404, detail="Permission not found")
        row = (
            self.db.query(models.UserPermission)
            .filter(models.UserPermission.user_id == user_id, models.UserPermission.permission_id == perm.id)
            .first()
        )
        if granted is None:
            if row is not None:
                self.db.delete(row)
            return None
        if row is None:
            row = models.UserPermission(user_id=user_id, permission_id=perm.id, granted=granted)
            self.db.add(row)
        else:
            row.granted = granted
        return row

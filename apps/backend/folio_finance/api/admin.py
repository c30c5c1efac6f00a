from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import require_permission
from folio_finance.services.audit_service import AuditService
from folio_finance.services.permission_service import PermissionService


router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit-logs", response_model=schemas.Page[schemas.AuditLogOut])
def list_audit_logs(
    category: Optional[str] = Query(None, max_length=20),
    action: Optional[str] = Query(None, max_length=80),
    user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("audit.view")),
):
    rows, total = AuditService(db).list(category=category, action=action, user_id=user_id, page=page, limit=limit)
    return {
        "data": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


@router.get("/permissions", response_model=schemas.Envelope[list[schemas.PermissionOut]])
def list_permissions(
    category: Optional[str] = Query(None, max_length=40),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("users.view")),
):
    return {"data": PermissionService(db).list_permissions(category)}


@router.put("/users/{user_id}/permissions/{code}", response_model=schemas.Envelope[schemas.PermissionOverrideOut])
def set_user_permission(
    user_id: int,
    code: str,
    payload: schemas.PermissionOverrideIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("users.permissions.edit")),
):
    svc = PermissionService(db)
    audit = AuditService(db)
    try:
        svc.set_override(user_id, code, payload.granted)
        audit.record(
            "users.permission.changed",
            category=models.AuditCategory.USERS,
            user_id=user.id,
            target_id=user_id,
            target_type="user",
            details={"code": code, "granted": payload.granted},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    target = db.get(models.User, user_id)
    return {
        "data": {
            "user_id": user_id,
            "code": code,
            "granted": payload.granted,
            "effective": svc.has_permission(target, code),
        }
    }


@router.get("/users/{user_id}/permissions", response_model=schemas.Envelope[schemas.UserPermissionsOut])
def get_user_permissions(
    user_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("users.view")),
):
    target = db.get(models.User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    codes = PermissionService(db).effective_codes(target)
    return {"data": {"user_id": target.id, "role": target.role, "permissions": sorted(codes)}}

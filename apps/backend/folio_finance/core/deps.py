from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from folio_finance import models
from folio_finance.core.config import settings
from folio_finance.core.database import get_db
from folio_finance.services.permission_service import PermissionService
from folio_finance.services.security import (
    CounterStore,
    InMemoryCounterStore,
    RateLimiter,
    RequestContext,
    SecurityEvent,
    SecurityRecorder,
    ThreatTracker,
)


_counter_store = InMemoryCounterStore()


def get_counter_store() -> CounterStore:
    """Process-wide counter store; override to plug in a shared cache."""
    return _counter_store


def get_threat_tracker(store: CounterStore = Depends(get_counter_store)) -> ThreatTracker:
    return ThreatTracker(store)


def get_ocr_rate_limiter(store: CounterStore = Depends(get_counter_store)) -> RateLimiter:
    return RateLimiter(store, settings.OCR_MAX_PER_HOUR, settings.OCR_WINDOW_SECONDS, namespace="ocr")


def get_request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return RequestContext(ip_address=ip, user_agent=request.headers.get("user-agent"))


def get_security_recorder(
    db: Session = Depends(get_db),
    tracker: ThreatTracker = Depends(get_threat_tracker),
) -> SecurityRecorder:
    return SecurityRecorder(db, tracker)


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
    recorder: SecurityRecorder = Depends(get_security_recorder),
) -> models.User:
    """Resolve the acting user from the ``X-User-Id`` header.

    Session handling happens upstream; this backend only trusts the id it is
    handed. Missing, malformed, unknown or inactive users are rejected.
    """
    user: Optional[models.User] = None
    if x_user_id and x_user_id.strip().isdigit():
        user = db.get(models.User, int(x_user_id.strip()))
    if user is None or not user.is_active:
        recorder.record(SecurityEvent.UNAUTHORIZED_ACCESS, ctx, header=x_user_id)
        raise HTTPException(status_code=401, detail="Unauthorized")
    ctx.user_id = user.id
    return user


def require_permission(code: str) -> Callable[..., models.User]:
    def _checker(
        user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
        ctx: RequestContext = Depends(get_request_context),
        recorder: SecurityRecorder = Depends(get_security_recorder),
    ) -> models.User:
        if not PermissionService(db).has_permission(user, code):
            recorder.record(SecurityEvent.PERMISSION_DENIED, ctx, permission=code)
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _checker


def get_receipt_scanner():
    """No scanner ships with the backend; deployments override this dependency."""
    return None

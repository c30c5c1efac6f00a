from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from folio_finance import models, schemas
from folio_finance.core.database import get_db
from folio_finance.core.deps import require_permission
from folio_finance.services.dashboard_service import DashboardService


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=schemas.Envelope[schemas.DashboardOut])
def get_dashboard(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.dashboard")),
):
    """Income, expenses and category breakdown for a period (the current month by default)."""
    data = DashboardService(db).summary(user.id, start=start_date, end=end_date, currency=currency)
    return {"data": data}

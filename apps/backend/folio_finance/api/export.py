from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from folio_finance import models
from folio_finance.core.database import get_db
from folio_finance.core.deps import require_permission
from folio_finance.services.export_service import ExportService


router = APIRouter(prefix="/export", tags=["export"])


@router.get("")
def export_data(
    format: Literal["csv", "json"] = Query("csv"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_permission("finance.export")),
):
    svc = ExportService(db)
    stamp = models.today_local().isoformat()
    if format == "json":
        return {"data": svc.snapshot(user.id, start_date, end_date)}
    return Response(
        content=svc.transactions_csv(user.id, start_date, end_date),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="transactions_{stamp}.csv"'},
    )

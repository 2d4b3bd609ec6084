from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from backend.paycore.analytics.core import GRANULARITIES, bucket_by_granularity, summarize_transactions
from backend.paycore.db import get_db
from backend.paycore.services.risk_service import resolve_window
from backend.paycore.services.transaction_service import list_window


router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/summary")
def transaction_summary(
    tenant_id: str = Query(..., min_length=1),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    granularity: str = Query("day"),
    db: Session = Depends(get_db),
):
    if granularity not in GRANULARITIES:
        raise HTTPException(status_code=400, detail=f"granularity must be one of {', '.join(GRANULARITIES)}")
    start, end = resolve_window(start, end, hours=24 * 30)
    rows = list_window(db, tenant_id, start, end)
    return {
        "tenant_id": tenant_id,
        "from": start.isoformat(),
        "to": end.isoformat(),
        "granularity": granularity,
        "summary": summarize_transactions(rows).as_dict(),
        "buckets": bucket_by_granularity(rows, granularity),
    }

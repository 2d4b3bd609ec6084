from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.paycore.db import get_db
from backend.paycore.services import alert_service


router = APIRouter(prefix="/alerts", tags=["alerts"])


class ChannelCreate(BaseModel):
    tenant_id: str = Field(min_length=1)
    channel_type: str = Field(min_length=1)
    destination: str = Field(min_length=1)
    min_severity: str = "high"
    enabled: bool = True


@router.post("/channels")
def create_channel(req: ChannelCreate, db: Session = Depends(get_db)):
    channel = alert_service.create_channel(
        db,
        tenant_id=req.tenant_id,
        channel_type=req.channel_type,
        destination=req.destination,
        min_severity=req.min_severity,
        enabled=req.enabled,
    )
    db.commit()
    return alert_service.serialize_channel(channel)


@router.get("/channels")
def list_channels(tenant_id: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    return [alert_service.serialize_channel(c) for c in alert_service.list_channels(db, tenant_id)]


@router.get("/dispatches")
def list_dispatches(
    tenant_id: str = Query(..., min_length=1),
    risk_event_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    dispatches = alert_service.list_dispatches(db, tenant_id, risk_event_id=risk_event_id, limit=limit)
    return [alert_service.serialize_dispatch(d) for d in dispatches]

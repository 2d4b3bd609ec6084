from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.paycore.db import get_db
from backend.paycore.services import risk_service


router = APIRouter(prefix="/risk", tags=["risk"])


class RiskEventPatch(BaseModel):
    tenant_id: str = Field(min_length=1)
    workflow_state: Optional[str] = None
    owner: Optional[str] = Field(default=None, max_length=120)
    sla_due_at: Optional[datetime] = None
    actor: Optional[str] = Field(default=None, max_length=40)
    reason: Optional[str] = Field(default=None, max_length=200)


@router.get("/events")
def list_risk_events(
    tenant_id: str = Query(..., min_length=1),
    workflow_state: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    events = risk_service.list_risk_events(
        db,
        tenant_id,
        workflow_state=workflow_state,
        severity=severity,
        limit=limit,
    )
    return [risk_service.serialize_risk_event(e) for e in events]


@router.patch("/events/{event_id}")
def update_risk_event(event_id: str, req: RiskEventPatch, db: Session = Depends(get_db)):
    event = risk_service.update_risk_event(
        db,
        event_id,
        tenant_id=req.tenant_id,
        workflow_state=req.workflow_state,
        owner=req.owner,
        sla_due_at=req.sla_due_at,
        actor=req.actor or "analyst",
        reason=req.reason,
    )
    db.commit()
    return risk_service.serialize_risk_event(event)

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.paycore.db import get_db
from backend.paycore.services import audit_service

router = APIRouter(prefix="/audit", tags=["audit"])


class AuditLogOut(BaseModel):
    id: str
    tenant_id: str
    event_type: str
    actor: str
    reason: Optional[str] = None
    subject_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/{tenant_id}", response_model=List[AuditLogOut])
def list_audit_events(
    tenant_id: str,
    limit: int = Query(100, ge=1, le=500),
    subject_id: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    return audit_service.list_audit_events(
        db,
        tenant_id,
        subject_id=subject_id,
        event_type=event_type,
        limit=limit,
    )

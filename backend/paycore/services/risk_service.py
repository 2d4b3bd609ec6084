from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.paycore.config import risk_window_hours
from backend.paycore.models import OPEN_WORKFLOW_STATES, RiskEvent, WORKFLOW_STATES
from backend.paycore.norma.normalize import to_utc
from backend.paycore.risk.detectors import detect_risk_events
from backend.paycore.risk.workflow import RISK_TRANSITIONS, can_transition, risk_status_for
from backend.paycore.services import audit_service
from backend.paycore.services.transaction_service import list_window


logger = logging.getLogger(__name__)

SCAN_ROW_LIMIT = 5000


def _now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_window(
    start: Optional[datetime],
    end: Optional[datetime],
    *,
    hours: Optional[int] = None,
) -> Tuple[datetime, datetime]:
    end = to_utc(end) or _now()
    start = to_utc(start) or (end - timedelta(hours=hours or risk_window_hours()))
    if start > end:
        raise HTTPException(status_code=400, detail="window start must not be after end")
    return start, end


def generate_risk_events(
    db: Session,
    tenant_id: str,
    start: datetime,
    end: datetime,
) -> Dict[str, int]:
    """
    Insert-only: overlapping windows may yield repeated events for the same
    anomaly. Callers serialize runs per tenant through the pipeline lock.
    """
    rows = list_window(db, tenant_id, start, end, limit=SCAN_ROW_LIMIT)
    detected = detect_risk_events(rows)
    now = _now()
    for event in detected:
        db.add(
            RiskEvent(
                tenant_id=tenant_id,
                transaction_id=None,
                event_type=event.event_type,
                severity=event.severity,
                score=event.score,
                reasons_json=event.reasons,
                status="open",
                workflow_state="new",
                detected_at=now,
            )
        )
    db.flush()
    logger.info("Risk scan tenant=%s scanned=%s created=%s", tenant_id, len(rows), len(detected))
    return {"scanned_rows": len(rows), "created_events": len(detected)}


def open_risk_events(db: Session, tenant_id: str, *, limit: int = 50) -> List[RiskEvent]:
    return list(
        db.execute(
            select(RiskEvent)
            .where(
                RiskEvent.tenant_id == tenant_id,
                RiskEvent.workflow_state.in_(OPEN_WORKFLOW_STATES),
            )
            .order_by(RiskEvent.detected_at.desc(), RiskEvent.id.asc())
            .limit(limit)
        ).scalars().all()
    )


def list_risk_events(
    db: Session,
    tenant_id: str,
    *,
    workflow_state: Optional[str] = None,
    severity: Optional[str] = None,
    limit: int = 100,
) -> List[RiskEvent]:
    query = select(RiskEvent).where(RiskEvent.tenant_id == tenant_id)
    if workflow_state:
        query = query.where(RiskEvent.workflow_state == workflow_state)
    if severity:
        query = query.where(RiskEvent.severity == severity)
    query = query.order_by(RiskEvent.detected_at.desc(), RiskEvent.id.asc()).limit(limit)
    return list(db.execute(query).scalars().all())


def get_risk_event(db: Session, event_id: str, *, tenant_id: Optional[str] = None) -> RiskEvent:
    event = db.get(RiskEvent, event_id)
    if not event or (tenant_id is not None and event.tenant_id != tenant_id):
        raise HTTPException(status_code=404, detail="risk event not found")
    return event


def update_risk_event(
    db: Session,
    event_id: str,
    *,
    tenant_id: Optional[str] = None,
    workflow_state: Optional[str] = None,
    owner: Optional[str] = None,
    sla_due_at: Optional[datetime] = None,
    actor: str = "analyst",
    reason: Optional[str] = None,
) -> RiskEvent:
    event = get_risk_event(db, event_id, tenant_id=tenant_id)
    before = {
        "workflow_state": event.workflow_state,
        "status": event.status,
        "owner": event.owner,
    }

    if workflow_state is not None:
        if workflow_state not in WORKFLOW_STATES:
            raise HTTPException(status_code=400, detail=f"invalid workflow_state: {workflow_state}")
        if not can_transition(RISK_TRANSITIONS, event.workflow_state, workflow_state):
            raise HTTPException(
                status_code=409,
                detail=f"cannot move risk event from {event.workflow_state} to {workflow_state}",
            )
        event.workflow_state = workflow_state
        event.status = risk_status_for(workflow_state)
    if owner is not None:
        event.owner = owner or None
    if sla_due_at is not None:
        event.sla_due_at = to_utc(sla_due_at)
    db.flush()

    audit_service.log_audit_event(
        db,
        tenant_id=event.tenant_id,
        event_type="risk_event_updated",
        actor=actor,
        reason=reason,
        subject_id=event.id,
        before=before,
        after={"workflow_state": event.workflow_state, "status": event.status, "owner": event.owner},
    )
    return event


def serialize_risk_event(event: RiskEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "tenant_id": event.tenant_id,
        "transaction_id": event.transaction_id,
        "event_type": event.event_type,
        "severity": event.severity,
        "score": event.score,
        "reasons": event.reasons_json,
        "status": event.status,
        "workflow_state": event.workflow_state,
        "owner": event.owner,
        "sla_due_at": to_utc(event.sla_due_at).isoformat() if event.sla_due_at else None,
        "detected_at": to_utc(event.detected_at).isoformat() if event.detected_at else None,
    }

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.paycore.models import AuditLog


def log_audit_event(
    db: Session,
    *,
    tenant_id: str,
    event_type: str,
    actor: str,
    reason: Optional[str] = None,
    subject_id: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    row = AuditLog(
        tenant_id=tenant_id,
        event_type=event_type,
        actor=actor[:40],
        reason=reason[:200] if reason else reason,
        subject_id=subject_id,
        before_state=before,
        after_state=after,
    )
    db.add(row)
    db.flush()
    return row


def list_audit_events(
    db: Session,
    tenant_id: str,
    *,
    subject_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
) -> List[AuditLog]:
    query = select(AuditLog).where(AuditLog.tenant_id == tenant_id)
    if subject_id:
        query = query.where(AuditLog.subject_id == subject_id)
    if event_type:
        query = query.where(AuditLog.event_type == event_type)
    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    return list(db.execute(query).scalars().all())

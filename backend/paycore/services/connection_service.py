from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.paycore.config import default_webhook_secret, resolve_secret
from backend.paycore.models import IngestionJob, ProcessorConnection
from backend.paycore.services import audit_service


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def find_connection(db: Session, tenant_id: str, provider: str) -> Optional[ProcessorConnection]:
    return db.execute(
        select(ProcessorConnection).where(
            ProcessorConnection.tenant_id == tenant_id,
            ProcessorConnection.provider == provider,
        )
    ).scalar_one_or_none()


def require_active_connection(db: Session, tenant_id: str, provider: str) -> ProcessorConnection:
    conn = find_connection(db, tenant_id, provider)
    if not conn:
        raise HTTPException(status_code=404, detail=f"{provider} connection not found")
    if not conn.is_active:
        raise HTTPException(status_code=409, detail=f"{provider} connection is disconnected")
    return conn


def list_connections(db: Session, tenant_id: str) -> List[ProcessorConnection]:
    rows = db.execute(
        select(ProcessorConnection).where(ProcessorConnection.tenant_id == tenant_id)
    ).scalars().all()
    return sorted(rows, key=lambda c: c.provider)


def connect(
    db: Session,
    *,
    tenant_id: str,
    provider: str,
    credentials_ref: Optional[str] = None,
    webhook_secret_ref: Optional[str] = None,
    actor: str = "system",
) -> ProcessorConnection:
    """Create or reactivate the (tenant, provider) connection."""
    now = _now()
    conn = find_connection(db, tenant_id, provider)
    before = None
    if conn is None:
        conn = ProcessorConnection(tenant_id=tenant_id, provider=provider)
        db.add(conn)
    else:
        before = {"status": conn.status, "is_active": conn.is_active}

    if credentials_ref is not None:
        conn.credentials_ref = credentials_ref
    if webhook_secret_ref is not None:
        conn.webhook_secret_ref = webhook_secret_ref
    conn.status = "connected"
    conn.is_active = True
    conn.retry_count = 0
    conn.last_error = None
    conn.dead_letter_job_id = None
    conn.connected_at = now
    conn.disconnected_at = None
    db.flush()

    audit_service.log_audit_event(
        db,
        tenant_id=tenant_id,
        event_type="processor_connected",
        actor=actor,
        subject_id=conn.id,
        before=before,
        after={"provider": provider, "status": conn.status},
    )
    logger.info("Processor connected tenant=%s provider=%s", tenant_id, provider)
    return conn


def disconnect(db: Session, *, tenant_id: str, provider: str, actor: str = "system") -> ProcessorConnection:
    conn = find_connection(db, tenant_id, provider)
    if not conn:
        raise HTTPException(status_code=404, detail=f"{provider} connection not found")

    before = {"status": conn.status, "is_active": conn.is_active}
    conn.status = "disconnected"
    conn.is_active = False
    conn.disconnected_at = _now()
    db.flush()

    audit_service.log_audit_event(
        db,
        tenant_id=tenant_id,
        event_type="processor_disconnected",
        actor=actor,
        subject_id=conn.id,
        before=before,
        after={"status": conn.status, "is_active": False},
    )
    logger.info("Processor disconnected tenant=%s provider=%s", tenant_id, provider)
    return conn


def resolve_credentials(conn: ProcessorConnection) -> Optional[str]:
    return resolve_secret(conn.credentials_ref)


def resolve_webhook_secret(conn: Optional[ProcessorConnection], provider: str) -> Optional[str]:
    if conn is not None and conn.webhook_secret_ref:
        secret = resolve_secret(conn.webhook_secret_ref)
        if secret:
            return secret
    return default_webhook_secret(provider)


def mark_sync_success(conn: ProcessorConnection, *, cursor: Optional[str] = None) -> None:
    now = _now()
    conn.status = "connected"
    conn.last_sync_at = now
    conn.last_success_at = now
    conn.retry_count = 0
    conn.last_error = None
    conn.dead_letter_job_id = None
    conn.last_cursor = cursor


def mark_sync_error(conn: ProcessorConnection, job: IngestionJob, error: str) -> None:
    conn.status = "error"
    conn.last_sync_at = _now()
    conn.retry_count = (conn.retry_count or 0) + 1
    conn.last_error = error
    conn.dead_letter_job_id = job.id
    logger.warning(
        "Processor sync failed tenant=%s provider=%s job=%s retries=%s",
        conn.tenant_id,
        conn.provider,
        job.id,
        conn.retry_count,
    )


def mark_webhook_received(conn: Optional[ProcessorConnection]) -> None:
    if conn is not None:
        conn.last_webhook_at = _now()

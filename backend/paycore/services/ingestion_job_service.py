from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.paycore.config import ingestion_max_retries, retry_backoff_seconds
from backend.paycore.models import IngestionJob, PROVIDERS, SOURCE_TYPES
from backend.paycore.services import audit_service


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _find_by_key(
    db: Session,
    tenant_id: str,
    source_type: str,
    idempotency_key: str,
) -> Optional[IngestionJob]:
    return db.execute(
        select(IngestionJob).where(
            IngestionJob.tenant_id == tenant_id,
            IngestionJob.source_type == source_type,
            IngestionJob.idempotency_key == idempotency_key,
        )
    ).scalar_one_or_none()


def create_or_reuse_job(
    db: Session,
    *,
    tenant_id: str,
    source_type: str,
    idempotency_key: Optional[str] = None,
    **initial_fields: Any,
) -> Tuple[IngestionJob, bool]:
    """
    Return (job, reused). A hit on (tenant, source_type, idempotency_key)
    returns the existing job and the caller must do no further work.
    """
    if source_type not in SOURCE_TYPES:
        raise HTTPException(400, f"unsupported source_type: {source_type}")
    key = (idempotency_key or "").strip() or None

    if key:
        existing = _find_by_key(db, tenant_id, source_type, key)
        if existing is not None:
            logger.info("Idempotency hit tenant=%s source=%s job=%s", tenant_id, source_type, existing.id)
            return existing, True

    initial_fields.setdefault("max_retries", ingestion_max_retries())
    job = IngestionJob(
        tenant_id=tenant_id,
        source_type=source_type,
        idempotency_key=key,
        **initial_fields,
    )
    try:
        with db.begin_nested():
            db.add(job)
            db.flush()
    except IntegrityError:
        existing = _find_by_key(db, tenant_id, source_type, key) if key else None
        if existing is None:
            raise
        return existing, True
    return job, False


def get_job(db: Session, job_id: str) -> IngestionJob:
    job = db.get(IngestionJob, job_id)
    if not job:
        raise HTTPException(404, "ingestion job not found")
    return job


def list_jobs(
    db: Session,
    tenant_id: str,
    *,
    status: Optional[str] = None,
    limit: int = 50,
) -> List[IngestionJob]:
    query = select(IngestionJob).where(IngestionJob.tenant_id == tenant_id)
    if status:
        query = query.where(IngestionJob.status == status)
    query = query.order_by(IngestionJob.created_at.desc(), IngestionJob.id.asc()).limit(limit)
    return list(db.execute(query).scalars().all())


def start_job(job: IngestionJob) -> None:
    job.status = "running"
    job.started_at = _now()
    job.finished_at = None


def complete_job(job: IngestionJob, stats: Dict[str, Any]) -> None:
    job.status = "completed"
    job.finished_at = _now()
    job.stats_json = stats
    job.last_error = None
    job.next_retry_at = None


def fail_job(job: IngestionJob, error: str, *, stats: Optional[Dict[str, Any]] = None) -> None:
    now = _now()
    job.status = "failed"
    job.finished_at = now
    job.last_error = error
    if stats is not None:
        job.stats_json = stats
    if job.retry_count >= job.max_retries:
        job.next_retry_at = None
        logger.warning("Ingestion job dead-lettered job=%s retries=%s error=%s", job.id, job.retry_count, error)
    else:
        job.next_retry_at = now + timedelta(seconds=retry_backoff_seconds())
        logger.warning("Ingestion job failed job=%s retry_at=%s error=%s", job.id, job.next_retry_at, error)


def retry_job(db: Session, job_id: str, *, actor: str = "system") -> IngestionJob:
    job = get_job(db, job_id)
    if job.retry_count >= job.max_retries:
        raise HTTPException(
            409,
            f"retry limit reached ({job.retry_count}/{job.max_retries}); job requires manual intervention",
        )

    before = {"status": job.status, "retry_count": job.retry_count, "last_error": job.last_error}
    job.retry_count += 1
    job.status = "queued"
    job.last_error = None
    job.next_retry_at = None
    job.finished_at = None
    db.add(job)
    audit_service.log_audit_event(
        db,
        tenant_id=job.tenant_id,
        event_type="ingestion_job_retried",
        actor=actor,
        subject_id=job.id,
        before=before,
        after={"status": job.status, "retry_count": job.retry_count},
    )
    return job


def jobs_due_for_retry(
    db: Session,
    *,
    now: Optional[datetime] = None,
    tenant_id: Optional[str] = None,
    limit: int = 50,
) -> List[IngestionJob]:
    """Failed provider sync jobs under their retry ceiling whose backoff has elapsed."""
    now = now or _now()
    query = select(IngestionJob).where(
        IngestionJob.status == "failed",
        IngestionJob.source_type.in_(PROVIDERS),
        IngestionJob.connection_id.is_not(None),
        IngestionJob.retry_count < IngestionJob.max_retries,
        or_(IngestionJob.next_retry_at.is_(None), IngestionJob.next_retry_at <= now),
    )
    if tenant_id:
        query = query.where(IngestionJob.tenant_id == tenant_id)
    query = query.order_by(IngestionJob.created_at.asc(), IngestionJob.id.asc()).limit(limit)
    return list(db.execute(query).scalars().all())


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def serialize_job(job: IngestionJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "tenant_id": job.tenant_id,
        "source_type": job.source_type,
        "source_ref": job.source_ref,
        "connection_id": job.connection_id,
        "status": job.status,
        "idempotency_key": job.idempotency_key,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "dead_lettered": job.dead_lettered,
        "started_at": _iso(job.started_at),
        "finished_at": _iso(job.finished_at),
        "next_retry_at": _iso(job.next_retry_at),
        "stats": job.stats_json,
        "last_error": job.last_error,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
    }

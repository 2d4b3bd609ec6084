from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
from fastapi import HTTPException
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.paycore.config import anomaly_refresh_window_hours
from backend.paycore.models import PROVIDERS, PipelineLock, ProcessorConnection, ScheduledJobRun
from backend.paycore.services import alert_service, ingestion_job_service, insight_service
from backend.paycore.services import recommendation_service, risk_service
from backend.paycore.services.ingest_service import execute_sync_job


logger = logging.getLogger(__name__)

SCHEDULED_JOB_TYPES = ("daily_pipeline", "anomaly_refresh", "dead_letter_retry")
JOB_TYPE_ERROR = "job_type must be one of daily_pipeline, anomaly_refresh, dead_letter_retry"
INVALID_BODY_ERROR = "Invalid JSON body"

LOCK_TTL = timedelta(hours=1)
DEAD_LETTER_BATCH = 50


def _now() -> datetime:
    return datetime.now(timezone.utc)


# -------------------------
# Per-tenant serialization
# -------------------------

def _insert_lock(db: Session, tenant_id: str, job_type: str) -> bool:
    try:
        with db.begin_nested():
            db.add(PipelineLock(tenant_id=tenant_id, job_type=job_type, acquired_at=_now()))
            db.flush()
        return True
    except IntegrityError:
        return False


def acquire_lock(db: Session, tenant_id: str, job_type: str) -> None:
    if not _insert_lock(db, tenant_id, job_type):
        held = db.get(PipelineLock, tenant_id)
        acquired_at = held.acquired_at if held else None
        if acquired_at is not None and acquired_at.tzinfo is None:
            acquired_at = acquired_at.replace(tzinfo=timezone.utc)
        stale = acquired_at is not None and acquired_at < _now() - LOCK_TTL
        if not stale:
            raise HTTPException(
                status_code=409,
                detail=f"a {held.job_type if held else 'pipeline'} run is already in progress for this tenant",
            )
        logger.warning("Reclaiming stale pipeline lock tenant=%s job_type=%s", tenant_id, held.job_type)
        db.delete(held)
        db.flush()
        if not _insert_lock(db, tenant_id, job_type):
            raise HTTPException(status_code=409, detail="pipeline run is already in progress for this tenant")
    db.commit()


def release_lock(db: Session, tenant_id: str) -> None:
    db.execute(delete(PipelineLock).where(PipelineLock.tenant_id == tenant_id))
    db.commit()


@contextmanager
def tenant_pipeline_lock(db: Session, tenant_id: str, job_type: str) -> Iterator[None]:
    """Hold the tenant's pipeline lock; work done inside commits on success, rolls back on error."""
    acquire_lock(db, tenant_id, job_type)
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        release_lock(db, tenant_id)


# -------------------------
# Batch passes
# -------------------------

def run_daily(
    db: Session,
    tenant_id: str,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    start, end = risk_service.resolve_window(start, end)
    with tenant_pipeline_lock(db, tenant_id, "daily_pipeline"):
        anomaly = risk_service.generate_risk_events(db, tenant_id, start, end)
        snapshots = insight_service.materialize_snapshots(db, tenant_id, start, end)
        scores = insight_service.update_merchant_scores(db, tenant_id, start, end)
        recs = recommendation_service.generate_recommendations(db, tenant_id)
        alerts = alert_service.dispatch_alerts(db, tenant_id)
    logger.info("Daily pipeline finished tenant=%s window=%s..%s", tenant_id, start.isoformat(), end.isoformat())
    return {"anomaly": anomaly, "snapshots": snapshots, "scores": scores, "recs": recs, "alerts": alerts}


def run_step(db: Session, tenant_id: str, job_type: str, step: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    with tenant_pipeline_lock(db, tenant_id, job_type):
        result = step()
    return result


def run_anomaly_refresh(db: Session, tenant_id: str) -> Dict[str, Any]:
    start, end = risk_service.resolve_window(None, None, hours=anomaly_refresh_window_hours())
    return run_step(
        db,
        tenant_id,
        "anomaly_refresh",
        lambda: risk_service.generate_risk_events(db, tenant_id, start, end),
    )


def run_dead_letter_retry(
    db: Session,
    *,
    tenant_id: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> Dict[str, int]:
    """
    Requeue failed jobs that are under their retry ceiling and due. Provider
    sync jobs are executed again from their stored request parameters.
    """
    due = ingestion_job_service.jobs_due_for_retry(db, tenant_id=tenant_id, limit=DEAD_LETTER_BATCH)
    retried = 0
    for job in due:
        ingestion_job_service.retry_job(db, job.id, actor="scheduler")
        if job.source_type in PROVIDERS and job.request_json is not None and job.connection_id:
            conn = db.get(ProcessorConnection, job.connection_id)
            if conn is None or not conn.is_active:
                ingestion_job_service.fail_job(job, "connection unavailable for retry")
            else:
                execute_sync_job(db, job, conn, transport=transport, actor="scheduler")
        db.commit()
        retried += 1
    logger.info("Dead-letter retry considered=%s retried=%s", len(due), retried)
    return {"retried": retried, "considered": len(due)}


# -------------------------
# Scheduled jobs
# -------------------------

def validate_scheduled_job_payload(payload: Any) -> str:
    if not isinstance(payload, dict):
        raise ValueError(INVALID_BODY_ERROR)
    candidate = payload.get("job_type")
    if not isinstance(candidate, str) or candidate not in SCHEDULED_JOB_TYPES:
        raise ValueError(JOB_TYPE_ERROR)
    return candidate


@dataclass
class RunOutcome:
    run: ScheduledJobRun
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def with_run_log(
    db: Session,
    job_type: str,
    fn: Callable[[], Dict[str, Any]],
    *,
    tenant_id: Optional[str] = None,
) -> RunOutcome:
    started = time.monotonic()
    run = ScheduledJobRun(job_type=job_type, tenant_id=tenant_id, status="running", started_at=_now())
    db.add(run)
    db.commit()
    run_id = run.id

    try:
        result = fn()
    except Exception as exc:
        db.rollback()
        logger.exception("Scheduled job failed job_type=%s run=%s", job_type, run_id)
        run = db.get(ScheduledJobRun, run_id)
        run.status = "failed"
        run.completed_at = _now()
        run.execution_time_ms = int((time.monotonic() - started) * 1000)
        run.error_message = str(getattr(exc, "detail", None) or exc) or exc.__class__.__name__
        db.commit()
        return RunOutcome(run=run, error=run.error_message)

    run.status = "completed"
    run.completed_at = _now()
    run.execution_time_ms = int((time.monotonic() - started) * 1000)
    run.result_json = result
    db.commit()
    return RunOutcome(run=run, result=result)


def scheduled_tenants(db: Session, tenant_id: Optional[str]) -> List[str]:
    if tenant_id:
        return [tenant_id]
    rows = db.execute(
        select(ProcessorConnection.tenant_id)
        .where(ProcessorConnection.is_active.is_(True))
        .distinct()
        .order_by(ProcessorConnection.tenant_id)
    ).scalars().all()
    return list(rows)


def _for_each_tenant(
    db: Session,
    tenant_ids: List[str],
    step: Callable[[str], Dict[str, Any]],
) -> Dict[str, Any]:
    results: Dict[str, Any] = {}
    for tenant in tenant_ids:
        try:
            results[tenant] = {"status": "ok", "result": step(tenant)}
        except HTTPException as exc:
            if exc.status_code != 409:
                raise
            results[tenant] = {"status": "skipped", "warning": exc.detail}
    return {"tenants": len(tenant_ids), "results": results}


def run_scheduled_job(
    db: Session,
    job_type: str,
    *,
    tenant_id: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> RunOutcome:
    tenant_ids = scheduled_tenants(db, tenant_id)

    def execute() -> Dict[str, Any]:
        if job_type == "daily_pipeline":
            return _for_each_tenant(db, tenant_ids, lambda t: run_daily(db, t))
        if job_type == "anomaly_refresh":
            return _for_each_tenant(db, tenant_ids, lambda t: run_anomaly_refresh(db, t))
        return run_dead_letter_retry(db, tenant_id=tenant_id, transport=transport)

    return with_run_log(db, job_type, execute, tenant_id=tenant_id)

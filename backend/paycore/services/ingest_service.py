from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from backend.paycore.config import square_webhook_url
from backend.paycore.integrations import ProviderError, get_adapter, normalize_provider
from backend.paycore.integrations.utils import iso_utc, parse_body
from backend.paycore.models import IngestionJob, ProcessorConnection
from backend.paycore.norma.csv_import import validate_csv_transactions
from backend.paycore.norma.normalize import clean_str, parse_timestamp
from backend.paycore.services import audit_service, connection_service, ingestion_job_service
from backend.paycore.services.transaction_service import upsert_transactions


logger = logging.getLogger(__name__)


def require_provider(provider: str) -> str:
    try:
        return normalize_provider(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"unsupported provider: {provider}")


# -------------------------
# Provider pull
# -------------------------

def run_sync(
    db: Session,
    *,
    tenant_id: str,
    provider: str,
    idempotency_key: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    cursor: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
    actor: str = "api",
) -> Dict[str, Any]:
    provider = require_provider(provider)
    conn = connection_service.require_active_connection(db, tenant_id, provider)

    job, reused = ingestion_job_service.create_or_reuse_job(
        db,
        tenant_id=tenant_id,
        source_type=provider,
        idempotency_key=idempotency_key,
        source_ref=f"{provider}:sync",
        connection_id=conn.id,
        status="queued",
        request_json={"since": iso_utc(since), "until": iso_utc(until), "cursor": cursor},
    )
    if reused:
        db.commit()
        return {"job_id": job.id, "deduplicated": True}

    execute_sync_job(db, job, conn, transport=transport, actor=actor)
    db.commit()

    if job.status == "failed":
        return {
            "job_id": job.id,
            "deduplicated": False,
            "status": job.status,
            "last_error": job.last_error,
        }
    stats = job.stats_json or {}
    return {
        "job_id": job.id,
        "deduplicated": False,
        "status": job.status,
        "ingested_rows": stats.get("ingested_rows", 0),
        "next_cursor": stats.get("next_cursor"),
    }


def execute_sync_job(
    db: Session,
    job: IngestionJob,
    conn: ProcessorConnection,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    actor: str = "system",
) -> IngestionJob:
    """
    Run one provider pull for an existing job. Provider failures are recorded
    on the job and the connection; they never propagate to the caller.
    """
    params = job.request_json or {}
    cursor = params.get("cursor") or conn.last_cursor
    ingestion_job_service.start_job(job)

    try:
        adapter = get_adapter(
            conn.provider,
            credentials=connection_service.resolve_credentials(conn),
            transport=transport,
        )
        result = adapter.pull_transactions(
            cursor=cursor,
            since=parse_timestamp(params.get("since")),
            until=parse_timestamp(params.get("until")),
        )
    except (ProviderError, ValueError) as exc:
        error = str(exc)
        ingestion_job_service.fail_job(job, error, stats={"ingested_rows": 0, "rejected_rows": 0})
        connection_service.mark_sync_error(conn, job, error)
        audit_service.log_audit_event(
            db,
            tenant_id=job.tenant_id,
            event_type="processor_sync_failed",
            actor=actor,
            reason=error[:200],
            subject_id=job.id,
            after={"provider": conn.provider, "retry_count": job.retry_count},
        )
        db.flush()
        return job

    upserted = upsert_transactions(db, job.tenant_id, result.transactions)
    ingestion_job_service.complete_job(
        job,
        {
            "ingested_rows": upserted.total,
            "rejected_rows": 0,
            "inserted": upserted.inserted,
            "updated": upserted.updated,
            "next_cursor": result.cursor,
        },
    )
    connection_service.mark_sync_success(conn, cursor=result.cursor)
    audit_service.log_audit_event(
        db,
        tenant_id=job.tenant_id,
        event_type="processor_sync_completed",
        actor=actor,
        subject_id=job.id,
        after={"provider": conn.provider, "ingested_rows": upserted.total},
    )
    db.flush()
    logger.info(
        "Processor sync completed tenant=%s provider=%s job=%s rows=%s",
        job.tenant_id,
        conn.provider,
        job.id,
        upserted.total,
    )
    return job


# -------------------------
# Webhooks
# -------------------------

def webhook_event_id(provider: str, payload: dict) -> Optional[str]:
    if provider == "stripe":
        return clean_str(payload.get("id"))
    if provider == "square":
        return clean_str(payload.get("event_id"))
    if provider == "authorizenet":
        return clean_str(payload.get("notificationId"))
    return None


def handle_webhook(
    db: Session,
    *,
    provider: str,
    tenant_id: str,
    headers: Mapping[str, str],
    body: bytes,
    request_url: str = "",
) -> Dict[str, Any]:
    provider = require_provider(provider)
    conn = connection_service.find_connection(db, tenant_id, provider)
    secret = connection_service.resolve_webhook_secret(conn, provider)
    if not secret:
        logger.warning("Webhook rejected provider=%s tenant=%s reason=missing_webhook_secret", provider, tenant_id)
        raise HTTPException(status_code=401, detail="webhook verification failed: missing_webhook_secret")

    adapter = get_adapter(provider)
    signed_url = (square_webhook_url() or request_url) if provider == "square" else request_url
    verification = adapter.verify_webhook(headers, body, secret, request_url=signed_url)
    if not verification.ok:
        logger.warning("Webhook rejected provider=%s tenant=%s reason=%s", provider, tenant_id, verification.reason)
        raise HTTPException(status_code=401, detail=f"webhook verification failed: {verification.reason}")

    if conn is not None and not conn.is_active:
        logger.warning("Webhook rejected provider=%s tenant=%s reason=connection_disconnected", provider, tenant_id)
        raise HTTPException(status_code=409, detail="connection is disconnected")

    try:
        payload = parse_body(body)
        drafts = adapter.map_webhook_event(payload)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="invalid webhook payload")

    if not drafts:
        logger.info("Webhook ignored provider=%s type=%s", provider, payload.get("type") or payload.get("eventType"))
        return {"accepted": True, "ingested_rows": 0}

    event_id = webhook_event_id(provider, payload)
    job, reused = ingestion_job_service.create_or_reuse_job(
        db,
        tenant_id=tenant_id,
        source_type=provider,
        idempotency_key=f"webhook:{event_id}" if event_id else None,
        source_ref=f"{provider}:webhook",
        connection_id=conn.id if conn else None,
        status="queued",
    )
    if reused:
        db.commit()
        return {"accepted": True, "ingested_rows": 0, "job_id": job.id, "deduplicated": True}

    ingestion_job_service.start_job(job)
    upserted = upsert_transactions(db, tenant_id, drafts)
    ingestion_job_service.complete_job(job, {"ingested_rows": upserted.total, "rejected_rows": 0})
    connection_service.mark_webhook_received(conn)
    db.commit()
    return {"accepted": True, "ingested_rows": upserted.total, "job_id": job.id}


# -------------------------
# CSV
# -------------------------

def record_csv_job(
    db: Session,
    *,
    tenant_id: str,
    source_ref: Optional[str],
    row_count: int,
    idempotency_key: Optional[str] = None,
    rejected_rows: int = 0,
) -> Dict[str, Any]:
    """Ledger entry for a CSV batch whose rows were ingested by the caller."""
    job, reused = ingestion_job_service.create_or_reuse_job(
        db,
        tenant_id=tenant_id,
        source_type="csv",
        idempotency_key=idempotency_key,
        source_ref=source_ref,
        status="running",
    )
    if reused:
        db.commit()
        return {"job_id": job.id, "deduplicated": True}

    ingestion_job_service.start_job(job)
    stats = {"ingested_rows": row_count, "rejected_rows": rejected_rows}
    if row_count > 0:
        ingestion_job_service.complete_job(job, stats)
    else:
        ingestion_job_service.fail_job(job, "CSV contained no valid rows", stats=stats)
    db.commit()
    return {"job_id": job.id, "deduplicated": False}


def import_csv(
    db: Session,
    *,
    tenant_id: str,
    content: str,
    source_ref: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    job, reused = ingestion_job_service.create_or_reuse_job(
        db,
        tenant_id=tenant_id,
        source_type="csv",
        idempotency_key=idempotency_key,
        source_ref=source_ref,
        status="queued",
    )
    if reused:
        db.commit()
        return {"job_id": job.id, "deduplicated": True}

    ingestion_job_service.start_job(job)
    validation = validate_csv_transactions(content, raw_ref=f"csv:{source_ref or job.id}")
    rejects: List[Dict[str, Any]] = [{"row": r.row, "reason": r.reason} for r in validation.rejected_rows]

    if not validation.valid_rows:
        ingestion_job_service.fail_job(
            job,
            "CSV contained no valid rows",
            stats={"ingested_rows": 0, "rejected_rows": len(rejects)},
        )
        db.commit()
        return {
            "job_id": job.id,
            "deduplicated": False,
            "status": job.status,
            "ingested_rows": 0,
            "rejected_rows": rejects,
        }

    upserted = upsert_transactions(db, tenant_id, validation.valid_rows)
    ingestion_job_service.complete_job(
        job,
        {"ingested_rows": upserted.total, "rejected_rows": len(rejects)},
    )
    db.commit()
    logger.info(
        "CSV import tenant=%s job=%s ingested=%s rejected=%s",
        tenant_id,
        job.id,
        upserted.total,
        len(rejects),
    )
    return {
        "job_id": job.id,
        "deduplicated": False,
        "status": job.status,
        "ingested_rows": upserted.total,
        "rejected_rows": rejects,
    }

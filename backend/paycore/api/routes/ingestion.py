from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.paycore.db import get_db
from backend.paycore.models import JOB_STATUSES
from backend.paycore.services import ingest_service, ingestion_job_service


router = APIRouter(prefix="/ingestion", tags=["ingestion"])


class CsvJobRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    source_ref: Optional[str] = None
    row_count: int = Field(ge=0)
    idempotency_key: Optional[str] = None
    rejected_rows: int = Field(default=0, ge=0)


class CsvUploadRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    content: str
    source_ref: Optional[str] = None
    idempotency_key: Optional[str] = None


@router.post("/csv/jobs")
def create_csv_job(req: CsvJobRequest, db: Session = Depends(get_db)):
    return ingest_service.record_csv_job(
        db,
        tenant_id=req.tenant_id,
        source_ref=req.source_ref,
        row_count=req.row_count,
        idempotency_key=req.idempotency_key,
        rejected_rows=req.rejected_rows,
    )


@router.post("/csv")
def upload_csv(req: CsvUploadRequest, db: Session = Depends(get_db)):
    return ingest_service.import_csv(
        db,
        tenant_id=req.tenant_id,
        content=req.content,
        source_ref=req.source_ref,
        idempotency_key=req.idempotency_key,
    )


@router.get("/jobs")
def list_jobs(
    tenant_id: str = Query(..., min_length=1),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    if status and status not in JOB_STATUSES:
        raise HTTPException(status_code=400, detail=f"invalid status: {status}")
    jobs = ingestion_job_service.list_jobs(db, tenant_id, status=status, limit=limit)
    return [ingestion_job_service.serialize_job(job) for job in jobs]


@router.get("/jobs/{job_id}")
def get_job(job_id: str, db: Session = Depends(get_db)):
    return ingestion_job_service.serialize_job(ingestion_job_service.get_job(db, job_id))


@router.post("/jobs/{job_id}/retry")
def retry_job(job_id: str, db: Session = Depends(get_db)):
    job = ingestion_job_service.retry_job(db, job_id, actor="api")
    db.commit()
    return {
        "job_id": job.id,
        "status": job.status,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
    }

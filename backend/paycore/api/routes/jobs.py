from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.paycore.api.deps import get_http_transport, raw_body, require_service_token
from backend.paycore.db import get_db
from backend.paycore.services import alert_service, insight_service, pipeline_service
from backend.paycore.services import recommendation_service, risk_service


router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_service_token)])


class WindowRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    start: Optional[datetime] = Field(default=None, alias="from")
    end: Optional[datetime] = Field(default=None, alias="to")

    class Config:
        populate_by_name = True


class TenantRequest(BaseModel):
    tenant_id: str = Field(min_length=1)


class DeadLetterRequest(BaseModel):
    tenant_id: Optional[str] = None


@router.post("/run-daily")
def run_daily(req: WindowRequest, db: Session = Depends(get_db)):
    return pipeline_service.run_daily(db, req.tenant_id, start=req.start, end=req.end)


@router.post("/anomaly-detect")
def anomaly_detect(req: WindowRequest, db: Session = Depends(get_db)):
    start, end = risk_service.resolve_window(req.start, req.end)
    return pipeline_service.run_step(
        db,
        req.tenant_id,
        "anomaly_detect",
        lambda: risk_service.generate_risk_events(db, req.tenant_id, start, end),
    )


@router.post("/snapshots/materialize")
def materialize_snapshots(req: WindowRequest, db: Session = Depends(get_db)):
    start, end = risk_service.resolve_window(req.start, req.end)
    return pipeline_service.run_step(
        db,
        req.tenant_id,
        "snapshots",
        lambda: insight_service.materialize_snapshots(db, req.tenant_id, start, end),
    )


@router.post("/merchant-scores/update")
def update_merchant_scores(req: WindowRequest, db: Session = Depends(get_db)):
    start, end = risk_service.resolve_window(req.start, req.end)
    return pipeline_service.run_step(
        db,
        req.tenant_id,
        "merchant_scores",
        lambda: insight_service.update_merchant_scores(db, req.tenant_id, start, end),
    )


@router.post("/recommendations/generate")
def generate_recommendations(req: TenantRequest, db: Session = Depends(get_db)):
    return pipeline_service.run_step(
        db,
        req.tenant_id,
        "recommendations",
        lambda: recommendation_service.generate_recommendations(db, req.tenant_id),
    )


@router.post("/alerts/dispatch")
def dispatch_alerts(req: TenantRequest, db: Session = Depends(get_db)):
    return pipeline_service.run_step(
        db,
        req.tenant_id,
        "alerts",
        lambda: alert_service.dispatch_alerts(db, req.tenant_id),
    )


@router.post("/dead-letter-retry")
def dead_letter_retry(
    req: DeadLetterRequest,
    db: Session = Depends(get_db),
    transport=Depends(get_http_transport),
):
    return pipeline_service.run_dead_letter_retry(db, tenant_id=req.tenant_id, transport=transport)


@router.post("/scheduled")
def scheduled_job(
    raw: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    transport=Depends(get_http_transport),
):
    try:
        payload = json.loads(raw or b"null")
    except (ValueError, UnicodeDecodeError):
        return JSONResponse({"error": pipeline_service.INVALID_BODY_ERROR}, status_code=400)

    try:
        job_type = pipeline_service.validate_scheduled_job_payload(payload)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)

    tenant_id = payload.get("tenant_id")
    outcome = pipeline_service.run_scheduled_job(
        db,
        job_type,
        tenant_id=str(tenant_id) if tenant_id else None,
        transport=transport,
    )
    if outcome.error:
        return JSONResponse(
            {"success": False, "job_type": job_type, "run_id": outcome.run.id, "error": outcome.error},
            status_code=500,
        )
    return {"success": True, "job_type": job_type, "run_id": outcome.run.id, "result": outcome.result}

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.paycore.db import get_db
from backend.paycore.services import recommendation_service


router = APIRouter(prefix="/recommendations", tags=["recommendations"])


class LifecyclePatch(BaseModel):
    tenant_id: str = Field(min_length=1)
    lifecycle_state: str
    actor: Optional[str] = None


class FeedbackRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    recommendation_id: str = Field(min_length=1)
    feedback: str = Field(min_length=1)
    reason: Optional[str] = None
    user_id: Optional[str] = None


@router.get("")
def list_recommendations(
    tenant_id: str = Query(..., min_length=1),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    recs = recommendation_service.list_recommendations(db, tenant_id, lifecycle_state=status, limit=limit)
    return [recommendation_service.serialize_recommendation(r) for r in recs]


@router.patch("/{recommendation_id}")
def update_recommendation(recommendation_id: str, req: LifecyclePatch, db: Session = Depends(get_db)):
    rec = recommendation_service.update_lifecycle(
        db,
        tenant_id=req.tenant_id,
        recommendation_id=recommendation_id,
        lifecycle_state=req.lifecycle_state,
        actor=req.actor or "analyst",
    )
    db.commit()
    return recommendation_service.serialize_recommendation(rec)


@router.post("/feedback")
def recommendation_feedback(req: FeedbackRequest, db: Session = Depends(get_db)):
    recommendation_service.record_feedback(
        db,
        tenant_id=req.tenant_id,
        recommendation_id=req.recommendation_id,
        feedback=req.feedback,
        reason=req.reason,
        user_id=req.user_id,
    )
    db.commit()
    return {"updated": True}

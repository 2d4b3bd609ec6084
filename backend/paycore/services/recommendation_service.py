from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.paycore.models import RECOMMENDATION_STATES, Recommendation, RecommendationFeedback
from backend.paycore.norma.normalize import to_utc
from backend.paycore.risk.recommendations import RULES_MODEL, build_recommendations
from backend.paycore.risk.workflow import RECOMMENDATION_TRANSITIONS, can_transition
from backend.paycore.services import audit_service
from backend.paycore.services.risk_service import open_risk_events


logger = logging.getLogger(__name__)


def generate_recommendations(db: Session, tenant_id: str) -> Dict[str, int]:
    drafts = build_recommendations(open_risk_events(db, tenant_id, limit=50))
    for draft in drafts:
        db.add(
            Recommendation(
                tenant_id=tenant_id,
                category=draft.category,
                priority=draft.priority,
                recommendation_text=draft.recommendation_text,
                confidence=draft.confidence,
                expected_impact_json=draft.expected_impact,
                lifecycle_state="open",
                model=RULES_MODEL,
            )
        )
    db.flush()
    logger.info("Recommendations generated tenant=%s created=%s", tenant_id, len(drafts))
    return {"recommendations_created": len(drafts)}


def list_recommendations(
    db: Session,
    tenant_id: str,
    *,
    lifecycle_state: Optional[str] = None,
    limit: int = 100,
) -> List[Recommendation]:
    query = select(Recommendation).where(Recommendation.tenant_id == tenant_id)
    if lifecycle_state:
        query = query.where(Recommendation.lifecycle_state == lifecycle_state)
    query = query.order_by(Recommendation.created_at.desc(), Recommendation.id.asc()).limit(limit)
    return list(db.execute(query).scalars().all())


def _get_for_tenant(db: Session, tenant_id: str, recommendation_id: str) -> Recommendation:
    rec = db.get(Recommendation, recommendation_id)
    if not rec or rec.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="recommendation not found")
    return rec


def update_lifecycle(
    db: Session,
    *,
    tenant_id: str,
    recommendation_id: str,
    lifecycle_state: str,
    actor: str = "analyst",
) -> Recommendation:
    if lifecycle_state not in RECOMMENDATION_STATES:
        raise HTTPException(status_code=400, detail=f"invalid lifecycle_state: {lifecycle_state}")
    rec = _get_for_tenant(db, tenant_id, recommendation_id)
    if not can_transition(RECOMMENDATION_TRANSITIONS, rec.lifecycle_state, lifecycle_state):
        raise HTTPException(
            status_code=409,
            detail=f"cannot move recommendation from {rec.lifecycle_state} to {lifecycle_state}",
        )
    before = {"lifecycle_state": rec.lifecycle_state}
    rec.lifecycle_state = lifecycle_state
    db.flush()
    audit_service.log_audit_event(
        db,
        tenant_id=tenant_id,
        event_type="recommendation_lifecycle_changed",
        actor=actor,
        subject_id=rec.id,
        before=before,
        after={"lifecycle_state": lifecycle_state},
    )
    return rec


def record_feedback(
    db: Session,
    *,
    tenant_id: str,
    recommendation_id: str,
    feedback: str,
    reason: Optional[str] = None,
    user_id: Optional[str] = None,
) -> RecommendationFeedback:
    rec = _get_for_tenant(db, tenant_id, recommendation_id)
    rec.analyst_feedback = feedback
    rec.analyst_feedback_reason = reason

    row = RecommendationFeedback(
        tenant_id=tenant_id,
        recommendation_id=rec.id,
        user_id=user_id,
        feedback=feedback,
        reason=reason,
    )
    db.add(row)
    db.flush()
    audit_service.log_audit_event(
        db,
        tenant_id=tenant_id,
        event_type="recommendation_feedback",
        actor=user_id or "analyst",
        reason=reason[:200] if reason else None,
        subject_id=rec.id,
        after={"feedback": feedback},
    )
    return row


def serialize_recommendation(rec: Recommendation) -> Dict[str, Any]:
    return {
        "id": rec.id,
        "tenant_id": rec.tenant_id,
        "merchant_id": rec.merchant_id,
        "category": rec.category,
        "priority": rec.priority,
        "recommendation_text": rec.recommendation_text,
        "confidence": rec.confidence,
        "expected_impact": rec.expected_impact_json,
        "lifecycle_state": rec.lifecycle_state,
        "model": rec.model,
        "analyst_feedback": rec.analyst_feedback,
        "analyst_feedback_reason": rec.analyst_feedback_reason,
        "created_at": to_utc(rec.created_at).isoformat() if rec.created_at else None,
    }

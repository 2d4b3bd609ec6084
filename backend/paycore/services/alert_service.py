from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.paycore.models import AlertChannel, AlertDispatch, SEVERITIES
from backend.paycore.norma.normalize import to_utc
from backend.paycore.services.risk_service import open_risk_events


logger = logging.getLogger(__name__)

SEVERITY_RANK = {"low": 1, "medium": 2, "high": 3, "critical": 4}
DISPATCH_EVENT_LIMIT = 100


def severity_rank(value: Optional[str]) -> int:
    # unknown severities rank lowest
    return SEVERITY_RANK.get((value or "").lower(), 1)


def severity_meets_threshold(event_severity: str, min_severity: str) -> bool:
    return severity_rank(event_severity) >= severity_rank(min_severity)


def create_channel(
    db: Session,
    *,
    tenant_id: str,
    channel_type: str,
    destination: str,
    min_severity: str = "high",
    enabled: bool = True,
) -> AlertChannel:
    if min_severity not in SEVERITIES:
        raise HTTPException(status_code=400, detail=f"invalid min_severity: {min_severity}")
    if not destination.strip():
        raise HTTPException(status_code=400, detail="destination is required")
    channel = AlertChannel(
        tenant_id=tenant_id,
        channel_type=channel_type,
        destination=destination.strip(),
        min_severity=min_severity,
        enabled=enabled,
    )
    db.add(channel)
    db.flush()
    return channel


def list_channels(db: Session, tenant_id: str) -> List[AlertChannel]:
    return list(
        db.execute(
            select(AlertChannel)
            .where(AlertChannel.tenant_id == tenant_id)
            .order_by(AlertChannel.created_at.asc(), AlertChannel.id.asc())
        ).scalars().all()
    )


def dispatch_alerts(db: Session, tenant_id: str) -> Dict[str, int]:
    """
    One dispatch row per (open event, enabled channel) at or above the
    channel's threshold. Delivery is at-least-once: rerunning dispatches again.
    """
    channels = [c for c in list_channels(db, tenant_id) if c.enabled]
    events = open_risk_events(db, tenant_id, limit=DISPATCH_EVENT_LIMIT)

    count = 0
    for event in events:
        for channel in channels:
            if not severity_meets_threshold(event.severity, channel.min_severity):
                continue
            db.add(
                AlertDispatch(
                    tenant_id=tenant_id,
                    risk_event_id=event.id,
                    channel_id=channel.id,
                    status="queued",
                    payload_json={
                        "event_type": event.event_type,
                        "severity": event.severity,
                        "destination": channel.destination,
                        "reasons": event.reasons_json,
                    },
                )
            )
            count += 1
    db.flush()
    logger.info("Alerts dispatched tenant=%s channels=%s dispatches=%s", tenant_id, len(channels), count)
    return {"dispatches": count}


def list_dispatches(
    db: Session,
    tenant_id: str,
    *,
    risk_event_id: Optional[str] = None,
    limit: int = 100,
) -> List[AlertDispatch]:
    query = select(AlertDispatch).where(AlertDispatch.tenant_id == tenant_id)
    if risk_event_id:
        query = query.where(AlertDispatch.risk_event_id == risk_event_id)
    query = query.order_by(AlertDispatch.attempted_at.desc(), AlertDispatch.id.asc()).limit(limit)
    return list(db.execute(query).scalars().all())


def serialize_channel(channel: AlertChannel) -> Dict[str, Any]:
    return {
        "id": channel.id,
        "tenant_id": channel.tenant_id,
        "channel_type": channel.channel_type,
        "destination": channel.destination,
        "min_severity": channel.min_severity,
        "enabled": channel.enabled,
    }


def serialize_dispatch(dispatch: AlertDispatch) -> Dict[str, Any]:
    return {
        "id": dispatch.id,
        "risk_event_id": dispatch.risk_event_id,
        "channel_id": dispatch.channel_id,
        "status": dispatch.status,
        "attempted_at": to_utc(dispatch.attempted_at).isoformat() if dispatch.attempted_at else None,
        "payload": dispatch.payload_json,
    }

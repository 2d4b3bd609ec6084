from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.paycore.api.deps import get_http_transport
from backend.paycore.db import get_db
from backend.paycore.services import connection_service, ingest_service


router = APIRouter(prefix="/connectors", tags=["connectors"])


class ConnectRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    credentials_ref: Optional[str] = None
    webhook_secret_ref: Optional[str] = None


class DisconnectRequest(BaseModel):
    tenant_id: str = Field(min_length=1)


class SyncRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    idempotency_key: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    cursor: Optional[str] = None


class ConnectionOut(BaseModel):
    id: str
    tenant_id: str
    provider: str
    status: str
    is_active: bool
    credentials_ref: Optional[str] = None
    webhook_secret_ref: Optional[str] = None
    last_cursor: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_webhook_at: Optional[datetime] = None
    retry_count: int
    last_error: Optional[str] = None
    dead_letter_job_id: Optional[str] = None
    connected_at: Optional[datetime] = None
    disconnected_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.get("", response_model=List[ConnectionOut])
def list_connectors(tenant_id: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    return connection_service.list_connections(db, tenant_id)


@router.post("/{provider}/connect")
def connect_provider(provider: str, req: ConnectRequest, db: Session = Depends(get_db)):
    provider = ingest_service.require_provider(provider)
    conn = connection_service.connect(
        db,
        tenant_id=req.tenant_id,
        provider=provider,
        credentials_ref=req.credentials_ref,
        webhook_secret_ref=req.webhook_secret_ref,
        actor="api",
    )
    db.commit()
    return {"connection_id": conn.id, "status": conn.status}


@router.post("/{provider}/disconnect")
def disconnect_provider(provider: str, req: DisconnectRequest, db: Session = Depends(get_db)):
    provider = ingest_service.require_provider(provider)
    conn = connection_service.disconnect(db, tenant_id=req.tenant_id, provider=provider, actor="api")
    db.commit()
    return {"connection_id": conn.id, "status": conn.status}


@router.post("/{provider}/sync")
def sync_provider(
    provider: str,
    req: SyncRequest,
    db: Session = Depends(get_db),
    transport=Depends(get_http_transport),
):
    return ingest_service.run_sync(
        db,
        tenant_id=req.tenant_id,
        provider=provider,
        idempotency_key=req.idempotency_key,
        since=req.since,
        until=req.until,
        cursor=req.cursor,
        transport=transport,
    )

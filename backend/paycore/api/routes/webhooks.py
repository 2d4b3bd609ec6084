from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from backend.paycore.api.deps import raw_body
from backend.paycore.db import get_db
from backend.paycore.services import ingest_service


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{provider}")
def provider_webhook(
    provider: str,
    request: Request,
    tenant_id: str = Query(..., min_length=1),
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
):
    # signatures cover the exact bytes received
    return ingest_service.handle_webhook(
        db,
        provider=provider,
        tenant_id=tenant_id,
        headers=request.headers,
        body=body,
        request_url=str(request.url),
    )

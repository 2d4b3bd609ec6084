from __future__ import annotations

import hmac
from typing import Optional

import httpx
from fastapi import HTTPException, Request

from backend.paycore.config import internal_job_token


def get_http_transport(request: Request) -> Optional[httpx.BaseTransport]:
    """Transport injected at app construction; None means the real network."""
    return getattr(request.app.state, "http_transport", None)


async def raw_body(request: Request) -> bytes:
    """Raw request bytes for routes that verify or parse the body themselves."""
    return await request.body()


def require_service_token(request: Request) -> str:
    """
    Service auth for batch routes.

    Accepts the token in X-Internal-Token or as a Bearer token. An unset
    INTERNAL_JOB_TOKEN rejects every caller.
    """
    expected = internal_job_token()
    if not expected:
        raise HTTPException(status_code=401, detail="Unauthorized")

    provided = request.headers.get("x-internal-token") or ""
    if not provided:
        auth = request.headers.get("authorization") or ""
        if auth.startswith("Bearer "):
            provided = auth[len("Bearer "):].strip()

    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return "service"

import logging
import os
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from backend.paycore.api.routes.alerts import router as alerts_router
from backend.paycore.api.routes.audit import router as audit_router
from backend.paycore.api.routes.connectors import router as connectors_router
from backend.paycore.api.routes.ingestion import router as ingestion_router
from backend.paycore.api.routes.jobs import router as jobs_router
from backend.paycore.api.routes.recommendations import router as recommendations_router
from backend.paycore.api.routes.risk import router as risk_router
from backend.paycore.api.routes.transactions import router as transactions_router
from backend.paycore.api.routes.webhooks import router as webhooks_router
from backend.paycore.config import log_level
from backend.paycore.db import build_engine, build_session_factory, get_database_url


logger = logging.getLogger(__name__)

LOCAL_DEV_ORIGINS = ("http://localhost:5173", "http://127.0.0.1:5173")


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        origins = list(LOCAL_DEV_ORIGINS)
    else:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    if not any(origin in origins for origin in LOCAL_DEV_ORIGINS):
        logger.warning("CORS allowlist does not include local dev origins: %s", origins)
    return origins


def create_app(
    session_factory: Optional[sessionmaker] = None,
    http_transport: Optional[httpx.BaseTransport] = None,
) -> FastAPI:
    """
    Build the API. Storage and the provider HTTP transport are injected here;
    nothing is created at import time.

        uvicorn backend.paycore.main:create_app --factory
    """
    logging.basicConfig(level=log_level())

    if session_factory is None:
        session_factory = build_session_factory(build_engine(get_database_url()))

    app = FastAPI(title="Paycore API", version="0.1.0")
    app.state.session_factory = session_factory
    app.state.http_transport = http_transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router)
    app.include_router(connectors_router)
    app.include_router(ingestion_router)
    app.include_router(jobs_router)
    app.include_router(risk_router)
    app.include_router(recommendations_router)
    app.include_router(alerts_router)
    app.include_router(transactions_router)
    app.include_router(audit_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app

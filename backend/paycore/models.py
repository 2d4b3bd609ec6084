from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.paycore.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


PROVIDERS = ("stripe", "square", "authorizenet")
SOURCE_TYPES = ("csv", *PROVIDERS)

CONNECTION_STATUSES = ("connected", "disconnected", "error")
JOB_STATUSES = ("queued", "running", "completed", "failed")

SEVERITIES = ("low", "medium", "high", "critical")
WORKFLOW_STATES = ("new", "investigating", "resolved", "false_positive")
OPEN_WORKFLOW_STATES = ("new", "investigating")
RECOMMENDATION_STATES = ("open", "accepted", "rejected", "deferred")


# -------------------------
# Ingestion
# -------------------------

class ProcessorConnection(Base):
    """
    One row per (tenant, provider). Deactivated on disconnect, never deleted.
    """
    __tablename__ = "processor_connections"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", name="uq_processor_connection_tenant_provider"),
        Index("ix_processor_connections_tenant_id", "tenant_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    provider: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="connected")
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    # references into the secret store, not the secrets themselves
    credentials_ref: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    webhook_secret_ref: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    last_cursor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_webhook_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dead_letter_job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    connected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    disconnected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class IngestionJob(Base):
    __tablename__ = "ingestion_jobs"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "source_type",
            "idempotency_key",
            name="uq_ingestion_jobs_tenant_source_idempotency",
        ),
        Index("ix_ingestion_jobs_tenant_status", "tenant_id", "status"),
        Index("ix_ingestion_jobs_status_next_retry", "status", "next_retry_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    source_type: Mapped[str] = mapped_column(String(40), nullable=False)  # csv/stripe/square/authorizenet
    source_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    connection_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="queued")
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    stats_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    request_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def dead_lettered(self) -> bool:
        return self.status == "failed" and self.retry_count >= self.max_retries


class NormalizedTransaction(Base):
    """
    Canonical, provider-agnostic payment event. Written only by the upsert path.
    """
    __tablename__ = "normalized_transactions"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "source_provider",
            "source_txn_id",
            name="uq_normalized_transactions_tenant_provider_txn",
        ),
        Index("ix_normalized_transactions_tenant_occurred", "tenant_id", "occurred_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    source_provider: Mapped[str] = mapped_column(String(40), nullable=False)
    source_txn_id: Mapped[str] = mapped_column(String(120), nullable=False)

    merchant_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    card_fingerprint_token: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    decline_code: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    avs_result: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    cvv_result: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    mcc: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    channel: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


# -------------------------
# Risk & recommendations
# -------------------------

class RiskEvent(Base):
    __tablename__ = "risk_events"
    __table_args__ = (
        Index("ix_risk_events_tenant_workflow", "tenant_id", "workflow_state"),
        Index("ix_risk_events_tenant_detected", "tenant_id", "detected_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reasons_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    workflow_state: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    owner: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Recommendation(Base):
    __tablename__ = "recommendations"
    __table_args__ = (
        Index("ix_recommendations_tenant_state", "tenant_id", "lifecycle_state"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    merchant_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    recommendation_text: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    expected_impact_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    lifecycle_state: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    model: Mapped[str] = mapped_column(String(40), nullable=False, default="rules-v1")

    analyst_feedback: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    analyst_feedback_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class RecommendationFeedback(Base):
    __tablename__ = "recommendation_feedback"
    __table_args__ = (
        Index("ix_recommendation_feedback_recommendation_id", "recommendation_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    recommendation_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    feedback: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class InsightSnapshot(Base):
    __tablename__ = "insight_snapshots"
    __table_args__ = (
        Index("ix_insight_snapshots_tenant_period", "tenant_id", "period_end"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metric_key: Mapped[str] = mapped_column(String(60), nullable=False)
    metric_value: Mapped[float] = mapped_column(Float, nullable=False)
    narrative_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model: Mapped[str] = mapped_column(String(40), nullable=False, default="deterministic-v1")
    provenance_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class MerchantScore(Base):
    __tablename__ = "merchant_scores"
    __table_args__ = (
        Index("ix_merchant_scores_tenant_merchant", "tenant_id", "merchant_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    merchant_id: Mapped[str] = mapped_column(String(120), nullable=False)
    score_type: Mapped[str] = mapped_column(String(40), nullable=False)
    score_value: Mapped[float] = mapped_column(Float, nullable=False)
    factors_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    as_of: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# -------------------------
# Alerting
# -------------------------

class AlertChannel(Base):
    __tablename__ = "alert_channels"
    __table_args__ = (
        Index("ix_alert_channels_tenant_enabled", "tenant_id", "enabled"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    channel_type: Mapped[str] = mapped_column(String(40), nullable=False)  # email/slack/webhook/...
    destination: Mapped[str] = mapped_column(String(255), nullable=False)
    min_severity: Mapped[str] = mapped_column(String(20), nullable=False, default="high")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AlertDispatch(Base):
    __tablename__ = "alert_dispatches"
    __table_args__ = (
        Index("ix_alert_dispatches_tenant_attempted", "tenant_id", "attempted_at"),
        Index("ix_alert_dispatches_risk_event_id", "risk_event_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    risk_event_id: Mapped[str] = mapped_column(String(36), nullable=False)
    channel_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    payload_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)


# -------------------------
# Batch bookkeeping
# -------------------------

class ScheduledJobRun(Base):
    __tablename__ = "scheduled_job_runs"
    __table_args__ = (
        Index("ix_scheduled_job_runs_job_type_started", "job_type", "started_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    job_type: Mapped[str] = mapped_column(String(60), nullable=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    execution_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)


class PipelineLock(Base):
    """
    One row per tenant while a batch pass is running for it.
    """
    __tablename__ = "pipeline_locks"

    tenant_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    job_type: Mapped[str] = mapped_column(String(60), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class AuditLog(Base):
    """
    Append-only audit log for connection, job and analyst workflow changes.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_tenant_id", "tenant_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)

    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    actor: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    subject_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    before_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    after_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

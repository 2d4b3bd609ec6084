"""create paycore tables

Revision ID: 3a6e1c0d9f42
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3a6e1c0d9f42"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "processor_connections",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("provider", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("credentials_ref", sa.String(length=200), nullable=True),
        sa.Column("webhook_secret_ref", sa.String(length=200), nullable=True),
        sa.Column("last_cursor", sa.String(length=255), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_webhook_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("dead_letter_job_id", sa.String(length=36), nullable=True),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("disconnected_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "provider", name="uq_processor_connection_tenant_provider"),
    )
    op.create_index("ix_processor_connections_tenant_id", "processor_connections", ["tenant_id"], unique=False)

    op.create_table(
        "ingestion_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("source_type", sa.String(length=40), nullable=False),
        sa.Column("source_ref", sa.String(length=255), nullable=True),
        sa.Column("connection_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("idempotency_key", sa.String(length=200), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stats_json", sa.JSON(), nullable=True),
        sa.Column("request_json", sa.JSON(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "source_type",
            "idempotency_key",
            name="uq_ingestion_jobs_tenant_source_idempotency",
        ),
    )
    op.create_index("ix_ingestion_jobs_tenant_status", "ingestion_jobs", ["tenant_id", "status"], unique=False)
    op.create_index(
        "ix_ingestion_jobs_status_next_retry", "ingestion_jobs", ["status", "next_retry_at"], unique=False
    )

    op.create_table(
        "normalized_transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("source_provider", sa.String(length=40), nullable=False),
        sa.Column("source_txn_id", sa.String(length=120), nullable=False),
        sa.Column("merchant_id", sa.String(length=120), nullable=True),
        sa.Column("card_fingerprint_token", sa.String(length=120), nullable=True),
        sa.Column("amount", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("decline_code", sa.String(length=80), nullable=True),
        sa.Column("avs_result", sa.String(length=40), nullable=True),
        sa.Column("cvv_result", sa.String(length=40), nullable=True),
        sa.Column("mcc", sa.String(length=8), nullable=True),
        sa.Column("country", sa.String(length=2), nullable=True),
        sa.Column("region", sa.String(length=80), nullable=True),
        sa.Column("channel", sa.String(length=40), nullable=True),
        sa.Column("payment_method", sa.String(length=40), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_ref", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id",
            "source_provider",
            "source_txn_id",
            name="uq_normalized_transactions_tenant_provider_txn",
        ),
    )
    op.create_index(
        "ix_normalized_transactions_tenant_occurred",
        "normalized_transactions",
        ["tenant_id", "occurred_at"],
        unique=False,
    )

    op.create_table(
        "risk_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("transaction_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("reasons_json", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("workflow_state", sa.String(length=32), nullable=False),
        sa.Column("owner", sa.String(length=120), nullable=True),
        sa.Column("sla_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_risk_events_tenant_workflow", "risk_events", ["tenant_id", "workflow_state"], unique=False)
    op.create_index("ix_risk_events_tenant_detected", "risk_events", ["tenant_id", "detected_at"], unique=False)

    op.create_table(
        "recommendations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("merchant_id", sa.String(length=120), nullable=True),
        sa.Column("category", sa.String(length=60), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("recommendation_text", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("expected_impact_json", sa.JSON(), nullable=True),
        sa.Column("lifecycle_state", sa.String(length=20), nullable=False),
        sa.Column("model", sa.String(length=40), nullable=False),
        sa.Column("analyst_feedback", sa.String(length=40), nullable=True),
        sa.Column("analyst_feedback_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_recommendations_tenant_state", "recommendations", ["tenant_id", "lifecycle_state"], unique=False
    )

    op.create_table(
        "recommendation_feedback",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("recommendation_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=True),
        sa.Column("feedback", sa.String(length=40), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_recommendation_feedback_recommendation_id",
        "recommendation_feedback",
        ["recommendation_id"],
        unique=False,
    )

    op.create_table(
        "insight_snapshots",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metric_key", sa.String(length=60), nullable=False),
        sa.Column("metric_value", sa.Float(), nullable=False),
        sa.Column("narrative_summary", sa.Text(), nullable=True),
        sa.Column("model", sa.String(length=40), nullable=False),
        sa.Column("provenance_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_insight_snapshots_tenant_period", "insight_snapshots", ["tenant_id", "period_end"], unique=False
    )

    op.create_table(
        "merchant_scores",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("merchant_id", sa.String(length=120), nullable=False),
        sa.Column("score_type", sa.String(length=40), nullable=False),
        sa.Column("score_value", sa.Float(), nullable=False),
        sa.Column("factors_json", sa.JSON(), nullable=True),
        sa.Column("as_of", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_merchant_scores_tenant_merchant", "merchant_scores", ["tenant_id", "merchant_id"], unique=False
    )

    op.create_table(
        "alert_channels",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("channel_type", sa.String(length=40), nullable=False),
        sa.Column("destination", sa.String(length=255), nullable=False),
        sa.Column("min_severity", sa.String(length=20), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alert_channels_tenant_enabled", "alert_channels", ["tenant_id", "enabled"], unique=False)

    op.create_table(
        "alert_dispatches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("risk_event_id", sa.String(length=36), nullable=False),
        sa.Column("channel_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_alert_dispatches_tenant_attempted", "alert_dispatches", ["tenant_id", "attempted_at"], unique=False
    )
    op.create_index("ix_alert_dispatches_risk_event_id", "alert_dispatches", ["risk_event_id"], unique=False)

    op.create_table(
        "scheduled_job_runs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("job_type", sa.String(length=60), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_time_ms", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("result_json", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_scheduled_job_runs_job_type_started", "scheduled_job_runs", ["job_type", "started_at"], unique=False
    )

    op.create_table(
        "pipeline_locks",
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("job_type", sa.String(length=60), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tenant_id"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("actor", sa.String(length=40), nullable=False),
        sa.Column("reason", sa.String(length=200), nullable=True),
        sa.Column("subject_id", sa.String(length=36), nullable=True),
        sa.Column("before_state", sa.JSON(), nullable=True),
        sa.Column("after_state", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)
    op.create_index("ix_audit_logs_subject_id", "audit_logs", ["subject_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_subject_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_tenant_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("pipeline_locks")
    op.drop_index("ix_scheduled_job_runs_job_type_started", table_name="scheduled_job_runs")
    op.drop_table("scheduled_job_runs")
    op.drop_index("ix_alert_dispatches_risk_event_id", table_name="alert_dispatches")
    op.drop_index("ix_alert_dispatches_tenant_attempted", table_name="alert_dispatches")
    op.drop_table("alert_dispatches")
    op.drop_index("ix_alert_channels_tenant_enabled", table_name="alert_channels")
    op.drop_table("alert_channels")
    op.drop_index("ix_merchant_scores_tenant_merchant", table_name="merchant_scores")
    op.drop_table("merchant_scores")
    op.drop_index("ix_insight_snapshots_tenant_period", table_name="insight_snapshots")
    op.drop_table("insight_snapshots")
    op.drop_index("ix_recommendation_feedback_recommendation_id", table_name="recommendation_feedback")
    op.drop_table("recommendation_feedback")
    op.drop_index("ix_recommendations_tenant_state", table_name="recommendations")
    op.drop_table("recommendations")
    op.drop_index("ix_risk_events_tenant_detected", table_name="risk_events")
    op.drop_index("ix_risk_events_tenant_workflow", table_name="risk_events")
    op.drop_table("risk_events")
    op.drop_index("ix_normalized_transactions_tenant_occurred", table_name="normalized_transactions")
    op.drop_table("normalized_transactions")
    op.drop_index("ix_ingestion_jobs_status_next_retry", table_name="ingestion_jobs")
    op.drop_index("ix_ingestion_jobs_tenant_status", table_name="ingestion_jobs")
    op.drop_table("ingestion_jobs")
    op.drop_index("ix_processor_connections_tenant_id", table_name="processor_connections")
    op.drop_table("processor_connections")

import inspect
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.routing import APIRoute
from sqlalchemy import select

from backend.paycore.main import create_app
from backend.paycore.models import IngestionJob, PipelineLock, ScheduledJobRun
from backend.paycore.services import connection_service, pipeline_service


def _post(client, headers, body):
    return client.post("/jobs/scheduled", content=body, headers={**headers, "Content-Type": "application/json"})


def test_invalid_json_body(api_client, service_headers):
    resp = _post(api_client, service_headers, b"{nope")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON body"}

    resp = _post(api_client, service_headers, b"[1, 2]")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON body"}


def test_unknown_job_type(api_client, service_headers):
    resp = _post(api_client, service_headers, b'{"job_type": "rollup_refresh"}')
    assert resp.status_code == 400
    assert resp.json() == {"error": "job_type must be one of daily_pipeline, anomaly_refresh, dead_letter_retry"}


def test_scheduled_requires_token(api_client):
    assert api_client.post("/jobs/scheduled", json={"job_type": "daily_pipeline"}).status_code == 401


def test_daily_pipeline_records_run(api_client, db_session, tenant_id, service_headers, seed_risky_day):
    three_hours_ago = datetime.now(timezone.utc) - timedelta(hours=3)
    seed_risky_day(tenant_id, three_hours_ago.replace(minute=0, second=0, microsecond=0))

    resp = api_client.post(
        "/jobs/scheduled",
        json={"job_type": "daily_pipeline", "tenant_id": tenant_id},
        headers=service_headers,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["job_type"] == "daily_pipeline"
    tenant_result = body["result"]["results"][tenant_id]
    assert tenant_result["status"] == "ok"
    assert tenant_result["result"]["anomaly"] == {"scanned_rows": 21, "created_events": 2}

    run = db_session.get(ScheduledJobRun, body["run_id"])
    assert run.status == "completed"
    assert run.tenant_id == tenant_id
    assert run.completed_at is not None
    assert run.execution_time_ms >= 0
    assert run.result_json == body["result"]


def test_without_tenant_runs_every_connected_tenant(api_client, db_session, service_headers):
    for tenant in ("tenant-b", "tenant-a"):
        connection_service.connect(db_session, tenant_id=tenant, provider="stripe")
    connection_service.connect(db_session, tenant_id="tenant-gone", provider="square")
    connection_service.disconnect(db_session, tenant_id="tenant-gone", provider="square")
    db_session.commit()

    body = api_client.post("/jobs/scheduled", json={"job_type": "anomaly_refresh"}, headers=service_headers).json()

    assert body["success"] is True
    assert body["result"]["tenants"] == 2
    assert sorted(body["result"]["results"]) == ["tenant-a", "tenant-b"]


def test_locked_tenant_is_skipped(api_client, db_session, tenant_id, service_headers):
    db_session.add(PipelineLock(tenant_id=tenant_id, job_type="daily_pipeline", acquired_at=datetime.now(timezone.utc)))
    db_session.commit()

    body = api_client.post(
        "/jobs/scheduled",
        json={"job_type": "anomaly_refresh", "tenant_id": tenant_id},
        headers=service_headers,
    ).json()

    assert body["success"] is True
    assert body["result"]["results"][tenant_id]["status"] == "skipped"


def _failed_stripe_sync(client, stripe_stub, db_session, tenant_id):
    client.post(
        "/connectors/stripe/connect",
        json={"tenant_id": tenant_id, "credentials_ref": "env:TENANT_STRIPE_KEY"},
    )
    stripe_stub.fail = True
    job_id = client.post("/connectors/stripe/sync", json={"tenant_id": tenant_id}).json()["job_id"]
    stripe_stub.fail = False

    job = db_session.get(IngestionJob, job_id)
    job.next_retry_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    db_session.commit()
    return job_id


def test_dead_letter_retry_reexecutes_sync(stripe_client, stripe_stub, db_session, tenant_id, service_headers):
    job_id = _failed_stripe_sync(stripe_client, stripe_stub, db_session, tenant_id)

    body = stripe_client.post(
        "/jobs/scheduled", json={"job_type": "dead_letter_retry"}, headers=service_headers
    ).json()

    assert body["success"] is True
    assert body["result"] == {"retried": 1, "considered": 1}
    db_session.expire_all()
    job = db_session.get(IngestionJob, job_id)
    assert job.status == "completed"
    assert job.retry_count == 1
    conn = connection_service.find_connection(db_session, tenant_id, "stripe")
    assert conn.status == "connected"
    assert conn.dead_letter_job_id is None


def test_dead_letter_retry_fails_when_connection_is_gone(stripe_client, stripe_stub, db_session, tenant_id,
                                                          service_headers):
    job_id = _failed_stripe_sync(stripe_client, stripe_stub, db_session, tenant_id)
    stripe_client.post("/connectors/stripe/disconnect", json={"tenant_id": tenant_id})

    body = stripe_client.post(
        "/jobs/dead-letter-retry", json={"tenant_id": tenant_id}, headers=service_headers
    ).json()

    assert body == {"retried": 1, "considered": 1}
    assert len(stripe_stub.requests) == 1
    db_session.expire_all()
    job = db_session.get(IngestionJob, job_id)
    assert job.status == "failed"
    assert job.retry_count == 1
    assert job.last_error == "connection unavailable for retry"


def test_dead_letter_retry_leaves_csv_jobs_failed(api_client, db_session, tenant_id, service_headers):
    job_id = api_client.post("/ingestion/csv/jobs", json={"tenant_id": tenant_id, "row_count": 0}).json()["job_id"]
    job = db_session.get(IngestionJob, job_id)
    job.next_retry_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    db_session.commit()

    for _ in range(2):
        body = api_client.post("/jobs/dead-letter-retry", json={}, headers=service_headers).json()
        assert body == {"retried": 0, "considered": 0}

    db_session.expire_all()
    job = db_session.get(IngestionJob, job_id)
    assert job.status == "failed"
    assert job.retry_count == 0


def test_run_failure_is_logged_and_500(api_client, db_session, service_headers, monkeypatch):
    def boom(db, **_kwargs):
        raise RuntimeError("provider outage")

    monkeypatch.setattr(pipeline_service, "run_dead_letter_retry", boom)

    resp = api_client.post("/jobs/scheduled", json={"job_type": "dead_letter_retry"}, headers=service_headers)

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "provider outage"
    (run,) = db_session.execute(select(ScheduledJobRun)).scalars().all()
    assert run.status == "failed"
    assert run.error_message == "provider outage"


def test_validate_payload_accepts_known_type():
    assert pipeline_service.validate_scheduled_job_payload({"job_type": "anomaly_refresh"}) == "anomaly_refresh"


@pytest.mark.parametrize("payload", [None, "daily_pipeline", {"job_type": 3}, {}])
def test_validate_payload_rejects(payload):
    with pytest.raises(ValueError):
        pipeline_service.validate_scheduled_job_payload(payload)


def test_body_reading_routes_run_in_the_threadpool():
    app = create_app(session_factory=lambda: None)
    endpoints = {
        route.path: route.endpoint
        for route in app.routes
        if isinstance(route, APIRoute) and route.path in ("/jobs/scheduled", "/webhooks/{provider}")
    }
    assert len(endpoints) == 2
    assert not any(inspect.iscoroutinefunction(fn) for fn in endpoints.values())

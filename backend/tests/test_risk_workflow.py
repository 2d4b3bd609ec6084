from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

from backend.paycore.models import RiskEvent
from backend.paycore.services import audit_service, risk_service


def _event(db_session, tenant_id, severity="high", workflow_state="new"):
    event = RiskEvent(
        tenant_id=tenant_id,
        event_type="risk.velocity_violation",
        severity=severity,
        score=9,
        reasons_json={"signal": "card_hour_velocity"},
        workflow_state=workflow_state,
        status="open",
    )
    db_session.add(event)
    db_session.commit()
    return event


def test_investigate_then_resolve(db_session, tenant_id):
    event = _event(db_session, tenant_id)

    risk_service.update_risk_event(db_session, event.id, workflow_state="investigating", owner="ana")
    assert event.workflow_state == "investigating"
    assert event.status == "open"
    assert event.owner == "ana"

    risk_service.update_risk_event(db_session, event.id, workflow_state="resolved")
    assert event.status == "resolved"


def test_terminal_states_cannot_reopen(db_session, tenant_id):
    event = _event(db_session, tenant_id, workflow_state="false_positive")
    with pytest.raises(HTTPException) as exc:
        risk_service.update_risk_event(db_session, event.id, workflow_state="investigating")
    assert exc.value.status_code == 409


def test_invalid_state_is_bad_request(db_session, tenant_id):
    event = _event(db_session, tenant_id)
    with pytest.raises(HTTPException) as exc:
        risk_service.update_risk_event(db_session, event.id, workflow_state="closed")
    assert exc.value.status_code == 400


def test_patch_endpoint_sets_sla_and_lists(api_client, db_session, tenant_id):
    event = _event(db_session, tenant_id)
    _event(db_session, tenant_id, severity="medium")

    resp = api_client.patch(
        f"/risk/events/{event.id}",
        json={
            "tenant_id": tenant_id,
            "workflow_state": "investigating",
            "owner": "ops-1",
            "sla_due_at": "2024-07-02T13:00:00Z",
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["workflow_state"] == "investigating"
    assert body["sla_due_at"].startswith("2024-07-02T13:00:00")

    listed = api_client.get("/risk/events", params={"tenant_id": tenant_id, "workflow_state": "investigating"})
    assert [e["id"] for e in listed.json()] == [event.id]

    missing = api_client.patch("/risk/events/nope", json={"tenant_id": tenant_id, "workflow_state": "resolved"})
    assert missing.status_code == 404


def test_patch_is_scoped_to_the_tenant(api_client, db_session, tenant_id):
    event = _event(db_session, tenant_id)

    other = api_client.patch(
        f"/risk/events/{event.id}", json={"tenant_id": "other-tenant", "workflow_state": "resolved"}
    )
    assert other.status_code == 404
    assert api_client.patch(f"/risk/events/{event.id}", json={"workflow_state": "resolved"}).status_code == 422

    db_session.expire_all()
    assert db_session.get(RiskEvent, event.id).workflow_state == "new"


def test_patch_rejects_oversized_audit_fields(api_client, db_session, tenant_id):
    event = _event(db_session, tenant_id)

    resp = api_client.patch(
        f"/risk/events/{event.id}",
        json={"tenant_id": tenant_id, "workflow_state": "investigating", "actor": "a" * 41},
    )
    assert resp.status_code == 422


def test_audit_rows_truncate_long_values(db_session, tenant_id):
    event = _event(db_session, tenant_id)

    risk_service.update_risk_event(
        db_session, event.id, workflow_state="investigating", actor="x" * 60, reason="r" * 300
    )
    db_session.commit()

    (row,) = audit_service.list_audit_events(db_session, tenant_id, subject_id=event.id)
    assert len(row.actor) == 40
    assert len(row.reason) == 200


def test_open_events_exclude_resolved(db_session, tenant_id):
    open_event = _event(db_session, tenant_id)
    _event(db_session, tenant_id, workflow_state="resolved")
    assert [e.id for e in risk_service.open_risk_events(db_session, tenant_id)] == [open_event.id]


def test_resolve_window_rejects_inverted_bounds():
    with pytest.raises(HTTPException):
        risk_service.resolve_window(
            datetime(2024, 1, 2, tzinfo=timezone.utc),
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

from backend.paycore.services import audit_service, connection_service


def test_audit_route_lists_only_the_tenant_events(api_client, db_session, tenant_id):
    connection_service.connect(db_session, tenant_id=tenant_id, provider="stripe", actor="ops")
    connection_service.disconnect(db_session, tenant_id=tenant_id, provider="stripe", actor="ops")
    connection_service.connect(db_session, tenant_id="other-tenant", provider="square")
    db_session.commit()

    resp = api_client.get(f"/audit/{tenant_id}")

    assert resp.status_code == 200
    items = resp.json()
    by_type = {i["event_type"]: i for i in items}
    assert sorted(by_type) == ["processor_connected", "processor_disconnected"]
    assert {i["tenant_id"] for i in items} == {tenant_id}
    assert by_type["processor_disconnected"]["actor"] == "ops"
    assert by_type["processor_disconnected"]["after_state"]["is_active"] is False


def test_audit_route_filters(api_client, db_session, tenant_id):
    for subject in ("job-1", "job-2"):
        audit_service.log_audit_event(
            db_session, tenant_id=tenant_id, event_type="ingestion_job_retried", actor="system", subject_id=subject
        )
    audit_service.log_audit_event(db_session, tenant_id=tenant_id, event_type="risk_event_updated", actor="analyst")
    db_session.commit()

    by_subject = api_client.get(f"/audit/{tenant_id}", params={"subject_id": "job-2"}).json()
    assert [i["subject_id"] for i in by_subject] == ["job-2"]

    by_type = api_client.get(f"/audit/{tenant_id}", params={"event_type": "risk_event_updated"}).json()
    assert len(by_type) == 1

    assert len(api_client.get(f"/audit/{tenant_id}", params={"limit": 2}).json()) == 2
    assert api_client.get(f"/audit/{tenant_id}", params={"limit": 0}).status_code == 422

from sqlalchemy import select

from backend.paycore.models import AlertDispatch, RiskEvent
from backend.paycore.services import alert_service


def _events(db_session, tenant_id, *severities):
    for severity in severities:
        db_session.add(
            RiskEvent(
                tenant_id=tenant_id,
                event_type="risk.velocity_violation",
                severity=severity,
                score=1.0,
                reasons_json={"signal": "card_hour_velocity"},
                status="open",
            )
        )
    db_session.commit()


def test_severity_threshold_ordering():
    assert alert_service.severity_meets_threshold("critical", "high")
    assert alert_service.severity_meets_threshold("high", "high")
    assert not alert_service.severity_meets_threshold("medium", "high")
    assert alert_service.severity_meets_threshold("bogus", "low")
    assert not alert_service.severity_meets_threshold("bogus", "medium")


def test_high_channel_gets_only_high_and_critical(db_session, tenant_id):
    channel = alert_service.create_channel(
        db_session,
        tenant_id=tenant_id,
        channel_type="slack",
        destination="#fraud-ops",
        min_severity="high",
    )
    _events(db_session, tenant_id, "low", "medium", "high", "critical")

    out = alert_service.dispatch_alerts(db_session, tenant_id)
    db_session.commit()

    assert out == {"dispatches": 2}
    rows = db_session.execute(select(AlertDispatch)).scalars().all()
    assert {r.payload_json["severity"] for r in rows} == {"high", "critical"}
    assert {r.channel_id for r in rows} == {channel.id}
    assert all(r.status == "queued" for r in rows)
    assert all(r.payload_json["destination"] == "#fraud-ops" for r in rows)


def test_disabled_channels_and_closed_events_are_skipped(db_session, tenant_id):
    alert_service.create_channel(
        db_session, tenant_id=tenant_id, channel_type="email", destination="ops@example.com",
        min_severity="low", enabled=False,
    )
    low = alert_service.create_channel(
        db_session, tenant_id=tenant_id, channel_type="webhook", destination="https://hooks.example.com/x",
        min_severity="low",
    )
    db_session.add(
        RiskEvent(tenant_id=tenant_id, event_type="risk.geographic_anomaly", severity="medium",
                  status="resolved", workflow_state="resolved")
    )
    _events(db_session, tenant_id, "medium")

    assert alert_service.dispatch_alerts(db_session, tenant_id) == {"dispatches": 1}
    (row,) = db_session.execute(select(AlertDispatch)).scalars().all()
    assert row.channel_id == low.id


def test_rerun_dispatches_again(db_session, tenant_id):
    alert_service.create_channel(
        db_session, tenant_id=tenant_id, channel_type="slack", destination="#a", min_severity="medium"
    )
    _events(db_session, tenant_id, "high")
    alert_service.dispatch_alerts(db_session, tenant_id)
    alert_service.dispatch_alerts(db_session, tenant_id)
    assert len(db_session.execute(select(AlertDispatch)).scalars().all()) == 2


def test_channel_api_validation_and_listing(api_client, tenant_id):
    bad = api_client.post(
        "/alerts/channels",
        json={"tenant_id": tenant_id, "channel_type": "slack", "destination": "#x", "min_severity": "urgent"},
    )
    assert bad.status_code == 400

    blank = api_client.post(
        "/alerts/channels",
        json={"tenant_id": tenant_id, "channel_type": "slack", "destination": "   "},
    )
    assert blank.status_code == 400

    ok = api_client.post(
        "/alerts/channels",
        json={"tenant_id": tenant_id, "channel_type": "slack", "destination": "#fraud"},
    )
    assert ok.status_code == 200
    assert ok.json()["min_severity"] == "high"

    listed = api_client.get("/alerts/channels", params={"tenant_id": tenant_id})
    assert [c["destination"] for c in listed.json()] == ["#fraud"]
    assert api_client.get("/alerts/dispatches", params={"tenant_id": tenant_id}).json() == []

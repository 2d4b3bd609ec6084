import pathlib
import sys

import pytest


REPO_ROOT = pathlib.Path(__file__).resolve().parents[2]
sys.path.append(str(REPO_ROOT))

INTERNAL_TOKEN = "test-internal-token"


@pytest.fixture()
def session_factory(tmp_path):
    from backend.paycore import models  # noqa: F401  registers tables on Base
    from backend.paycore.db import Base, build_engine, build_session_factory

    engine = build_engine(f"sqlite:///{tmp_path / 'paycore.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield build_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def tenant_id():
    return "tenant-0001"


@pytest.fixture()
def client_factory(session_factory, db_session, monkeypatch):
    from backend.paycore.db import get_db
    from backend.paycore.main import create_app
    from fastapi.testclient import TestClient

    monkeypatch.setenv("INTERNAL_JOB_TOKEN", INTERNAL_TOKEN)

    def _get_test_db():
        yield db_session

    def _build(transport=None):
        app = create_app(session_factory=session_factory, http_transport=transport)
        app.dependency_overrides[get_db] = _get_test_db
        return TestClient(app)

    return _build


@pytest.fixture()
def api_client(client_factory):
    return client_factory()


@pytest.fixture()
def service_headers():
    return {"x-internal-token": INTERNAL_TOKEN}


def stripe_charge(charge_id, status="succeeded"):
    return {
        "id": charge_id,
        "object": "charge",
        "amount": 2500,
        "currency": "usd",
        "status": status,
        "created": 1717200000,
        "metadata": {"merchant_id": "m-1"},
        "payment_method_details": {"type": "card", "card": {"fingerprint": "fp_1", "country": "US"}},
    }


class StripeStub:
    """Stand-in for the Stripe charges API; flip ``fail`` to return 500s."""

    def __init__(self):
        self.fail = False
        self.requests = []

    def __call__(self, request):
        import httpx

        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, json={"error": {"message": "boom"}})
        return httpx.Response(
            200,
            json={"data": [stripe_charge("ch_1"), stripe_charge("ch_2", status="failed")], "has_more": True},
        )


@pytest.fixture()
def stripe_stub():
    return StripeStub()


@pytest.fixture()
def stripe_client(client_factory, stripe_stub, monkeypatch):
    import httpx

    monkeypatch.setenv("TENANT_STRIPE_KEY", "sk_test_123")
    return client_factory(httpx.MockTransport(stripe_stub))


@pytest.fixture()
def seed_risky_day(db_session):
    """
    One merchant with 5/12 declines plus one card used 9 times inside an
    hour, and a slack channel at min_severity=high.
    """
    from datetime import timedelta
    from decimal import Decimal

    from backend.paycore.norma.normalize import TransactionDraft
    from backend.paycore.services import alert_service
    from backend.paycore.services.transaction_service import upsert_transactions

    def _draft(txn_id, *, merchant, approved=True, card=None, at):
        return TransactionDraft(
            source_provider="csv",
            source_txn_id=txn_id,
            amount=Decimal("40.00"),
            currency="USD",
            approved=approved,
            occurred_at=at,
            merchant_id=merchant,
            card_fingerprint_token=card,
        )

    def _seed(tenant_id, base):
        drafts = [
            _draft(f"dec-{i}", merchant="m-declines", approved=i >= 5, at=base + timedelta(minutes=i))
            for i in range(12)
        ]
        drafts += [
            _draft(f"vel-{i}", merchant="m-velocity", card="tok_fast", at=base + timedelta(minutes=5 * i))
            for i in range(9)
        ]
        upsert_transactions(db_session, tenant_id, drafts)
        alert_service.create_channel(
            db_session, tenant_id=tenant_id, channel_type="slack", destination="#risk", min_severity="high"
        )
        db_session.commit()

    return _seed

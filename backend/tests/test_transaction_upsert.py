from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select

from backend.paycore.integrations.stripe import map_charge
from backend.paycore.models import NormalizedTransaction
from backend.paycore.norma.normalize import TransactionDraft
from backend.paycore.services.transaction_service import list_window, upsert_transactions


CHARGE = {
    "id": "ch_dup",
    "object": "charge",
    "amount": 4200,
    "currency": "eur",
    "status": "succeeded",
    "created": 1717200000,
    "metadata": {"merchant_id": "m-9"},
    "payment_method_details": {"type": "card", "card": {"fingerprint": "fp_dup", "country": "DE"}},
}


def _rows(db_session, tenant_id):
    return db_session.execute(
        select(NormalizedTransaction).where(NormalizedTransaction.tenant_id == tenant_id)
    ).scalars().all()


def test_same_payload_twice_yields_one_identical_row(db_session, tenant_id):
    first = upsert_transactions(db_session, tenant_id, [map_charge(CHARGE)])
    db_session.commit()
    snapshot = {c: getattr(_rows(db_session, tenant_id)[0], c) for c in ("amount", "currency", "approved", "country")}

    second = upsert_transactions(db_session, tenant_id, [map_charge(CHARGE)])
    db_session.commit()

    rows = _rows(db_session, tenant_id)
    assert (first.inserted, first.updated) == (1, 0)
    assert (second.inserted, second.updated) == (0, 1)
    assert len(rows) == 1
    assert {c: getattr(rows[0], c) for c in snapshot} == snapshot
    assert rows[0].amount == Decimal("42.00")


def test_conflicting_row_is_fully_overwritten(db_session, tenant_id):
    upsert_transactions(db_session, tenant_id, [map_charge(CHARGE)])
    db_session.commit()

    refunded = dict(CHARGE, status="failed", failure_code="expired_card", metadata={})
    upsert_transactions(db_session, tenant_id, [map_charge(refunded)])
    db_session.commit()

    row = _rows(db_session, tenant_id)[0]
    assert row.approved is False
    assert row.decline_code == "expired_card"
    # last write wins, so a field missing from the newer payload is cleared
    assert row.merchant_id is None


def test_same_txn_id_is_scoped_by_tenant_and_provider(db_session, tenant_id):
    draft = map_charge(CHARGE)
    upsert_transactions(db_session, tenant_id, [draft])
    upsert_transactions(db_session, "tenant-other", [draft])
    csv_draft = TransactionDraft(
        source_provider="csv",
        source_txn_id="ch_dup",
        amount=Decimal("1.00"),
        currency="USD",
        approved=True,
        occurred_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )
    upsert_transactions(db_session, tenant_id, [csv_draft])
    db_session.commit()

    assert len(_rows(db_session, tenant_id)) == 2
    assert len(_rows(db_session, "tenant-other")) == 1


def test_list_window_is_bounded_and_newest_first(db_session, tenant_id):
    drafts = [
        TransactionDraft(
            source_provider="csv",
            source_txn_id=f"w-{day}",
            amount=Decimal("10.00"),
            currency="USD",
            approved=True,
            occurred_at=datetime(2024, 5, day, 12, tzinfo=timezone.utc),
        )
        for day in (1, 2, 3, 4)
    ]
    upsert_transactions(db_session, tenant_id, drafts)
    db_session.commit()

    rows = list_window(
        db_session,
        tenant_id,
        datetime(2024, 5, 2, tzinfo=timezone.utc),
        datetime(2024, 5, 3, 23, tzinfo=timezone.utc),
    )
    assert [r.source_txn_id for r in rows] == ["w-3", "w-2"]

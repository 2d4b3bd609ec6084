from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.paycore.models import NormalizedTransaction
from backend.paycore.norma.normalize import TransactionDraft, to_utc


@dataclass(frozen=True)
class UpsertResult:
    inserted: int
    updated: int

    @property
    def total(self) -> int:
        return self.inserted + self.updated


def _find_existing(db: Session, tenant_id: str, draft: TransactionDraft) -> Optional[NormalizedTransaction]:
    return db.execute(
        select(NormalizedTransaction).where(
            NormalizedTransaction.tenant_id == tenant_id,
            NormalizedTransaction.source_provider == draft.source_provider,
            NormalizedTransaction.source_txn_id == draft.source_txn_id,
        )
    ).scalar_one_or_none()


def _row_values(draft: TransactionDraft) -> dict:
    values = draft.as_row()
    values["occurred_at"] = to_utc(draft.occurred_at)
    values["settled_at"] = to_utc(draft.settled_at)
    return values


def _overwrite(row: NormalizedTransaction, values: dict) -> None:
    # last write wins: every column is replaced, including ones that became null
    for key, value in values.items():
        setattr(row, key, value)


def upsert_transactions(
    db: Session,
    tenant_id: str,
    drafts: Sequence[TransactionDraft],
) -> UpsertResult:
    """
    Insert or fully overwrite canonical rows keyed by (tenant, provider, source txn id).

    Safe under re-delivery: the same draft applied twice leaves one row with
    identical values. The caller owns the commit.
    """
    inserted = 0
    updated = 0
    for draft in drafts:
        values = _row_values(draft)
        existing = _find_existing(db, tenant_id, draft)
        if existing is not None:
            _overwrite(existing, values)
            db.flush()
            updated += 1
            continue
        try:
            with db.begin_nested():
                db.add(NormalizedTransaction(tenant_id=tenant_id, **values))
                db.flush()
            inserted += 1
        except IntegrityError:
            # a concurrent writer inserted the same key first
            existing = _find_existing(db, tenant_id, draft)
            if existing is None:
                raise
            _overwrite(existing, values)
            db.flush()
            updated += 1
    return UpsertResult(inserted=inserted, updated=updated)


def list_window(
    db: Session,
    tenant_id: str,
    start: datetime,
    end: datetime,
    *,
    limit: Optional[int] = None,
) -> List[NormalizedTransaction]:
    query = (
        select(NormalizedTransaction)
        .where(
            NormalizedTransaction.tenant_id == tenant_id,
            NormalizedTransaction.occurred_at >= start,
            NormalizedTransaction.occurred_at <= end,
        )
        .order_by(NormalizedTransaction.occurred_at.desc(), NormalizedTransaction.id.asc())
    )
    if limit:
        query = query.limit(limit)
    return list(db.execute(query).scalars().all())

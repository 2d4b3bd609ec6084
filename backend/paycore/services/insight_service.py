from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy.orm import Session

from backend.paycore.analytics.core import COMPUTATION_VERSION, summarize_transactions
from backend.paycore.models import InsightSnapshot, MerchantScore
from backend.paycore.norma.normalize import to_utc
from backend.paycore.services.transaction_service import list_window


logger = logging.getLogger(__name__)

SNAPSHOT_METRICS = ("volume", "revenue", "tx_count", "approval_rate", "avg_ticket", "declines")


def _iso(value: datetime) -> str:
    return to_utc(value).isoformat()


def narrative_summary(start: datetime, end: datetime, tx_count: int, volume: float, approval_rate: float) -> str:
    return (
        f"From {_iso(start)} to {_iso(end)}: {tx_count} txns, "
        f"volume {volume:.2f}, approval rate {approval_rate:.2f}%."
    )


def materialize_snapshots(db: Session, tenant_id: str, start: datetime, end: datetime) -> Dict[str, int]:
    rows = list_window(db, tenant_id, start, end)
    summary = summarize_transactions(rows).as_dict()
    text = narrative_summary(start, end, summary["tx_count"], summary["volume"], summary["approval_rate"])
    provenance = {
        "source_tables": ["normalized_transactions"],
        "method": "deterministic_rollup",
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
    for metric_key in SNAPSHOT_METRICS:
        db.add(
            InsightSnapshot(
                tenant_id=tenant_id,
                period_start=to_utc(start),
                period_end=to_utc(end),
                metric_key=metric_key,
                metric_value=float(summary[metric_key]),
                narrative_summary=text,
                model=COMPUTATION_VERSION,
                provenance_json=provenance,
            )
        )
    db.flush()
    return {"snapshot_rows": len(SNAPSHOT_METRICS)}


def update_merchant_scores(db: Session, tenant_id: str, start: datetime, end: datetime) -> Dict[str, int]:
    """approval_health per merchant: approved / total * 100, three decimals."""
    tallies: Dict[str, Dict[str, int]] = {}
    for row in list_window(db, tenant_id, start, end):
        if not row.merchant_id:
            continue
        entry = tallies.setdefault(row.merchant_id, {"total": 0, "approved": 0})
        entry["total"] += 1
        if row.approved:
            entry["approved"] += 1

    window = {"from": _iso(start), "to": _iso(end)}
    for merchant_id, entry in tallies.items():
        score = round(entry["approved"] / entry["total"] * 100, 3) if entry["total"] else 0.0
        db.add(
            MerchantScore(
                tenant_id=tenant_id,
                merchant_id=merchant_id,
                score_type="approval_health",
                score_value=score,
                factors_json={"approved": entry["approved"], "total": entry["total"], "window": window},
                as_of=to_utc(end),
            )
        )
    db.flush()
    logger.info("Merchant scores tenant=%s merchants=%s", tenant_id, len(tallies))
    return {"merchant_scores": len(tallies)}

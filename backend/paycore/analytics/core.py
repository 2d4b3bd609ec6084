from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Literal

from backend.paycore.norma.normalize import to_utc

COMPUTATION_VERSION = "deterministic-v1"
Granularity = Literal["day", "week", "month"]
GRANULARITIES = ("day", "week", "month")


@dataclass(frozen=True)
class MetricsSummary:
    volume: float
    revenue: float
    tx_count: int
    approval_rate: float
    avg_ticket: float
    declines: int
    credit_card_volume: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _amount(row: Any) -> float:
    return float(row.amount or 0)


def _is_card(row: Any) -> bool:
    method = (getattr(row, "payment_method", None) or "").lower()
    return not method or "card" in method


def summarize_transactions(rows: Iterable[Any]) -> MetricsSummary:
    """
    revenue counts approved amounts only; avg_ticket divides revenue by all
    transactions, declined ones included.
    """
    rows = list(rows)
    tx_count = len(rows)
    revenue = sum(_amount(r) for r in rows if r.approved)
    declines = sum(1 for r in rows if not r.approved)
    volume = sum(_amount(r) for r in rows)
    approval_rate = ((tx_count - declines) / tx_count) * 100 if tx_count else 0.0
    avg_ticket = revenue / tx_count if tx_count else 0.0
    card_volume = sum(_amount(r) for r in rows if _is_card(r))
    return MetricsSummary(
        volume=volume,
        revenue=revenue,
        tx_count=tx_count,
        approval_rate=approval_rate,
        avg_ticket=avg_ticket,
        declines=declines,
        credit_card_volume=card_volume,
    )


def _period_key(occurred_at: datetime, granularity: Granularity) -> str:
    ts = to_utc(occurred_at)
    if granularity == "week":
        iso_year, iso_week, _ = ts.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == "month":
        return ts.strftime("%Y-%m")
    return ts.strftime("%Y-%m-%d")


def bucket_by_granularity(rows: Iterable[Any], granularity: Granularity = "day") -> List[Dict[str, Any]]:
    if granularity not in GRANULARITIES:
        raise ValueError(f"granularity must be one of {', '.join(GRANULARITIES)}")

    buckets: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        if row.occurred_at is None:
            continue
        key = _period_key(row.occurred_at, granularity)
        entry = buckets.setdefault(key, {"txns": 0, "revenue": 0.0})
        entry["txns"] += 1
        if row.approved:
            entry["revenue"] += _amount(row)

    return [
        {"id": f"{period}-{idx}", "period": period, **buckets[period]}
        for idx, period in enumerate(sorted(buckets))
    ]

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from backend.paycore.norma.normalize import to_utc


DECLINE_RATE_EVENT = "risk.anomaly_detected"
VELOCITY_EVENT = "risk.velocity_violation"
GEO_EVENT = "risk.geographic_anomaly"

DECLINE_RATE_THRESHOLD = 0.35
DECLINE_RATE_CRITICAL = 0.5
DECLINE_MIN_TXNS = 10

VELOCITY_THRESHOLD = 8
VELOCITY_CRITICAL = 15

GEO_MIN_COUNTRIES = 3

UNKNOWN_MERCHANT = "unknown"


class ScannedTransaction(Protocol):
    merchant_id: Optional[str]
    card_fingerprint_token: Optional[str]
    country: Optional[str]
    approved: bool
    occurred_at: Any


@dataclass(frozen=True)
class DetectedRiskEvent:
    event_type: str
    severity: str
    score: float
    reasons: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _MerchantStats:
    total: int = 0
    declines: int = 0


def hour_bucket(card_token: str, occurred_at) -> str:
    return f"{card_token}:{to_utc(occurred_at).strftime('%Y-%m-%dT%H')}"


def detect_risk_events(rows: Iterable[ScannedTransaction]) -> List[DetectedRiskEvent]:
    """
    Single pass over a window of normalized transactions.

    Rules:
      decline rate   per merchant, declines/total >= 0.35 with at least 10 txns;
                     critical above 0.5, else high; score = rate * 100
      velocity       per (card token, UTC hour), count >= 8;
                     critical at 15 or more, else high; score = count
      geography      per card token, 3+ distinct countries; medium;
                     score = distinct country count

    Rows without a card token only count toward the merchant rule.
    """
    by_merchant: Dict[str, _MerchantStats] = {}
    by_card_country: Dict[str, Set[str]] = {}
    by_card_hour: Dict[str, int] = {}

    for row in rows:
        merchant_key = row.merchant_id or UNKNOWN_MERCHANT
        stats = by_merchant.setdefault(merchant_key, _MerchantStats())
        stats.total += 1
        if not row.approved:
            stats.declines += 1

        card_token = row.card_fingerprint_token or ""
        if card_token:
            countries = by_card_country.setdefault(card_token, set())
            if row.country:
                countries.add(row.country)
            bucket = hour_bucket(card_token, row.occurred_at)
            by_card_hour[bucket] = by_card_hour.get(bucket, 0) + 1

    events: List[DetectedRiskEvent] = []

    for merchant_id, stats in by_merchant.items():
        rate = stats.declines / stats.total if stats.total else 0.0
        if rate >= DECLINE_RATE_THRESHOLD and stats.total >= DECLINE_MIN_TXNS:
            events.append(
                DetectedRiskEvent(
                    event_type=DECLINE_RATE_EVENT,
                    severity="critical" if rate > DECLINE_RATE_CRITICAL else "high",
                    score=round(rate * 100, 2),
                    reasons={
                        "merchant_id": None if merchant_id == UNKNOWN_MERCHANT else merchant_id,
                        "signal": "decline_rate",
                        "decline_rate": rate,
                        "txn_count": stats.total,
                    },
                )
            )

    for bucket, count in by_card_hour.items():
        if count >= VELOCITY_THRESHOLD:
            events.append(
                DetectedRiskEvent(
                    event_type=VELOCITY_EVENT,
                    severity="critical" if count >= VELOCITY_CRITICAL else "high",
                    score=float(count),
                    reasons={"bucket": bucket, "signal": "card_hour_velocity", "tx_count": count},
                )
            )

    for card_token, countries in by_card_country.items():
        if len(countries) >= GEO_MIN_COUNTRIES:
            events.append(
                DetectedRiskEvent(
                    event_type=GEO_EVENT,
                    severity="medium",
                    score=float(len(countries)),
                    reasons={
                        "signal": "multi_country_card_usage",
                        "card_token": card_token,
                        "countries": sorted(countries),
                    },
                )
            )

    return events

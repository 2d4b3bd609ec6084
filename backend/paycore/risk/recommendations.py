from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from backend.paycore.risk.detectors import GEO_EVENT, VELOCITY_EVENT


HIGH_SEVERITIES = ("high", "critical")
ANALYST_QUEUE_THRESHOLD = 5
RULES_MODEL = "rules-v1"


@dataclass(frozen=True)
class RecommendationDraft:
    category: str
    priority: str
    recommendation_text: str
    confidence: float
    expected_impact: Dict[str, Any] = field(default_factory=dict)


def build_recommendations(events: Iterable[Any]) -> List[RecommendationDraft]:
    """Deterministic follow-ups from the currently open risk events."""
    events = list(events)
    velocity_count = sum(1 for e in events if e.event_type == VELOCITY_EVENT)
    geo_count = sum(1 for e in events if e.event_type == GEO_EVENT)
    high_count = sum(1 for e in events if e.severity in HIGH_SEVERITIES)

    drafts: List[RecommendationDraft] = []
    if velocity_count > 0:
        drafts.append(
            RecommendationDraft(
                category="risk-controls",
                priority="high",
                recommendation_text=(
                    "Increase card velocity controls for high-risk MCCs and add temporary "
                    "declines after threshold breaches."
                ),
                confidence=0.83,
                expected_impact={
                    "metric": "fraud_loss_reduction",
                    "basis": "velocity_violations",
                    "count": velocity_count,
                },
            )
        )
    if geo_count > 0:
        drafts.append(
            RecommendationDraft(
                category="fraud-ops",
                priority="medium",
                recommendation_text="Require step-up verification for cards with same-day activity across 3+ countries.",
                confidence=0.74,
                expected_impact={"metric": "false_positive_control", "basis": "geo_anomaly", "count": geo_count},
            )
        )
    if high_count > ANALYST_QUEUE_THRESHOLD:
        drafts.append(
            RecommendationDraft(
                category="operations",
                priority="high",
                recommendation_text="Temporarily route high-severity alerts to a dedicated analyst queue with 4-hour SLA.",
                confidence=0.7,
                expected_impact={"metric": "resolution_time", "basis": "open_high_events", "count": high_count},
            )
        )
    return drafts

from __future__ import annotations

from typing import Dict, FrozenSet


RISK_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "new": frozenset({"investigating", "resolved", "false_positive"}),
    "investigating": frozenset({"new", "resolved", "false_positive"}),
    "resolved": frozenset(),
    "false_positive": frozenset(),
}

TERMINAL_RISK_STATES = frozenset({"resolved", "false_positive"})

RECOMMENDATION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "open": frozenset({"accepted", "rejected", "deferred"}),
    "deferred": frozenset({"open", "accepted", "rejected"}),
    "accepted": frozenset(),
    "rejected": frozenset(),
}


def can_transition(transitions: Dict[str, FrozenSet[str]], current: str, target: str) -> bool:
    if current == target:
        return True
    return target in transitions.get(current, frozenset())


def risk_status_for(workflow_state: str) -> str:
    return "resolved" if workflow_state in TERMINAL_RISK_STATES else "open"

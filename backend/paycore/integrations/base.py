from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Protocol, Sequence

from backend.paycore.norma.normalize import TransactionDraft


ProviderName = str


class ProviderError(RuntimeError):
    """Upstream provider call failed (transport error, non-2xx, or API-level error)."""

    def __init__(self, provider: ProviderName, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


@dataclass(frozen=True)
class PullResult:
    transactions: Sequence[TransactionDraft]
    cursor: Optional[str]


@dataclass(frozen=True)
class WebhookVerificationResult:
    ok: bool
    reason: str


class ProviderAdapter(Protocol):
    provider: ProviderName

    def verify_webhook(
        self,
        headers: Mapping[str, str],
        body: bytes,
        secret: str,
        *,
        request_url: str = "",
    ) -> WebhookVerificationResult:
        ...

    def pull_transactions(
        self,
        *,
        cursor: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> PullResult:
        ...

    def map_webhook_event(self, payload: dict) -> list[TransactionDraft]:
        ...

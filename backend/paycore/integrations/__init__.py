from __future__ import annotations

from typing import Callable, Optional

import httpx

from backend.paycore.integrations.authorizenet import AuthorizeNetAdapter
from backend.paycore.integrations.base import (
    ProviderAdapter,
    ProviderError,
    ProviderName,
    PullResult,
    WebhookVerificationResult,
)
from backend.paycore.integrations.square import SquareAdapter
from backend.paycore.integrations.stripe import StripeAdapter


def _stripe(credentials: Optional[str], transport: Optional[httpx.BaseTransport]) -> ProviderAdapter:
    return StripeAdapter(api_key=credentials, transport=transport)


def _square(credentials: Optional[str], transport: Optional[httpx.BaseTransport]) -> ProviderAdapter:
    return SquareAdapter(access_token=credentials, transport=transport)


def _authorizenet(credentials: Optional[str], transport: Optional[httpx.BaseTransport]) -> ProviderAdapter:
    return AuthorizeNetAdapter(credentials=credentials, transport=transport)


ADAPTER_FACTORIES: dict[str, Callable[[Optional[str], Optional[httpx.BaseTransport]], ProviderAdapter]] = {
    "stripe": _stripe,
    "square": _square,
    "authorizenet": _authorizenet,
}


def normalize_provider(provider: ProviderName) -> str:
    key = (provider or "").strip().lower().replace("_", "").replace("-", "").replace(".", "")
    if key not in ADAPTER_FACTORIES:
        raise ValueError(f"unsupported provider: {provider}")
    return key


def get_adapter(
    provider: ProviderName,
    *,
    credentials: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> ProviderAdapter:
    """Build a fresh adapter per call; adapters hold no state shared across tenants."""
    return ADAPTER_FACTORIES[normalize_provider(provider)](credentials, transport)


__all__ = [
    "ADAPTER_FACTORIES",
    "ProviderAdapter",
    "ProviderError",
    "ProviderName",
    "PullResult",
    "WebhookVerificationResult",
    "get_adapter",
    "normalize_provider",
]

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


def log_level() -> str:
    return (os.getenv("LOG_LEVEL") or "INFO").strip().upper()


def internal_job_token() -> str:
    return os.getenv("INTERNAL_JOB_TOKEN") or ""


def provider_http_timeout() -> float:
    return _float_env("PROVIDER_HTTP_TIMEOUT_SECONDS", 20.0)


def stripe_api_base_url() -> str:
    return os.getenv("STRIPE_API_BASE_URL") or "https://api.stripe.com"


def square_api_base_url() -> str:
    return os.getenv("SQUARE_API_BASE_URL") or "https://connect.squareup.com"


def square_api_version() -> str:
    return os.getenv("SQUARE_API_VERSION") or "2024-01-18"


def authorizenet_api_url() -> str:
    return os.getenv("AUTHORIZENET_API_URL") or "https://api.authorize.net/xml/v1/request.api"


def authorizenet_max_batches() -> int:
    return _int_env("AUTHORIZENET_MAX_BATCHES", 10)


def stripe_signature_tolerance_seconds() -> int:
    return _int_env("STRIPE_SIGNATURE_TOLERANCE_SECONDS", 300)


def square_webhook_url() -> Optional[str]:
    return os.getenv("SQUARE_WEBHOOK_URL") or None


DEFAULT_WEBHOOK_SECRET_ENV = {
    "stripe": "STRIPE_WEBHOOK_SECRET",
    "square": "SQUARE_WEBHOOK_SIGNATURE_KEY",
    "authorizenet": "AUTHORIZENET_SIGNATURE_KEY",
}


def default_webhook_secret(provider: str) -> Optional[str]:
    name = DEFAULT_WEBHOOK_SECRET_ENV.get(provider)
    if not name:
        return None
    return os.getenv(name) or None


def ingestion_max_retries() -> int:
    return _int_env("INGESTION_MAX_RETRIES", 3)


def retry_backoff_seconds() -> int:
    return _int_env("INGESTION_RETRY_BACKOFF_SECONDS", 300)


def risk_window_hours() -> int:
    return _int_env("RISK_WINDOW_HOURS", 24)


def anomaly_refresh_window_hours() -> int:
    return _int_env("ANOMALY_REFRESH_WINDOW_HOURS", 4)


def resolve_secret(ref: Optional[str]) -> Optional[str]:
    """Resolve a secret reference (``env:NAME`` or bare ``NAME``) to its value.

    References are pointers, never the secret itself; anything that does not
    resolve yields None.
    """
    if not ref:
        return None
    name = ref.strip()
    if name.startswith("env:"):
        name = name[len("env:"):].strip()
    if not name:
        return None
    return os.getenv(name) or None

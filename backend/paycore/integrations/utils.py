from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from backend.paycore.config import provider_http_timeout
from backend.paycore.integrations.base import ProviderError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_http_client(
    base_url: str = "",
    *,
    headers: Optional[dict] = None,
    auth: Optional[Any] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    return httpx.Client(
        base_url=base_url,
        headers=headers,
        auth=auth,
        timeout=provider_http_timeout(),
        transport=transport,
    )


def request_json(
    client: httpx.Client,
    provider: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> dict:
    try:
        response = client.request(method, url, **kwargs)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise ProviderError(provider, f"HTTP {exc.response.status_code} from {exc.request.url.path}") from exc
    except httpx.HTTPError as exc:
        raise ProviderError(provider, f"request failed: {exc.__class__.__name__}") from exc

    # Authorize.net prefixes its JSON responses with a UTF-8 BOM.
    text = response.content.decode("utf-8-sig")
    try:
        data = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError as exc:
        raise ProviderError(provider, "invalid JSON response") from exc
    if not isinstance(data, dict):
        raise ProviderError(provider, "unexpected response shape")
    return data


def parse_body(body: bytes) -> dict:
    if not body:
        return {}
    payload = json.loads(body.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("webhook body must be a JSON object")
    return payload


def unix_seconds(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

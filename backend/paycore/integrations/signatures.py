from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import time
from typing import Mapping, Optional

from backend.paycore.config import stripe_signature_tolerance_seconds
from backend.paycore.integrations.base import WebhookVerificationResult


logger = logging.getLogger(__name__)

STRIPE_SIGNATURE_HEADER = "stripe-signature"
SQUARE_SIGNATURE_HEADER = "x-square-hmacsha256-signature"
AUTHORIZENET_SIGNATURE_HEADER = "x-anet-signature"

_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{2})+$")
_ANET_PREFIX_RE = re.compile(r"^sha512=", re.IGNORECASE)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _fail(reason: str) -> WebhookVerificationResult:
    return WebhookVerificationResult(ok=False, reason=reason)


def verify_stripe_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: str,
    *,
    now: Optional[float] = None,
    tolerance_seconds: Optional[int] = None,
) -> WebhookVerificationResult:
    header = _header(headers, STRIPE_SIGNATURE_HEADER)
    if not header:
        return _fail("missing_signature_header")

    timestamp: Optional[str] = None
    candidates: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)
    if not timestamp or not candidates:
        return _fail("malformed_signature_header")
    try:
        ts = int(timestamp)
    except ValueError:
        return _fail("malformed_signature_timestamp")

    tolerance = stripe_signature_tolerance_seconds() if tolerance_seconds is None else tolerance_seconds
    current = time.time() if now is None else now
    if abs(current - ts) > tolerance:
        return _fail("timestamp_outside_tolerance")

    signed_payload = f"{timestamp}.".encode("utf-8") + body
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    if any(hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8")) for candidate in candidates):
        return WebhookVerificationResult(ok=True, reason="verified")
    return _fail("signature_mismatch")


def verify_square_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: str,
    *,
    request_url: str,
) -> WebhookVerificationResult:
    provided = _header(headers, SQUARE_SIGNATURE_HEADER)
    if not provided:
        return _fail("missing_signature_header")
    if not request_url:
        return _fail("missing_request_url")

    message = request_url.encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    if hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8")):
        return WebhookVerificationResult(ok=True, reason="verified")
    return _fail("signature_mismatch")


def authorizenet_key_bytes(secret: str) -> bytes:
    # Authorize.net signature keys are issued as hex strings.
    if _HEX_RE.match(secret):
        return bytes.fromhex(secret)
    return secret.encode("utf-8")


def verify_authorizenet_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: str,
) -> WebhookVerificationResult:
    header = _header(headers, AUTHORIZENET_SIGNATURE_HEADER)
    if not header:
        return _fail("missing_signature_header")
    header = header.strip()
    if not _ANET_PREFIX_RE.match(header):
        return _fail("malformed_signature_header")
    provided = header[len("sha512="):]
    if not _HEX_RE.match(provided):
        return _fail("malformed_signature_header")

    expected = hmac.new(authorizenet_key_bytes(secret), body, hashlib.sha512).hexdigest()
    if hmac.compare_digest(expected.upper().encode("utf-8"), provided.upper().encode("utf-8")):
        return WebhookVerificationResult(ok=True, reason="verified")
    return _fail("signature_mismatch")


def verify_webhook_signature(
    provider: str,
    headers: Mapping[str, str],
    body: bytes,
    secret: Optional[str],
    *,
    request_url: str = "",
    now: Optional[float] = None,
) -> WebhookVerificationResult:
    if not secret:
        return _fail("missing_webhook_secret")
    key = (provider or "").strip().lower()
    if key == "stripe":
        result = verify_stripe_signature(headers, body, secret, now=now)
    elif key == "square":
        result = verify_square_signature(headers, body, secret, request_url=request_url)
    elif key == "authorizenet":
        result = verify_authorizenet_signature(headers, body, secret)
    else:
        result = _fail("unsupported_provider")
    if not result.ok:
        logger.warning("Webhook signature rejected provider=%s reason=%s", key, result.reason)
    return result


def validate(
    provider: str,
    headers: Mapping[str, str],
    body: bytes,
    secret: Optional[str],
    *,
    request_url: str = "",
    now: Optional[float] = None,
) -> bool:
    return verify_webhook_signature(
        provider,
        headers,
        body,
        secret,
        request_url=request_url,
        now=now,
    ).ok

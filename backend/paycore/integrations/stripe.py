from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional

import httpx

from backend.paycore.config import stripe_api_base_url
from backend.paycore.integrations.base import ProviderError, PullResult, WebhookVerificationResult
from backend.paycore.integrations.signatures import verify_stripe_signature
from backend.paycore.integrations.utils import build_http_client, request_json, unix_seconds, utcnow
from backend.paycore.norma.normalize import (
    TransactionDraft,
    clean_str,
    minor_to_major,
    normalize_country,
    normalize_currency,
    parse_timestamp,
)


PAGE_LIMIT = 100


def map_charge(charge: dict, *, raw_ref: Optional[str] = None) -> TransactionDraft:
    charge_id = clean_str(charge.get("id"))
    if not charge_id:
        raise ValueError("stripe charge missing id")

    details = charge.get("payment_method_details") or {}
    card = details.get("card") or details.get("card_present") or {}
    checks = card.get("checks") or {}
    billing = (charge.get("billing_details") or {}).get("address") or {}
    metadata = charge.get("metadata") or {}
    outcome = charge.get("outcome") or {}

    approved = charge.get("status") == "succeeded"
    method_type = clean_str(details.get("type")) or "card"

    return TransactionDraft(
        source_provider="stripe",
        source_txn_id=charge_id,
        amount=minor_to_major(charge.get("amount") or 0),
        currency=normalize_currency(charge.get("currency")),
        approved=approved,
        occurred_at=parse_timestamp(charge.get("created")) or utcnow(),
        merchant_id=clean_str(metadata.get("merchant_id")),
        card_fingerprint_token=clean_str(card.get("fingerprint")),
        decline_code=None if approved else clean_str(charge.get("failure_code") or outcome.get("reason")),
        avs_result=clean_str(checks.get("address_postal_code_check") or checks.get("address_line1_check")),
        cvv_result=clean_str(checks.get("cvc_check")),
        mcc=clean_str(metadata.get("mcc")),
        country=normalize_country(card.get("country")) or normalize_country(billing.get("country")),
        region=clean_str(billing.get("state")),
        channel="card_present" if method_type.startswith("card_present") else "card_not_present",
        payment_method=method_type,
        raw_ref=raw_ref or f"stripe:charge:{charge_id}",
    )


class StripeAdapter:
    provider = "stripe"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self._client = client
        self._transport = transport

    def _http(self) -> httpx.Client:
        if self._client is None:
            if not self.api_key:
                raise ProviderError(self.provider, "missing API credentials")
            self._client = build_http_client(
                stripe_api_base_url(),
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    def verify_webhook(
        self,
        headers: Mapping[str, str],
        body: bytes,
        secret: str,
        *,
        request_url: str = "",
    ) -> WebhookVerificationResult:
        _ = request_url
        return verify_stripe_signature(headers, body, secret)

    def pull_transactions(
        self,
        *,
        cursor: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> PullResult:
        params: dict = {"limit": PAGE_LIMIT}
        if cursor:
            params["starting_after"] = cursor
        if since:
            params["created[gte]"] = unix_seconds(since)
        if until:
            params["created[lte]"] = unix_seconds(until)

        page = request_json(self._http(), self.provider, "GET", "/v1/charges", params=params)
        objects = [obj for obj in page.get("data") or [] if isinstance(obj, dict)]
        drafts = [map_charge(obj) for obj in objects]
        next_cursor = None
        if page.get("has_more") and objects:
            next_cursor = clean_str(objects[-1].get("id"))
        return PullResult(transactions=drafts, cursor=next_cursor)

    def map_webhook_event(self, payload: dict) -> list[TransactionDraft]:
        event_type = str(payload.get("type") or "")
        if not event_type.startswith("charge."):
            return []
        obj = (payload.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            return []
        # charge.dispute.* carries a dispute object, not a charge
        if obj.get("object") not in (None, "charge"):
            return []
        event_id = clean_str(payload.get("id"))
        raw_ref = f"stripe:event:{event_id}" if event_id else None
        return [map_charge(obj, raw_ref=raw_ref)]

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional

import httpx

from backend.paycore.config import square_api_base_url, square_api_version
from backend.paycore.integrations.base import ProviderError, PullResult, WebhookVerificationResult
from backend.paycore.integrations.signatures import verify_square_signature
from backend.paycore.integrations.utils import build_http_client, iso_utc, request_json, utcnow
from backend.paycore.norma.normalize import (
    TransactionDraft,
    clean_str,
    minor_to_major,
    normalize_country,
    normalize_currency,
    parse_timestamp,
)


PAGE_LIMIT = 100
CARD_PRESENT_ENTRY_METHODS = {"SWIPED", "EMV", "CONTACTLESS"}


def map_payment(payment: dict, *, raw_ref: Optional[str] = None) -> TransactionDraft:
    payment_id = clean_str(payment.get("id"))
    if not payment_id:
        raise ValueError("square payment missing id")

    money = payment.get("amount_money") or {}
    card_details = payment.get("card_details") or {}
    card = card_details.get("card") or {}
    address = payment.get("billing_address") or payment.get("shipping_address") or {}
    errors = card_details.get("errors") or []

    approved = payment.get("status") == "COMPLETED"
    decline_code = None
    if not approved:
        first_error = errors[0] if errors and isinstance(errors[0], dict) else {}
        decline_code = clean_str(first_error.get("code") or card_details.get("status") or payment.get("status"))

    entry_method = str(card_details.get("entry_method") or "").upper()
    source_type = clean_str(payment.get("source_type"))

    return TransactionDraft(
        source_provider="square",
        source_txn_id=payment_id,
        amount=minor_to_major(money.get("amount") or 0),
        currency=normalize_currency(money.get("currency")),
        approved=approved,
        occurred_at=parse_timestamp(payment.get("created_at")) or utcnow(),
        merchant_id=clean_str(payment.get("location_id")),
        card_fingerprint_token=clean_str(card.get("fingerprint")),
        decline_code=decline_code,
        avs_result=clean_str(card_details.get("avs_status")),
        cvv_result=clean_str(card_details.get("cvv_status")),
        country=normalize_country(address.get("country")),
        region=clean_str(address.get("administrative_district_level_1")),
        channel="card_present" if entry_method in CARD_PRESENT_ENTRY_METHODS else "card_not_present",
        payment_method=source_type.lower() if source_type else "card",
        raw_ref=raw_ref or f"square:payment:{payment_id}",
    )


class SquareAdapter:
    provider = "square"

    def __init__(
        self,
        *,
        access_token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.access_token = access_token
        self._client = client
        self._transport = transport

    def _http(self) -> httpx.Client:
        if self._client is None:
            if not self.access_token:
                raise ProviderError(self.provider, "missing API credentials")
            self._client = build_http_client(
                square_api_base_url(),
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Square-Version": square_api_version(),
                },
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
        return verify_square_signature(headers, body, secret, request_url=request_url)

    def pull_transactions(
        self,
        *,
        cursor: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> PullResult:
        params: dict = {"limit": PAGE_LIMIT, "sort_order": "ASC"}
        if cursor:
            params["cursor"] = cursor
        if since:
            params["begin_time"] = iso_utc(since)
        if until:
            params["end_time"] = iso_utc(until)

        page = request_json(self._http(), self.provider, "GET", "/v2/payments", params=params)
        payments = [p for p in page.get("payments") or [] if isinstance(p, dict)]
        return PullResult(
            transactions=[map_payment(p) for p in payments],
            cursor=clean_str(page.get("cursor")),
        )

    def map_webhook_event(self, payload: dict) -> list[TransactionDraft]:
        event_type = str(payload.get("type") or "")
        if not event_type.startswith("payment."):
            return []
        obj = (payload.get("data") or {}).get("object") or {}
        payment = obj.get("payment") if isinstance(obj, dict) else None
        if not isinstance(payment, dict):
            return []
        event_id = clean_str(payload.get("event_id"))
        raw_ref = f"square:event:{event_id}" if event_id else None
        return [map_payment(payment, raw_ref=raw_ref)]

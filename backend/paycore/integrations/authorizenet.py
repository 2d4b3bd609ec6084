from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Mapping, Optional

import httpx

from backend.paycore.config import authorizenet_api_url, authorizenet_max_batches
from backend.paycore.integrations.base import ProviderError, PullResult, WebhookVerificationResult
from backend.paycore.integrations.signatures import verify_authorizenet_signature
from backend.paycore.integrations.utils import build_http_client, iso_utc, request_json, utcnow
from backend.paycore.norma.normalize import (
    TransactionDraft,
    clean_str,
    normalize_currency,
    parse_timestamp,
    to_decimal,
)


logger = logging.getLogger(__name__)

TRANSACTION_PAGE_LIMIT = 1000
DEFAULT_LOOKBACK = timedelta(days=1)


def status_is_approved(status_token: Optional[str]) -> bool:
    token = (status_token or "").lower()
    return "settled" in token or "approved" in token


def parse_credentials(credentials: Optional[str]) -> tuple[str, str]:
    login, sep, key = (credentials or "").partition(":")
    if not sep or not login.strip() or not key.strip():
        raise ProviderError("authorizenet", "credentials must be '<api_login_id>:<transaction_key>'")
    return login.strip(), key.strip()


def map_transaction(
    txn: dict,
    *,
    settled_at: Optional[datetime] = None,
    raw_ref: Optional[str] = None,
) -> TransactionDraft:
    trans_id = clean_str(txn.get("transId") or txn.get("id"))
    if not trans_id:
        raise ValueError("authorizenet transaction missing transId")

    status = clean_str(txn.get("transactionStatus"))
    approved = status_is_approved(status)
    account_type = str(txn.get("accountType") or "").lower()
    amount = txn.get("settleAmount")
    if amount is None:
        amount = txn.get("authAmount", 0)

    return TransactionDraft(
        source_provider="authorizenet",
        source_txn_id=trans_id,
        amount=to_decimal(amount),
        currency=normalize_currency(txn.get("currencyCode")),
        approved=approved,
        occurred_at=parse_timestamp(txn.get("submitTimeUTC")) or utcnow(),
        decline_code=None if approved else status,
        avs_result=clean_str(txn.get("avsResponse")),
        cvv_result=clean_str(txn.get("cvvResponse")),
        channel=clean_str(txn.get("marketType")),
        settled_at=settled_at,
        payment_method="echeck" if account_type == "echeck" else "card",
        raw_ref=raw_ref or f"authorizenet:transaction:{trans_id}",
    )


class AuthorizeNetAdapter:
    """
    Authorize.net has no list cursor: a pull enumerates settled batches in the
    window and fetches each batch's transaction list, one request per batch.
    """
    provider = "authorizenet"

    def __init__(
        self,
        *,
        credentials: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
        max_batches: Optional[int] = None,
    ):
        self.credentials = credentials
        self.max_batches = max_batches if max_batches is not None else authorizenet_max_batches()
        self._client = client
        self._transport = transport

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = build_http_client(transport=self._transport)
        return self._client

    def _call(self, request_name: str, body: dict) -> dict:
        login, key = parse_credentials(self.credentials)
        payload = {
            request_name: {
                "merchantAuthentication": {"name": login, "transactionKey": key},
                **body,
            }
        }
        data = request_json(self._http(), self.provider, "POST", authorizenet_api_url(), json=payload)
        messages = data.get("messages") or {}
        if messages.get("resultCode") == "Error":
            detail = messages.get("message") or []
            text = detail[0].get("text") if detail and isinstance(detail[0], dict) else "unknown error"
            raise ProviderError(self.provider, f"{request_name} failed: {text}")
        return data

    def verify_webhook(
        self,
        headers: Mapping[str, str],
        body: bytes,
        secret: str,
        *,
        request_url: str = "",
    ) -> WebhookVerificationResult:
        _ = request_url
        return verify_authorizenet_signature(headers, body, secret)

    def pull_transactions(
        self,
        *,
        cursor: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> PullResult:
        _ = cursor
        until = until or utcnow()
        since = since or (until - DEFAULT_LOOKBACK)

        batch_list = self._call(
            "getSettledBatchListRequest",
            {
                "includeStatistics": False,
                "firstSettlementDate": iso_utc(since),
                "lastSettlementDate": iso_utc(until),
            },
        )
        batches = [b for b in batch_list.get("batchList") or [] if isinstance(b, dict)]
        if len(batches) > self.max_batches:
            logger.info(
                "Authorize.net pull capped at %s of %s settlement batches",
                self.max_batches,
                len(batches),
            )
            batches = batches[: self.max_batches]

        drafts: list[TransactionDraft] = []
        for batch in batches:
            batch_id = clean_str(batch.get("batchId"))
            if not batch_id:
                continue
            settled_at = parse_timestamp(batch.get("settlementTimeUTC"))
            listing = self._call(
                "getTransactionListRequest",
                {"batchId": batch_id, "paging": {"limit": TRANSACTION_PAGE_LIMIT, "offset": 1}},
            )
            for txn in listing.get("transactions") or []:
                if isinstance(txn, dict):
                    drafts.append(map_transaction(txn, settled_at=settled_at))
        return PullResult(transactions=drafts, cursor=None)

    def map_webhook_event(self, payload: dict) -> list[TransactionDraft]:
        event_type = str(payload.get("eventType") or "")
        if not event_type.startswith("net.authorize.payment."):
            return []
        body = payload.get("payload")
        if not isinstance(body, dict) or body.get("entityName") != "transaction":
            return []

        status = body.get("transactionStatus")
        if not status:
            status = "approved" if str(body.get("responseCode")) == "1" else "declined"
        txn = {
            "transId": body.get("id"),
            "transactionStatus": status,
            "authAmount": body.get("authAmount", 0),
            "submitTimeUTC": payload.get("eventDate"),
            "avsResponse": body.get("avsResponse"),
            "cvvResponse": body.get("cvvResponse"),
            "currencyCode": body.get("currencyCode"),
        }
        notification_id = clean_str(payload.get("notificationId"))
        raw_ref = f"authorizenet:notification:{notification_id}" if notification_id else None
        return [map_transaction(txn, raw_ref=raw_ref)]

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from backend.paycore.integrations import ProviderError, get_adapter, normalize_provider
from backend.paycore.integrations.authorizenet import AuthorizeNetAdapter, map_transaction, status_is_approved
from backend.paycore.integrations.square import map_payment
from backend.paycore.integrations.stripe import map_charge


def _charge(charge_id: str, status: str = "succeeded", amount: int = 1250) -> dict:
    return {
        "id": charge_id,
        "object": "charge",
        "amount": amount,
        "currency": "usd",
        "status": status,
        "created": 1704067200,
        "failure_code": None if status == "succeeded" else "card_declined",
        "metadata": {"merchant_id": "m-1", "mcc": "5411"},
        "payment_method_details": {
            "type": "card",
            "card": {"fingerprint": "fp_abc", "country": "us", "checks": {"cvc_check": "pass"}},
        },
    }


def test_registry_resolves_provider_aliases():
    assert normalize_provider("Authorize.Net") == "authorizenet"
    assert normalize_provider("authorize_net") == "authorizenet"
    with pytest.raises(ValueError):
        normalize_provider("paypal")


def test_stripe_charge_mapping_uses_minor_units():
    draft = map_charge(_charge("ch_1"))
    assert draft.amount == Decimal("12.50")
    assert draft.currency == "USD"
    assert draft.approved is True
    assert draft.country == "US"
    assert draft.card_fingerprint_token == "fp_abc"
    assert draft.merchant_id == "m-1"
    assert draft.cvv_result == "pass"
    assert draft.occurred_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    declined = map_charge(_charge("ch_2", status="failed"))
    assert declined.approved is False
    assert declined.decline_code == "card_declined"


def test_stripe_pull_paginates_with_starting_after():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert request.headers["Authorization"] == "Bearer sk_test"
        return httpx.Response(200, json={"data": [_charge("ch_1"), _charge("ch_2")], "has_more": True})

    adapter = get_adapter("stripe", credentials="sk_test", transport=httpx.MockTransport(handler))
    result = adapter.pull_transactions(cursor="ch_0", since=datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert [t.source_txn_id for t in result.transactions] == ["ch_1", "ch_2"]
    assert result.cursor == "ch_2"
    params = seen[0].url.params
    assert params["starting_after"] == "ch_0"
    assert params["created[gte]"] == "1704067200"


def test_stripe_pull_without_more_pages_has_no_cursor():
    adapter = get_adapter(
        "stripe",
        credentials="sk_test",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"data": [_charge("ch_9")], "has_more": False})),
    )
    assert adapter.pull_transactions().cursor is None


def test_stripe_http_error_becomes_provider_error():
    adapter = get_adapter(
        "stripe",
        credentials="sk_test",
        transport=httpx.MockTransport(lambda r: httpx.Response(429, json={"error": {"message": "rate limited"}})),
    )
    with pytest.raises(ProviderError) as exc:
        adapter.pull_transactions()
    assert "HTTP 429" in str(exc.value)


def test_stripe_missing_credentials():
    with pytest.raises(ProviderError):
        get_adapter("stripe").pull_transactions()


def test_stripe_webhook_maps_only_charge_events():
    adapter = get_adapter("stripe")
    charge_event = {"id": "evt_1", "type": "charge.succeeded", "data": {"object": _charge("ch_1")}}
    drafts = adapter.map_webhook_event(charge_event)
    assert len(drafts) == 1
    assert drafts[0].raw_ref == "stripe:event:evt_1"

    assert adapter.map_webhook_event({"id": "evt_2", "type": "customer.created", "data": {"object": {}}}) == []
    dispute = {"id": "evt_3", "type": "charge.dispute.created", "data": {"object": {"object": "dispute", "id": "dp_1"}}}
    assert adapter.map_webhook_event(dispute) == []


def test_square_payment_mapping_and_cursor():
    payment = {
        "id": "sq_1",
        "status": "COMPLETED",
        "created_at": "2024-02-01T10:00:00Z",
        "amount_money": {"amount": 999, "currency": "CAD"},
        "location_id": "loc-1",
        "card_details": {"entry_method": "EMV", "card": {"fingerprint": "sq-fp"}, "cvv_status": "CVV_ACCEPTED"},
        "billing_address": {"country": "CA", "administrative_district_level_1": "ON"},
    }
    draft = map_payment(payment)
    assert draft.amount == Decimal("9.99")
    assert draft.currency == "CAD"
    assert draft.approved is True
    assert draft.channel == "card_present"
    assert draft.merchant_id == "loc-1"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/payments"
        assert request.url.params["cursor"] == "c1"
        assert "Square-Version" in request.headers
        return httpx.Response(200, json={"payments": [payment], "cursor": "c2"})

    adapter = get_adapter("square", credentials="sq-token", transport=httpx.MockTransport(handler))
    result = adapter.pull_transactions(cursor="c1")
    assert result.cursor == "c2"
    assert result.transactions[0].source_txn_id == "sq_1"


def test_square_failed_payment_is_not_approved():
    draft = map_payment(
        {
            "id": "sq_2",
            "status": "FAILED",
            "amount_money": {"amount": 100, "currency": "USD"},
            "card_details": {"errors": [{"code": "CARD_DECLINED"}]},
        }
    )
    assert draft.approved is False
    assert draft.decline_code == "CARD_DECLINED"


def test_authorizenet_status_tokens():
    assert status_is_approved("settledSuccessfully")
    assert status_is_approved("approvedReview")
    assert not status_is_approved("declined")
    assert not status_is_approved(None)


def test_authorizenet_amounts_are_major_units():
    draft = map_transaction({"transId": "6001", "transactionStatus": "settledSuccessfully", "settleAmount": "42.10"})
    assert draft.amount == Decimal("42.10")
    assert draft.approved is True


def _anet_handler(batch_count: int, calls: list):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(next(iter(body)))
        if "getSettledBatchListRequest" in body:
            batches = [
                {"batchId": str(i), "settlementTimeUTC": "2024-03-01T00:00:00Z"} for i in range(batch_count)
            ]
            return httpx.Response(200, json={"batchList": batches, "messages": {"resultCode": "Ok"}})
        batch_id = body["getTransactionListRequest"]["batchId"]
        txns = [{"transId": f"t-{batch_id}", "transactionStatus": "settledSuccessfully", "settleAmount": 5}]
        # Authorize.net responses carry a BOM
        text = "\ufeff" + json.dumps({"transactions": txns, "messages": {"resultCode": "Ok"}})
        return httpx.Response(200, content=text.encode("utf-8"))

    return handler


def test_authorizenet_pull_caps_batches():
    calls = []
    adapter = AuthorizeNetAdapter(
        credentials="login:key",
        transport=httpx.MockTransport(_anet_handler(14, calls)),
        max_batches=10,
    )
    result = adapter.pull_transactions()
    assert result.cursor is None
    assert len(result.transactions) == 10
    assert calls.count("getTransactionListRequest") == 10
    assert result.transactions[0].settled_at == datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_authorizenet_api_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"messages": {"resultCode": "Error", "message": [{"code": "E00007", "text": "auth failed"}]}},
        )

    adapter = AuthorizeNetAdapter(credentials="login:key", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderError) as exc:
        adapter.pull_transactions()
    assert "auth failed" in str(exc.value)


def test_authorizenet_requires_login_and_key():
    adapter = AuthorizeNetAdapter(credentials="only-login")
    with pytest.raises(ProviderError):
        adapter.pull_transactions()


def test_authorizenet_webhook_mapping():
    adapter = get_adapter("authorizenet")
    payload = {
        "notificationId": "n-1",
        "eventType": "net.authorize.payment.authcapture.created",
        "eventDate": "2024-03-02T12:00:00Z",
        "payload": {"entityName": "transaction", "id": "7001", "responseCode": 1, "authAmount": 18.5},
    }
    drafts = adapter.map_webhook_event(payload)
    assert len(drafts) == 1
    assert drafts[0].approved is True
    assert drafts[0].amount == Decimal("18.50")
    assert drafts[0].raw_ref == "authorizenet:notification:n-1"

    assert adapter.map_webhook_event({"eventType": "net.authorize.customer.created", "payload": {}}) == []

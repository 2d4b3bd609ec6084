import base64
import hashlib
import hmac
import time

from backend.paycore.integrations.signatures import (
    authorizenet_key_bytes,
    validate,
    verify_authorizenet_signature,
    verify_square_signature,
    verify_stripe_signature,
    verify_webhook_signature,
)


STRIPE_SECRET = "whsec_test_secret"
SQUARE_KEY = "square-signature-key"
SQUARE_URL = "https://hooks.example.com/webhooks/square?tenant_id=t1"
ANET_HEX_KEY = "A1B2C3D4E5F60718293A4B5C6D7E8F90"
BODY = b'{"id":"evt_1","type":"charge.succeeded"}'


def _stripe_header(body: bytes, secret: str = STRIPE_SECRET, ts: int = None) -> str:
    ts = int(time.time()) if ts is None else ts
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _square_header(body: bytes, url: str = SQUARE_URL, key: str = SQUARE_KEY) -> str:
    digest = hmac.new(key.encode(), url.encode() + body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _anet_header(body: bytes, key: str = ANET_HEX_KEY, prefix: str = "SHA512=") -> str:
    digest = hmac.new(bytes.fromhex(key), body, hashlib.sha512).hexdigest().upper()
    return f"{prefix}{digest}"


def test_stripe_signature_accepts_valid_payload():
    headers = {"Stripe-Signature": _stripe_header(BODY)}
    assert verify_stripe_signature(headers, BODY, STRIPE_SECRET).ok
    assert validate("stripe", headers, BODY, STRIPE_SECRET)


def test_stripe_signature_rejects_mutations():
    header = _stripe_header(BODY)
    assert not validate("stripe", {"Stripe-Signature": header}, BODY + b" ", STRIPE_SECRET)

    tampered = header[:-1] + ("0" if header[-1] != "0" else "1")
    assert not validate("stripe", {"Stripe-Signature": tampered}, BODY, STRIPE_SECRET)
    assert not validate("stripe", {}, BODY, STRIPE_SECRET)
    assert not validate("stripe", {"Stripe-Signature": "garbage"}, BODY, STRIPE_SECRET)


def test_stripe_signature_rejects_replay_outside_tolerance():
    old = int(time.time()) - 301
    result = verify_stripe_signature({"stripe-signature": _stripe_header(BODY, ts=old)}, BODY, STRIPE_SECRET)
    assert not result.ok
    assert result.reason == "timestamp_outside_tolerance"


def test_stripe_signature_accepts_any_matching_v1():
    ts = int(time.time())
    good = _stripe_header(BODY, ts=ts).split("v1=")[1]
    header = f"t={ts},v1={'0' * 64},v1={good}"
    assert validate("stripe", {"Stripe-Signature": header}, BODY, STRIPE_SECRET)


def test_square_signature_round_trip_and_mutation():
    headers = {"x-square-hmacsha256-signature": _square_header(BODY)}
    assert verify_square_signature(headers, BODY, SQUARE_KEY, request_url=SQUARE_URL).ok
    assert not validate("square", headers, BODY, SQUARE_KEY, request_url=SQUARE_URL + "&x=1")
    assert not validate("square", headers, BODY.replace(b"evt_1", b"evt_2"), SQUARE_KEY, request_url=SQUARE_URL)
    assert not validate("square", {}, BODY, SQUARE_KEY, request_url=SQUARE_URL)


def test_authorizenet_signature_prefix_is_case_insensitive():
    for prefix in ("SHA512=", "sha512="):
        headers = {"X-ANET-Signature": _anet_header(BODY, prefix=prefix)}
        assert verify_authorizenet_signature(headers, BODY, ANET_HEX_KEY).ok


def test_authorizenet_signature_rejects_mutation_and_bad_format():
    header = _anet_header(BODY)
    assert not validate("authorizenet", {"x-anet-signature": header}, BODY + b"x", ANET_HEX_KEY)
    assert not validate("authorizenet", {"x-anet-signature": header.replace("SHA512=", "")}, BODY, ANET_HEX_KEY)
    assert not validate("authorizenet", {"x-anet-signature": "SHA512=" + "0" * 128}, BODY, ANET_HEX_KEY)


def test_authorizenet_key_bytes_detects_hex():
    assert authorizenet_key_bytes("0a0b") == b"\x0a\x0b"
    assert authorizenet_key_bytes("not-hex-key") == b"not-hex-key"


def test_authorizenet_raw_key_is_used_when_not_hex():
    raw_key = "plain-text-key"
    digest = hmac.new(raw_key.encode(), BODY, hashlib.sha512).hexdigest()
    assert validate("authorizenet", {"x-anet-signature": f"SHA512={digest}"}, BODY, raw_key)


def test_missing_secret_is_rejected():
    headers = {"Stripe-Signature": _stripe_header(BODY)}
    result = verify_webhook_signature("stripe", headers, BODY, None)
    assert not result.ok
    assert result.reason == "missing_webhook_secret"


def test_unknown_provider_is_rejected():
    assert not validate("paypal", {}, BODY, "secret")

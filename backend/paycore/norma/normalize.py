from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional


CENTS = Decimal("0.01")
MAX_AMOUNT = Decimal("999999999999.99")


@dataclass(frozen=True)
class TransactionDraft:
    """
    Provider-agnostic transaction ready for upsert.

    amount is always in major currency units; occurred_at/settled_at are UTC.
    """
    source_provider: str
    source_txn_id: str
    amount: Decimal
    currency: str
    approved: bool
    occurred_at: datetime
    merchant_id: Optional[str] = None
    card_fingerprint_token: Optional[str] = None
    decline_code: Optional[str] = None
    avs_result: Optional[str] = None
    cvv_result: Optional[str] = None
    mcc: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    channel: Optional[str] = None
    settled_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    raw_ref: Optional[str] = None

    def as_row(self) -> dict:
        return asdict(self)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse unix seconds, ISO-8601 datetimes or plain dates into UTC."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        if "T" in raw or " " in raw or ":" in raw:
            if raw.endswith(("Z", "z")):
                raw = raw[:-1] + "+00:00"
            return to_utc(datetime.fromisoformat(raw))
        parsed = date.fromisoformat(raw)
        return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
    except ValueError:
        return None


def _parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"invalid amount: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return amount


def _to_cents(amount: Decimal, value: Any) -> Decimal:
    # amounts are stored as NUMERIC(14, 2)
    if abs(amount) <= MAX_AMOUNT + CENTS:
        cents = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
        if abs(cents) <= MAX_AMOUNT:
            return cents
    raise ValueError(f"amount out of range: {value!r}")


def to_decimal(value: Any) -> Decimal:
    return _to_cents(_parse_decimal(value), value)


def minor_to_major(value: Any) -> Decimal:
    """Convert an integer minor-unit amount (cents) into major units."""
    return _to_cents(_parse_decimal(value) / 100, value)


def normalize_currency(value: Any, default: str = "USD") -> str:
    if value is None or value == "":
        return default
    return str(value).strip().upper()


def normalize_country(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    code = value.strip().upper()
    if len(code) != 2 or not code.isalpha():
        return None
    return code


def clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

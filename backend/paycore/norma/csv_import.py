from __future__ import annotations

import csv
import io
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, List

from backend.paycore.norma.normalize import (
    TransactionDraft,
    clean_str,
    normalize_country,
    parse_timestamp,
    to_decimal,
)


CsvRow = Dict[str, str]

APPROVED_TRUE = {"true", "1", "yes"}
APPROVED_VALUES = APPROVED_TRUE | {"false", "0", "no"}
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


@dataclass(frozen=True)
class CsvReject:
    row: int
    reason: str


@dataclass
class CsvValidationResult:
    valid_rows: List[TransactionDraft] = field(default_factory=list)
    rejected_rows: List[CsvReject] = field(default_factory=list)


def parse_csv(content: str) -> List[CsvRow]:
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    if len(lines) <= 1:
        return []
    reader = csv.reader(io.StringIO("\n".join(lines)))
    headers = [h.strip() for h in next(reader)]
    rows: List[CsvRow] = []
    for cols in reader:
        rows.append({h: (cols[i].strip() if i < len(cols) else "") for i, h in enumerate(headers)})
    return rows


def validate_csv_transactions(content: str, *, raw_ref: str = "csv-upload") -> CsvValidationResult:
    """
    Validate CSV rows and build drafts for the valid ones.

    Row numbers are file line numbers: the header is line 1, so the first
    data row is reported as row 2.
    """
    result = CsvValidationResult()
    for row_num, row in enumerate(parse_csv(content), start=2):
        try:
            amount = to_decimal(row.get("amount", ""))
        except ValueError:
            result.rejected_rows.append(CsvReject(row=row_num, reason="Invalid amount"))
            continue

        occurred_at = parse_timestamp(row.get("occurred_at", ""))
        if occurred_at is None:
            result.rejected_rows.append(CsvReject(row=row_num, reason="Invalid occurred_at timestamp"))
            continue

        currency = (row.get("currency") or "USD").upper()
        if not CURRENCY_RE.match(currency):
            result.rejected_rows.append(
                CsvReject(row=row_num, reason="Invalid currency (must be ISO-4217 3 letters)")
            )
            continue

        # a missing column defaults to approved; a present-but-empty cell is rejected
        approved_raw = row.get("approved", "true").strip().lower()
        if approved_raw not in APPROVED_VALUES:
            result.rejected_rows.append(CsvReject(row=row_num, reason="Invalid approved value (use true/false)"))
            continue

        result.valid_rows.append(
            TransactionDraft(
                source_provider="csv",
                source_txn_id=clean_str(row.get("source_txn_id")) or str(uuid.uuid4()),
                amount=amount,
                currency=currency,
                approved=approved_raw in APPROVED_TRUE,
                occurred_at=occurred_at,
                merchant_id=clean_str(row.get("merchant_id")),
                card_fingerprint_token=clean_str(row.get("card_fingerprint_token")),
                decline_code=clean_str(row.get("decline_code")),
                mcc=clean_str(row.get("mcc")),
                country=normalize_country(row.get("country")),
                region=clean_str(row.get("region")),
                channel=clean_str(row.get("channel")),
                settled_at=parse_timestamp(row.get("settled_at")),
                payment_method=clean_str(row.get("payment_method")) or "card",
                raw_ref=raw_ref,
            )
        )
    return result

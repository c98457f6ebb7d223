"""CSV re-export of mapped brokerage transactions."""

from __future__ import annotations

import csv
import io
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Iterable

from .import_types import TransformedTransaction

EXPORT_COLUMNS = (
    "id",
    "booking_date",
    "trade_date",
    "settlement_date",
    "portfolio_name",
    "account_name",
    "transaction_type",
    "internal_transaction_type",
    "security_name",
    "isin",
    "quantity",
    "price",
    "amount",
    "currency",
    "exchange_rate",
    "commission",
    "total_fees",
    "transaction_text",
    "validation_errors",
    "validation_warnings",
)


def _serialize_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, list):
        return "; ".join(str(item) for item in value)
    return str(value)


def _write(handle, transactions: Iterable[TransformedTransaction], include_invalid: bool) -> int:
    writer = csv.DictWriter(
        handle, fieldnames=EXPORT_COLUMNS, extrasaction="ignore", quoting=csv.QUOTE_MINIMAL
    )
    writer.writeheader()
    written = 0
    for txn in transactions:
        if not include_invalid and not txn.is_valid:
            continue
        writer.writerow({column: _serialize_value(getattr(txn, column)) for column in EXPORT_COLUMNS})
        written += 1
    return written


def render_transactions_csv(
    transactions: Iterable[TransformedTransaction], *, include_invalid: bool = False
) -> str:
    """Return the CSV text for ``transactions``; rows with errors are dropped by default."""
    buffer = io.StringIO(newline="")
    _write(buffer, transactions, include_invalid)
    return buffer.getvalue()


def export_transactions_csv(
    *,
    transactions: Iterable[TransformedTransaction],
    output_path: Path,
    include_invalid: bool = False,
) -> Path:
    """Write transactions to CSV at `output_path`.

    Columns are deterministic (``EXPORT_COLUMNS``). Returns the path written.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Use newline='' for csv on Windows
    with output_path.open("w", newline="", encoding="utf-8") as fh:
        _write(fh, transactions, include_invalid)

    return output_path

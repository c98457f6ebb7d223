"""Tests for CSV export of mapped transactions."""

from __future__ import annotations

import csv
import io
from datetime import date

from stocksage.services import export_csv
from stocksage.services.import_types import TransactionType, TransformedTransaction


def _transactions() -> list[TransformedTransaction]:
    good = TransformedTransaction(
        id="213948411",
        booking_date=date(2025, 6, 24),
        portfolio_name="551307769",
        transaction_type="KJØPT",
        internal_transaction_type=TransactionType.BUY,
        security_name="Hims & Hers Health A",
        quantity=66.0,
        amount=-28706.04,
        currency="NOK",
    )
    good.validation_warnings.extend(["first", "second"])
    bad = TransformedTransaction(id="213948412", transaction_type="KJØPT")
    bad.validation_errors.append("Required field 'Valuta' is missing")
    return [good, bad]


def test_render_drops_invalid_rows_by_default():
    rows = list(csv.DictReader(io.StringIO(export_csv.render_transactions_csv(_transactions()))))

    assert len(rows) == 1
    row = rows[0]
    assert row["booking_date"] == "2025-06-24"
    assert row["internal_transaction_type"] == "BUY"
    assert row["validation_warnings"] == "first; second"
    assert row["trade_date"] == ""
    assert row["security_name"] == "Hims & Hers Health A"


def test_render_can_include_invalid_rows():
    text = export_csv.render_transactions_csv(_transactions(), include_invalid=True)
    rows = list(csv.DictReader(io.StringIO(text)))
    assert [row["id"] for row in rows] == ["213948411", "213948412"]
    assert rows[1]["validation_errors"] == "Required field 'Valuta' is missing"


def test_export_transactions_csv_creates_file(tmp_path):
    """Exporting mapped rows writes a CSV with header and rows."""

    output_path = tmp_path / "exports" / "nordnet-mapped.csv"
    written = export_csv.export_transactions_csv(
        transactions=_transactions(), output_path=output_path
    )

    assert written == output_path
    assert output_path.exists(), "export should create a CSV file"

    with output_path.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        rows = list(reader)
    assert tuple(reader.fieldnames) == export_csv.EXPORT_COLUMNS
    assert [row["transaction_type"] for row in rows] == ["KJØPT"]

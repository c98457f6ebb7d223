"""End-to-end brokerage CSV ingestion."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from ..domain.repositories import ImportStore
from .brokerage_formats import BrokerageFormat, get_format
from .csv_parser import MAX_FILE_SIZE, parse_bytes, parse_file
from .field_mapping import map_rows
from .import_orchestrator import ImportConfigurationError, ImportOrchestrator
from .import_types import (
    ImportConfig,
    ImportResult,
    ImportSummary,
    ParseResult,
    TransformedTransaction,
)

logger = logging.getLogger(__name__)


def _format_for(config: ImportConfig, fmt: BrokerageFormat | None) -> BrokerageFormat:
    if fmt is not None:
        return fmt
    try:
        return get_format(config.brokerage_format)
    except KeyError as exc:
        raise ImportConfigurationError(str(exc)) from None


def _map_parsed(
    parsed: ParseResult, config: ImportConfig, fmt: BrokerageFormat
) -> list[TransformedTransaction]:
    if not parsed.is_valid:
        return []
    return map_rows(parsed.rows, parsed.headers, fmt, config)


def preview_bytes(
    data: bytes,
    filename: str = "export.csv",
    config: ImportConfig | None = None,
    fmt: BrokerageFormat | None = None,
    *,
    max_size: int = MAX_FILE_SIZE,
) -> tuple[ParseResult, list[TransformedTransaction]]:
    """Parse and map an in-memory export without touching any store."""
    config = config or ImportConfig()
    fmt = _format_for(config, fmt)
    parsed = parse_bytes(data, filename, config, fmt, max_size=max_size)
    return parsed, _map_parsed(parsed, config, fmt)


def preview_file(
    path: Path,
    config: ImportConfig | None = None,
    fmt: BrokerageFormat | None = None,
    *,
    max_size: int = MAX_FILE_SIZE,
) -> tuple[ParseResult, list[TransformedTransaction]]:
    """Parse and map an export on disk without touching any store."""
    config = config or ImportConfig()
    fmt = _format_for(config, fmt)
    parsed = parse_file(Path(path), config, fmt, max_size=max_size)
    return parsed, _map_parsed(parsed, config, fmt)


def _counts(series: pd.Series) -> dict[str, int]:
    counts = series[series != ""].value_counts()
    return {str(key): int(value) for key, value in sorted(counts.items())}


def summarize_transactions(transactions: Iterable[TransformedTransaction]) -> ImportSummary:
    """Tally mapped rows by type, portfolio and currency, with per-currency totals."""
    transactions = list(transactions)
    summary = ImportSummary(total_transactions=len(transactions))
    if not transactions:
        return summary

    frame = pd.DataFrame(
        {
            "type": [txn.internal_transaction_type.value for txn in transactions],
            "portfolio": [txn.portfolio_name for txn in transactions],
            "currency": [txn.currency for txn in transactions],
            "amount": pd.to_numeric(
                pd.Series([txn.amount for txn in transactions], dtype="object"), errors="coerce"
            ),
        }
    )
    summary.transaction_types = _counts(frame["type"])
    summary.portfolios = _counts(frame["portfolio"])
    summary.currencies = _counts(frame["currency"])

    priced = frame[(frame["currency"] != "") & frame["amount"].notna() & (frame["amount"] != 0)]
    totals = priced["amount"].abs().groupby(priced["currency"]).sum()
    summary.total_amount = {str(currency): float(total) for currency, total in sorted(totals.items())}

    booked = [txn.booking_date for txn in transactions if txn.booking_date is not None]
    if booked:
        summary.date_range = (min(booked), max(booked))

    for txn in transactions:
        if txn.validation_errors:
            summary.with_errors += 1
        elif txn.validation_warnings:
            summary.with_warnings += 1
        else:
            summary.valid += 1
    return summary


def _run_import(
    parsed: ParseResult,
    orchestrator: ImportOrchestrator,
    fmt: BrokerageFormat,
    cancel_event: threading.Event | None,
) -> ImportResult:
    result = ImportResult()
    result.warnings.extend(parsed.warnings)
    if not parsed.is_valid:
        result.errors.extend(parsed.errors)
        logger.warning("Import aborted: file failed validation", extra={"errors": parsed.errors})
        return result.finalize()

    result.parsed_rows = parsed.total_rows
    transactions = map_rows(parsed.rows, parsed.headers, fmt, orchestrator.config)
    return orchestrator.run(transactions, cancel_event=cancel_event, result=result)


def import_bytes(
    data: bytes,
    store: Optional[ImportStore],
    owner_id: Optional[int],
    filename: str = "export.csv",
    config: ImportConfig | None = None,
    fmt: BrokerageFormat | None = None,
    cancel_event: threading.Event | None = None,
    *,
    max_size: int = MAX_FILE_SIZE,
) -> ImportResult:
    """Run the full pipeline over an in-memory export.

    Problems with the file come back in ``ImportResult.errors``. A missing
    store, missing owner or invalid configuration raises
    :class:`ImportConfigurationError` before anything is read.
    """
    config = config or ImportConfig()
    fmt = _format_for(config, fmt)
    orchestrator = ImportOrchestrator(store, owner_id, config, fmt)
    parsed = parse_bytes(data, filename, config, fmt, max_size=max_size)
    return _run_import(parsed, orchestrator, fmt, cancel_event)


def import_file(
    path: Path,
    store: Optional[ImportStore],
    owner_id: Optional[int],
    config: ImportConfig | None = None,
    fmt: BrokerageFormat | None = None,
    cancel_event: threading.Event | None = None,
    *,
    max_size: int = MAX_FILE_SIZE,
) -> ImportResult:
    """Run the full pipeline over an export on disk."""
    config = config or ImportConfig()
    fmt = _format_for(config, fmt)
    orchestrator = ImportOrchestrator(store, owner_id, config, fmt)
    parsed = parse_file(Path(path), config, fmt, max_size=max_size)
    logger.info("Importing %s", Path(path).name, extra={"owner_id": owner_id})
    return _run_import(parsed, orchestrator, fmt, cancel_event)


__all__ = [
    "import_bytes",
    "import_file",
    "preview_bytes",
    "preview_file",
    "summarize_transactions",
]

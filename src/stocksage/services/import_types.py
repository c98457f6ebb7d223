"""Types shared by the brokerage CSV import stages.

These are plain dataclasses on purpose: the parser and mapper stay free of
ORM imports so they can be unit tested without a database.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Mapping, Optional

import pandas as pd


class TransactionType(str, Enum):
    """Normalized internal transaction categories."""

    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    FEE = "FEE"
    TAX = "TAX"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    SPLIT = "SPLIT"
    MERGER = "MERGER"
    SPINOFF = "SPINOFF"
    REINVESTMENT = "REINVESTMENT"


# Types whose rows must be linked to a security record.
SECURITY_TRANSACTION_TYPES = frozenset(
    {
        TransactionType.BUY,
        TransactionType.SELL,
        TransactionType.DIVIDEND,
        TransactionType.SPLIT,
        TransactionType.MERGER,
        TransactionType.SPINOFF,
    }
)


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class DuplicateHandling(str, Enum):
    """What to do with a row whose external id is already stored."""

    SKIP = "skip"
    UPDATE = "update"
    ERROR = "error"


SUPPORTED_ENCODINGS = ("utf-8", "utf-8-sig", "utf-16", "utf-16-le", "utf-16-be", "iso-8859-1", "windows-1252")


@dataclass(frozen=True, slots=True)
class RawRow:
    """One data line of an export, keyed by the header as written in the file."""

    line_number: int
    values: Mapping[str, str]

    def get(self, column: str | None) -> str | None:
        if column is None:
            return None
        return self.values.get(column)


@dataclass(frozen=True, slots=True)
class FieldMapping:
    """Declares how one export column feeds one canonical field.

    ``validator`` and ``transformer`` are rule ids resolved through the
    dispatch tables in :mod:`stocksage.services.field_mapping`.
    """

    source: str
    target: str
    required: bool = False
    field_type: FieldType = FieldType.STRING
    validator: str | None = None
    transformer: str | None = None


@dataclass(frozen=True, slots=True)
class MappingSuggestion:
    """A header that looks like it carries ``target``; ``confidence`` is in (0, 1]."""

    header: str
    target: str
    confidence: float


@dataclass(frozen=True, slots=True)
class PortfolioMapping:
    """Explicit mapping from a portfolio name in the file to an account."""

    csv_portfolio_name: str
    account_name: str
    account_type: str | None = None
    currency: str | None = None


@dataclass(slots=True)
class TransformedTransaction:
    """Canonical in-memory form of one export row after mapping."""

    id: str = ""
    booking_date: Optional[date] = None
    trade_date: Optional[date] = None
    settlement_date: Optional[date] = None
    portfolio_name: str = ""
    transaction_type: str = ""
    internal_transaction_type: TransactionType = TransactionType.FEE
    security_name: str = ""
    isin: str = ""
    quantity: Optional[float] = None
    price: Optional[float] = None
    interest: Optional[float] = None
    total_fees: Optional[float] = None
    currency: str = ""
    amount: Optional[float] = None
    cost_basis: Optional[float] = None
    realized_pnl: Optional[float] = None
    total_quantity: Optional[float] = None
    balance: Optional[float] = None
    exchange_rate: Optional[float] = None
    transaction_text: str = ""
    cancellation_date: Optional[date] = None
    settlement_number: str = ""
    verification_number: str = ""
    commission: Optional[float] = None
    currency_rate: Optional[float] = None
    initial_interest: Optional[float] = None
    account_name: str = ""
    needs_security_lookup: bool = False
    line_number: int = 0
    extra: dict[str, str] = field(default_factory=dict)
    validation_errors: list[str] = field(default_factory=list)
    validation_warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["internal_transaction_type"] = self.internal_transaction_type.value
        return data


CANONICAL_FIELDS = frozenset(
    f.name
    for f in fields(TransformedTransaction)
    if f.name not in {"extra", "validation_errors", "validation_warnings", "line_number"}
)


@dataclass(frozen=True, slots=True)
class ImportConfig:
    """Immutable knobs for one import run."""

    encoding: str | None = None
    delimiter: str | None = None
    skip_rows: int = 0
    portfolio_mappings: tuple[PortfolioMapping, ...] = ()
    duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP
    create_missing_securities: bool = True
    validate_isin: bool = True
    strict_mode: bool = False
    batch_size: int = 100
    max_workers: int = 1
    amount_tolerance: float = 0.01
    header_match_threshold: float = 0.6
    platform_name: str = "Nordnet"
    brokerage_format: str = "nordnet"

    def with_overrides(self, **changes: Any) -> "ImportConfig":
        """Return a copy with ``changes`` applied; the original is untouched."""
        return replace(self, **changes)

    def portfolio_mapping_for(self, portfolio_name: str) -> PortfolioMapping | None:
        for mapping in self.portfolio_mappings:
            if mapping.csv_portfolio_name == portfolio_name:
                return mapping
        return None

    def validate(self, known_formats: Optional[Mapping[str, Any]] = None) -> list[str]:
        """Return configuration errors; an empty list means the config is usable."""
        errors: list[str] = []
        if self.encoding is not None and self.encoding.lower() not in SUPPORTED_ENCODINGS:
            errors.append(f"Invalid encoding: {self.encoding}")
        if self.delimiter is not None and len(self.delimiter) != 1:
            errors.append("Delimiter must be a single character")
        if self.skip_rows < 0:
            errors.append("Skip rows cannot be negative")
        if not isinstance(self.duplicate_handling, DuplicateHandling):
            errors.append(f"Invalid duplicate handling: {self.duplicate_handling}")
        if self.batch_size < 1:
            errors.append("Batch size must be at least 1")
        if self.max_workers < 1:
            errors.append("Max workers must be at least 1")
        if not 0 < self.amount_tolerance <= 1:
            errors.append("Amount tolerance must be within (0, 1]")
        if not 0 < self.header_match_threshold <= 1:
            errors.append("Header match threshold must be within (0, 1]")
        if not self.platform_name.strip():
            errors.append("Platform name cannot be empty")
        for mapping in self.portfolio_mappings:
            if not mapping.csv_portfolio_name or not mapping.account_name:
                errors.append("Portfolio mapping must have both CSV and internal account names")
        if known_formats is not None and self.brokerage_format not in known_formats:
            errors.append(f"Unknown brokerage format: {self.brokerage_format}")
        return errors


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ParseResult:
    """Output of the row parser and structural validator."""

    headers: list[str] = field(default_factory=list)
    rows: list[RawRow] = field(default_factory=list)
    total_rows: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    detected_encoding: str = "utf-8"
    detected_delimiter: str = ","
    has_locale_characters: bool = False
    portfolios: list[str] = field(default_factory=list)
    transaction_types: list[str] = field(default_factory=list)
    currencies: list[str] = field(default_factory=list)
    isin_codes: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_frame(self) -> pd.DataFrame:
        """Rows as a string-typed DataFrame with the file's own headers."""
        return pd.DataFrame(
            [dict(row.values) for row in self.rows], columns=self.headers, dtype="string"
        )


@dataclass(slots=True)
class ImportResult:
    """Accumulator for one import run, returned to the caller."""

    success: bool = False
    parsed_rows: int = 0
    transformed_rows: int = 0
    skipped_rows: int = 0
    created_accounts: int = 0
    created_securities: int = 0
    created_transactions: int = 0
    updated_transactions: int = 0
    duplicate_rows: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    import_batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    processed_data: list[TransformedTransaction] = field(default_factory=list)
    cancelled: bool = False

    @property
    def persistable(self) -> list[TransformedTransaction]:
        return [txn for txn in self.processed_data if txn.is_valid]

    def finalize(self) -> "ImportResult":
        self.success = not self.errors
        return self

    def to_frame(self) -> pd.DataFrame:
        """Processed rows as a DataFrame, one column per canonical field."""
        frame = pd.DataFrame([txn.to_dict() for txn in self.processed_data])
        if frame.empty:
            return frame
        frame["is_valid"] = [txn.is_valid for txn in self.processed_data]
        return frame


@dataclass(slots=True)
class ImportSummary:
    """Counts and totals over a set of mapped rows, for review before import.

    Each row is tallied once: as an error if it has any, else as a warning if
    it has any, else as valid. ``total_amount`` sums absolute amounts per
    currency.
    """

    total_transactions: int = 0
    transaction_types: dict[str, int] = field(default_factory=dict)
    portfolios: dict[str, int] = field(default_factory=dict)
    currencies: dict[str, int] = field(default_factory=dict)
    total_amount: dict[str, float] = field(default_factory=dict)
    date_range: Optional[tuple[date, date]] = None
    valid: int = 0
    with_warnings: int = 0
    with_errors: int = 0

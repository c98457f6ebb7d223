"""Resolve references and commit mapped transactions to an import store.

One run walks a fixed sequence: platform, accounts, securities, record
transformation, batched commit. A failure for one item becomes a message on
the returned :class:`ImportResult` and the run moves on to the next item.
Only a missing store, a missing owner or an invalid configuration stops a
run before anything is written.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Iterable, Optional, Sequence

from ..domain.repositories import ImportStore
from .brokerage_formats import FORMATS, NORDNET_FORMAT, BrokerageFormat
from .import_types import DuplicateHandling, ImportConfig, ImportResult, TransformedTransaction

logger = logging.getLogger(__name__)

DATA_SOURCE = "CSV_IMPORT"

_SYMBOL_PATTERNS = (
    re.compile(r"\(([A-Z]{1,6})\)"),
    re.compile(r"([A-Z]{1,6})\s*-"),
    re.compile(r"^([A-Z]{1,6})\s"),
)

_ACCOUNT_TYPE_KEYWORDS = (
    (("ips", "pensjon"), "PENSION"),
    (("spare", "bsu"), "SAVINGS"),
    (("isk",), "TFSA"),
)


class ImportConfigurationError(ValueError):
    """Raised when an import run cannot start at all."""


@dataclass(slots=True)
class TransactionRecord:
    """Store-ready shape of one transaction."""

    user_id: int
    account_id: int
    security_id: Optional[int]
    external_id: str
    transaction_type: str
    booking_date: date
    settlement_date: Optional[date]
    quantity: float
    price: Optional[float]
    total_amount: float
    commission: float
    other_fees: float
    currency: str
    exchange_rate: float
    description: str
    notes: str
    data_source: str
    import_batch_id: str

    def as_mapping(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class _BatchOutcome:
    index: int
    created: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False


def infer_account_type(name: str) -> str:
    """Guess the account type from keywords in a portfolio or account name."""
    lowered = (name or "").lower()
    for keywords, account_type in _ACCOUNT_TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return account_type
    return "TAXABLE"


def extract_symbol(security_name: str, isin: str = "") -> str:
    """Synthesize a ticker from a security name, falling back to the ISIN."""
    name = (security_name or "").strip()
    for pattern in _SYMBOL_PATTERNS:
        match = pattern.search(name)
        if match:
            return match.group(1)
    if name:
        return name.split()[0].upper()[:6]
    return (isin or "UNKNOWN")[:6]


def _dominant_currency(transactions: Iterable[TransformedTransaction], default: str = "NOK") -> str:
    counts = Counter(txn.currency for txn in transactions if txn.currency)
    return counts.most_common(1)[0][0] if counts else default


def _build_notes(txn: TransformedTransaction) -> str:
    parts: list[str] = []
    if txn.transaction_text:
        parts.append(txn.transaction_text)
    if txn.verification_number:
        parts.append(f"Verification: {txn.verification_number}")
    if txn.settlement_number:
        parts.append(f"Settlement: {txn.settlement_number}")
    if txn.validation_warnings:
        parts.append(f"Warnings: {', '.join(txn.validation_warnings)}")
    return " | ".join(parts)[:1024]


class ImportOrchestrator:
    """Runs the store-facing half of a brokerage import."""

    def __init__(
        self,
        store: Optional[ImportStore],
        owner_id: Optional[int],
        config: ImportConfig | None = None,
        fmt: BrokerageFormat | None = None,
    ):
        config = config or ImportConfig()
        if store is None:
            raise ImportConfigurationError("An import store is required")
        if owner_id is None:
            raise ImportConfigurationError("An owner id is required")
        problems = config.validate(FORMATS)
        if problems:
            raise ImportConfigurationError("; ".join(problems))

        self.store = store
        self.owner_id = owner_id
        self.config = config
        self.fmt = fmt or FORMATS.get(config.brokerage_format, NORDNET_FORMAT)

    def run(
        self,
        transactions: Sequence[TransformedTransaction],
        cancel_event: threading.Event | None = None,
        result: ImportResult | None = None,
    ) -> ImportResult:
        """Persist ``transactions`` and return the accumulated result."""
        result = result or ImportResult()
        transactions = list(transactions)
        result.processed_data = transactions
        if not result.parsed_rows:
            result.parsed_rows = len(transactions)

        logger.info(
            "Starting import run",
            extra={
                "owner_id": self.owner_id,
                "rows": len(transactions),
                "import_batch_id": result.import_batch_id,
            },
        )

        platform_id = self._resolve_platform(result)
        if platform_id is None:
            return result.finalize()

        valid = [txn for txn in transactions if txn.is_valid]
        accounts = self._resolve_accounts(valid, platform_id, result)
        securities = self._resolve_securities(valid, result)
        records = self._build_records(transactions, accounts, securities, result)
        result.transformed_rows = len(records)

        self._commit(records, result, cancel_event)

        result.finalize()
        logger.info(
            "Import run finished",
            extra={
                "import_batch_id": result.import_batch_id,
                "created_transactions": result.created_transactions,
                "updated": result.updated_transactions,
                "duplicates": result.duplicate_rows,
                "errors": len(result.errors),
            },
        )
        return result

    def _resolve_platform(self, result: ImportResult) -> Optional[int]:
        name = self.config.platform_name
        try:
            platform = self.store.find_platform(name)
            if platform is None:
                platform = self.store.create_platform({"name": name, "display_name": name})
                logger.info("Created platform %s", name)
            return platform.id
        except Exception as exc:
            logger.exception("Platform resolution failed for %s", name)
            result.errors.append(f"Failed to resolve platform '{name}': {exc}")
            return None

    def _resolve_accounts(
        self,
        transactions: list[TransformedTransaction],
        platform_id: int,
        result: ImportResult,
    ) -> dict[str, int]:
        by_portfolio: dict[str, list[TransformedTransaction]] = defaultdict(list)
        for txn in transactions:
            by_portfolio[txn.portfolio_name].append(txn)

        accounts: dict[str, int] = {}
        for portfolio_name, rows in by_portfolio.items():
            account_name = rows[0].account_name
            try:
                account = self.store.find_account(self.owner_id, platform_id, account_name)
                if account is None:
                    account = self._create_account(portfolio_name, account_name, platform_id, rows)
                    result.created_accounts += 1
                accounts[portfolio_name] = account.id
            except Exception as exc:
                logger.warning(
                    "Account resolution failed for portfolio %s: %s", portfolio_name, exc
                )
                result.errors.append(
                    f"Failed to create account for portfolio '{portfolio_name}': {exc}"
                )
        return accounts

    def _create_account(
        self,
        portfolio_name: str,
        account_name: str,
        platform_id: int,
        rows: list[TransformedTransaction],
    ):
        mapping = self.config.portfolio_mapping_for(portfolio_name)
        currency = (mapping.currency if mapping else None) or _dominant_currency(rows)
        account_type = (mapping.account_type if mapping else None) or infer_account_type(
            f"{portfolio_name} {account_name}"
        )

        portfolio = self.store.find_portfolio(self.owner_id, account_name)
        if portfolio is None:
            portfolio = self.store.create_portfolio(
                {
                    "user_id": self.owner_id,
                    "name": account_name,
                    "description": f"Imported from {self.config.platform_name} CSV",
                    "currency": currency,
                }
            )

        account = self.store.create_account(
            {
                "user_id": self.owner_id,
                "portfolio_id": portfolio.id,
                "platform_id": platform_id,
                "name": account_name,
                "currency": currency,
                "account_type": account_type,
            }
        )
        logger.info("Created account %s (%s)", account_name, account_type)
        return account

    def _resolve_securities(
        self, transactions: list[TransformedTransaction], result: ImportResult
    ) -> dict[str, int]:
        by_isin: dict[str, list[TransformedTransaction]] = defaultdict(list)
        for txn in transactions:
            if txn.needs_security_lookup and txn.isin:
                by_isin[txn.isin].append(txn)

        securities: dict[str, int] = {}
        for isin, rows in by_isin.items():
            try:
                security = self.store.find_security(isin)
                if security is None:
                    if not self.config.create_missing_securities:
                        result.warnings.append(
                            f"Security {isin} not found and creation is disabled; "
                            f"{len(rows)} transaction(s) excluded"
                        )
                        continue
                    name = next((row.security_name for row in rows if row.security_name), "")
                    security = self.store.create_security(
                        {
                            "isin": isin,
                            "symbol": extract_symbol(name, isin),
                            "name": name or isin,
                            "exchange": "UNKNOWN",
                            "currency": _dominant_currency(rows),
                            "asset_class": "STOCK",
                            "data_source": DATA_SOURCE,
                        }
                    )
                    result.created_securities += 1
                    logger.debug("Created security %s", isin)
                securities[isin] = security.id
            except Exception as exc:
                logger.warning("Security resolution failed for %s: %s", isin, exc)
                result.errors.append(f"Failed to process security {isin}: {exc}")
        return securities

    def _build_records(
        self,
        transactions: list[TransformedTransaction],
        accounts: dict[str, int],
        securities: dict[str, int],
        result: ImportResult,
    ) -> list[TransactionRecord]:
        records: list[TransactionRecord] = []
        for txn in transactions:
            label = txn.id or f"line {txn.line_number}"
            if not txn.is_valid:
                result.skipped_rows += 1
                result.errors.extend(f"Transaction {label}: {error}" for error in txn.validation_errors)
                continue

            account_id = accounts.get(txn.portfolio_name)
            if account_id is None:
                result.skipped_rows += 1
                result.errors.append(f"Transaction {label}: no account for portfolio '{txn.portfolio_name}'")
                continue

            security_id = None
            if txn.needs_security_lookup and txn.isin:
                security_id = securities.get(txn.isin)
                if security_id is None:
                    # Creation disabled or failed; already reported per ISIN.
                    result.skipped_rows += 1
                    continue

            try:
                records.append(self._to_record(txn, account_id, security_id, result.import_batch_id))
            except Exception as exc:
                result.skipped_rows += 1
                result.errors.append(f"Failed to transform transaction {label}: {exc}")
        return records

    def _to_record(
        self,
        txn: TransformedTransaction,
        account_id: int,
        security_id: Optional[int],
        batch_id: str,
    ) -> TransactionRecord:
        if txn.booking_date is None or txn.amount is None:
            raise ValueError("booking date and amount are required")
        commission = txn.commission or 0.0
        description = txn.transaction_text or txn.security_name or txn.transaction_type
        return TransactionRecord(
            user_id=self.owner_id,
            account_id=account_id,
            security_id=security_id,
            external_id=txn.id,
            transaction_type=txn.internal_transaction_type.value,
            booking_date=txn.booking_date,
            settlement_date=txn.settlement_date,
            quantity=txn.quantity or 0.0,
            price=txn.price,
            total_amount=txn.amount,
            commission=commission,
            other_fees=(txn.total_fees or 0.0) - commission,
            currency=txn.currency,
            exchange_rate=txn.exchange_rate or txn.currency_rate or 1.0,
            description=description[:255],
            notes=_build_notes(txn),
            data_source=DATA_SOURCE,
            import_batch_id=batch_id,
        )

    def _commit(
        self,
        records: list[TransactionRecord],
        result: ImportResult,
        cancel_event: threading.Event | None,
    ) -> None:
        unique: list[TransactionRecord] = []
        seen: set[str] = set()
        for record in records:
            if record.external_id in seen:
                result.duplicate_rows += 1
                result.warnings.append(
                    f"Transaction {record.external_id} appears more than once in the file; "
                    "only the first occurrence is imported"
                )
                continue
            seen.add(record.external_id)
            unique.append(record)

        size = self.config.batch_size
        batches = [unique[start : start + size] for start in range(0, len(unique), size)]
        if not batches:
            return

        if self.config.max_workers > 1 and len(batches) > 1:
            # Dedup is widened to every in-flight batch before dispatch.
            try:
                existing: Optional[set[str]] = set(
                    self.store.find_transactions_by_external_id(
                        self.owner_id, [record.external_id for record in unique]
                    )
                )
            except Exception as exc:
                logger.error("Duplicate lookup failed: %s", exc)
                result.errors.append(f"Failed to check for existing transactions: {exc}")
                return
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                outcomes = list(
                    pool.map(
                        lambda item: self._process_batch(item[0], item[1], existing, cancel_event),
                        enumerate(batches, start=1),
                    )
                )
        else:
            outcomes = []
            for index, batch in enumerate(batches, start=1):
                outcome = self._process_batch(index, batch, None, cancel_event)
                outcomes.append(outcome)
                if outcome.cancelled:
                    break

        for outcome in outcomes:
            if outcome.cancelled:
                result.cancelled = True
                continue
            result.created_transactions += outcome.created
            result.updated_transactions += outcome.updated
            result.duplicate_rows += outcome.duplicates
            result.errors.extend(outcome.errors)
            result.warnings.extend(outcome.warnings)

        if result.cancelled:
            done = sum(1 for outcome in outcomes if not outcome.cancelled)
            result.warnings.append(
                f"Import cancelled after {done} of {len(batches)} batches"
            )
            logger.warning("Import %s cancelled", result.import_batch_id)

    def _process_batch(
        self,
        index: int,
        batch: list[TransactionRecord],
        existing: Optional[set[str]],
        cancel_event: threading.Event | None,
    ) -> _BatchOutcome:
        outcome = _BatchOutcome(index=index)
        if cancel_event is not None and cancel_event.is_set():
            outcome.cancelled = True
            return outcome

        try:
            if existing is None:
                found = set(
                    self.store.find_transactions_by_external_id(
                        self.owner_id, [record.external_id for record in batch]
                    )
                )
            else:
                found = existing

            fresh = [record for record in batch if record.external_id not in found]
            duplicates = [record for record in batch if record.external_id in found]
            policy = self.config.duplicate_handling

            if duplicates:
                if policy is DuplicateHandling.SKIP:
                    outcome.duplicates += len(duplicates)
                elif policy is DuplicateHandling.ERROR:
                    outcome.duplicates += len(duplicates)
                    outcome.errors.extend(
                        f"Transaction {record.external_id}: already imported" for record in duplicates
                    )
                else:
                    outcome.updated = self.store.update_transactions(
                        self.owner_id, [record.as_mapping() for record in duplicates]
                    )

            if not fresh:
                logger.debug("Batch %d has nothing new to insert", index)
                return outcome

            inserted = self.store.insert_transactions([record.as_mapping() for record in fresh])
            outcome.created = len(inserted)
            logger.debug("Batch %d inserted %d transactions", index, outcome.created)
        except Exception as exc:
            logger.error("Batch %d failed: %s", index, exc, extra={"batch": index})
            outcome.errors.append(f"Failed to import batch {index}: {exc}")
        return outcome

"""Cross-field checks applied to every mapped transaction."""

from __future__ import annotations

import re

from .import_types import TransactionType, TransformedTransaction

_ISIN_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{9}[0-9]$")
_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

_PRICED_TYPES = frozenset({TransactionType.BUY, TransactionType.SELL})


def _luhn_valid(digits: str) -> bool:
    total = 0
    for index, char in enumerate(reversed(digits)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def is_valid_isin(code: str | None) -> bool:
    """Pattern plus check digit (letters expand to 10-35 before the Luhn sum)."""
    if not code or not _ISIN_PATTERN.match(code):
        return False
    digits = "".join(str(int(char, 36)) for char in code)
    return _luhn_valid(digits)


def amount_difference(txn: TransformedTransaction) -> float | None:
    """Relative gap between quantity x price and the stated amount.

    The exchange rate converts a foreign price into the account currency when
    present. Stated fees may account for the gap, so the closest of amount,
    amount minus fees and amount plus fees is used. ``None`` when the row
    carries nothing to compare.
    """
    if not txn.quantity or not txn.price or txn.amount is None:
        return None
    rate = txn.exchange_rate if txn.exchange_rate and txn.exchange_rate > 0 else 1.0
    expected = abs(txn.quantity * txn.price * rate)
    stated = abs(txn.amount)
    fees = abs(txn.total_fees or 0.0)
    gap = min(abs(expected - stated), abs(expected - (stated - fees)), abs(expected - (stated + fees)))
    base = max(expected, stated)
    return gap / base if base else 0.0


def validate_business_rules(
    txn: TransformedTransaction,
    tolerance: float = 0.01,
    validate_isin: bool = True,
) -> TransformedTransaction:
    """Append rule violations to the transaction's own error and warning lists."""
    errors = txn.validation_errors
    warnings = txn.validation_warnings

    if txn.internal_transaction_type in _PRICED_TYPES:
        if txn.quantity is None or txn.quantity <= 0:
            errors.append(
                f"{txn.internal_transaction_type.value} transaction must have a positive quantity"
            )
        if txn.price is None or txn.price <= 0:
            errors.append(
                f"{txn.internal_transaction_type.value} transaction must have a positive price"
            )

    difference = amount_difference(txn)
    if difference is not None and difference > tolerance:
        warnings.append(
            f"Amount {txn.amount} differs from quantity x price by {difference:.2%}"
        )

    if validate_isin and txn.needs_security_lookup and txn.isin and not is_valid_isin(txn.isin):
        errors.append(f"Invalid ISIN format: {txn.isin}")

    if txn.currency and not _CURRENCY_PATTERN.match(txn.currency):
        errors.append(f"Invalid currency code: {txn.currency}")

    if txn.booking_date and txn.trade_date and txn.booking_date < txn.trade_date:
        warnings.append("Booking date is before trade date")

    return txn

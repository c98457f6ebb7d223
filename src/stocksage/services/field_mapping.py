"""Map raw export rows onto the canonical transaction shape.

The mapping table in :mod:`stocksage.services.brokerage_formats` is pure
data. Validator and transformer rule ids resolve through the ``VALIDATORS``
and ``TRANSFORMERS`` dispatch tables defined here.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from .brokerage_formats import NORDNET_FORMAT, BrokerageFormat
from .business_rules import validate_business_rules
from .csv_parser import find_header
from .import_types import (
    CANONICAL_FIELDS,
    SECURITY_TRANSACTION_TYPES,
    FieldMapping,
    FieldType,
    ImportConfig,
    MappingSuggestion,
    RawRow,
    TransactionType,
    TransformedTransaction,
)

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_EUROPEAN_DATE = re.compile(r"^(\d{1,2})([./-])(\d{1,2})\2(\d{4})$")
_WHITESPACE = re.compile(r"\s+")
_NUMBER_CHARS = re.compile(r"[^0-9,.\-]")
_VALID_NUMBER = re.compile(r"^-?(\d+\.?\d*|\.\d+)$")

TRUTHY_TOKENS = frozenset({"true", "1", "yes", "y", "ja", "j"})


def parse_date(text: Optional[str]) -> Optional[date]:
    """Parse ISO or day-first European dates; ``None`` when unparseable."""
    if not text:
        return None
    value = text.strip()

    iso = _ISO_DATE.match(value)
    if iso:
        year, month, day = (int(part) for part in iso.groups())
    else:
        european = _EUROPEAN_DATE.match(value)
        if not european:
            return None
        day, month, year = int(european.group(1)), int(european.group(3)), int(european.group(4))

    if not 1900 <= year <= 2100:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_number(text: Optional[str]) -> Optional[float]:
    """Parse a locale-formatted number such as ``-28 706,04`` or ``1.234.567,89``.

    With both separators present the later one is the decimal mark. A lone
    separator, dot or comma, followed by exactly three digits groups thousands;
    any other lone separator is a decimal mark. A separator that repeats is
    always a thousands separator.
    """
    if text is None:
        return None
    value = _WHITESPACE.sub("", text).replace("\u2212", "-")
    value = _NUMBER_CHARS.sub("", value)
    if not value or value in {"-", ".", ","}:
        return None

    dots, commas = value.count("."), value.count(",")
    if dots and commas:
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif commas > 1 or dots > 1:
        value = value.replace(",", "").replace(".", "")
    elif commas == 1 or dots == 1:
        integer, fraction = re.split(r"[.,]", value)
        if len(fraction) == 3:
            value = integer + fraction
        else:
            value = f"{integer}.{fraction}"

    if not _VALID_NUMBER.match(value):
        return None
    return float(value)


def parse_boolean(text: Optional[str]) -> bool:
    return bool(text) and text.strip().lower() in TRUTHY_TOKENS


def _is_numeric_id(value: str) -> bool:
    return value.isdigit()


def _is_non_empty(value: str) -> bool:
    return bool(value.strip())


def _is_isin_format(value: str) -> bool:
    return bool(re.fullmatch(r"[A-Z]{2}[A-Z0-9]{9}[0-9]", value.strip().upper()))


def _is_currency_code(value: str) -> bool:
    return bool(re.fullmatch(r"[A-Z]{3}", value.strip()))


def _transform_date(value: str) -> Optional[date]:
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f"unrecognised date {value!r}")
    return parsed


def _transform_number(value: str) -> Optional[float]:
    parsed = parse_number(value)
    if parsed is None:
        raise ValueError(f"unrecognised number {value!r}")
    return parsed


VALIDATORS: Mapping[str, Callable[[str], bool]] = MappingProxyType(
    {
        "numeric_id": _is_numeric_id,
        "non_empty": _is_non_empty,
        "isin_format": _is_isin_format,
        "currency_code": _is_currency_code,
    }
)

TRANSFORMERS: Mapping[str, Callable[[str], Any]] = MappingProxyType(
    {
        "date": _transform_date,
        "number": _transform_number,
        "upper": lambda value: value.strip().upper(),
        "strip": lambda value: value.strip(),
    }
)

# Rules that only run when ISIN checking is enabled.
_ISIN_RULES = frozenset({"isin_format"})


def _coerce(value: Any, field_type: FieldType) -> Any:
    if field_type is FieldType.DATE:
        return value if isinstance(value, date) else parse_date(str(value))
    if field_type is FieldType.NUMBER:
        return value if isinstance(value, float) else parse_number(str(value))
    if field_type is FieldType.BOOLEAN:
        return value if isinstance(value, bool) else parse_boolean(str(value))
    return value if isinstance(value, str) else str(value)


def resolve_mappings(
    headers: Iterable[str], mappings: Iterable[FieldMapping]
) -> dict[str, Optional[str]]:
    """Map each target field to the header that feeds it, or ``None``."""
    headers = list(headers)
    resolved: dict[str, Optional[str]] = {}
    taken: set[str] = set()
    for mapping in mappings:
        # Exact matches first so "Valuta" is not claimed by "Valutakurs".
        header = find_header([h for h in headers if h not in taken], mapping.source)
        resolved[mapping.target] = header
        if header is not None:
            taken.add(header)
    return resolved


# Keyword hints for headers the mapping table does not know; first keyword hit
# per target wins.
SUGGESTION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("id", ("id", "identifier", "number")),
    ("date", ("date", "dato", "dag")),
    ("type", ("type", "typ", "art")),
    ("security", ("security", "verdipapir", "instrument")),
    ("isin", ("isin", "code", "symbol")),
    ("quantity", ("quantity", "antall", "antal", "amount")),
    ("price", ("price", "kurs", "rate")),
    ("currency", ("currency", "valuta", "curr")),
    ("fee", ("fee", "avgift", "cost", "gebyr")),
    ("portfolio", ("portfolio", "portefølje", "account", "konto")),
)


def suggest_mappings(headers: Iterable[str]) -> list[MappingSuggestion]:
    """Guess what unfamiliar headers hold, most confident first.

    Confidence is the share of the header taken up by the matching keyword, so
    ``"Valuta"`` scores 1.0 for currency and ``"Valutakurs"`` 0.6.
    """
    suggestions: list[MappingSuggestion] = []
    for header in headers:
        lowered = header.lower()
        if not lowered:
            continue
        for target, keywords in SUGGESTION_KEYWORDS:
            keyword = next((keyword for keyword in keywords if keyword in lowered), None)
            if keyword is not None:
                suggestions.append(MappingSuggestion(header, target, len(keyword) / len(lowered)))
    suggestions.sort(key=lambda suggestion: suggestion.confidence, reverse=True)
    return suggestions


def validate_mappings(
    mappings: Iterable[FieldMapping],
    headers: Iterable[str],
    fmt: BrokerageFormat = NORDNET_FORMAT,
) -> list[str]:
    """Check a mapping table against a header row; returns error messages."""
    mappings = list(mappings)
    headers = list(headers)
    errors: list[str] = []

    resolved = resolve_mappings(headers, mappings)
    for mapping in mappings:
        if resolved[mapping.target] is None:
            errors.append(f"Mapped column '{mapping.source}' not found in CSV headers")

    required_targets = {
        mapping.target for mapping in fmt.mappings if mapping.required
    }
    mapped_required = {mapping.target for mapping in mappings if mapping.required}
    for target in sorted(required_targets - mapped_required):
        errors.append(f"Required field '{target}' is not mapped")

    seen: set[str] = set()
    for mapping in mappings:
        if mapping.target in seen:
            errors.append(f"Duplicate mapping to target field: {mapping.target}")
        seen.add(mapping.target)
        if mapping.target not in CANONICAL_FIELDS:
            errors.append(f"Unknown target field: {mapping.target}")
        if mapping.validator is not None and mapping.validator not in VALIDATORS:
            errors.append(f"Unknown validator rule '{mapping.validator}' for {mapping.source}")
        if mapping.transformer is not None and mapping.transformer not in TRANSFORMERS:
            errors.append(f"Unknown transformer rule '{mapping.transformer}' for {mapping.source}")
    return errors


def normalize_transaction_type(
    label: str, fmt: BrokerageFormat = NORDNET_FORMAT
) -> tuple[TransactionType, bool]:
    """Resolve a raw label to an internal type; the flag is False for unknown labels."""
    label = (label or "").strip()
    if label in fmt.transaction_types:
        return fmt.transaction_types[label], True

    lowered = label.lower()
    for known, txn_type in fmt.transaction_types.items():
        if known.lower() == lowered:
            return txn_type, True

    if lowered:
        for keyword, txn_type in fmt.type_keywords:
            if keyword in lowered:
                return txn_type, True

    logger.warning("Unknown transaction type %r, defaulting to FEE", label)
    return TransactionType.FEE, False


def account_name_for(portfolio: str, fmt: BrokerageFormat = NORDNET_FORMAT) -> str:
    portfolio = (portfolio or "").strip()
    if not portfolio:
        return "Unknown Account"
    if portfolio.isdigit():
        return f"{fmt.account_prefix} {portfolio}"
    return portfolio


def map_row(
    row: RawRow,
    fmt: BrokerageFormat = NORDNET_FORMAT,
    config: ImportConfig | None = None,
    resolved: Optional[Mapping[str, Optional[str]]] = None,
) -> TransformedTransaction:
    """Map one raw row, collecting problems on the returned transaction."""
    config = config or ImportConfig()
    if resolved is None:
        resolved = resolve_mappings(row.values.keys(), fmt.mappings)

    txn = TransformedTransaction(line_number=row.line_number)
    errors = txn.validation_errors

    for mapping in fmt.mappings:
        raw = (row.get(resolved.get(mapping.target)) or "").strip()
        if not raw:
            if mapping.required:
                errors.append(f"Required field '{mapping.source}' is missing")
            continue

        if mapping.validator and not (mapping.validator in _ISIN_RULES and not config.validate_isin):
            if not VALIDATORS[mapping.validator](raw):
                errors.append(f"Invalid value for field '{mapping.source}': {raw}")
                continue

        value: Any = raw
        if mapping.transformer:
            try:
                value = TRANSFORMERS[mapping.transformer](raw)
            except Exception as exc:  # noqa: BLE001 - any rule failure is a row error
                errors.append(f"Transformation failed for field '{mapping.source}': {exc}")
                continue

        coerced = _coerce(value, mapping.field_type)
        if coerced is None:
            message = f"Could not convert field '{mapping.source}' to {mapping.field_type.value}: {raw}"
            if mapping.required:
                errors.append(message)
            else:
                txn.validation_warnings.append(message)
            continue
        setattr(txn, mapping.target, coerced)

    mapped_columns = {column for column in resolved.values() if column}
    txn.extra = {
        column: value
        for column, value in row.values.items()
        if column not in mapped_columns and value
    }

    if txn.transaction_type:
        txn_type, known = normalize_transaction_type(txn.transaction_type, fmt)
        txn.internal_transaction_type = txn_type
        if not known:
            message = (
                f"Unknown transaction type '{txn.transaction_type}', "
                f"recorded as {TransactionType.FEE.value}"
            )
            if config.strict_mode:
                errors.append(message)
            else:
                txn.validation_warnings.append(message)

    portfolio_mapping = config.portfolio_mapping_for(txn.portfolio_name)
    txn.account_name = (
        portfolio_mapping.account_name
        if portfolio_mapping
        else account_name_for(txn.portfolio_name, fmt)
    )
    txn.needs_security_lookup = txn.internal_transaction_type in SECURITY_TRANSACTION_TYPES

    validate_business_rules(txn, config.amount_tolerance, validate_isin=config.validate_isin)

    if txn.validation_errors:
        logger.debug(
            "Row %d failed validation",
            row.line_number,
            extra={"external_id": txn.id, "errors": txn.validation_errors},
        )
    return txn


def map_rows(
    rows: Iterable[RawRow],
    headers: Iterable[str],
    fmt: BrokerageFormat = NORDNET_FORMAT,
    config: ImportConfig | None = None,
) -> list[TransformedTransaction]:
    """Map every row of a parse result with one header resolution."""
    config = config or ImportConfig()
    resolved = resolve_mappings(headers, fmt.mappings)
    transactions = [map_row(row, fmt, config, resolved) for row in rows]
    invalid = sum(1 for txn in transactions if not txn.is_valid)
    logger.info(
        "Mapped %d rows (%d with errors)", len(transactions), invalid,
        extra={"format": fmt.name},
    )
    return transactions

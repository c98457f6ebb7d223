"""Row parsing and structural validation for institution CSV exports."""

from __future__ import annotations

import csv
import io
import logging
import re
from pathlib import Path
from typing import Iterable

from .brokerage_formats import NORDNET_FORMAT, BrokerageFormat
from .csv_encoding import SAMPLE_SIZE, decode_bytes, detect_delimiter, detect_encoding
from .import_types import ImportConfig, ParseResult, RawRow, ValidationResult

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024
SUPPORTED_EXTENSIONS = (".csv", ".txt")

_ISIN_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{9}[0-9]$")


def validate_file(
    filename: str,
    size: int,
    *,
    max_size: int = MAX_FILE_SIZE,
    fmt: BrokerageFormat = NORDNET_FORMAT,
) -> ValidationResult:
    """Check size and extension before any bytes are decoded.

    A filename that does not look like an institution export is still valid
    but produces a warning.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if size > max_size:
        errors.append(
            f"File size exceeds {max_size / (1024 * 1024):.0f}MB limit. "
            f"Current size: {size / (1024 * 1024):.2f}MB"
        )

    extension = Path(filename).suffix.lower()
    if extension not in SUPPORTED_EXTENSIONS:
        errors.append("Unsupported file type. Please upload a CSV file (.csv or .txt)")

    if not errors and not any(pattern.search(filename) for pattern in fmt.filename_patterns):
        warnings.append(
            f"File name doesn't match typical {fmt.platform_name} export patterns. "
            f"Please verify this is a {fmt.platform_name} CSV export file."
        )

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def parse_text(text: str, delimiter: str, skip_rows: int = 0) -> ParseResult:
    """Split decoded text into headers and rows.

    Quoted fields may contain the delimiter, doubled quotes and newlines. A
    line that cannot be parsed, or that carries more values than there are
    headers, becomes a warning and is skipped. Short rows are padded.
    """
    result = ParseResult(detected_delimiter=delimiter)

    if skip_rows:
        text = "\n".join(text.splitlines()[skip_rows:])

    if not text.strip():
        result.errors.append("File is empty or contains no valid data")
        return result

    reader = csv.reader(
        io.StringIO(text, newline=""),
        delimiter=delimiter,
        quotechar='"',
        doublequote=True,
        strict=True,
    )

    headers: list[str] = []
    while not headers:
        try:
            record = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            result.errors.append(f"Could not parse header row: {exc}")
            return result
        headers = [value.strip() for value in record]
        if not any(headers):
            headers = []

    if not headers:
        result.errors.append("No headers found in the first row")
        return result
    headers[0] = headers[0].lstrip("\ufeff")
    result.headers = headers

    while True:
        try:
            record = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            # Row numbers are 1-based physical lines, header included.
            result.warnings.append(f"Row {reader.line_num + skip_rows}: {exc}, skipping")
            continue

        if not record or not any(value.strip() for value in record):
            continue

        line_number = reader.line_num + skip_rows
        if len(record) > len(headers):
            result.warnings.append(
                f"Row {line_number}: expected {len(headers)} values, found {len(record)}, skipping"
            )
            continue

        values = {header: "" for header in headers}
        for header, value in zip(headers, record):
            values[header] = value.strip()
        result.rows.append(RawRow(line_number=line_number, values=values))

    result.total_rows = len(result.rows)
    logger.debug(
        "Parsed %d rows",
        result.total_rows,
        extra={"delimiter": delimiter, "headers": len(headers)},
    )
    return result


def _header_matches(header: str, expected: str) -> bool:
    header_lower = header.lower()
    expected_lower = expected.lower()
    return expected_lower in header_lower or (bool(header_lower) and header_lower in expected_lower)


def validate_structure(
    headers: list[str],
    fmt: BrokerageFormat = NORDNET_FORMAT,
    threshold: float = 0.6,
) -> ValidationResult:
    """Check mandatory columns, header recognition rate and column count."""
    errors: list[str] = []
    warnings: list[str] = []
    suggestions: list[str] = []

    missing = [
        required
        for required in fmt.required_headers
        if not any(required.lower() in header.lower() for header in headers)
    ]
    if missing:
        errors.append(f"Missing required {fmt.platform_name} headers: {', '.join(missing)}")

    recognised = [
        header
        for header in headers
        if any(_header_matches(header, expected) for expected in fmt.expected_headers)
    ]
    if len(recognised) < len(fmt.expected_headers) * threshold:
        warnings.append(
            f"Only {len(recognised)} out of {len(fmt.expected_headers)} expected "
            f"{fmt.platform_name} headers found"
        )
        suggestions.append(f"Verify this is a {fmt.platform_name} CSV export file")

    if any(not header.isascii() for header in headers):
        warnings.append("Non-ASCII characters detected in headers - encoding issues may occur")

    if len(headers) < fmt.min_columns:
        errors.append(f"Too few columns for a typical {fmt.platform_name} export")
    elif len(headers) > fmt.max_columns:
        warnings.append("Unusually many columns - may include extra data")

    return ValidationResult(
        is_valid=not errors, errors=errors, warnings=warnings, suggestions=suggestions
    )


def find_header(headers: list[str], expected: str) -> str | None:
    """Resolve an expected column: case-insensitive exact match, then substring."""
    for header in headers:
        if header.lower() == expected.lower():
            return header
    for header in headers:
        if _header_matches(header, expected):
            return header
    return None


def _summarize(result: ParseResult, fmt: BrokerageFormat) -> None:
    frame = result.to_frame()
    columns = {mapping.target: find_header(result.headers, mapping.source) for mapping in fmt.mappings}

    def distinct(target: str) -> list[str]:
        column = columns.get(target)
        if column is None or frame.empty:
            return []
        series = frame[column].dropna().str.strip()
        return sorted(value for value in series.unique() if value)

    result.portfolios = distinct("portfolio_name")
    result.transaction_types = distinct("transaction_type")
    result.currencies = distinct("currency")
    result.isin_codes = [code for code in distinct("isin") if _ISIN_PATTERN.match(code)]

    unknown_currencies = validate_currencies(result.currencies, fmt)["unrecognized"]
    if unknown_currencies:
        result.warnings.append(
            f"Currencies not traded on {fmt.platform_name}: {', '.join(unknown_currencies)}"
        )
    odd_portfolios = validate_portfolios(result.portfolios, fmt)["invalid"]
    if odd_portfolios:
        result.warnings.append(f"Unrecognized portfolio names: {', '.join(odd_portfolios)}")


def parse_bytes(
    data: bytes,
    filename: str = "export.csv",
    config: ImportConfig | None = None,
    fmt: BrokerageFormat = NORDNET_FORMAT,
    *,
    max_size: int = MAX_FILE_SIZE,
) -> ParseResult:
    """Run validation, detection, decoding, parsing and structural checks.

    Fatal-to-file problems come back in ``errors``; nothing here raises.
    """
    config = config or ImportConfig()

    validation = validate_file(filename, len(data), max_size=max_size, fmt=fmt)
    if not validation.is_valid:
        return ParseResult(errors=validation.errors)

    if not data.strip():
        return ParseResult(
            errors=["File is empty or contains no valid data"], warnings=validation.warnings
        )

    encoding = config.encoding or detect_encoding(data[:SAMPLE_SIZE], filename, fmt).encoding
    try:
        text = decode_bytes(data, encoding)
    except (UnicodeDecodeError, LookupError) as exc:
        logger.warning("Could not decode %s as %s: %s", filename, encoding, exc)
        return ParseResult(
            errors=[f"Could not decode file as {encoding}: {exc}"],
            warnings=validation.warnings,
            detected_encoding=encoding,
        )

    delimiter = config.delimiter or detect_delimiter(text)
    result = parse_text(text, delimiter, skip_rows=config.skip_rows)
    result.detected_encoding = encoding
    result.detected_delimiter = delimiter
    result.has_locale_characters = any(char in text for char in fmt.locale_characters)
    result.warnings[:0] = validation.warnings

    if result.errors:
        return result

    structure = validate_structure(result.headers, fmt, config.header_match_threshold)
    result.errors.extend(structure.errors)
    result.warnings.extend(structure.warnings)
    if not structure.is_valid:
        logger.warning(
            "Structural validation failed for %s",
            filename,
            extra={"errors": structure.errors},
        )
        return result
    result.warnings.extend(structure.suggestions)

    _summarize(result, fmt)
    logger.info(
        "Parsed %s: %d rows, encoding=%s, delimiter=%r",
        filename,
        result.total_rows,
        encoding,
        delimiter,
    )
    return result


def parse_file(
    path: Path,
    config: ImportConfig | None = None,
    fmt: BrokerageFormat = NORDNET_FORMAT,
    *,
    max_size: int = MAX_FILE_SIZE,
) -> ParseResult:
    """Read ``path`` and delegate to :func:`parse_bytes`."""
    path = Path(path)
    try:
        size = path.stat().st_size
    except OSError as exc:
        return ParseResult(errors=[f"File error: {exc}"])
    if size > max_size:
        return ParseResult(errors=validate_file(path.name, size, max_size=max_size, fmt=fmt).errors)
    try:
        data = path.read_bytes()
    except OSError as exc:
        return ParseResult(errors=[f"File error: {exc}"])
    return parse_bytes(data, path.name, config, fmt, max_size=max_size)


def summarize_labels(labels: Iterable[str], fmt: BrokerageFormat = NORDNET_FORMAT) -> dict:
    """Split transaction labels into recognised and unrecognised ones.

    Unrecognised labels get a suggestion when a known label contains them or
    is contained by them.
    """
    recognized: list[str] = []
    unrecognized: list[str] = []
    suggestions: dict[str, str] = {}
    for label in labels:
        if label in fmt.transaction_types:
            recognized.append(label)
            continue
        unrecognized.append(label)
        lowered = label.lower()
        similar = next(
            (known for known in fmt.transaction_types if known.lower() in lowered or lowered in known.lower()),
            None,
        )
        if similar:
            suggestions[label] = similar
    return {"recognized": recognized, "unrecognized": unrecognized, "suggestions": suggestions}


def validate_currencies(currencies: Iterable[str], fmt: BrokerageFormat = NORDNET_FORMAT) -> dict:
    """Split currency codes into ones the institution trades in and the rest."""
    recognized: list[str] = []
    unrecognized: list[str] = []
    for currency in currencies:
        (recognized if currency in fmt.currencies else unrecognized).append(currency)
    return {"recognized": recognized, "unrecognized": unrecognized}


def validate_portfolios(portfolios: Iterable[str], fmt: BrokerageFormat = NORDNET_FORMAT) -> dict:
    """Match portfolio names against the format's known shapes.

    ``patterns`` maps each valid portfolio to the name of the first pattern it
    matched.
    """
    valid: list[str] = []
    invalid: list[str] = []
    patterns: dict[str, str] = {}
    for portfolio in portfolios:
        matched = next(
            (name for name, pattern in fmt.portfolio_patterns if pattern.search(portfolio)),
            None,
        )
        if matched is None:
            invalid.append(portfolio)
            continue
        valid.append(portfolio)
        patterns[portfolio] = matched
    return {"valid": valid, "invalid": invalid, "patterns": patterns}


def generate_sample_csv(fmt: BrokerageFormat = NORDNET_FORMAT) -> str:
    """Tab-delimited sample export with one buy and one sell."""
    rows = [
        [
            "213948411", "2025-06-24", "2025-06-24", "2025-06-25", "551307769",
            "KJØPT", "Hims & Hers Health A", "US4330001060", "66", "42.7597",
            "0", "99", "NOK", "-28706.04", "2831.91", "0", "131", "179.97",
            "10.1366", "", "", "", "", "99", "10.1366", "0",
        ],
        [
            "213948412", "2025-06-25", "2025-06-25", "2025-06-26", "551307769",
            "SALG", "Apple Inc", "US0378331005", "5", "180.25", "0", "99",
            "NOK", "9036.48", "9012.50", "450.75", "0", "9216.45", "10.1366",
            "", "", "", "", "99", "10.1366", "0",
        ],
    ]
    lines = ["\t".join(fmt.expected_headers)]
    lines.extend("\t".join(row) for row in rows)
    return "\n".join(lines)

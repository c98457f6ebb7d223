"""Declarative descriptions of supported institution export formats.

A format is data: the ordered field mappings, the header set the structural
validator expects, the label table for transaction types and the locale hints
the encoding detector scores against. Supporting another institution means
adding another ``BrokerageFormat`` to ``FORMATS``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from .import_types import FieldMapping, FieldType, TransactionType


@dataclass(frozen=True)
class BrokerageFormat:
    name: str
    platform_name: str
    account_prefix: str
    mappings: tuple[FieldMapping, ...]
    expected_headers: tuple[str, ...]
    required_headers: tuple[str, ...]
    transaction_types: Mapping[str, TransactionType]
    # Keyword fallback for labels missing from ``transaction_types``; first hit wins.
    type_keywords: tuple[tuple[str, TransactionType], ...]
    candidate_encodings: tuple[str, ...]
    locale_characters: str
    vocabulary: tuple[str, ...]
    currencies: tuple[str, ...]
    filename_patterns: tuple[re.Pattern[str], ...]
    min_columns: int = 10
    max_columns: int = 50
    # Named shapes a portfolio column value may take; first match wins.
    portfolio_patterns: tuple[tuple[str, re.Pattern[str]], ...] = ()

    @property
    def legacy_encoding(self) -> str:
        return self.candidate_encodings[0]


def _number(source: str, target: str) -> FieldMapping:
    return FieldMapping(source, target, False, FieldType.NUMBER, transformer="number")


def _date(source: str, target: str, required: bool = False) -> FieldMapping:
    return FieldMapping(source, target, required, FieldType.DATE, transformer="date")


NORDNET_MAPPINGS: tuple[FieldMapping, ...] = (
    FieldMapping("Id", "id", True, FieldType.STRING, validator="numeric_id"),
    _date("Bokføringsdag", "booking_date", required=True),
    _date("Handelsdag", "trade_date"),
    _date("Oppgjørsdag", "settlement_date"),
    FieldMapping("Portefølje", "portfolio_name", True, FieldType.STRING, validator="non_empty"),
    FieldMapping("Transaksjonstype", "transaction_type", True, FieldType.STRING, validator="non_empty"),
    FieldMapping("Verdipapir", "security_name"),
    FieldMapping("ISIN", "isin", False, FieldType.STRING, validator="isin_format", transformer="upper"),
    _number("Antall", "quantity"),
    _number("Kurs", "price"),
    _number("Rente", "interest"),
    _number("Totale Avgifter", "total_fees"),
    FieldMapping("Valuta", "currency", True, FieldType.STRING, validator="currency_code"),
    FieldMapping("Beløp", "amount", True, FieldType.NUMBER, transformer="number"),
    _number("Kjøpsverdi", "cost_basis"),
    _number("Resultat", "realized_pnl"),
    _number("Totalt antall", "total_quantity"),
    _number("Saldo", "balance"),
    _number("Vekslingskurs", "exchange_rate"),
    FieldMapping("Transaksjonstekst", "transaction_text"),
    _date("Makuleringsdato", "cancellation_date"),
    FieldMapping("Sluttseddelnummer", "settlement_number"),
    FieldMapping("Verifikasjonsnummer", "verification_number"),
    _number("Kurtasje", "commission"),
    _number("Valutakurs", "currency_rate"),
    _number("Innledende rente", "initial_interest"),
)

NORDNET_TRANSACTION_TYPES: Mapping[str, TransactionType] = MappingProxyType(
    {
        "KJØPT": TransactionType.BUY,
        "KJØP": TransactionType.BUY,
        "Månedssparing": TransactionType.BUY,
        "SALG": TransactionType.SELL,
        "SOLGT": TransactionType.SELL,
        "Overføring via Trustly": TransactionType.DEPOSIT,
        "Innskudd": TransactionType.DEPOSIT,
        "INNSKUDD": TransactionType.DEPOSIT,
        "UTBETALING": TransactionType.WITHDRAWAL,
        "Uttak": TransactionType.WITHDRAWAL,
        "Tilbakeføring": TransactionType.WITHDRAWAL,
        "Valutaveksling": TransactionType.WITHDRAWAL,
        "FORSIKRINGSKOSTNAD": TransactionType.FEE,
        "Kurtasje": TransactionType.FEE,
        "Avgift": TransactionType.FEE,
        "Kostnad": TransactionType.FEE,
        "Justering": TransactionType.FEE,
        "Utbetaling aksjelån": TransactionType.DIVIDEND,
        "Aksjeutbytte": TransactionType.DIVIDEND,
        "Utbytte": TransactionType.DIVIDEND,
        "UTBYTTE": TransactionType.DIVIDEND,
        "Renter": TransactionType.INTEREST,
        "Rentegevinst": TransactionType.INTEREST,
        "Aksjesplitt": TransactionType.SPLIT,
        "Sammenslåing": TransactionType.MERGER,
        "Utskilling": TransactionType.SPINOFF,
        "Overføring inn": TransactionType.TRANSFER_IN,
        "Overføring ut": TransactionType.TRANSFER_OUT,
        "Skatt": TransactionType.TAX,
        "Kildeskatt": TransactionType.TAX,
        "Reinvestering": TransactionType.REINVESTMENT,
    }
)

NORDNET_TYPE_KEYWORDS: tuple[tuple[str, TransactionType], ...] = (
    ("kjøp", TransactionType.BUY),
    ("buy", TransactionType.BUY),
    ("salg", TransactionType.SELL),
    ("sell", TransactionType.SELL),
    ("utbytte", TransactionType.DIVIDEND),
    ("dividend", TransactionType.DIVIDEND),
    ("rente", TransactionType.INTEREST),
    ("interest", TransactionType.INTEREST),
    ("skatt", TransactionType.TAX),
    ("tax", TransactionType.TAX),
    ("innskudd", TransactionType.DEPOSIT),
    ("deposit", TransactionType.DEPOSIT),
    ("uttak", TransactionType.WITHDRAWAL),
    ("withdrawal", TransactionType.WITHDRAWAL),
    ("overføring inn", TransactionType.TRANSFER_IN),
    ("overføring ut", TransactionType.TRANSFER_OUT),
    ("split", TransactionType.SPLIT),
    ("avgift", TransactionType.FEE),
    ("fee", TransactionType.FEE),
)

NORDNET_HEADERS: tuple[str, ...] = tuple(mapping.source for mapping in NORDNET_MAPPINGS)

NORDNET_FORMAT = BrokerageFormat(
    name="nordnet",
    platform_name="Nordnet",
    account_prefix="Nordnet Account",
    mappings=NORDNET_MAPPINGS,
    expected_headers=NORDNET_HEADERS,
    required_headers=("Id", "Bokføringsdag", "Transaksjonstype", "Portefølje", "Beløp", "Valuta"),
    transaction_types=NORDNET_TRANSACTION_TYPES,
    type_keywords=NORDNET_TYPE_KEYWORDS,
    candidate_encodings=("iso-8859-1", "windows-1252", "utf-8"),
    locale_characters="æøåÆØÅ",
    vocabulary=(
        "kjøpt",
        "salg",
        "utbytte",
        "avgift",
        "innskudd",
        "uttak",
        "renter",
        "skatt",
        "kurtasje",
        "beløp",
    ),
    currencies=("NOK", "SEK", "DKK", "EUR", "USD", "GBP", "CHF", "CAD", "AUD", "JPY"),
    filename_patterns=(
        re.compile(r"nordnet", re.IGNORECASE),
        re.compile(r"transaksjoner", re.IGNORECASE),
        re.compile(r"transactions", re.IGNORECASE),
        re.compile(r"rapport", re.IGNORECASE),
        re.compile(r"export", re.IGNORECASE),
        re.compile(r"\d{8,12}.*\.(csv|txt)$", re.IGNORECASE),
    ),
    portfolio_patterns=(
        ("numeric_id", re.compile(r"^\d{8,12}$")),
        ("named_portfolio", re.compile(r"^[A-Za-zÆØÅæøå\s_-]{3,50}$")),
        ("pension_account", re.compile(r"IPS|pensjon|pension", re.IGNORECASE)),
        ("savings_account", re.compile(r"spare|BSU|saving", re.IGNORECASE)),
        ("investment_account", re.compile(r"investering|invest|aksje", re.IGNORECASE)),
    ),
)

FORMATS: Mapping[str, BrokerageFormat] = MappingProxyType({NORDNET_FORMAT.name: NORDNET_FORMAT})


def get_format(name: str) -> BrokerageFormat:
    """Look up a registered format, raising ``KeyError`` with the known names."""
    try:
        return FORMATS[name]
    except KeyError:
        raise KeyError(f"Unknown brokerage format {name!r}; known: {sorted(FORMATS)}") from None

"""Pytest configuration and shared fixtures for StockSage tests.

Provides a temp-file SQLite database, a committed session factory, a default
owner, an in-memory import store and builders for Nordnet-style exports.
"""

from __future__ import annotations

import tempfile
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Mapping, Sequence

import pytest
from sqlmodel import SQLModel, create_engine

from stocksage.infra.database import create_session_factory
from stocksage.infra.repositories import SQLModelImportStore
from stocksage.models import User
from stocksage.services.brokerage_formats import NORDNET_HEADERS

# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Create an isolated temp-file SQLite database for each test.

    Yields:
        Engine: SQLModel engine connected to test database
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    engine = create_engine(
        f"sqlite:///{db_path}", echo=False, connect_args={"check_same_thread": False}
    )
    SQLModel.metadata.create_all(engine)

    yield engine

    engine.dispose()
    db_path.unlink(missing_ok=True)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Session factory returning commit-on-exit scopes, as the store expects."""
    return create_session_factory(db_engine)


@pytest.fixture
def user(session_factory) -> User:
    """Create the default owner for imported rows."""
    with session_factory() as session:
        owner = User(username="tester")
        session.add(owner)
        session.flush()
        session.refresh(owner)
    return owner


@pytest.fixture
def sqlite_store(session_factory) -> SQLModelImportStore:
    return SQLModelImportStore(session_factory)


# =============================================================================
# In-memory store
# =============================================================================


class FakeImportStore:
    """Dictionary-backed ImportStore used to test orchestration in isolation.

    ``fail_on_insert`` lists 1-based insert call numbers that raise.
    """

    def __init__(self, fail_on_insert: Sequence[int] = ()):
        self._lock = threading.Lock()
        self._next_id = 1
        self.platforms: dict[str, SimpleNamespace] = {}
        self.portfolios: dict[tuple[int, str], SimpleNamespace] = {}
        self.accounts: dict[tuple[int, int, str], SimpleNamespace] = {}
        self.securities: dict[str, SimpleNamespace] = {}
        self.transactions: dict[tuple[int, str], dict[str, Any]] = {}
        self.fail_on_insert = set(fail_on_insert)
        self.insert_calls = 0
        self.lookup_calls: list[list[str]] = []

    def _new(self, record: Mapping[str, Any]) -> SimpleNamespace:
        with self._lock:
            entity = SimpleNamespace(id=self._next_id, **record)
            self._next_id += 1
        return entity

    def find_platform(self, name):
        return self.platforms.get(name)

    def create_platform(self, record):
        platform = self._new(record)
        self.platforms[platform.name] = platform
        return platform

    def find_account(self, owner_id, platform_id, name):
        return self.accounts.get((owner_id, platform_id, name))

    def create_account(self, record):
        account = self._new(record)
        self.accounts[(account.user_id, account.platform_id, account.name)] = account
        return account

    def find_portfolio(self, owner_id, name):
        return self.portfolios.get((owner_id, name))

    def create_portfolio(self, record):
        portfolio = self._new(record)
        self.portfolios[(portfolio.user_id, portfolio.name)] = portfolio
        return portfolio

    def find_security(self, isin):
        return self.securities.get(isin)

    def create_security(self, record):
        security = self._new(record)
        self.securities[security.isin] = security
        return security

    def find_transactions_by_external_id(self, owner_id, external_ids):
        with self._lock:
            self.lookup_calls.append(list(external_ids))
            return [eid for eid in external_ids if (owner_id, eid) in self.transactions]

    def insert_transactions(self, records):
        with self._lock:
            self.insert_calls += 1
            if self.insert_calls in self.fail_on_insert:
                raise RuntimeError("database is locked")
            ids = []
            for record in records:
                key = (record["user_id"], record["external_id"])
                if key in self.transactions:
                    raise RuntimeError(f"UNIQUE constraint failed: {record['external_id']}")
                row = dict(record, id=self._next_id)
                self._next_id += 1
                self.transactions[key] = row
                ids.append(row["id"])
            return ids

    def update_transactions(self, owner_id, records):
        with self._lock:
            updated = 0
            for record in records:
                key = (owner_id, record["external_id"])
                if key in self.transactions:
                    self.transactions[key].update(record)
                    updated += 1
            return updated


@pytest.fixture
def fake_store() -> FakeImportStore:
    return FakeImportStore()


# =============================================================================
# Export builders
# =============================================================================

BUY_ROW = {
    "Id": "213948411",
    "Bokføringsdag": "2025-06-24",
    "Handelsdag": "2025-06-24",
    "Oppgjørsdag": "2025-06-25",
    "Portefølje": "551307769",
    "Transaksjonstype": "KJØPT",
    "Verdipapir": "Hims & Hers Health A",
    "ISIN": "US4330001060",
    "Antall": "66",
    "Kurs": "42.7597",
    "Rente": "0",
    "Totale Avgifter": "99",
    "Valuta": "NOK",
    "Beløp": "-28706.04",
    "Kjøpsverdi": "2831.91",
    "Resultat": "0",
    "Totalt antall": "131",
    "Saldo": "179.97",
    "Vekslingskurs": "10.1366",
    "Transaksjonstekst": "",
    "Makuleringsdato": "",
    "Sluttseddelnummer": "",
    "Verifikasjonsnummer": "",
    "Kurtasje": "99",
    "Valutakurs": "10.1366",
    "Innledende rente": "0",
}

DEPOSIT_ROW = {
    **{header: "" for header in NORDNET_HEADERS},
    "Id": "213948400",
    "Bokføringsdag": "2025-06-20",
    "Handelsdag": "2025-06-20",
    "Oppgjørsdag": "2025-06-20",
    "Portefølje": "551307769",
    "Transaksjonstype": "INNSKUDD",
    "Valuta": "NOK",
    "Beløp": "30000",
    "Saldo": "30000",
    "Transaksjonstekst": "Overføring fra bank",
}


def make_row(base: Mapping[str, str] = BUY_ROW, **overrides: str) -> dict[str, str]:
    """Copy ``base`` with overrides; keyword names use the canonical target names."""
    aliases = {
        "id": "Id",
        "booking_date": "Bokføringsdag",
        "trade_date": "Handelsdag",
        "portfolio": "Portefølje",
        "transaction_type": "Transaksjonstype",
        "security_name": "Verdipapir",
        "isin": "ISIN",
        "quantity": "Antall",
        "price": "Kurs",
        "total_fees": "Totale Avgifter",
        "currency": "Valuta",
        "amount": "Beløp",
        "exchange_rate": "Vekslingskurs",
        "commission": "Kurtasje",
        "text": "Transaksjonstekst",
    }
    row = dict(base)
    for key, value in overrides.items():
        row[aliases.get(key, key)] = value
    return row


def build_export(
    rows: Sequence[Mapping[str, str]],
    *,
    headers: Sequence[str] = NORDNET_HEADERS,
    delimiter: str = "\t",
    encoding: str = "utf-16",
) -> bytes:
    """Render rows the way the institution does (UTF-16 with BOM, tab separated)."""
    lines = [delimiter.join(headers)]
    for row in rows:
        lines.append(delimiter.join(row.get(header, "") for header in headers))
    return ("\r\n".join(lines) + "\r\n").encode(encoding)


@pytest.fixture
def export_file(tmp_path):
    """Write an export to ``tmp_path`` and return its path."""

    def _write(rows, name: str = "nordnet-transaksjoner.csv", **kwargs) -> Path:
        path = tmp_path / name
        path.write_bytes(build_export(rows, **kwargs))
        return path

    return _write

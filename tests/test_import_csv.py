"""End-to-end tests for the brokerage CSV import against SQLite."""

from __future__ import annotations

from datetime import date

import pytest
from sqlmodel import select

from stocksage.models import Account, Security, Transaction
from stocksage.services.import_csv import (
    import_bytes,
    import_file,
    preview_bytes,
    preview_file,
    summarize_transactions,
)
from stocksage.services.import_orchestrator import ImportConfigurationError
from stocksage.services.import_types import (
    ImportConfig,
    TransactionType,
    TransformedTransaction,
)
from tests.conftest import BUY_ROW, DEPOSIT_ROW, build_export, make_row


def _five_rows() -> list[dict[str, str]]:
    return [
        DEPOSIT_ROW,
        BUY_ROW,
        make_row(
            id="213948412",
            transaction_type="SALG",
            security_name="Apple Inc",
            isin="US0378331005",
            quantity="5",
            price="180,25",
            amount="9 036,48",
            exchange_rate="10,1366",
        ),
        make_row(
            DEPOSIT_ROW,
            id="213948413",
            transaction_type="UTBYTTE",
            security_name="Equinor ASA",
            isin="NO0010096985",
            amount="412,50",
        ),
        make_row(DEPOSIT_ROW, id="213948414", transaction_type="Kurtasje", amount="-99"),
    ]


def _stored(session_factory):
    with session_factory() as session:
        return session.exec(select(Transaction)).all()


class TestPreview:
    def test_preview_bytes_touches_no_store(self):
        parsed, rows = preview_bytes(build_export([DEPOSIT_ROW, BUY_ROW]), "nordnet.csv")
        assert parsed.is_valid
        assert [row.internal_transaction_type for row in rows] == [
            TransactionType.DEPOSIT,
            TransactionType.BUY,
        ]

    def test_preview_file_with_structural_error(self, tmp_path):
        path = tmp_path / "export.csv"
        path.write_text("a;b;c\n1;2;3\n", encoding="utf-8")
        parsed, rows = preview_file(path)
        assert not parsed.is_valid
        assert rows == []


class TestScenarios:
    def test_scenario_a_buy_row(self, sqlite_store, user, session_factory):
        data = build_export([DEPOSIT_ROW, BUY_ROW])
        result = import_bytes(data, sqlite_store, user.id, "nordnet-transaksjoner.csv")

        assert result.success, result.errors
        assert result.parsed_rows == 2
        assert result.created_transactions == 2
        buy = next(txn for txn in result.processed_data if txn.id == "213948411")
        assert buy.internal_transaction_type is TransactionType.BUY
        assert buy.validation_errors == []

        stored = {txn.external_id: txn for txn in _stored(session_factory)}
        assert stored["213948411"].transaction_type == "BUY"
        assert stored["213948411"].quantity == 66
        assert stored["213948411"].security_id is not None
        assert stored["213948400"].security_id is None

    def test_scenario_b_unknown_type_still_imports(self, sqlite_store, user, session_factory):
        row = make_row(DEPOSIT_ROW, transaction_type="NY HENDELSESTYPE")
        result = import_bytes(build_export([row]), sqlite_store, user.id, "nordnet.csv")

        assert result.success
        assert result.created_transactions == 1
        assert any("NY HENDELSESTYPE" in w for w in result.processed_data[0].validation_warnings)
        (stored,) = _stored(session_factory)
        assert stored.transaction_type == "FEE"
        assert "NY HENDELSESTYPE" in stored.notes

    def test_scenario_c_missing_currency_excluded(self, sqlite_store, user, session_factory):
        rows = [DEPOSIT_ROW, make_row(currency="")]
        result = import_bytes(build_export(rows), sqlite_store, user.id, "nordnet.csv")

        assert result.parsed_rows == 2
        assert result.created_transactions == 1
        assert not result.success
        assert any("Valuta" in error for error in result.errors)
        assert [txn.external_id for txn in _stored(session_factory)] == ["213948400"]
        assert len(result.processed_data) == 2

    def test_scenario_d_reimport_creates_nothing(self, sqlite_store, user, session_factory):
        data = build_export(_five_rows())

        first = import_bytes(data, sqlite_store, user.id, "nordnet.csv")
        second = import_bytes(data, sqlite_store, user.id, "nordnet.csv")

        assert first.success, first.errors
        assert first.created_transactions == 5
        assert second.created_transactions == 0
        assert second.duplicate_rows == 5
        assert second.created_accounts == 0
        assert second.created_securities == 0
        assert len(_stored(session_factory)) == 5


class TestStoredReferences:
    def test_accounts_and_securities(self, sqlite_store, user, session_factory):
        import_bytes(build_export(_five_rows()), sqlite_store, user.id, "nordnet.csv")

        with session_factory() as session:
            accounts = session.exec(select(Account)).all()
            securities = session.exec(select(Security)).all()

        assert [account.name for account in accounts] == ["Nordnet Account 551307769"]
        assert sorted(security.isin for security in securities) == [
            "NO0010096985",
            "US0378331005",
            "US4330001060",
        ]

    def test_isk_portfolio_becomes_tfsa(self, sqlite_store, user, session_factory):
        row = make_row(DEPOSIT_ROW, portfolio="Min ISK")
        import_bytes(build_export([row]), sqlite_store, user.id, "nordnet.csv")
        with session_factory() as session:
            (account,) = session.exec(select(Account)).all()
        assert account.account_type == "TFSA"


class TestFatalConditions:
    def test_file_errors_are_returned_not_raised(self, sqlite_store, user, session_factory):
        result = import_bytes(b"", sqlite_store, user.id, "nordnet.csv")
        assert not result.success
        assert result.parsed_rows == 0
        assert result.errors == ["File is empty or contains no valid data"]
        assert _stored(session_factory) == []

    def test_missing_columns(self, sqlite_store, user):
        data = build_export([BUY_ROW], headers=[h for h in BUY_ROW if h != "Beløp"])
        result = import_bytes(data, sqlite_store, user.id, "nordnet.csv")
        assert not result.success
        assert result.parsed_rows == 0
        assert any("Beløp" in error for error in result.errors)

    def test_missing_store_raises(self, user):
        with pytest.raises(ImportConfigurationError):
            import_bytes(build_export([BUY_ROW]), None, user.id)

    def test_bad_config_raises(self, sqlite_store, user):
        with pytest.raises(ImportConfigurationError):
            import_bytes(build_export([BUY_ROW]), sqlite_store, user.id, config=ImportConfig(delimiter=";;"))


def test_import_file_from_disk(export_file, sqlite_store, user):
    path = export_file(_five_rows())
    result = import_file(path, sqlite_store, user.id, ImportConfig(batch_size=2))
    assert result.success, result.errors
    assert result.created_transactions == 5


class TestSummary:
    def test_tallies_mapped_rows(self):
        transactions = [
            TransformedTransaction(
                id="1",
                booking_date=date(2025, 6, 20),
                portfolio_name="551307769",
                internal_transaction_type=TransactionType.DEPOSIT,
                currency="NOK",
                amount=30000.0,
            ),
            TransformedTransaction(
                id="2",
                booking_date=date(2025, 6, 24),
                portfolio_name="551307769",
                internal_transaction_type=TransactionType.BUY,
                currency="NOK",
                amount=-28706.04,
                validation_warnings=["Amount differs"],
            ),
            TransformedTransaction(
                id="3",
                booking_date=date(2025, 7, 1),
                portfolio_name="Min ISK",
                internal_transaction_type=TransactionType.BUY,
                currency="USD",
                amount=-1500.0,
            ),
            TransformedTransaction(
                id="4",
                portfolio_name="Min ISK",
                internal_transaction_type=TransactionType.FEE,
                validation_errors=["Missing currency"],
            ),
        ]

        summary = summarize_transactions(transactions)

        assert summary.total_transactions == 4
        assert summary.transaction_types == {"BUY": 2, "DEPOSIT": 1, "FEE": 1}
        assert summary.portfolios == {"551307769": 2, "Min ISK": 2}
        assert summary.currencies == {"NOK": 2, "USD": 1}
        assert summary.total_amount == {
            "NOK": pytest.approx(58706.04),
            "USD": pytest.approx(1500.0),
        }
        assert summary.date_range == (date(2025, 6, 20), date(2025, 7, 1))
        assert (summary.valid, summary.with_warnings, summary.with_errors) == (2, 1, 1)

    def test_empty_input(self):
        summary = summarize_transactions([])
        assert summary.total_transactions == 0
        assert summary.transaction_types == {}
        assert summary.date_range is None

    def test_preview_rows_summarize(self):
        _, rows = preview_bytes(build_export(_five_rows()))
        summary = summarize_transactions(rows)
        assert summary.total_transactions == 5
        assert summary.portfolios == {"551307769": 5}
        assert summary.with_errors == 0

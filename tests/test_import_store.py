"""Tests for the SQLModel import store."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from stocksage.models import Transaction


@pytest.fixture
def references(sqlite_store, user):
    platform = sqlite_store.create_platform({"name": "Nordnet", "display_name": "Nordnet"})
    portfolio = sqlite_store.create_portfolio({"user_id": user.id, "name": "551307769"})
    account = sqlite_store.create_account(
        {
            "user_id": user.id,
            "portfolio_id": portfolio.id,
            "platform_id": platform.id,
            "name": "Nordnet Account 551307769",
        }
    )
    return platform, portfolio, account


def _record(user_id: int, account_id: int, external_id: str, **overrides) -> dict:
    record = {
        "user_id": user_id,
        "account_id": account_id,
        "external_id": external_id,
        "transaction_type": "DEPOSIT",
        "booking_date": date(2025, 6, 20),
        "total_amount": 1000.0,
        "currency": "NOK",
    }
    record.update(overrides)
    return record


def test_find_or_create_references(sqlite_store, user, references):
    platform, portfolio, account = references

    assert sqlite_store.find_platform("Nordnet").id == platform.id
    assert sqlite_store.find_platform("Degiro") is None
    assert sqlite_store.find_portfolio(user.id, "551307769").id == portfolio.id
    assert sqlite_store.find_account(user.id, platform.id, account.name).id == account.id
    assert sqlite_store.find_account(user.id + 1, platform.id, account.name) is None


def test_security_lookup_by_isin(sqlite_store):
    created = sqlite_store.create_security(
        {"isin": "US0378331005", "symbol": "AAPL", "name": "Apple Inc"}
    )
    found = sqlite_store.find_security("US0378331005")
    assert found.id == created.id
    assert found.exchange == "UNKNOWN"
    assert sqlite_store.find_security("NO0010096985") is None


def test_insert_and_find_existing_ids(sqlite_store, user, references):
    _, _, account = references
    ids = sqlite_store.insert_transactions(
        [_record(user.id, account.id, "1"), _record(user.id, account.id, "2")]
    )
    assert len(ids) == 2

    found = sqlite_store.find_transactions_by_external_id(user.id, ["1", "2", "3", "", "1"])
    assert sorted(found) == ["1", "2"]
    assert sqlite_store.find_transactions_by_external_id(user.id + 1, ["1"]) == []


def test_lookup_is_chunked_for_large_batches(sqlite_store, user, references):
    _, _, account = references
    sqlite_store.insert_transactions(
        [_record(user.id, account.id, str(i)) for i in range(0, 1200, 3)]
    )
    found = sqlite_store.find_transactions_by_external_id(user.id, [str(i) for i in range(1200)])
    assert len(found) == 400


def test_insert_is_all_or_nothing(sqlite_store, user, references, session_factory):
    _, _, account = references
    sqlite_store.insert_transactions([_record(user.id, account.id, "1")])

    with pytest.raises(IntegrityError):
        sqlite_store.insert_transactions(
            [_record(user.id, account.id, "2"), _record(user.id, account.id, "1")]
        )

    with session_factory() as session:
        stored = session.exec(select(Transaction.external_id)).all()
    assert stored == ["1"]


def test_insert_nothing(sqlite_store):
    assert sqlite_store.insert_transactions([]) == []
    assert sqlite_store.update_transactions(1, []) == 0


def test_update_overwrites_matching_rows(sqlite_store, user, references, session_factory):
    _, _, account = references
    sqlite_store.insert_transactions([_record(user.id, account.id, "1")])

    updated = sqlite_store.update_transactions(
        user.id,
        [
            _record(user.id, account.id, "1", total_amount=2500.0, notes="corrected"),
            _record(user.id, account.id, "missing"),
        ],
    )

    assert updated == 1
    with session_factory() as session:
        (stored,) = session.exec(select(Transaction)).all()
    assert stored.total_amount == 2500.0
    assert stored.notes == "corrected"

"""SQLModel implementation of the import store."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from sqlmodel import col, select

from ...models import Account, Platform, Portfolio, Security, Transaction
from ..database import SessionFactory

logger = logging.getLogger(__name__)

# Keeps IN (...) lists below SQLite's bound-parameter limit.
_LOOKUP_CHUNK = 500

_UPDATABLE_FIELDS = (
    "account_id",
    "security_id",
    "transaction_type",
    "booking_date",
    "settlement_date",
    "quantity",
    "price",
    "total_amount",
    "commission",
    "other_fees",
    "currency",
    "exchange_rate",
    "description",
    "notes",
    "data_source",
    "import_batch_id",
)


class SQLModelImportStore:
    """SQLModel-based store used by the brokerage CSV import."""

    def __init__(self, session_factory: SessionFactory):
        """Initialize with a factory returning transactional session scopes."""
        self.session_factory = session_factory

    def find_platform(self, name: str) -> Optional[Platform]:
        with self.session_factory() as session:
            return session.exec(select(Platform).where(Platform.name == name)).first()

    def create_platform(self, record: Mapping[str, Any]) -> Platform:
        return self._create(Platform(**record))

    def find_account(self, owner_id: int, platform_id: int, name: str) -> Optional[Account]:
        with self.session_factory() as session:
            statement = select(Account).where(
                Account.user_id == owner_id,
                Account.platform_id == platform_id,
                Account.name == name,
            )
            return session.exec(statement).first()

    def create_account(self, record: Mapping[str, Any]) -> Account:
        return self._create(Account(**record))

    def find_portfolio(self, owner_id: int, name: str) -> Optional[Portfolio]:
        with self.session_factory() as session:
            statement = select(Portfolio).where(
                Portfolio.user_id == owner_id, Portfolio.name == name
            )
            return session.exec(statement).first()

    def create_portfolio(self, record: Mapping[str, Any]) -> Portfolio:
        return self._create(Portfolio(**record))

    def find_security(self, isin: str) -> Optional[Security]:
        with self.session_factory() as session:
            return session.exec(select(Security).where(Security.isin == isin)).first()

    def create_security(self, record: Mapping[str, Any]) -> Security:
        return self._create(Security(**record))

    def find_transactions_by_external_id(
        self, owner_id: int, external_ids: Sequence[str]
    ) -> list[str]:
        """Return the external ids that already exist for the owner."""
        wanted = [external_id for external_id in dict.fromkeys(external_ids) if external_id]
        found: list[str] = []
        with self.session_factory() as session:
            for start in range(0, len(wanted), _LOOKUP_CHUNK):
                chunk = wanted[start : start + _LOOKUP_CHUNK]
                statement = select(Transaction.external_id).where(
                    Transaction.user_id == owner_id,
                    col(Transaction.external_id).in_(chunk),
                )
                found.extend(value for value in session.exec(statement).all() if value)
        return found

    def insert_transactions(self, records: Sequence[Mapping[str, Any]]) -> list[int]:
        """Insert all records in one transaction; any failure rolls back the lot."""
        if not records:
            return []
        with self.session_factory() as session:
            rows = [Transaction(**record) for record in records]
            session.add_all(rows)
            session.flush()
            inserted = [row.id for row in rows if row.id is not None]
        logger.debug("Inserted %d transactions", len(inserted))
        return inserted

    def update_transactions(self, owner_id: int, records: Sequence[Mapping[str, Any]]) -> int:
        """Overwrite stored transactions that share an external id with ``records``."""
        if not records:
            return 0
        updated = 0
        with self.session_factory() as session:
            for record in records:
                existing = session.exec(
                    select(Transaction).where(
                        Transaction.user_id == owner_id,
                        Transaction.external_id == record.get("external_id"),
                    )
                ).first()
                if existing is None:
                    continue
                for field in _UPDATABLE_FIELDS:
                    if field in record:
                        setattr(existing, field, record[field])
                session.add(existing)
                updated += 1
        return updated

    def _create(self, entity):
        with self.session_factory() as session:
            session.add(entity)
            session.flush()
            session.refresh(entity)
            return entity

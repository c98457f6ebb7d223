"""Storage protocol consumed by the brokerage import orchestrator."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, Sequence

from ...models import Account, Platform, Portfolio, Security


class ImportStore(Protocol):
    """Find-or-create lookups and batch writes needed by one import run.

    Every call is blocking. ``insert_transactions`` and ``update_transactions``
    are all-or-nothing per call.
    """

    def find_platform(self, name: str) -> Optional[Platform]:
        """Retrieve a platform by its unique name."""
        ...

    def create_platform(self, record: Mapping[str, Any]) -> Platform:
        """Create a platform."""
        ...

    def find_account(self, owner_id: int, platform_id: int, name: str) -> Optional[Account]:
        """Retrieve an account by owner, platform and name."""
        ...

    def create_account(self, record: Mapping[str, Any]) -> Account:
        """Create an account."""
        ...

    def find_portfolio(self, owner_id: int, name: str) -> Optional[Portfolio]:
        """Retrieve a portfolio by owner and name."""
        ...

    def create_portfolio(self, record: Mapping[str, Any]) -> Portfolio:
        """Create a portfolio."""
        ...

    def find_security(self, isin: str) -> Optional[Security]:
        """Retrieve a security by ISIN."""
        ...

    def create_security(self, record: Mapping[str, Any]) -> Security:
        """Create a security."""
        ...

    def find_transactions_by_external_id(
        self, owner_id: int, external_ids: Sequence[str]
    ) -> list[str]:
        """Return the subset of ``external_ids`` already stored for the owner."""
        ...

    def insert_transactions(self, records: Sequence[Mapping[str, Any]]) -> list[int]:
        """Insert transaction records in one write; returns the new ids."""
        ...

    def update_transactions(self, owner_id: int, records: Sequence[Mapping[str, Any]]) -> int:
        """Overwrite stored transactions matched by external id; returns the count."""
        ...

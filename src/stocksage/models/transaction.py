"""SQLModel definitions for investment transactions."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover - import guard for circular dependency
    from .account import Account
    from .security import Security
    from .user import User


class Transaction(SQLModel, table=True):
    """A single account transaction imported from an institution export."""

    __tablename__: ClassVar[str] = "transaction"
    # Dedup key for imports: one external id per owner.
    __table_args__: ClassVar[Any] = (
        UniqueConstraint("user_id", "external_id", name="uq_transaction_owner_external_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    account_id: int = Field(foreign_key="account.id", nullable=False, index=True)
    security_id: Optional[int] = Field(default=None, foreign_key="security.id")
    external_id: Optional[str] = Field(default=None, index=True, max_length=128)
    transaction_type: str = Field(nullable=False, max_length=16, index=True)
    booking_date: date = Field(nullable=False, index=True)
    settlement_date: Optional[date] = Field(default=None)
    quantity: float = Field(default=0.0, nullable=False)
    price: Optional[float] = Field(default=None)
    total_amount: float = Field(nullable=False, description="Signed amount in account currency")
    commission: float = Field(default=0.0, nullable=False)
    other_fees: float = Field(default=0.0, nullable=False)
    currency: str = Field(default="NOK", max_length=3, description="ISO-4217 currency code")
    exchange_rate: float = Field(default=1.0, nullable=False)
    description: str = Field(default="", max_length=255)
    notes: str = Field(default="", max_length=1024)
    data_source: str = Field(default="CSV_IMPORT", max_length=32)
    import_batch_id: Optional[str] = Field(default=None, index=True, max_length=36)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    account: "Account" = Relationship(
        back_populates="transactions",
        sa_relationship=relationship("Account", back_populates="transactions"),
    )
    security: "Security | None" = Relationship(
        back_populates="transactions",
        sa_relationship=relationship("Security", back_populates="transactions"),
    )
    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="transactions"))

"""Security (listed instrument) model."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .transaction import Transaction


class Security(SQLModel, table=True):
    """A tradable instrument identified by its ISIN."""

    __tablename__: ClassVar[str] = "security"

    id: Optional[int] = Field(default=None, primary_key=True)
    isin: str = Field(nullable=False, unique=True, index=True, max_length=12)
    symbol: str = Field(nullable=False, index=True, max_length=32)
    name: str = Field(default="", max_length=255)
    exchange: str = Field(default="UNKNOWN", max_length=32)
    currency: str = Field(default="NOK", max_length=3)
    asset_class: str = Field(default="STOCK", max_length=16)
    data_source: str = Field(default="CSV_IMPORT", max_length=32)

    transactions: list["Transaction"] = Relationship(
        back_populates="security",
        sa_relationship=relationship("Transaction", back_populates="security"),
    )

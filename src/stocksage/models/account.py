"""Account model linking a user's portfolio to a platform."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .platform import Platform
    from .portfolio import Portfolio
    from .transaction import Transaction
    from .user import User


class Account(SQLModel, table=True):
    __tablename__: ClassVar[str] = "account"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    portfolio_id: int = Field(foreign_key="portfolio.id", nullable=False)
    platform_id: int = Field(foreign_key="platform.id", nullable=False, index=True)
    name: str = Field(nullable=False, max_length=128)
    currency: str = Field(default="NOK", max_length=3)
    account_type: str = Field(default="TAXABLE", max_length=16)

    portfolio: "Portfolio" = Relationship(
        back_populates="accounts",
        sa_relationship=relationship("Portfolio", back_populates="accounts"),
    )
    platform: "Platform" = Relationship(
        back_populates="accounts",
        sa_relationship=relationship("Platform", back_populates="accounts"),
    )
    transactions: list["Transaction"] = Relationship(
        back_populates="account",
        sa_relationship=relationship("Transaction", back_populates="account"),
    )
    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="accounts"))

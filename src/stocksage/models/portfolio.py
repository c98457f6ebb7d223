"""Portfolio models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .account import Account
    from .user import User


class Portfolio(SQLModel, table=True):
    """Named grouping of accounts belonging to one user."""

    __tablename__: ClassVar[str] = "portfolio"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    name: str = Field(nullable=False, max_length=128)
    description: str = Field(default="", max_length=255)
    currency: str = Field(default="NOK", max_length=3)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    accounts: list["Account"] = Relationship(
        back_populates="portfolio",
        sa_relationship=relationship("Account", back_populates="portfolio"),
    )
    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="portfolios"))

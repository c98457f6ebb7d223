"""Financial institution (brokerage platform) model."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .account import Account


class Platform(SQLModel, table=True):
    """A brokerage or bank that produces export files."""

    __tablename__: ClassVar[str] = "platform"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(nullable=False, unique=True, index=True, max_length=64)
    display_name: str = Field(default="", max_length=128)
    country_code: Optional[str] = Field(default=None, max_length=2)

    accounts: list["Account"] = Relationship(
        back_populates="platform",
        sa_relationship=relationship("Account", back_populates="platform"),
    )

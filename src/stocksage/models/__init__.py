"""SQLModel table exports."""

from .account import Account
from .platform import Platform
from .portfolio import Portfolio
from .security import Security
from .transaction import Transaction
from .user import User

__all__ = [
    "Account",
    "Platform",
    "Portfolio",
    "Security",
    "Transaction",
    "User",
]

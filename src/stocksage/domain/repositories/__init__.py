"""Repository protocol definitions for domain layer."""

from .import_store import ImportStore

__all__ = [
    "ImportStore",
]

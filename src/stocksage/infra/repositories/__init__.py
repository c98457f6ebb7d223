"""Concrete repository implementations using SQLModel."""

from .import_store import SQLModelImportStore

__all__ = [
    "SQLModelImportStore",
]

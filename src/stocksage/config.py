"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "StockSage"
    DB_FILENAME = "stocksage.db"
    SQLITE_PRAGMAS = {"journal_mode": "wal", "foreign_keys": "on"}
    DEFAULT_MAX_IMPORT_FILE_SIZE = 50 * 1024 * 1024

    def __init__(self) -> None:
        self.DATA_DIR = self._resolve_data_dir()
        self.DEV_MODE = _env_bool("STOCKSAGE_DEV_MODE", default=True)
        self.DATABASE_URL = os.getenv("STOCKSAGE_DATABASE_URL", self._build_sqlite_url())
        # Seconds a store call may block on a locked database before failing.
        self.STORE_TIMEOUT = _env_int("STOCKSAGE_STORE_TIMEOUT", 30)
        self.MAX_IMPORT_FILE_SIZE = _env_int(
            "STOCKSAGE_MAX_IMPORT_FILE_SIZE", self.DEFAULT_MAX_IMPORT_FILE_SIZE
        )
        if self.STORE_TIMEOUT <= 0:
            raise ValueError("STOCKSAGE_STORE_TIMEOUT must be positive.")

    def _resolve_data_dir(self) -> Path:
        """Return the directory where the SQLite file and logs live."""

        data_root = os.getenv("STOCKSAGE_DATA_DIR", "instance")
        path = Path(data_root).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _build_sqlite_url(self) -> str:
        db_path = self.DATA_DIR / self.DB_FILENAME
        return f"sqlite:///{db_path}"

    def sqlalchemy_engine_options(self) -> dict[str, Any]:
        """Expose engine kwargs for SQLModel to consume."""

        if not self.DATABASE_URL.startswith("sqlite"):
            return {"pool_pre_ping": True}
        connect_args: dict[str, Any] = {
            "check_same_thread": False,
            "timeout": self.STORE_TIMEOUT,
        }
        return {"connect_args": connect_args}


class DevConfig(BaseConfig):
    """Development configuration using local SQLite."""

    DEBUG = True
    TESTING = False


"""Hourbook configuration management.

Loads configuration from environment variables with sensible defaults.
The persisted store lives in the per-user data directory unless
DATABASE_URL points somewhere else.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

APP_NAME = "Hourbook"
DB_FILENAME = "db.sqlite"


def user_data_dir() -> Path:
    """Return a per-user data directory suitable for the platform."""
    if sys.platform.startswith("win"):
        base = os.environ.get("APPDATA") or Path.home() / "AppData" / "Roaming"
        return Path(base) / APP_NAME
    base = os.environ.get("XDG_DATA_HOME") or (Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class DBConfig:
    """Relational store configuration."""

    url: str
    echo: bool = False  # SQL logging

    @property
    def path(self) -> Path | None:
        """Filesystem path of the store, None for in-memory stores."""
        _, _, location = self.url.partition(":///")
        if not location or location.startswith(":memory:"):
            return None
        return Path(location)


@dataclass
class BackupConfig:
    """Periodic backup settings."""

    directory: Path | None = None
    interval_seconds: float = 3600.0
    on_shutdown: bool = True
    skip_unchanged: bool = True


@dataclass
class InvoiceConfig:
    """Invoice numbering and tax defaults."""

    number_prefix: str = "INV"
    number_digits: int = 3
    default_tax_rate: Decimal = Decimal("0")  # percent


@dataclass
class AppConfig:
    """Root application configuration."""

    db: DBConfig
    log_level: str = "INFO"
    log_format: str = "text"  # json or text
    log_file: Path | None = None

    backup: BackupConfig = field(default_factory=BackupConfig)
    invoice: InvoiceConfig = field(default_factory=InvoiceConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables.

        Optional (with defaults):
        - DATABASE_URL: SQLite URL (default: db.sqlite in the user data dir)
        - LOG_LEVEL / LOG_FORMAT / LOG_FILE
        - BACKUP_DIRECTORY, BACKUP_INTERVAL_SECONDS, BACKUP_ON_SHUTDOWN,
          BACKUP_SKIP_UNCHANGED
        - INVOICE_NUMBER_PREFIX, INVOICE_NUMBER_DIGITS, DEFAULT_TAX_RATE

        Raises:
            KeyError: If DATABASE_URL is not an SQLite URL
        """
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            database_url = f"sqlite+aiosqlite:///{user_data_dir() / DB_FILENAME}"
        elif not database_url.startswith("sqlite"):
            raise KeyError(
                "DATABASE_URL must point to an SQLite store. "
                "Example: sqlite+aiosqlite:///./db.sqlite"
            )

        backup_dir = os.getenv("BACKUP_DIRECTORY")
        log_file = os.getenv("LOG_FILE")

        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
            log_file=Path(log_file) if log_file else None,
            db=DBConfig(
                url=database_url,
                echo=_env_bool("DB_ECHO", "false"),
            ),
            backup=BackupConfig(
                directory=Path(backup_dir) if backup_dir else None,
                interval_seconds=float(os.getenv("BACKUP_INTERVAL_SECONDS", "3600")),
                on_shutdown=_env_bool("BACKUP_ON_SHUTDOWN", "true"),
                skip_unchanged=_env_bool("BACKUP_SKIP_UNCHANGED", "true"),
            ),
            invoice=InvoiceConfig(
                number_prefix=os.getenv("INVOICE_NUMBER_PREFIX", "INV"),
                number_digits=int(os.getenv("INVOICE_NUMBER_DIGITS", "3")),
                default_tax_rate=Decimal(os.getenv("DEFAULT_TAX_RATE", "0")),
            ),
        )


# Singleton instance (lazy-loaded)
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create singleton AppConfig instance from environment.

    Returns:
        AppConfig: Application configuration
    """
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config() -> None:
    """Forget the cached configuration (tests and CLI overrides)."""
    global _config
    _config = None

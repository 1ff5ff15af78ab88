"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    """Interpret environment variable values as floats, falling back on junk."""

    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "Progress Tracker"
    DB_FILENAME = "progress_tracker.db"
    DB_PATH_ENV = "SQLITE_DB_PATH"
    SQLITE_PRAGMAS = {"journal_mode": "WAL", "foreign_keys": "ON"}
    SETTINGS_CACHE_DEFAULT = 60.0

    def __init__(self) -> None:
        self.DEV_MODE = _env_bool("PROGRESSTRACKER_DEV_MODE", default=True)
        self.DATA_DIR = self._resolve_data_dir()
        self.DATABASE_PATH = self.resolve_db_path()
        self.BACKUP_DIR = Path(
            os.getenv("PROGRESSTRACKER_BACKUP_DIR", str(Path.cwd() / "backups"))
        ).expanduser()
        self.EXPORT_DIR = Path(
            os.getenv("PROGRESSTRACKER_EXPORT_DIR", str(Path.cwd() / "exports"))
        ).expanduser()
        self.SETTINGS_CACHE_SECONDS = _env_float(
            "SETTINGS_CACHE_SECONDS", self.SETTINGS_CACHE_DEFAULT
        )

        # Seed values for the settings table; operators override them at runtime.
        self.DEFAULT_REPORT_EMAIL = os.getenv("DEFAULT_REPORT_EMAIL", "")
        self.SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "progress@evosgpt.eu")
        self.SENDGRID_FROM_NAME = os.getenv("SENDGRID_FROM_NAME", "Progress Tracker")
        self.TIMEZONE = os.getenv("TIMEZONE", "Europe/Amsterdam")

    def _resolve_data_dir(self) -> Path:
        """Return the directory used for logs and the default database file."""

        data_root = os.getenv("PROGRESSTRACKER_DATA_DIR", "data")
        return Path(data_root).expanduser().resolve()

    def resolve_db_path(self, explicit: str | Path | None = None) -> Path:
        """Pick the SQLite file: explicit argument, then env, then the data dir."""

        if explicit:
            return Path(explicit).expanduser()
        env_path = os.getenv(self.DB_PATH_ENV)
        if env_path:
            return Path(env_path).expanduser()
        return self.DATA_DIR / self.DB_FILENAME


class DevConfig(BaseConfig):
    """Development configuration using the local data directory."""

    DEBUG = True
    TESTING = False


class TestConfig(BaseConfig):
    """Configuration for test runs: short-lived database, no settings cache."""

    __test__ = False  # keep pytest from collecting this as a test class

    DEBUG = False
    TESTING = True
    SETTINGS_CACHE_DEFAULT = 0.0

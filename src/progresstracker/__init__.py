"""Progress Tracker storage core: SQLite query adapter and typed settings."""

from __future__ import annotations

from .config import BaseConfig, DevConfig, TestConfig
from .context import AppContext, create_app_context
from .infra.database import Database, QueryResult, StatementKind
from .services.settings import SettingsStore

__all__ = [
    "AppContext",
    "BaseConfig",
    "Database",
    "DevConfig",
    "QueryResult",
    "SettingsStore",
    "StatementKind",
    "TestConfig",
    "create_app_context",
]

__version__ = "0.1.0"

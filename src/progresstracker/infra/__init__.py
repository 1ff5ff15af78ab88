"""Storage infrastructure: the SQLite query adapter and schema bootstrap."""

from .database import (
    Database,
    QueryError,
    QueryResult,
    StatementKind,
    bootstrap_database,
    create_db_engine,
    init_database,
)

__all__ = [
    "Database",
    "QueryError",
    "QueryResult",
    "StatementKind",
    "bootstrap_database",
    "create_db_engine",
    "init_database",
]

"""SQLite query adapter with a networked-client style ``query()`` call.

Route handlers and services talk to the database through
``Database.query(sql, params)`` and get back a ``QueryResult`` whose shape
does not depend on the statement kind: ``rows`` is always a list and
``rows_affected`` is set for INSERT/UPDATE/DELETE.

One SQLAlchemy connection is held for the lifetime of the adapter. Access to
it is serialized with a re-entrant lock, so a transaction opened on one thread
keeps other threads (scheduler jobs) out until it commits or rolls back.
SQLite itself still arbitrates between processes via WAL.
"""

from __future__ import annotations

import enum
import inspect
import json
import re
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Optional, Sequence, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError
from sqlmodel import SQLModel

from ..config import BaseConfig
from ..logging_config import get_logger

logger = get_logger("database")

T = TypeVar("T")

_INSERT_TARGET_RE = re.compile(
    r"^\s*INSERT\s+(?:OR\s+\w+\s+)?INTO\s+"
    r"(\"(?:[^\"]|\"\")+\"|`[^`]+`|\[[^\]]+\]|[A-Za-z_][\w$]*(?:\.[A-Za-z_][\w$]*)?)",
    re.IGNORECASE,
)


class QueryError(RuntimeError):
    """Raised for adapter-level failures that the SQLite engine does not report."""


class StatementKind(str, enum.Enum):
    """How ``Database.query`` executes a statement and shapes its result."""

    SELECT = "select"
    INSERT = "insert"
    MUTATE = "mutate"  # UPDATE / DELETE
    SCRIPT = "script"  # DDL, PRAGMA and anything else

    @classmethod
    def infer(cls, sql: str) -> "StatementKind":
        """Classify ``sql`` by its leading keyword."""

        head = sql.strip().upper()
        if head.startswith("SELECT"):
            return cls.SELECT
        if head.startswith("INSERT"):
            return cls.INSERT
        if head.startswith("UPDATE") or head.startswith("DELETE"):
            return cls.MUTATE
        return cls.SCRIPT


@dataclass
class QueryResult:
    """Uniform result of ``Database.query``."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    rows_affected: Optional[int] = None


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


_CLOSERS = {"'": "'", '"': '"', "`": "`", "[": "]", "--": "\n", "/*": "*/"}


def returning_offset(sql: str) -> Optional[int]:
    """Offset of the last RETURNING keyword that is actual SQL.

    String literals, quoted identifiers and comments are skipped, so
    ``SET note = 'returning customer'`` is not mistaken for a clause.
    """

    found = None
    i, n = 0, len(sql)
    while i < n:
        opener = sql[i : i + 2] if sql[i : i + 2] in ("--", "/*") else sql[i]
        if opener in _CLOSERS:
            # Doubled quotes ('it''s') scan as two adjacent literals.
            end = sql.find(_CLOSERS[opener], i + len(opener))
            i = n if end < 0 else end + len(_CLOSERS[opener])
        elif sql[i].isalpha() or sql[i] == "_":
            start = i
            while i < n and (sql[i].isalnum() or sql[i] in "_$"):
                i += 1
            if sql[start:i].upper() == "RETURNING":
                found = start
        else:
            i += 1
    return found


def _strip_returning(sql: str) -> str:
    """Drop the RETURNING clause so the engine runs a plain statement."""

    offset = returning_offset(sql)
    if offset is None:
        return sql
    return sql[:offset].rstrip()


def insert_target(sql: str) -> str:
    """Return the table named by ``INSERT [OR <action>] INTO <table>``.

    The identifier is returned as written (quoted names keep their quotes),
    ready to be spliced back into a statement.
    """

    match = _INSERT_TARGET_RE.match(sql)
    if match is None:
        raise QueryError("Could not parse table name from INSERT statement")
    return match.group(1)


def create_db_engine(db_path: str | Path, pragmas: Optional[Mapping[str, str]] = None) -> Engine:
    """Create a SQLAlchemy engine for ``db_path`` with the connection PRAGMAs applied."""

    pragmas = dict(pragmas or BaseConfig.SQLITE_PRAGMAS)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - exercised via connect
        # pysqlite's implicit BEGIN skips DDL and SAVEPOINT handling; let SQLAlchemy own it.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            for name, value in pragmas.items():
                cursor.execute(f"PRAGMA {name} = {value}")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # pragma: no cover - exercised via transactions
        conn.exec_driver_sql("BEGIN")

    return engine


class Database:
    """Embedded SQLite database behind a ``query(sql, params)`` contract."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        config: Optional[BaseConfig] = None,
    ) -> None:
        cfg = config or BaseConfig()
        self._path = cfg.resolve_db_path(db_path)
        self._pragmas = dict(cfg.SQLITE_PRAGMAS)
        self._lock = threading.RLock()
        self._engine: Optional[Engine] = None
        self._conn: Optional[Connection] = None
        self._rollback_hooks: list[Callable[[], None]] = []

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._open()
        logger.info("SQLite database initialized at: %s", self._path)

    # ------------------------------------------------------------------ lifecycle

    def _open(self) -> None:
        engine = create_db_engine(self._path, self._pragmas)
        try:
            conn = engine.connect()
        except Exception:
            engine.dispose()
            logger.error("Failed to open SQLite database at %s", self._path, exc_info=True)
            raise
        self._engine = engine
        self._conn = conn

    def close(self) -> None:
        """Close the connection and dispose the engine. Safe to call twice."""

        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

    def reopen(self) -> None:
        """Re-open the same file, e.g. after a restore replaced it on disk."""

        with self._lock:
            self.close()
            self._open()
        logger.info("SQLite database reopened at: %s", self._path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _connection(self) -> Connection:
        if self._conn is None:
            raise QueryError("Database is closed")
        return self._conn

    # ------------------------------------------------------------------ queries

    def query(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        kind: Optional[StatementKind] = None,
        table: Optional[str] = None,
    ) -> QueryResult:
        """Execute one statement with ``?`` placeholders bound from ``params``.

        ``kind`` skips keyword sniffing when the caller already knows what it
        runs; ``table`` names the INSERT target for RETURNING emulation instead
        of parsing it out of ``sql``. Errors are logged with the SQL and params
        and re-raised unchanged.
        """

        bound = list(params or [])
        statement_kind = kind or StatementKind.infer(sql)
        try:
            with self._lock:
                conn = self._connection()
                if conn.in_transaction():
                    return self._dispatch(conn, sql, bound, statement_kind, table)
                if statement_kind is StatementKind.SCRIPT:
                    return self._run_autocommit(conn, sql)
                with conn.begin():
                    return self._dispatch(conn, sql, bound, statement_kind, table)
        except Exception as exc:
            logger.error(
                "SQLite query error: %s | SQL: %s | Params: %r",
                exc,
                sql,
                bound,
                extra={"sql": sql, "params": bound},
            )
            raise

    def _dispatch(
        self,
        conn: Connection,
        sql: str,
        params: list[Any],
        kind: StatementKind,
        table: Optional[str],
    ) -> QueryResult:
        if kind is StatementKind.SELECT:
            result = conn.exec_driver_sql(sql, tuple(params))
            return QueryResult(rows=[dict(row) for row in result.mappings()])

        if kind is StatementKind.INSERT:
            if returning_offset(sql) is None:
                result = conn.exec_driver_sql(sql, tuple(params))
                return QueryResult(rows=[], rows_affected=result.rowcount)
            return self._insert_returning(conn, sql, params, table)

        if kind is StatementKind.MUTATE:
            # A RETURNING clause is dropped, not emulated; callers re-select the row.
            result = conn.exec_driver_sql(_strip_returning(sql), tuple(params))
            return QueryResult(rows=[], rows_affected=result.rowcount)

        result = conn.exec_driver_sql(sql)
        result.close()
        return QueryResult(rows=[])

    def _run_autocommit(self, conn: Connection, sql: str) -> QueryResult:
        # Straight on the driver connection: a SQLAlchemy autobegin would wrap
        # VACUUM and connection PRAGMAs in a transaction where they fail or no-op.
        cursor = conn.connection.dbapi_connection.cursor()
        try:
            cursor.execute(sql)
        except sqlite3.Error as exc:
            raise DBAPIError.instance(sql, None, exc, sqlite3.Error) from exc
        finally:
            cursor.close()
        return QueryResult(rows=[])

    def _insert_returning(
        self,
        conn: Connection,
        sql: str,
        params: list[Any],
        table: Optional[str],
    ) -> QueryResult:
        target = _quote_identifier(table) if table else insert_target(sql)
        result = conn.exec_driver_sql(_strip_returning(sql), tuple(params))
        affected = result.rowcount
        row_id = result.lastrowid
        if not affected or row_id is None:
            return QueryResult(rows=[], rows_affected=affected)
        fetched = conn.exec_driver_sql(f"SELECT * FROM {target} WHERE rowid = ?", (row_id,))
        return QueryResult(rows=[dict(row) for row in fetched.mappings()], rows_affected=affected)

    def execute_script(self, sql: str) -> None:
        """Run a multi-statement script (schema bootstrap, maintenance).

        The driver commits any open transaction before a script, so this refuses
        to run inside ``transaction_scope``.
        """

        with self._lock:
            conn = self._connection()
            if conn.in_transaction():
                raise QueryError("execute_script() cannot run inside a transaction")
            try:
                conn.connection.dbapi_connection.executescript(sql)
            except sqlite3.Error as exc:
                logger.error("SQLite script error: %s | SQL: %s", exc, sql, extra={"sql": sql})
                raise

    # ------------------------------------------------------------------ transactions

    @contextmanager
    def transaction_scope(self) -> Iterator[Connection]:
        """Provide a transactional scope; nested scopes become SAVEPOINTs."""

        with self._lock:
            conn = self._connection()
            if conn.in_transaction():
                try:
                    with conn.begin_nested():
                        yield conn
                except BaseException:
                    self._run_rollback_hooks()
                    raise
            else:
                try:
                    with conn.begin():
                        yield conn
                except BaseException:
                    self._run_rollback_hooks()
                    raise
                finally:
                    self._rollback_hooks.clear()

    def in_transaction(self) -> bool:
        with self._lock:
            return self._conn is not None and self._conn.in_transaction()

    def on_rollback(self, hook: Callable[[], None]) -> None:
        """Call ``hook`` if the open transaction, or a savepoint inside it, rolls back.

        Hooks are forgotten once the outermost transaction ends. Outside a
        transaction there is nothing to roll back and the hook is ignored.
        """

        with self._lock:
            if self.in_transaction() and hook not in self._rollback_hooks:
                self._rollback_hooks.append(hook)

    def _run_rollback_hooks(self) -> None:
        for hook in list(self._rollback_hooks):
            try:
                hook()
            except Exception:
                logger.error("Rollback hook %r failed", hook, exc_info=True)

    def transaction(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` atomically and return its result.

        The SQLite driver is synchronous and cannot suspend mid-transaction, so
        coroutine functions are rejected rather than half-run.
        """

        if inspect.iscoroutinefunction(fn):
            raise TypeError("transaction() requires a synchronous callable, got a coroutine function")
        with self.transaction_scope():
            result = fn()
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise TypeError("transaction() callable returned an awaitable; use a synchronous function")
            return result

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def generate_id() -> str:
        """Random UUID4 used as the public primary key of inserted rows."""

        return str(uuid.uuid4())

    @staticmethod
    def current_timestamp() -> str:
        """SQL expression for the engine's current timestamp."""

        return "datetime('now')"

    @staticmethod
    def parse_json(text: Optional[str]) -> Any:
        """Decode JSON text, returning ``None`` when it is missing or malformed."""

        if text is None:
            return None
        try:
            return json.loads(text)
        except (TypeError, ValueError):
            return None

    def backup(self, target: str | Path) -> Path:
        """Copy the live database into ``target`` using SQLite's online backup."""

        target_path = Path(target)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            source = self._connection().connection.dbapi_connection
            destination = sqlite3.connect(str(target_path))
            try:
                source.backup(destination)
            finally:
                destination.close()
        logger.info("Database backed up to: %s", target_path)
        return target_path

    def table_names(self) -> list[str]:
        """User tables in the database, alphabetically."""

        result = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name"
        )
        return [row["name"] for row in result.rows]


def init_database(db: Database) -> None:
    """Create every table and index declared by the SQLModel models."""

    from .. import models  # noqa: F401  # register tables with SQLModel metadata

    with db.transaction_scope() as conn:
        SQLModel.metadata.create_all(conn)
    logger.info("Database schema ready at %s", db.path)


def bootstrap_database(
    db_path: str | Path | None = None,
    config: Optional[BaseConfig] = None,
) -> Database:
    """Open the adapter and ensure the schema exists."""

    db = Database(db_path, config=config)
    init_database(db)
    return db

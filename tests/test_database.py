"""Tests for the SQLite query adapter."""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from progresstracker.infra.database import (
    Database,
    QueryError,
    QueryResult,
    StatementKind,
    bootstrap_database,
    insert_target,
    returning_offset,
)


def _count(db: Database, table: str) -> int:
    return db.query(f"SELECT COUNT(*) AS n FROM {table}").rows[0]["n"]


# =============================================================================
# Construction
# =============================================================================


def test_creates_missing_parent_directories(config, tmp_path):
    target = tmp_path / "nested" / "deeper" / "tracker.db"
    with Database(target, config=config) as database:
        assert database.path == target
        assert database.is_open
    assert target.exists()


def test_path_falls_back_to_env_then_data_dir(config, tmp_path, monkeypatch):
    with Database(config=config) as database:
        assert database.path == config.DATA_DIR / "progress_tracker.db"

    env_path = tmp_path / "from_env.db"
    monkeypatch.setenv("SQLITE_DB_PATH", str(env_path))
    with Database(config=config) as database:
        assert database.path == env_path


def test_open_failure_raises_from_constructor(config, tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("occupied", encoding="utf-8")

    with pytest.raises(OSError):
        Database(blocker / "tracker.db", config=config)


def test_connection_pragmas_are_applied(db):
    journal = db.query("PRAGMA journal_mode", kind=StatementKind.SELECT).rows
    foreign_keys = db.query("PRAGMA foreign_keys", kind=StatementKind.SELECT).rows

    assert journal == [{"journal_mode": "wal"}]
    assert foreign_keys == [{"foreign_keys": 1}]


def test_schema_tables_created(db):
    assert set(db.table_names()) >= {
        "projects",
        "notes",
        "todos",
        "milestones",
        "reports",
        "settings",
    }


def test_bootstrap_database_is_idempotent(config, db_path):
    first = bootstrap_database(db_path, config=config)
    first.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["p1", "Kept"])
    first.close()

    second = bootstrap_database(db_path, config=config)
    try:
        assert _count(second, "projects") == 1
    finally:
        second.close()


# =============================================================================
# Statement kinds
# =============================================================================


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("SELECT 1", StatementKind.SELECT),
        ("   select * from projects", StatementKind.SELECT),
        ("\n\tINSERT INTO projects VALUES (1)", StatementKind.INSERT),
        ("insert or ignore into settings values (1)", StatementKind.INSERT),
        ("UPDATE todos SET status = 'done'", StatementKind.MUTATE),
        ("delete from notes", StatementKind.MUTATE),
        ("CREATE TABLE t (x)", StatementKind.SCRIPT),
        ("PRAGMA foreign_keys", StatementKind.SCRIPT),
        ("WITH x AS (SELECT 1) SELECT * FROM x", StatementKind.SCRIPT),
    ],
)
def test_statement_kind_inferred_from_leading_keyword(sql, expected):
    assert StatementKind.infer(sql) is expected


@pytest.mark.parametrize(
    ("sql", "table"),
    [
        ("INSERT INTO projects (id) VALUES (?)", "projects"),
        ("  insert or replace into todos (id) values (?)", "todos"),
        ('INSERT INTO "weird name" (id) VALUES (?)', '"weird name"'),
        ("INSERT INTO main.notes (id) VALUES (?)", "main.notes"),
    ],
)
def test_insert_target_parses_table(sql, table):
    assert insert_target(sql) == table


def test_insert_target_unparseable_raises():
    with pytest.raises(QueryError):
        insert_target("REPLACE INTO projects (id) VALUES (?)")


@pytest.mark.parametrize(
    "sql",
    [
        "UPDATE projects SET description = 'returning customer' WHERE id = ?",
        "INSERT INTO projects (id, name) VALUES (?, 'RETURNING home')",
        "INSERT INTO \"returning\" (id) VALUES (?)",
        "DELETE FROM projects -- returning nothing\nWHERE id = ?",
        "UPDATE projects SET name = 'it''s returning' /* RETURNING */ WHERE id = ?",
        "UPDATE projects SET returning_at = 1",
    ],
)
def test_returning_inside_literals_and_comments_is_ignored(sql):
    assert returning_offset(sql) is None


def test_returning_offset_finds_real_clause():
    sql = "INSERT INTO projects (id, name) VALUES (?, 'returning') RETURNING id"

    assert sql[returning_offset(sql) :] == "RETURNING id"


# =============================================================================
# query()
# =============================================================================


def test_select_returns_all_rows_as_dicts(db, make_project):
    make_project("Alpha")
    make_project("Beta")
    make_project("Gamma")

    result = db.query("SELECT name FROM projects ORDER BY name")

    assert isinstance(result, QueryResult)
    assert result.rows == [{"name": "Alpha"}, {"name": "Beta"}, {"name": "Gamma"}]
    assert result.rows_affected is None


def test_select_without_matches_returns_empty_list(db):
    result = db.query("SELECT * FROM projects WHERE id = ?", ["missing"])

    assert result.rows == []
    assert result.rows_affected is None


def test_insert_reports_change_count(db):
    result = db.query(
        "INSERT INTO projects (id, name) VALUES (?, ?)", [db.generate_id(), "Alpha"]
    )

    assert result.rows == []
    assert result.rows_affected == 1


def test_insert_returning_matches_rowid_select(db):
    project_id = db.generate_id()

    result = db.query(
        "INSERT INTO projects (id, name, description) VALUES (?, ?, ?) RETURNING *",
        [project_id, "Alpha", "first"],
    )

    assert result.rows_affected == 1
    assert len(result.rows) == 1
    row = result.rows[0]
    assert row["id"] == project_id
    assert row["status"] == "active"
    assert row["created_at"]
    assert row == db.query("SELECT * FROM projects WHERE id = ?", [project_id]).rows[0]


def test_insert_returning_with_quoted_table(db):
    result = db.query(
        'INSERT INTO "projects" (id, name) VALUES (?, ?) returning id',
        ["quoted", "Quoted"],
    )

    assert result.rows[0]["id"] == "quoted"


def test_insert_returning_uses_explicit_table(db):
    result = db.query(
        "INSERT INTO settings (key, value) VALUES (?, ?) RETURNING key",
        ["theme", "dark"],
        table="settings",
    )

    assert result.rows[0]["key"] == "theme"
    assert result.rows[0]["value"] == "dark"


def test_insert_or_ignore_returning_without_change(db, make_project):
    project_id = make_project("Alpha")

    result = db.query(
        "INSERT OR IGNORE INTO projects (id, name) VALUES (?, ?) RETURNING *",
        [project_id, "Duplicate"],
    )

    assert result.rows == []
    assert result.rows_affected == 0


def test_update_and_delete_report_change_counts(db, make_project):
    make_project("Alpha")
    make_project("Beta")

    updated = db.query("UPDATE projects SET status = ? WHERE status = ?", ["archived", "active"])
    deleted = db.query("DELETE FROM projects WHERE name = ?", ["Alpha"])

    assert updated.rows == []
    assert updated.rows_affected == 2
    assert deleted.rows == []
    assert deleted.rows_affected == 1


def test_update_returning_is_not_emulated(db, make_project):
    project_id = make_project("Alpha")

    result = db.query(
        "UPDATE projects SET name = ? WHERE id = ? RETURNING *", ["Renamed", project_id]
    )

    assert result.rows == []
    assert result.rows_affected == 1
    assert db.query("SELECT name FROM projects").rows == [{"name": "Renamed"}]


def test_update_with_returning_in_string_literal_runs_unchanged(db, make_project):
    project_id = make_project("Alpha")

    result = db.query(
        "UPDATE projects SET description = 'returning customer' WHERE id = ?", [project_id]
    )

    assert result.rows_affected == 1
    assert db.query("SELECT description FROM projects").rows == [
        {"description": "returning customer"}
    ]


def test_insert_with_returning_in_string_literal(db):
    plain = db.query(
        "INSERT INTO projects (id, name, description) VALUES (?, ?, 'Returning home')",
        ["p1", "Alpha"],
    )
    emulated = db.query(
        "INSERT INTO projects (id, name, description) VALUES (?, ?, 'returning') RETURNING id, description",
        ["p2", "Beta"],
    )

    assert plain == QueryResult(rows=[], rows_affected=1)
    assert emulated.rows[0]["id"] == "p2"
    assert emulated.rows[0]["description"] == "returning"


def test_vacuum_runs_outside_a_transaction(db, make_project):
    make_project("Alpha")

    assert db.query("VACUUM") == QueryResult(rows=[], rows_affected=None)
    assert _count(db, "projects") == 1


def test_connection_pragma_takes_effect(db):
    db.query("PRAGMA foreign_keys = OFF")

    assert db.query("PRAGMA foreign_keys", kind=StatementKind.SELECT).rows == [{"foreign_keys": 0}]
    db.query(
        "INSERT INTO notes (id, project_id, content) VALUES (?, ?, ?)",
        ["n1", "no-such-project", "orphan"],
    )
    assert _count(db, "notes") == 1


def test_script_statement_joins_open_transaction(db):
    with pytest.raises(RuntimeError):
        with db.transaction_scope():
            db.query("CREATE TABLE scratch (id INTEGER PRIMARY KEY)")
            raise RuntimeError("undo")

    assert "scratch" not in db.table_names()


def test_script_errors_use_sqlalchemy_exceptions(db):
    with pytest.raises(OperationalError):
        db.query("VACUUM no_such_schema")


def test_script_statements_return_no_rows(db):
    created = db.query("CREATE TABLE scratch (id INTEGER PRIMARY KEY, label TEXT)")
    pragma = db.query("PRAGMA user_version = 3")

    assert created == QueryResult(rows=[], rows_affected=None)
    assert pragma.rows == []
    assert "scratch" in db.table_names()


def test_explicit_kind_overrides_inference(db, make_project):
    make_project("Alpha")

    result = db.query(
        "WITH named AS (SELECT name FROM projects) SELECT * FROM named",
        kind=StatementKind.SELECT,
    )

    assert result.rows == [{"name": "Alpha"}]


def test_project_delete_cascades(db, make_project):
    project_id = make_project("Alpha")
    db.query("INSERT INTO notes (id, project_id, content) VALUES (?, ?, ?)", ["n1", project_id, "x"])
    db.query("INSERT INTO todos (id, project_id, title) VALUES (?, ?, ?)", ["t1", project_id, "y"])
    db.query(
        "INSERT INTO milestones (id, project_id, title) VALUES (?, ?, ?)", ["m1", project_id, "z"]
    )
    db.query(
        "INSERT INTO reports (id, project_id, title, content, report_type) VALUES (?, ?, ?, ?, ?)",
        ["r1", project_id, "Report", "body", "status"],
    )

    db.query("DELETE FROM projects WHERE id = ?", [project_id])

    for table in ("notes", "todos", "milestones", "reports"):
        assert _count(db, table) == 0


def test_foreign_key_violation_raises(db):
    with pytest.raises(IntegrityError):
        db.query(
            "INSERT INTO notes (id, project_id, content) VALUES (?, ?, ?)",
            ["n1", "no-such-project", "orphan"],
        )


def test_parameter_mismatch_raises(db):
    with pytest.raises(DBAPIError):
        db.query("SELECT * FROM projects WHERE id = ?", [])


def test_errors_are_logged_with_sql_and_params(db, caplog):
    with caplog.at_level(logging.ERROR, logger="progresstracker"):
        with pytest.raises(OperationalError):
            db.query("SELECT * FROM no_such_table WHERE id = ?", ["abc"])

    record = next(r for r in caplog.records if "SQLite query error" in r.getMessage())
    assert record.sql == "SELECT * FROM no_such_table WHERE id = ?"
    assert record.params == ["abc"]


def test_failed_statement_leaves_adapter_usable(db, make_project):
    with pytest.raises(OperationalError):
        db.query("SELEC nonsense")

    make_project("Still works")
    assert _count(db, "projects") == 1


# =============================================================================
# Transactions
# =============================================================================


def test_transaction_commits_and_returns_result(db):
    def unit():
        db.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["p1", "Alpha"])
        db.query("INSERT INTO todos (id, project_id, title) VALUES (?, ?, ?)", ["t1", "p1", "Ship"])
        return "done"

    assert db.transaction(unit) == "done"
    assert _count(db, "projects") == 1
    assert _count(db, "todos") == 1


def test_transaction_rolls_back_on_error(db):
    def unit():
        db.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["p1", "Alpha"])
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        db.transaction(unit)

    assert _count(db, "projects") == 0


def test_transaction_rolls_back_on_statement_error(db):
    def unit():
        db.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["p1", "Alpha"])
        db.query("INSERT INTO notes (id, project_id, content) VALUES (?, ?, ?)", ["n1", "nope", "x"])

    with pytest.raises(IntegrityError):
        db.transaction(unit)

    assert _count(db, "projects") == 0


def test_nested_scope_rolls_back_to_savepoint(db):
    with db.transaction_scope():
        db.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["outer", "Outer"])
        with pytest.raises(RuntimeError):
            with db.transaction_scope():
                db.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["inner", "Inner"])
                raise RuntimeError("inner failure")

    ids = [row["id"] for row in db.query("SELECT id FROM projects").rows]
    assert ids == ["outer"]


def test_rollback_hooks_run_on_rollback_only(db):
    calls = []

    db.on_rollback(lambda: calls.append("outside"))
    with db.transaction_scope():
        db.on_rollback(lambda: calls.append("committed"))
    assert calls == []

    with pytest.raises(RuntimeError):
        with db.transaction_scope():
            db.on_rollback(lambda: calls.append("rolled back"))
            raise RuntimeError("boom")
    assert calls == ["rolled back"]

    with db.transaction_scope():
        pass
    assert calls == ["rolled back"]


def test_rollback_hooks_run_when_savepoint_rolls_back(db):
    calls = []

    with db.transaction_scope():
        with pytest.raises(RuntimeError):
            with db.transaction_scope():
                db.on_rollback(lambda: calls.append("savepoint"))
                raise RuntimeError("inner")
        assert db.in_transaction()

    assert calls == ["savepoint"]
    assert not db.in_transaction()


def test_transaction_rejects_coroutine_function(db):
    async def unit():
        db.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["p1", "Alpha"])

    with pytest.raises(TypeError):
        db.transaction(unit)

    assert _count(db, "projects") == 0


def test_transaction_rejects_awaitable_result_and_rolls_back(db):
    async def later():
        return None

    def unit():
        db.query("INSERT INTO projects (id, name) VALUES (?, ?)", ["p1", "Alpha"])
        return later()

    with pytest.raises(TypeError):
        db.transaction(unit)

    assert _count(db, "projects") == 0


def test_concurrent_threads_share_the_connection(db):
    errors: list[BaseException] = []

    def worker(offset: int) -> None:
        try:
            for i in range(25):
                db.query(
                    "INSERT INTO projects (id, name) VALUES (?, ?)",
                    [f"p-{offset}-{i}", f"Project {offset}/{i}"],
                )
        except BaseException as exc:  # pragma: no cover - surfaced by the assert below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert _count(db, "projects") == 100


# =============================================================================
# Scripts, helpers and lifecycle
# =============================================================================


def test_execute_script_runs_multiple_statements(db):
    db.execute_script(
        """
        CREATE TABLE scratch (id INTEGER PRIMARY KEY, label TEXT);
        INSERT INTO scratch (label) VALUES ('a');
        INSERT INTO scratch (label) VALUES ('b');
        """
    )

    assert _count(db, "scratch") == 2


def test_execute_script_refuses_open_transaction(db):
    with db.transaction_scope():
        with pytest.raises(QueryError):
            db.execute_script("CREATE TABLE scratch (id INTEGER);")


def test_generate_id_is_uuid4(db):
    first, second = db.generate_id(), db.generate_id()

    assert first != second
    assert uuid.UUID(first).version == 4


def test_current_timestamp_expression():
    assert Database.current_timestamp() == "datetime('now')"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"steps": [1, 2]}', {"steps": [1, 2]}),
        ("[]", []),
        ("not json", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_json(text, expected):
    assert Database.parse_json(text) == expected


def test_backup_writes_readable_copy(db, make_project, tmp_path):
    make_project("Alpha")

    target = db.backup(tmp_path / "copies" / "snapshot.db")

    copy = sqlite3.connect(str(target))
    try:
        assert copy.execute("SELECT name FROM projects").fetchall() == [("Alpha",)]
    finally:
        copy.close()


def test_close_is_idempotent_and_blocks_queries(db):
    db.close()
    db.close()

    assert not db.is_open
    with pytest.raises(QueryError):
        db.query("SELECT 1")


def test_reopen_sees_committed_data(db, make_project):
    make_project("Alpha")

    db.reopen()

    assert db.is_open
    assert _count(db, "projects") == 1

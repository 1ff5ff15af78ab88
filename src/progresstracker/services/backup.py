"""Backup, restore and export utilities for the SQLite database."""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..infra.database import Database
from ..logging_config import get_logger

logger = get_logger("backup")

BACKUP_PREFIX = "progress_tracker_backup"
EXPORT_PREFIX = "progress_tracker_export"
EXPORT_VERSION = "1.0"


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def _resolve_backup_path(target: Path, include_timestamp: bool) -> Path:
    filename = f"{BACKUP_PREFIX}_{_timestamp()}.db" if include_timestamp else f"{BACKUP_PREFIX}.db"
    # An existing directory, or a path without a suffix, is treated as a directory.
    if target.is_dir() or (not target.exists() and not target.suffix):
        return target / filename
    return target


def create_backup(db: Database, backup_dir: Path | str, *, include_timestamp: bool = True) -> Path:
    """Write an online backup of ``db`` into ``backup_dir`` (or to that exact file path)."""

    backup_path = _resolve_backup_path(Path(backup_dir), include_timestamp)
    try:
        return db.backup(backup_path)
    except Exception:
        logger.error("Error creating database backup at %s", backup_path, exc_info=True)
        raise


def restore_backup(db: Database, backup_path: Path | str) -> Path:
    """Replace the live database file with ``backup_path`` and reopen the adapter."""

    source = Path(backup_path)
    if not source.exists():
        raise FileNotFoundError(f"Backup file not found: {source}")
    if source.is_dir():
        raise IsADirectoryError(f"Backup path is a directory, not a file: {source}")

    current = db.path
    db.close()
    try:
        # Stale WAL/SHM files would otherwise be replayed over the restored copy.
        for suffix in ("-wal", "-shm"):
            Path(f"{current}{suffix}").unlink(missing_ok=True)
        shutil.copyfile(source, current)
    finally:
        db.reopen()
    logger.info("Database restored from %s", source)
    return current


def list_backups(backup_dir: Path | str) -> list[Path]:
    """Backup files in ``backup_dir``, newest first."""

    directory = Path(backup_dir)
    if not directory.exists():
        return []
    return sorted(directory.glob("*.db"), key=lambda p: p.stat().st_mtime, reverse=True)


def export_to_json(db: Database, output_path: Optional[Path | str] = None, *, export_dir: Path | str = "exports") -> Path:
    """Dump every user table to a JSON document for inspection or migration."""

    if output_path is None:
        target = Path(export_dir) / f"{EXPORT_PREFIX}_{_timestamp()}.json"
    else:
        target = Path(output_path)
    target.parent.mkdir(parents=True, exist_ok=True)

    payload: dict[str, Any] = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "version": EXPORT_VERSION,
        "tables": {},
    }
    try:
        for table in db.table_names():
            payload["tables"][table] = db.query(f'SELECT * FROM "{table}"').rows
        target.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    except Exception:
        logger.error("Error exporting database to JSON", exc_info=True)
        raise

    logger.info("Database exported to JSON: %s", target)
    return target


def get_stats(db: Database) -> dict[str, Any]:
    """File size and per-table row counts."""

    size = db.path.stat().st_size if db.path.exists() else 0
    tables = {}
    for table in db.table_names():
        count = db.query(f'SELECT COUNT(*) AS count FROM "{table}"').rows[0]["count"]
        tables[table] = {"row_count": count}
    return {
        "database_path": str(db.path),
        "database_size": f"{size / 1024:.2f} KB",
        "database_size_bytes": size,
        "tables": tables,
    }

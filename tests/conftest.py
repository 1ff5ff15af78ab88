"""Shared fixtures for the Progress Tracker storage tests.

Every test gets its own SQLite file under ``tmp_path`` with the schema
created, so nothing touches the real data directory.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from progresstracker.config import TestConfig
from progresstracker.infra.database import Database, init_database
from progresstracker.services.settings import SettingsStore

_ENV_VARS = (
    "SQLITE_DB_PATH",
    "PROGRESSTRACKER_DATA_DIR",
    "PROGRESSTRACKER_DEV_MODE",
    "PROGRESSTRACKER_BACKUP_DIR",
    "PROGRESSTRACKER_EXPORT_DIR",
    "SETTINGS_CACHE_SECONDS",
    "DEFAULT_REPORT_EMAIL",
    "SENDGRID_FROM_EMAIL",
    "SENDGRID_FROM_NAME",
    "TIMEZONE",
)


class FakeClock:
    """Manually advanced monotonic clock for cache expiry tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def config(tmp_path: Path, monkeypatch) -> TestConfig:
    """Config rooted in ``tmp_path`` with a clean environment."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PROGRESSTRACKER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("PROGRESSTRACKER_BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("PROGRESSTRACKER_EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setenv("DEFAULT_REPORT_EMAIL", "owner@example.com")
    return TestConfig()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tracker.db"


@pytest.fixture
def db(config, db_path):
    """Open adapter on a fresh file with every table created."""

    database = Database(db_path, config=config)
    init_database(database)
    yield database
    database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(db, config, clock) -> SettingsStore:
    """Settings store with a 60 second cache driven by ``clock``."""

    return SettingsStore(db, config=config, cache_seconds=60, clock=clock)


# =============================================================================
# Data Factories
# =============================================================================


@pytest.fixture
def make_project(db):
    """Factory inserting a project and returning its id."""

    def _make(name: str = "Tracker", status: str = "active") -> str:
        project_id = db.generate_id()
        db.query(
            "INSERT INTO projects (id, name, status) VALUES (?, ?, ?)",
            [project_id, name, status],
        )
        return project_id

    return _make

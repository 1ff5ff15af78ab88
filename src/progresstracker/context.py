"""Application context for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import BaseConfig
from .infra.database import Database, init_database
from .logging_config import get_logger
from .scheduler import WeeklyReportScheduler
from .services.settings import SettingsStore
from .services.weekly_report import ReportSender

logger = get_logger("context")


@dataclass
class AppContext:
    """Handles every component needs, built once at process start."""

    config: BaseConfig
    db: Database
    settings: SettingsStore
    scheduler: WeeklyReportScheduler

    def close(self) -> None:
        """Stop background work and release the database."""

        self.scheduler.shutdown()
        self.db.close()


def create_app_context(
    config: Optional[BaseConfig] = None,
    *,
    db_path: str | Path | None = None,
    sender: Optional[ReportSender] = None,
    seed_defaults: bool = True,
    start_scheduler: bool = False,
) -> AppContext:
    """Open the database, ensure the schema and wire the services together."""

    if config is None:
        config = BaseConfig()

    db = Database(db_path, config=config)
    init_database(db)

    settings = SettingsStore(db, config=config)
    if seed_defaults:
        settings.initialize_defaults()

    scheduler = WeeklyReportScheduler(db, settings, sender)
    if start_scheduler:
        scheduler.start()

    logger.info("Application context ready (database %s)", db.path)
    return AppContext(config=config, db=db, settings=settings, scheduler=scheduler)

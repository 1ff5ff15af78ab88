"""Command line maintenance tools for the Progress Tracker database."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click

from .config import BaseConfig
from .context import AppContext, create_app_context
from .logging_config import setup_logging
from .models.settings import SETTING_TYPES
from .services import backup as backup_service
from .services.weekly_report import collect_weekly_report


def _open(ctx: click.Context, *, seed_defaults: bool = False) -> AppContext:
    obj = ctx.ensure_object(dict)
    app_ctx = create_app_context(
        obj["config"],
        db_path=obj.get("db_path"),
        seed_defaults=seed_defaults,
    )
    ctx.call_on_close(app_ctx.close)
    return app_ctx


@click.group()
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite file to operate on (defaults to SQLITE_DB_PATH or the data directory).",
)
@click.option("--log/--no-log", default=False, help="Write logs to DATA_DIR/logs.")
@click.pass_context
def progresstracker(ctx: click.Context, db_path: Optional[Path], log: bool) -> None:
    """Progress Tracker database tools."""

    config = BaseConfig()
    if log:
        setup_logging(config)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["db_path"] = db_path


@progresstracker.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create tables and seed default settings."""

    app_ctx = _open(ctx, seed_defaults=False)
    inserted = app_ctx.settings.initialize_defaults()
    click.echo(f"Database ready: {app_ctx.db.path}")
    click.echo(f"Default settings inserted: {inserted}")


# --------------------------------------------------------------------------- settings


@progresstracker.group("settings")
def settings_group() -> None:
    """Inspect and edit application settings."""


@settings_group.command("list")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print as JSON.")
@click.pass_context
def settings_list(ctx: click.Context, as_json: bool) -> None:
    app_ctx = _open(ctx)
    records = sorted(app_ctx.settings.get_all_with_metadata(), key=lambda r: r["key"])
    if as_json:
        click.echo(json.dumps(records, indent=2, default=str))
        return
    if not records:
        click.echo("No settings stored.")
        return
    for record in records:
        click.echo(f"{record['key']} ({record['type']}) = {record['value']!r}")


@settings_group.command("get")
@click.argument("key")
@click.pass_context
def settings_get(ctx: click.Context, key: str) -> None:
    app_ctx = _open(ctx)
    value = app_ctx.settings.get(key)
    if value is None:
        raise click.ClickException(f"Setting not found: {key}")
    click.echo(json.dumps(value))


@settings_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option(
    "--type",
    "value_type",
    type=click.Choice(SETTING_TYPES),
    default="string",
    show_default=True,
    help="How the value is decoded on read.",
)
@click.option("--description", default=None, help="Description stored with a new key.")
@click.pass_context
def settings_set(
    ctx: click.Context,
    key: str,
    value: str,
    value_type: str,
    description: Optional[str],
) -> None:
    """Store VALUE under KEY; the text is kept verbatim and decoded by --type."""

    app_ctx = _open(ctx)
    app_ctx.settings.set(key, value, value_type, description)
    click.echo(f"{key} = {json.dumps(app_ctx.settings.get(key))}")


@settings_group.command("delete")
@click.argument("key")
@click.pass_context
def settings_delete(ctx: click.Context, key: str) -> None:
    app_ctx = _open(ctx)
    app_ctx.settings.delete(key)
    click.echo(f"Deleted {key}")


# --------------------------------------------------------------------------- backups


@progresstracker.group("backup")
def backup_group() -> None:
    """Create, list and restore database backups."""


@backup_group.command("create")
@click.option(
    "--dir",
    "backup_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Target directory (defaults to PROGRESSTRACKER_BACKUP_DIR).",
)
@click.pass_context
def backup_create(ctx: click.Context, backup_dir: Optional[Path]) -> None:
    app_ctx = _open(ctx)
    path = backup_service.create_backup(app_ctx.db, backup_dir or app_ctx.config.BACKUP_DIR)
    click.echo(f"Backup written: {path}")


@backup_group.command("list")
@click.option(
    "--dir",
    "backup_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
)
@click.pass_context
def backup_list(ctx: click.Context, backup_dir: Optional[Path]) -> None:
    config = ctx.ensure_object(dict)["config"]
    backups = backup_service.list_backups(backup_dir or config.BACKUP_DIR)
    if not backups:
        click.echo("No backups found.")
        return
    for path in backups:
        click.echo(str(path))


@backup_group.command("restore")
@click.argument("backup_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.confirmation_option(prompt="This replaces the current database. Continue?")
@click.pass_context
def backup_restore(ctx: click.Context, backup_path: Path) -> None:
    app_ctx = _open(ctx)
    restored = backup_service.restore_backup(app_ctx.db, backup_path)
    click.echo(f"Restored {restored} from {backup_path}")


# --------------------------------------------------------------------------- reporting


@progresstracker.command("export-json")
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.pass_context
def export_json(ctx: click.Context, output: Optional[Path]) -> None:
    """Dump every table to a JSON file."""

    app_ctx = _open(ctx)
    path = backup_service.export_to_json(
        app_ctx.db, output, export_dir=app_ctx.config.EXPORT_DIR
    )
    click.echo(f"Export written: {path}")


@progresstracker.command("stats")
@click.pass_context
def stats(ctx: click.Context) -> None:
    app_ctx = _open(ctx)
    info = backup_service.get_stats(app_ctx.db)
    click.echo(f"Database: {info['database_path']} ({info['database_size']})")
    for table, table_info in info["tables"].items():
        click.echo(f"  {table}: {table_info['row_count']} rows")


@progresstracker.group("report")
def report_group() -> None:
    """Weekly report tools."""


@report_group.command("preview")
@click.pass_context
def report_preview(ctx: click.Context) -> None:
    """Print the weekly summary that the scheduler would send."""

    app_ctx = _open(ctx)
    data = collect_weekly_report(app_ctx.db)
    click.echo(f"Weekly report {data.date_range}")
    click.echo(data.report_content)


def main() -> None:
    progresstracker(obj={})


if __name__ == "__main__":  # pragma: no cover
    main()

"""Column helpers shared by the table models."""

from __future__ import annotations

from typing import Any

from sqlalchemy import text


def server_now() -> dict[str, Any]:
    """Column kwargs for a TEXT timestamp filled by SQLite's ``datetime('now')``."""

    return {"server_default": text("(datetime('now'))")}

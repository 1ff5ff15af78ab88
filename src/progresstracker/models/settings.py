"""Application-level settings stored in the database."""

from __future__ import annotations

from typing import Any, ClassVar, Literal, Optional

from sqlmodel import Field, SQLModel

from .common import server_now

SettingType = Literal["string", "boolean", "number"]
SETTING_TYPES: tuple[str, ...] = ("string", "boolean", "number")


class Setting(SQLModel, table=True):
    """Key-value row; ``value`` is always text and ``type`` says how to decode it."""

    __tablename__: ClassVar[str] = "settings"

    key: str = Field(primary_key=True)
    value: str = Field(nullable=False)
    type: str = Field(default="string", sa_column_kwargs={"server_default": "string"})
    description: Optional[str] = Field(default=None)
    created_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())
    updated_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Setting":
        """Build a detached record from a ``settings`` query row."""

        return cls.model_validate(row)

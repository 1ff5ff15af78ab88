"""Generated reports and the weekly-report delivery log."""

from __future__ import annotations

from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel

from .common import server_now


class Report(SQLModel, table=True):
    """A stored report. Automated weekly runs log here with no project."""

    __tablename__: ClassVar[str] = "reports"

    id: str = Field(primary_key=True)
    project_id: Optional[str] = Field(
        default=None, foreign_key="projects.id", ondelete="CASCADE", index=True
    )
    title: str = Field(nullable=False)
    content: str = Field(nullable=False)
    report_type: str = Field(nullable=False)
    recipient: Optional[str] = Field(default=None)
    created_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())

"""Projects and the records that hang off them."""

from __future__ import annotations

from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel

from .common import server_now


class Project(SQLModel, table=True):
    """A tracked project; deleting one cascades to its notes, todos and milestones."""

    __tablename__: ClassVar[str] = "projects"

    id: str = Field(primary_key=True)
    name: str = Field(nullable=False)
    description: Optional[str] = Field(default=None)
    status: str = Field(default="active", index=True, sa_column_kwargs={"server_default": "active"})
    created_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())
    updated_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())


class Note(SQLModel, table=True):
    """Diary-style entry, optionally rewritten by the LLM into ``enhanced_content``."""

    __tablename__: ClassVar[str] = "notes"

    id: str = Field(primary_key=True)
    project_id: Optional[str] = Field(
        default=None, foreign_key="projects.id", ondelete="CASCADE", index=True
    )
    content: str = Field(nullable=False)
    enhanced_content: Optional[str] = Field(default=None)
    structured_data: Optional[str] = Field(default=None)
    created_at: Optional[str] = Field(default=None, index=True, sa_column_kwargs=server_now())
    updated_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())


class Todo(SQLModel, table=True):
    """Actionable item belonging to a project."""

    __tablename__: ClassVar[str] = "todos"

    id: str = Field(primary_key=True)
    project_id: Optional[str] = Field(
        default=None, foreign_key="projects.id", ondelete="CASCADE", index=True
    )
    title: str = Field(nullable=False)
    description: Optional[str] = Field(default=None)
    status: str = Field(default="pending", index=True, sa_column_kwargs={"server_default": "pending"})
    priority: str = Field(default="medium", sa_column_kwargs={"server_default": "medium"})
    due_date: Optional[str] = Field(default=None)
    llm_generated: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    created_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())
    updated_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())


class Milestone(SQLModel, table=True):
    """Dated checkpoint on a project timeline."""

    __tablename__: ClassVar[str] = "milestones"

    id: str = Field(primary_key=True)
    project_id: str = Field(foreign_key="projects.id", ondelete="CASCADE", index=True)
    title: str = Field(nullable=False)
    description: Optional[str] = Field(default=None)
    target_date: Optional[str] = Field(default=None)
    status: str = Field(default="planned", sa_column_kwargs={"server_default": "planned"})
    created_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())
    updated_at: Optional[str] = Field(default=None, sa_column_kwargs=server_now())

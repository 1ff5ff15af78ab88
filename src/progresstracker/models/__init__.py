"""SQLModel table exports."""

from .project import Milestone, Note, Project, Todo
from .report import Report
from .settings import SETTING_TYPES, Setting, SettingType

__all__ = [
    "Milestone",
    "Note",
    "Project",
    "Report",
    "SETTING_TYPES",
    "Setting",
    "SettingType",
    "Todo",
]

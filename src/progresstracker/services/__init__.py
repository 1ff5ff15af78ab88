"""Domain services built on the query adapter."""

from .settings import EmailSettings, LLMPreferences, SettingsStore, WeeklyReportProfile
from .weekly_report import SendResult, WeeklyReportData, collect_weekly_report

__all__ = [
    "EmailSettings",
    "LLMPreferences",
    "SendResult",
    "SettingsStore",
    "WeeklyReportData",
    "WeeklyReportProfile",
    "collect_weekly_report",
]

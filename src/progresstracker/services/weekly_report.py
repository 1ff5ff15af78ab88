"""Weekly activity digest built from the tracker tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..infra.database import Database
from ..logging_config import get_logger

logger = get_logger("weekly_report")

RECENT_LIMIT = 10
SNIPPET_LENGTH = 100


@dataclass
class WeeklyReportData:
    """Counts and recent items for the last seven days."""

    active_projects: int
    total_notes: int
    total_todos: int
    completed_todos: int
    report_content: str
    date_range: str
    recent_notes: list[dict[str, Any]] = field(default_factory=list)
    recent_todos: list[dict[str, Any]] = field(default_factory=list)
    upcoming_milestones: list[dict[str, Any]] = field(default_factory=list)
    completed_milestones: list[dict[str, Any]] = field(default_factory=list)
    upcoming_deadlines: list[dict[str, Any]] = field(default_factory=list)

    @property
    def activity_level(self) -> int:
        return self.total_notes + self.completed_todos


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None


# Delivers a report to one recipient; email rendering lives with the transport.
ReportSender = Callable[[WeeklyReportData, str], SendResult]


def _count(db: Database, sql: str, params: Optional[list[Any]] = None) -> int:
    rows = db.query(sql, params).rows
    if not rows:
        return 0
    return int(next(iter(rows[0].values())) or 0)


def _snippet(text: str) -> str:
    if len(text) > SNIPPET_LENGTH:
        return text[:SNIPPET_LENGTH] + "..."
    return text


def _dated(title: str, when: Optional[str], prefix: str = "") -> str:
    return f"{title} ({prefix}{when})" if when else title


def render_summary(data: WeeklyReportData) -> str:
    """Plain-text summary stored with the report and used as the email body fallback."""

    lines = ["Weekly Activity Summary:", ""]

    if data.recent_notes:
        lines.append("Recent Notes:")
        for note in data.recent_notes:
            content = note.get("enhanced_content") or note.get("content") or ""
            lines.append(f"- [{note['project_name']}] {_snippet(content)}")
        lines.append("")

    if data.recent_todos:
        lines.append("Recent Tasks:")
        for todo in data.recent_todos:
            marker = "[x]" if todo.get("status") == "completed" else "[ ]"
            lines.append(f"{marker} [{todo['project_name']}] {todo['title']}")
        lines.append("")

    if not data.recent_notes and not data.recent_todos:
        lines.append("No recent activity recorded this week.")

    lines.append("")
    lines.append("Overall Progress:")
    lines.append(f"- {data.active_projects} active projects")
    lines.append(f"- {data.total_notes} new notes created")
    lines.append(f"- {data.completed_todos}/{data.total_todos} tasks completed")

    if data.upcoming_milestones:
        lines.append("")
        lines.append("Upcoming Milestones (next 7 days):")
        lines.extend(
            f"- [{m['project_name']}] {_dated(m['title'], m.get('target_date'))}"
            for m in data.upcoming_milestones
        )
    if data.completed_milestones:
        lines.append("")
        lines.append("Milestones Completed (last 7 days):")
        lines.extend(
            f"- [{m['project_name']}] {_dated(m['title'], m.get('target_date'))}"
            for m in data.completed_milestones
        )
    if data.upcoming_deadlines:
        lines.append("")
        lines.append("Upcoming Deadlines (next 7 days):")
        lines.extend(
            f"- [{t['project_name']}] {_dated(t['title'], t.get('due_date'), 'due ')}"
            for t in data.upcoming_deadlines
        )

    lines.append("")
    activity = data.activity_level
    if activity > 10:
        lines.append(f"Great week! You've been very productive with {activity} activities completed.")
    elif activity > 5:
        lines.append(f"Good progress this week with {activity} activities.")
    elif activity > 0:
        lines.append("Some progress made this week. Keep building momentum!")
    else:
        lines.append("A quiet week - consider setting some goals for the upcoming week.")

    return "\n".join(lines)


def collect_weekly_report(db: Database, today: Optional[date] = None) -> WeeklyReportData:
    """Gather the week ending on ``today`` (UTC date by default, matching SQLite's clock)."""

    end = today or datetime.now(timezone.utc).date()
    start = end - timedelta(days=7)
    since = start.isoformat()
    # Timestamps carry a time part, so the upper bound is the start of the next day.
    until = (end + timedelta(days=1)).isoformat()
    day = end.isoformat()
    horizon = (end + timedelta(days=7)).isoformat()

    active_projects = _count(db, "SELECT COUNT(*) AS count FROM projects WHERE status = 'active'")
    total_notes = _count(
        db,
        "SELECT COUNT(*) AS count FROM notes WHERE created_at >= ? AND created_at < ?",
        [since, until],
    )
    total_todos = _count(
        db,
        "SELECT COUNT(*) AS total FROM todos WHERE created_at >= ? AND created_at < ?",
        [since, until],
    )
    completed_todos = _count(
        db,
        "SELECT COUNT(*) AS completed FROM todos "
        "WHERE status = 'completed' AND updated_at >= ? AND updated_at < ?",
        [since, until],
    )

    recent_notes = db.query(
        """
        SELECT n.content, n.enhanced_content, p.name AS project_name
        FROM notes n
        JOIN projects p ON n.project_id = p.id
        WHERE n.created_at >= ? AND n.created_at < ?
        ORDER BY n.created_at DESC
        LIMIT ?
        """,
        [since, until, RECENT_LIMIT],
    ).rows
    recent_todos = db.query(
        """
        SELECT t.title, t.description, t.status, p.name AS project_name
        FROM todos t
        JOIN projects p ON t.project_id = p.id
        WHERE t.updated_at >= ? AND t.updated_at < ?
        ORDER BY t.updated_at DESC
        LIMIT ?
        """,
        [since, until, RECENT_LIMIT],
    ).rows
    completed_milestones = db.query(
        """
        SELECT m.title, m.description, m.status, m.target_date, p.name AS project_name
        FROM milestones m
        JOIN projects p ON m.project_id = p.id
        WHERE m.status = 'completed'
          AND m.target_date IS NOT NULL AND m.target_date != ''
          AND m.target_date >= ? AND m.target_date <= ?
        ORDER BY m.target_date DESC
        LIMIT ?
        """,
        [since, day, RECENT_LIMIT],
    ).rows
    upcoming_milestones = db.query(
        """
        SELECT m.title, m.description, m.status, m.target_date, p.name AS project_name
        FROM milestones m
        JOIN projects p ON m.project_id = p.id
        WHERE m.target_date IS NOT NULL AND m.target_date != ''
          AND m.target_date > ? AND m.target_date <= ?
        ORDER BY m.target_date ASC
        LIMIT ?
        """,
        [day, horizon, RECENT_LIMIT],
    ).rows
    upcoming_deadlines = db.query(
        """
        SELECT t.title, t.description, t.status, t.due_date, p.name AS project_name
        FROM todos t
        JOIN projects p ON t.project_id = p.id
        WHERE t.due_date IS NOT NULL AND t.due_date != ''
          AND t.due_date > ? AND t.due_date <= ?
        ORDER BY t.due_date ASC
        LIMIT ?
        """,
        [day, horizon, RECENT_LIMIT],
    ).rows

    data = WeeklyReportData(
        active_projects=active_projects,
        total_notes=total_notes,
        total_todos=total_todos,
        completed_todos=completed_todos,
        report_content="",
        date_range=f"{start.isoformat()} - {end.isoformat()}",
        recent_notes=recent_notes,
        recent_todos=recent_todos,
        upcoming_milestones=upcoming_milestones,
        completed_milestones=completed_milestones,
        upcoming_deadlines=upcoming_deadlines,
    )
    data.report_content = render_summary(data)
    return data


def log_report_activity(
    db: Database,
    recipient: str,
    success: bool,
    error: Optional[str] = None,
) -> None:
    """Record a delivery attempt in ``reports``. A failure here is logged, never raised."""

    try:
        db.query(
            "INSERT INTO reports (id, project_id, title, content, report_type, recipient) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                f"weekly-{db.generate_id()}",
                None,
                f"Automated Weekly Report - {'Success' if success else 'Failed'}",
                f"Error: {error}" if error else "Weekly report sent successfully",
                "weekly_automated",
                recipient,
            ],
        )
    except Exception:
        logger.error("Failed to log report activity", exc_info=True)

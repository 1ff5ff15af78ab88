"""Background scheduler for the weekly report job."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .logging_config import get_logger
from .services.weekly_report import (
    ReportSender,
    SendResult,
    collect_weekly_report,
    log_report_activity,
)

if TYPE_CHECKING:
    from .infra.database import Database
    from .services.settings import SettingsStore

logger = get_logger("scheduler")


class WeeklyReportScheduler:
    """Runs the weekly report on the cron pattern stored in settings."""

    JOB_ID = "weekly_report"

    def __init__(
        self,
        db: Database,
        settings: SettingsStore,
        sender: Optional[ReportSender] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        """Initialize the scheduler.

        Args:
            db: Query adapter the report reads from and logs into
            settings: Settings store providing schedule, timezone and recipient
            sender: Delivery callable; without one every run is logged as failed
            scheduler: APScheduler instance, mainly for tests
        """
        self.db = db
        self.settings = settings
        self.sender = sender
        self.scheduler = scheduler or BackgroundScheduler()

    def start(self) -> bool:
        """Schedule the job from current settings. Returns False when nothing was scheduled."""
        try:
            email_settings = self.settings.get_email_settings()
            if not email_settings.weekly_reports_enabled:
                logger.info("Weekly reports are disabled in settings")
                return False

            trigger = CronTrigger.from_crontab(
                email_settings.weekly_report_schedule,
                timezone=email_settings.timezone,
            )
            self.scheduler.add_job(
                func=self.run_weekly_report,
                trigger=trigger,
                id=self.JOB_ID,
                name="Weekly Progress Report",
                replace_existing=True,
            )
            if not self.scheduler.running:
                self.scheduler.start()
        except Exception as exc:
            logger.error(f"Failed to schedule weekly reports: {exc}", exc_info=True)
            return False

        logger.info(
            "Weekly reports scheduled with cron pattern %s (timezone %s)",
            email_settings.weekly_report_schedule,
            email_settings.timezone,
        )
        return True

    def stop(self) -> None:
        """Remove the weekly job but keep the scheduler thread alive."""
        if self.scheduler.get_job(self.JOB_ID) is not None:
            self.scheduler.remove_job(self.JOB_ID)
            logger.info("Weekly report scheduler stopped")

    def shutdown(self) -> None:
        """Stop the background scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Background scheduler stopped")

    def restart(self) -> bool:
        """Re-read settings and reschedule, e.g. after the schedule was edited."""
        self.stop()
        return self.start()

    def next_run(self) -> Optional[datetime]:
        job = self.scheduler.get_job(self.JOB_ID)
        if job is None:
            return None
        return getattr(job, "next_run_time", None)

    def status(self) -> dict[str, Any]:
        email_settings = self.settings.get_email_settings()
        return {
            "is_running": self.scheduler.running and self.scheduler.get_job(self.JOB_ID) is not None,
            "next_run": self.next_run(),
            "cron_pattern": email_settings.weekly_report_schedule,
            "email_settings": email_settings,
        }

    def _deliver(self) -> SendResult:
        report = collect_weekly_report(self.db)
        recipient = self.settings.get_weekly_report_email()
        if not recipient:
            logger.warning("No weekly report email configured, skipping weekly report")
            return SendResult(success=False, error="No weekly report email configured")
        if self.sender is None:
            raise RuntimeError("No report sender configured")

        result = self.sender(report, recipient)
        if result.success:
            logger.info(f"Weekly report sent successfully to {recipient}")
            log_report_activity(self.db, recipient, True)
        else:
            logger.error(f"Failed to send weekly report: {result.error}")
            log_report_activity(self.db, recipient, False, result.error or "Unknown error")
        return result

    def run_weekly_report(self) -> None:
        """Job body: build, send and log. Failures are logged, never raised into APScheduler."""
        self.trigger()

    def trigger(self) -> SendResult:
        """Run the report now and return the delivery outcome."""
        try:
            return self._deliver()
        except Exception as exc:
            logger.error(f"Error in weekly report generation: {exc}", exc_info=True)
            recipient = self.settings.get_weekly_report_email() or "unknown"
            log_report_activity(self.db, recipient, False, str(exc))
            return SendResult(success=False, error=str(exc))


def create_scheduler(
    db: Database,
    settings: SettingsStore,
    sender: Optional[ReportSender] = None,
    *,
    auto_start: bool = False,
) -> WeeklyReportScheduler:
    """Create and optionally start the weekly report scheduler."""
    scheduler = WeeklyReportScheduler(db, settings, sender)
    if auto_start:
        scheduler.start()
    return scheduler

"""
APScheduler job runner for the daily task jobs.

One cron trigger runs the reminder mail first, then the status transitions.
Each job logs its own failure and never stops the other.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from compliance_intake.config import settings
from compliance_intake.core.logging import get_logger

log = get_logger(__name__)

# Global scheduler instance
_scheduler: BackgroundScheduler | None = None


def update_task_statuses_job():
    """Scheduled job: COMPLETED -> DUE_SOON and DUE_SOON -> EXPIRED."""
    from compliance_intake.processors.lifecycle import update_task_statuses

    log.info("scheduled_job_starting", job="update_task_statuses")
    try:
        counts = update_task_statuses()
        log.info("scheduled_job_complete", job="update_task_statuses", **counts.to_dict())
    except Exception as e:
        log.error("scheduled_job_error", job="update_task_statuses", error=str(e))


def send_reminders_job():
    """Scheduled job: mail owners of INCOMPLETE tasks due today or REMINDER_LOOKBACK_DAYS ago."""
    from compliance_intake.processors.reminders import send_task_reminders

    log.info("scheduled_job_starting", job="send_reminders")
    try:
        stats = send_task_reminders()
        log.info("scheduled_job_complete", job="send_reminders", **stats)
    except Exception as e:
        log.error("scheduled_job_error", job="send_reminders", error=str(e))


def daily_tasks_job():
    """Reminders (when REMINDERS_ENABLED) followed by the status transitions."""
    if settings.reminders_enabled:
        send_reminders_job()
    update_task_statuses_job()


def start_scheduler() -> BackgroundScheduler:
    """
    Start the background scheduler.

    Runs the daily jobs at SCHEDULER_HOUR:SCHEDULER_MINUTE in
    SCHEDULER_TIMEZONE.

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        log.warning("scheduler_already_running")
        return _scheduler

    _scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    _scheduler.add_job(
        daily_tasks_job,
        trigger=CronTrigger(
            hour=settings.scheduler_hour,
            minute=settings.scheduler_minute,
            timezone=settings.scheduler_timezone,
        ),
        id="daily_tasks",
        name="Task reminders and status transitions",
        replace_existing=True,
    )

    _scheduler.start()
    log.info(
        "scheduler_started",
        hour=settings.scheduler_hour,
        minute=settings.scheduler_minute,
        timezone=settings.scheduler_timezone,
    )

    return _scheduler


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("scheduler_stopped")


def get_scheduler() -> BackgroundScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler


def run_now():
    """Manually trigger the daily jobs."""
    daily_tasks_job()

"""
Daily reminder mail for INCOMPLETE tasks.

A task is reminded on its due date and again REMINDER_LOOKBACK_DAYS after
it. The mail goes to the property owner; tasks whose owner has no email
address are skipped. One failed send does not stop the others.
"""

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from compliance_intake.config import settings
from compliance_intake.core.database import Database
from compliance_intake.core.errors import MailDeliveryError
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import TaskReminder
from compliance_intake.services.mailer import SMTPMailer

log = get_logger(__name__)

RULE = "-" * 54


def render_reminder(reminder: TaskReminder, frontend_url: str) -> tuple[str, str]:
    """Subject and plain-text body for one reminder."""
    task = reminder.task
    lines = [
        f"Hello {reminder.owner_name or 'User'},",
        "",
        "You have an INCOMPLETE task that needs attention:",
        RULE,
        f"Task Name: {task.task_name}",
        f"Task Type: {task.type.value}",
        f"Property Address: {reminder.address or 'N/A'}",
        f"Due Date: {task.due_date.isoformat() if task.due_date else 'N/A'}",
    ]
    if task.task_description:
        lines.append(f"Description: {task.task_description}")
    lines += [
        RULE,
        "",
        "To view or update this task, please click the link below:",
        f"{frontend_url.rstrip('/')}/property/tasks/{task.id}",
        "",
        "Best regards,",
        "Compliance team",
    ]
    return f"Task Reminder: {task.task_name}", "\n".join(lines)


class TaskReminderJob:
    """Finds the tasks due for a reminder and mails their owners."""

    def __init__(
        self,
        db: Database | None = None,
        mailer: SMTPMailer | None = None,
        lookback_days: int | None = None,
        frontend_url: str | None = None,
        timezone: str | None = None,
    ):
        self.db = db or Database()
        self.mailer = mailer or SMTPMailer()
        self.lookback_days = lookback_days if lookback_days is not None else settings.reminder_lookback_days
        self.frontend_url = frontend_url or settings.frontend_url
        self.timezone = ZoneInfo(timezone or settings.scheduler_timezone)

    def due_dates(self, today: date) -> list[date]:
        return [today, today - timedelta(days=self.lookback_days)]

    def send_reminders(self, today: date | None = None) -> dict:
        """
        Send one reminder per matching task.

        Args:
            today: Reference date, defaults to today in the scheduler timezone

        Returns:
            Stats dict: found, sent, skipped, failed
        """
        stats = {"found": 0, "sent": 0, "skipped": 0, "failed": 0}

        if not self.mailer.configured:
            log.warning("reminders_skipped", reason="smtp_not_configured")
            return stats

        today = today or datetime.now(self.timezone).date()
        reminders = self.db.find_tasks_for_reminder(self.due_dates(today))
        stats["found"] = len(reminders)
        log.info("reminders_starting", today=today.isoformat(), found=len(reminders))

        for reminder in reminders:
            if not reminder.owner_email:
                log.warning("reminder_no_owner_email", task_id=reminder.task.id)
                stats["skipped"] += 1
                continue

            subject, body = render_reminder(reminder, self.frontend_url)
            try:
                self.mailer.send(reminder.owner_email, subject, body)
            except MailDeliveryError as e:
                log.error("reminder_send_failed", task_id=reminder.task.id, error=str(e))
                stats["failed"] += 1
                continue

            log.info("reminder_sent", task_id=reminder.task.id, to=reminder.owner_email)
            stats["sent"] += 1

        log.info("reminders_complete", **stats)
        return stats


def send_task_reminders(db: Database | None = None) -> dict:
    """Run the reminder job with default settings."""
    return TaskReminderJob(db=db).send_reminders()

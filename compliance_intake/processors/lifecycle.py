"""
Task lifecycle: scheduled status transitions and manual status updates.

States: UNKNOWN -> INCOMPLETE -> PROCESSING -> DUE_SOON -> EXPIRED, with
COMPLETED and HISTORY as side states.

Scheduled transitions (daily):
1. COMPLETED with due_date in [today, today + window] -> DUE_SOON
2. DUE_SOON with due_date before today -> EXPIRED

Both are status-qualified bulk updates on active rows, so a second run on
the same day changes nothing. COMPLETED is never re-entered automatically.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from compliance_intake.config import settings
from compliance_intake.core.database import Database
from compliance_intake.core.errors import TaskNotFoundError
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import Task, TaskStatus, TransitionCounts

log = get_logger(__name__)


@dataclass
class StatusUpdateResult:
    task: Task
    previous_status: TaskStatus
    archived: int = 0


class TaskLifecycle:
    """Advances task status by due date and applies manual transitions."""

    def __init__(
        self,
        db: Database | None = None,
        window_days: int | None = None,
        timezone: str | None = None,
    ):
        self.db = db or Database()
        self.window_days = window_days if window_days is not None else settings.due_soon_window_days
        self.timezone = ZoneInfo(timezone or settings.scheduler_timezone)

    def today(self) -> date:
        return datetime.now(self.timezone).date()

    def run_transitions(self, today: date | None = None) -> TransitionCounts:
        """
        Run the scheduled transitions once.

        Args:
            today: Reference date, defaults to today in the scheduler timezone

        Returns:
            Rows moved per bucket
        """
        today = today or self.today()
        window_end = today + timedelta(days=self.window_days)

        log.info("task_status_update_starting", today=today.isoformat(), window_end=window_end.isoformat())

        counts = TransitionCounts(
            completed_to_due_soon=self.db.mark_due_soon(today, window_end),
            due_soon_to_expired=self.db.mark_expired(today),
        )

        log.info("task_status_update_complete", **counts.to_dict())
        return counts

    def update_status(
        self,
        task_id: int,
        status: TaskStatus,
        archive_conflicts: bool = False,
    ) -> StatusUpdateResult:
        """
        Apply a manual status change.

        UNKNOWN -> INCOMPLETE with archive_conflicts moves every other active
        task of the same property and type in DUE_SOON or EXPIRED to HISTORY.

        Raises:
            TaskNotFoundError: no active task with this id
        """
        task = self.db.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        previous = task.status
        archive = archive_conflicts and previous == TaskStatus.UNKNOWN and status == TaskStatus.INCOMPLETE

        updated, archived = self.db.update_task_status(task_id, status, archive_conflicts=archive)
        if updated is None:
            raise TaskNotFoundError(task_id)

        if archive:
            log.info(
                "conflicting_tasks_archived",
                task_id=task.id,
                property_id=task.property_id,
                type=task.type.value,
                archived=archived,
            )

        log.info(
            "task_status_changed",
            task_id=task_id,
            previous=previous.value,
            status=status.value,
        )
        return StatusUpdateResult(task=updated, previous_status=previous, archived=archived)


def update_task_statuses(db: Database | None = None) -> TransitionCounts:
    """Run the scheduled transitions with default settings."""
    return TaskLifecycle(db=db).run_transitions()

"""
Task lifecycle endpoints.

POST  /tasks/status-update      : run the scheduled transitions now
POST  /tasks/send-reminders     : send the daily reminder mail now
PATCH /tasks/{task_id}/status   : manual status change
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from compliance_intake.core.errors import TaskNotFoundError
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import TaskStatus
from compliance_intake.processors.lifecycle import TaskLifecycle
from compliance_intake.processors.reminders import TaskReminderJob
from compliance_intake.routers.deps import get_lifecycle, get_reminder_job

log = get_logger(__name__)
router = APIRouter(prefix="/tasks", tags=["tasks"])


class StatusChangeRequest(BaseModel):
    status: TaskStatus
    archive_conflicts: bool = False


@router.post("/status-update")
def run_status_update(lifecycle: TaskLifecycle = Depends(get_lifecycle)):
    counts = lifecycle.run_transitions()
    return {"updated": counts.total, **counts.to_dict()}


@router.post("/send-reminders")
def send_reminders(job: TaskReminderJob = Depends(get_reminder_job)):
    return job.send_reminders()


@router.patch("/{task_id}/status")
def change_task_status(
    task_id: int,
    req: StatusChangeRequest,
    lifecycle: TaskLifecycle = Depends(get_lifecycle),
):
    """
    Change a task's status.

    With archive_conflicts, moving UNKNOWN -> INCOMPLETE sends the other
    DUE_SOON/EXPIRED tasks of the same property and type to HISTORY.
    """
    try:
        result = lifecycle.update_status(task_id, req.status, archive_conflicts=req.archive_conflicts)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "task": jsonable_encoder(result.task),
        "previous_status": result.previous_status.value,
        "archived": result.archived,
    }

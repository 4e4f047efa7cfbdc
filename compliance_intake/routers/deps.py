"""
FastAPI dependencies shared by the routers.

Overridden in tests through app.dependency_overrides.
"""

from typing import Iterator

from fastapi import Depends

from compliance_intake.core.database import Database
from compliance_intake.processors.ingestion import IngestionOrchestrator
from compliance_intake.processors.lifecycle import TaskLifecycle
from compliance_intake.processors.reminders import TaskReminderJob
from compliance_intake.services.resend import ResendClient


def get_database() -> Database:
    return Database()


def get_orchestrator(db: Database = Depends(get_database)) -> Iterator[IngestionOrchestrator]:
    orchestrator = IngestionOrchestrator(db=db)
    try:
        yield orchestrator
    finally:
        orchestrator.close()


def get_lifecycle(db: Database = Depends(get_database)) -> TaskLifecycle:
    return TaskLifecycle(db=db)


def get_reminder_job(db: Database = Depends(get_database)) -> TaskReminderJob:
    return TaskReminderJob(db=db)


def get_resend_client() -> ResendClient:
    return ResendClient()

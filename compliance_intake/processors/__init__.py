"""Ingestion, lifecycle and reminder processors."""

from .base import BaseProcessor
from .ingestion import IngestionOrchestrator, ingest_message
from .backfill import BackfillProcessor
from .lifecycle import TaskLifecycle, update_task_statuses
from .reminders import TaskReminderJob, send_task_reminders
from .watcher import MailboxWatcher

__all__ = [
    "BaseProcessor",
    "IngestionOrchestrator",
    "ingest_message",
    "BackfillProcessor",
    "TaskLifecycle",
    "update_task_statuses",
    "TaskReminderJob",
    "send_task_reminders",
    "MailboxWatcher",
]

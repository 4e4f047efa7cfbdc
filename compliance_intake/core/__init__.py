"""Core modules: logging, models, errors and persistence."""

from .logging import configure_logging, get_logger
from .errors import ComplianceIntakeError, InputMissingError, TaskNotFoundError
from .models import (
    InboundMessage,
    IngestionResult,
    IngestionStatus,
    Task,
    TaskStatus,
    TaskType,
)
from .database import Database

__all__ = [
    "configure_logging",
    "get_logger",
    "ComplianceIntakeError",
    "InputMissingError",
    "TaskNotFoundError",
    "InboundMessage",
    "IngestionResult",
    "IngestionStatus",
    "Task",
    "TaskStatus",
    "TaskType",
    "Database",
]

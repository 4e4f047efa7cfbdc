"""
Structured logging for the intake service.

JSON lines in production, colored console output for development. Context
bound with bind_context() (e.g. the provider message id during ingestion)
is attached to every event from the same thread or task until
clear_context() is called.
"""

import logging
import sys

import structlog

# Third-party loggers that log every request/job at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default", "apscheduler.scheduler")


def configure_logging(log_level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR. Defaults to LOG_LEVEL.
        json_output: JSON renderer if True, console renderer if False. Defaults to LOG_JSON.
    """
    from compliance_intake.config import settings

    level = getattr(logging, (log_level or settings.log_level).upper())
    if json_output is None:
        json_output = settings.log_json

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger, usually get_logger(__name__)."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Bind key/values to every log event until clear_context() is called."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop all context bound with bind_context()."""
    structlog.contextvars.clear_contextvars()

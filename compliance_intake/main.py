"""
FastAPI application for compliance email intake.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from compliance_intake.config import settings
from compliance_intake.core.logging import configure_logging, get_logger
from compliance_intake.core.database import Database
from compliance_intake.core.models import TaskStatus
from compliance_intake.processors.watcher import start_watcher, stop_watcher
from compliance_intake.routers.deps import get_database
from compliance_intake.routers.emails import router as emails_router
from compliance_intake.routers.tasks import router as tasks_router
from compliance_intake.routers.webhooks import router as webhooks_router
from compliance_intake.scheduler import start_scheduler, stop_scheduler

log = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)
    log.info("application_starting", environment=settings.environment)

    db = Database()
    db.init_schema()

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        log.info("scheduler_disabled", reason="use POST /tasks/status-update")

    if settings.watcher_enabled:
        start_watcher()
    else:
        log.info("watcher_disabled", reason="use webhook or POST /emails/sync")

    yield

    # Shutdown
    if settings.watcher_enabled:
        stop_watcher()
    if settings.scheduler_enabled:
        stop_scheduler()
    log.info("application_stopped")


app = FastAPI(
    title="Compliance Intake",
    description="Turns property-manager emails into compliance tasks",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "GET", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(emails_router)
app.include_router(webhooks_router)
app.include_router(tasks_router)


class StatsResponse(BaseModel):
    total: int = 0
    by_status: dict[str, int] = {}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


@app.get("/stats", response_model=StatsResponse)
def get_stats(db: Database = Depends(get_database)):
    """Active task counts per status."""
    counts = db.get_task_status_counts()
    by_status = {status.value: counts.get(status.value, 0) for status in TaskStatus}
    return StatsResponse(total=sum(by_status.values()), by_status=by_status)


# Run with: uvicorn compliance_intake.main:app --host 0.0.0.0 --port 8001

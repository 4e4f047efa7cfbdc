"""
Email ingestion endpoints.

POST /emails/process: ingest one message synchronously
POST /emails/sync: re-ingest the inbox over a date range (background)
"""

from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from compliance_intake.config import settings
from compliance_intake.core.errors import InputMissingError
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import InboundMessage, IngestionStatus
from compliance_intake.processors.backfill import BackfillProcessor
from compliance_intake.processors.ingestion import IngestionOrchestrator
from compliance_intake.routers.deps import get_orchestrator

log = get_logger(__name__)
router = APIRouter(prefix="/emails", tags=["emails"])


class ProcessEmailRequest(BaseModel):
    """Accepts the camelCase mail-provider shape (`from`, `textBody`) or snake_case."""

    subject: str = ""
    sender: str = Field("", validation_alias=AliasChoices("from", "sender"))
    text_body: str = Field("", validation_alias=AliasChoices("textBody", "text_body"))
    html_body: str = Field("", validation_alias=AliasChoices("htmlBody", "html_body"))
    provider_message_id: str | None = Field(
        None, validation_alias=AliasChoices("provider_message_id", "message_id")
    )


class SyncRequest(BaseModel):
    days: int | None = None
    since: str | None = None  # YYYY-MM-DD
    until: str | None = None  # YYYY-MM-DD, exclusive
    dry_run: bool = False


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date format: {value}. Use YYYY-MM-DD.")


@router.post("/process")
def process_email(
    req: ProcessEmailRequest,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """
    Ingest one inbound message.

    Returns 201 when at least one property was processed, 200 for skips
    (duplicate, no address, unauthorized sender, no acting user).
    """
    message = InboundMessage(
        subject=req.subject,
        sender=req.sender,
        text_body=req.text_body,
        html_body=req.html_body,
        provider_message_id=req.provider_message_id or None,
    )

    try:
        result = orchestrator.ingest(message)
    except InputMissingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    status_code = 201 if result.status == IngestionStatus.PROCESSED and result.created else 200
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.post("/sync")
async def sync_emails(req: SyncRequest, background_tasks: BackgroundTasks):
    """
    Re-ingest inbox messages in the background.

    Uses `since`/`until` when given, otherwise the last `days` days
    (default BACKFILL_DEFAULT_DAYS, capped at one year).
    """
    if req.since:
        since_date = _parse_date(req.since)
    else:
        days = min(req.days or settings.backfill_default_days, 365)
        since_date = datetime.now() - timedelta(days=days)

    until_date = _parse_date(req.until) if req.until else None
    if until_date and until_date <= since_date:
        raise HTTPException(status_code=400, detail="`until` must be after `since`")

    def run_backfill():
        try:
            processor = BackfillProcessor(dry_run=req.dry_run)
            try:
                processor.backfill(since_date, until_date)
            finally:
                processor.close()
        except Exception as e:
            log.error("email_sync_failed", error=str(e))

    background_tasks.add_task(run_backfill)
    log.info("email_sync_queued", since=since_date.date().isoformat(), dry_run=req.dry_run)

    return {
        "status": "sync_started",
        "since": since_date.date().isoformat(),
        "until": until_date.date().isoformat() if until_date else None,
        "dry_run": req.dry_run,
    }

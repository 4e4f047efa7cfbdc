"""
Resend inbound webhook.

POST /webhooks/resend/inbound
GET  /webhooks/health

Internal failures answer 200 so the provider does not retry; only a bad
signature is rejected.
"""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from compliance_intake.config import settings
from compliance_intake.core.errors import (
    InputMissingError,
    ProviderFetchError,
    WebhookVerificationError,
)
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import IngestionStatus
from compliance_intake.processors.ingestion import IngestionOrchestrator
from compliance_intake.routers.deps import get_orchestrator, get_resend_client
from compliance_intake.services.resend import (
    ResendClient,
    recipients_of,
    to_inbound_message,
    verify_request,
)

log = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

INBOUND_EVENT = "email.received"


def _failed() -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": False, "message": "Email processing failed"})


@router.post("/resend/inbound")
async def resend_inbound(
    request: Request,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
    resend: ResendClient = Depends(get_resend_client),
):
    raw_body = (await request.body()).decode("utf-8", errors="replace")

    try:
        verify_request(request.headers, raw_body)
    except WebhookVerificationError as e:
        log.warning("webhook_rejected", reason=str(e))
        return JSONResponse(status_code=401, content={"success": False, "message": "Invalid signature"})

    try:
        payload = json.loads(raw_body)
    except ValueError:
        log.error("webhook_invalid_json")
        return _failed()

    event_type = payload.get("type")
    log.info("webhook_received", type=event_type, created_at=payload.get("created_at"))

    if event_type != INBOUND_EVENT:
        log.info("webhook_event_ignored", type=event_type)
        return {"success": True, "message": "Event ignored"}

    email_id = (payload.get("data") or {}).get("email_id")
    if not email_id:
        log.error("webhook_missing_email_id")
        return _failed()

    try:
        email = await run_in_threadpool(resend.get_email, email_id)
    except ProviderFetchError as e:
        log.error("webhook_fetch_failed", email_id=email_id, error=str(e))
        return _failed()
    finally:
        resend.close()

    recipients = recipients_of(email)
    if not any(settings.is_allowed_recipient(r) for r in recipients):
        log.info("webhook_domain_not_handled", to=recipients, allowed=settings.inbound_allowed_domain)
        return {"success": True, "message": "Domain not handled"}

    message = to_inbound_message(email_id, email)
    try:
        result = await run_in_threadpool(orchestrator.ingest, message)
    except InputMissingError:
        log.warning("webhook_email_without_text", email_id=email_id)
        return _failed()
    except Exception as e:
        log.error("webhook_processing_failed", email_id=email_id, error=str(e))
        return _failed()

    if result.status == IngestionStatus.DUPLICATE:
        return {"success": True, "message": "Email already processed"}

    status_code = 201 if result.created else 200
    return JSONResponse(status_code=status_code, content={"success": True, "data": result.to_dict()})


@router.get("/health")
async def webhooks_health():
    return {
        "status": "ok",
        "service": "webhooks",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

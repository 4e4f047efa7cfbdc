"""
Resend inbound email support.

The inbound webhook payload carries only metadata, so the full message is
fetched from the Resend API. Webhook requests are signed with Svix.
"""

import base64
import hashlib
import hmac
import time
from typing import Any

import httpx

from compliance_intake.config import settings
from compliance_intake.core.errors import ProviderFetchError, WebhookVerificationError
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import InboundMessage

log = get_logger(__name__)

SECRET_PREFIX = "whsec_"


class ResendClient:
    """HTTP client for the Resend emails API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.base_url = (base_url or settings.resend_api_url).rstrip("/")
        self._client = httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get_email(self, email_id: str) -> dict[str, Any]:
        """Fetch a received email by id."""
        if not self.api_key:
            raise ProviderFetchError("RESEND_API_KEY is not configured")

        try:
            response = self._client.get(
                f"{self.base_url}/emails/{email_id}",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            log.error(
                "resend_fetch_http_error",
                email_id=email_id,
                status_code=e.response.status_code,
            )
            raise ProviderFetchError(f"Resend returned {e.response.status_code} for {email_id}") from e
        except (httpx.RequestError, ValueError) as e:
            log.error("resend_fetch_error", email_id=email_id, error=str(e))
            raise ProviderFetchError(f"Could not fetch {email_id}: {e}") from e


def recipients_of(email: dict[str, Any]) -> list[str]:
    """The `to` field as a list; Resend sends either a string or a list."""
    to = email.get("to")
    if not to:
        return []
    if isinstance(to, str):
        return [to]
    return [r for r in to if r]


def to_inbound_message(email_id: str, email: dict[str, Any]) -> InboundMessage:
    """Map a Resend email to an InboundMessage keyed by the Resend id."""
    return InboundMessage(
        subject=email.get("subject") or "",
        sender=email.get("from") or "",
        text_body=email.get("text") or "",
        html_body=email.get("html") or "",
        provider_message_id=email_id,
    )


def _decode_secret(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    return base64.b64decode(secret)


def sign_payload(secret: str, msg_id: str, timestamp: str, body: str) -> str:
    """Base64 HMAC-SHA256 over "{id}.{timestamp}.{body}"."""
    signed_content = f"{msg_id}.{timestamp}.{body}".encode("utf-8")
    digest = hmac.new(_decode_secret(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_svix_signature(
    secret: str,
    msg_id: str | None,
    timestamp: str | None,
    signature_header: str | None,
    body: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """
    Verify a Svix webhook signature.

    The signature header holds space-separated "version,signature" pairs;
    any matching v1 entry is accepted.
    """
    if not msg_id or not timestamp or not signature_header:
        log.warning("webhook_missing_svix_headers")
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False

    current = int(now if now is not None else time.time())
    if abs(current - ts) > tolerance_seconds:
        log.warning("webhook_timestamp_out_of_range", timestamp=ts)
        return False

    try:
        expected = sign_payload(secret, msg_id, timestamp, body)
    except (ValueError, TypeError):
        log.error("webhook_secret_invalid")
        return False

    for entry in signature_header.split(" "):
        version, _, signature = entry.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return True

    log.warning("webhook_signature_mismatch")
    return False


def verify_request(headers, body: str) -> None:
    """
    Check an inbound webhook request against the configured secret.

    Without a secret, verification is skipped outside production and
    always fails in production.

    Raises:
        WebhookVerificationError: Signature missing or invalid
    """
    secret = settings.resend_webhook_secret
    if not secret:
        if settings.is_production:
            log.error("webhook_secret_not_configured")
            raise WebhookVerificationError("Webhook secret not configured")
        log.warning("webhook_verification_skipped", environment=settings.environment)
        return

    if not verify_svix_signature(
        secret,
        headers.get("svix-id"),
        headers.get("svix-timestamp"),
        headers.get("svix-signature"),
        body,
        tolerance_seconds=settings.webhook_tolerance_seconds,
    ):
        raise WebhookVerificationError("Invalid signature")

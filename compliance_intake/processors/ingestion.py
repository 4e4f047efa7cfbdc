"""
Ingestion of one inbound message into Property/Task/Contact/Email rows.

The same orchestrator is called by the HTTP endpoint, the mailbox watcher,
the backfill job and the Resend webhook. It returns a value and never
touches request/response objects.
"""

from compliance_intake.classifiers import BaseClassifier, get_classifier
from compliance_intake.core.database import Database
from compliance_intake.core.errors import DuplicateDeliveryError, InputMissingError
from compliance_intake.core.logging import get_logger, bind_context, clear_context
from compliance_intake.core.models import (
    AddressResult,
    InboundMessage,
    IngestionResult,
    IngestionStatus,
    ProcessingLog,
    SenderType,
    StoredEmail,
)
from compliance_intake.handlers.upsert import Normalizer, PropertyTaskUpserter
from compliance_intake.services.dedup import DedupGuard
from compliance_intake.services.extractor import extract
from compliance_intake.services.geocoder import AddressNormalizer
from compliance_intake.services.sender_resolver import SenderResolver

log = get_logger(__name__)

SKIP_STATUSES = {
    SenderType.UNAUTHORIZED: IngestionStatus.UNAUTHORIZED,
    SenderType.NO_ACTING_USER: IngestionStatus.NO_ACTING_USER,
}


class IngestionOrchestrator:
    """Composes extraction, sender resolution, dedup, classification and upserts."""

    def __init__(
        self,
        db: Database | None = None,
        classifier: BaseClassifier | None = None,
        normalizer: Normalizer | None = None,
        resolver: SenderResolver | None = None,
        dedup: DedupGuard | None = None,
    ):
        self.db = db or Database()
        self.classifier = classifier or get_classifier()
        self.resolver = resolver or SenderResolver(self.db)
        self.dedup = dedup or DedupGuard(self.db)
        self._owned_normalizer = None
        if normalizer is None:
            normalizer = self._owned_normalizer = AddressNormalizer()
        self.upserter = PropertyTaskUpserter(self.db, normalizer, dedup=self.dedup)

    def close(self) -> None:
        """Close the geocoding client this orchestrator created, if any."""
        if self._owned_normalizer is not None:
            self._owned_normalizer.close()
            self._owned_normalizer = None

    def ingest(self, message: InboundMessage) -> IngestionResult:
        """
        Ingest one message.

        Args:
            message: Inbound message from any transport

        Returns:
            IngestionResult with one AddressResult per candidate address

        Raises:
            InputMissingError: message has no plain-text body
        """
        if not message.text_body:
            log.warning("ingestion_rejected", reason="missing_text_body", subject=message.subject)
            raise InputMissingError("Missing text body")

        bind_context(provider_message_id=message.provider_message_id)
        try:
            return self._ingest(message)
        finally:
            clear_context()

    def _ingest(self, message: InboundMessage) -> IngestionResult:
        log.info("ingestion_started", subject=message.subject, sender=message.sender)

        if self.dedup.is_duplicate_message(message.provider_message_id):
            return IngestionResult(status=IngestionStatus.DUPLICATE)

        extraction = extract(message.subject, message.text_body)
        if not extraction.addresses:
            log.info("ingestion_skipped", reason="no_address_found")
            return IngestionResult(status=IngestionStatus.NO_ADDRESS)

        resolution = self.resolver.resolve(message.sender)
        if not resolution.authorized:
            log.info(
                "ingestion_skipped",
                reason=resolution.sender_type.value,
                sender_email=resolution.sender_email,
            )
            return IngestionResult(
                status=SKIP_STATUSES[resolution.sender_type],
                sender_type=resolution.sender_type,
            )

        task_specs = self.classifier.classify(message.text_body)
        log.info(
            "message_classified",
            addresses=len(extraction.addresses),
            task_types=[s.type.value for s in task_specs],
            tenant_found=extraction.tenant.found,
        )

        result = IngestionResult(
            status=IngestionStatus.PROCESSED,
            agency_name=resolution.agency.name,
            sender_type=resolution.sender_type,
        )
        email: StoredEmail | None = None

        for address in extraction.addresses:
            try:
                address_result, email = self.upserter.upsert_address(
                    address,
                    message,
                    resolution,
                    task_specs,
                    extraction.tenant,
                    current_email=email,
                )
            except DuplicateDeliveryError:
                log.info("ingestion_skipped", reason="concurrent_duplicate_delivery")
                result.status = IngestionStatus.DUPLICATE
                break
            except Exception as e:
                log.error("address_processing_failed", address=address, error=str(e))
                self._record_failure(message, address, e)
                address_result = AddressResult(address=address, error=str(e))

            result.per_address.append(address_result)

        log.info(
            "ingestion_complete",
            status=result.status.value,
            addresses=len(result.per_address),
            failed=sum(1 for r in result.per_address if r.error),
        )
        return result

    def _record_failure(self, message: InboundMessage, address: str, error: Exception) -> None:
        try:
            self.db.add_processing_log(ProcessingLog(
                action="address_failed",
                address=address,
                provider_message_id=message.provider_message_id,
                details={"error": str(error)},
            ))
        except Exception as log_error:
            log.error("processing_log_failed", address=address, error=str(log_error))


def ingest_message(message: InboundMessage, db: Database | None = None) -> IngestionResult:
    """Ingest one message with the default collaborators."""
    return IngestionOrchestrator(db=db).ingest(message)

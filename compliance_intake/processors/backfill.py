"""
Backfill processor for missed messages.

Pulls messages from IMAP for a date range and runs each through the same
ingestion orchestrator as the live watcher. Safe to re-run: messages that
were already stored are skipped by the duplicate check.
"""

import argparse
import sys
from datetime import datetime, timedelta
from typing import Callable

from compliance_intake.classifiers import get_classifier
from compliance_intake.config import settings
from compliance_intake.core.database import Database
from compliance_intake.core.errors import InputMissingError
from compliance_intake.core.logging import get_logger, configure_logging
from compliance_intake.core.models import InboundMessage, IngestionStatus
from compliance_intake.processors.base import BaseProcessor
from compliance_intake.processors.ingestion import IngestionOrchestrator
from compliance_intake.services.dedup import DedupGuard
from compliance_intake.services.extractor import extract
from compliance_intake.services.imap import IMAPClient
from compliance_intake.services.sender_resolver import SenderResolver

log = get_logger(__name__)


class BackfillProcessor(BaseProcessor):
    """
    Re-ingest messages from a date range.

    One message failing never aborts the batch. With dry_run the processor
    only extracts, resolves and classifies; nothing is written.
    """

    def __init__(
        self,
        db: Database | None = None,
        orchestrator: IngestionOrchestrator | None = None,
        client_factory: Callable[[], IMAPClient] = IMAPClient,
        dry_run: bool = False,
    ):
        self.db = db or Database()
        self._owns_orchestrator = orchestrator is None
        self.orchestrator = orchestrator or IngestionOrchestrator(db=self.db)
        self.client_factory = client_factory
        self.dry_run = dry_run

    def process(self, since_days: int | None = None) -> dict:
        """Backfill the last N days."""
        days = since_days or settings.backfill_default_days
        return self.backfill(datetime.now() - timedelta(days=days))

    def backfill(self, since_date: datetime, until_date: datetime | None = None) -> dict:
        """
        Ingest messages received in [since_date, until_date).

        Args:
            since_date: Start date (inclusive)
            until_date: End date (exclusive, optional)

        Returns:
            Statistics dict
        """
        log.info(
            "backfill_starting",
            since=since_date.isoformat(),
            until=until_date.isoformat() if until_date else "now",
            dry_run=self.dry_run,
        )

        with self.client_factory() as client:
            messages = client.fetch_range(since=since_date, before=until_date)
            if self.dry_run:
                stats = self.preview(messages)
            else:
                stats = self.ingest_all(messages)

        log.info("backfill_complete", **stats)
        return stats

    def close(self) -> None:
        if self._owns_orchestrator:
            self.orchestrator.close()

    def ingest_all(self, messages) -> dict:
        stats = {"total": 0, "processed": 0, "duplicates": 0, "skipped": 0, "errors": 0}

        for message in messages:
            stats["total"] += 1
            try:
                result = self.orchestrator.ingest(message)
            except InputMissingError:
                stats["skipped"] += 1
                continue
            except Exception as e:
                log.error("backfill_message_error", subject=message.subject, error=str(e))
                stats["errors"] += 1
                continue

            if result.status == IngestionStatus.DUPLICATE:
                stats["duplicates"] += 1
            elif result.created:
                stats["processed"] += 1
            else:
                stats["skipped"] += 1
            stats["errors"] += sum(1 for r in result.per_address if r.error)

        return stats

    def preview(self, messages) -> dict:
        """Read-only preview of what ingestion would do."""
        stats = {"total": 0, "would_process": 0, "duplicates": 0, "skipped": 0, "errors": 0}
        dedup = DedupGuard(self.db)
        resolver = SenderResolver(self.db)
        classifier = get_classifier()

        for message in messages:
            stats["total"] += 1
            try:
                self._preview_one(message, dedup, resolver, classifier, stats)
            except Exception as e:
                stats["errors"] += 1
                log.error("dry_run_error", subject=message.subject, error=str(e))

        return stats

    def _preview_one(self, message: InboundMessage, dedup, resolver, classifier, stats: dict) -> None:
        if not message.text_body:
            stats["skipped"] += 1
            return
        if dedup.is_duplicate_message(message.provider_message_id):
            stats["duplicates"] += 1
            return

        extraction = extract(message.subject, message.text_body)
        resolution = resolver.resolve(message.sender)
        if not extraction.addresses or not resolution.authorized:
            stats["skipped"] += 1
            log.info(
                "dry_run_skip",
                subject=message.subject[:80] if message.subject else "(no subject)",
                addresses=len(extraction.addresses),
                sender_type=resolution.sender_type.value,
            )
            return

        stats["would_process"] += 1
        log.info(
            "dry_run_message",
            subject=message.subject[:80] if message.subject else "(no subject)",
            received_at=message.received_at.isoformat() if message.received_at else None,
            agency=resolution.agency.name,
            addresses=extraction.addresses,
            task_types=[s.type.value for s in classifier.classify(message.text_body)],
            tenant=extraction.tenant.name or "N/A",
        )


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value!r}")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point: re-ingest the mailbox over a date window."""
    parser = argparse.ArgumentParser(description="Re-ingest inbox messages from a date range (idempotent)")
    parser.add_argument(
        "--since", type=_parse_date,
        help=f"first day, YYYY-MM-DD (default: {settings.backfill_default_days} days ago)",
    )
    parser.add_argument("--until", type=_parse_date, help="day after the last one, YYYY-MM-DD (default: now)")
    parser.add_argument("--dry-run", action="store_true", help="extract and classify only, write nothing")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args(argv)

    configure_logging(log_level=args.log_level)

    since_date = args.since or datetime.now() - timedelta(days=settings.backfill_default_days)
    if args.until and args.until <= since_date:
        parser.error("--until must be after --since")

    processor = BackfillProcessor(dry_run=args.dry_run)
    try:
        stats = processor.backfill(since_date, args.until)
    finally:
        processor.close()
    log.info("backfill_summary", dry_run=args.dry_run, **stats)
    return 1 if stats.get("errors") else 0


if __name__ == "__main__":
    sys.exit(main())

"""
Duplicate detection for inbound messages and stored email rows.

Two layers:
- Message level: a provider message id already stored means the whole
  message was processed before and is skipped.
- Entity level: before inserting an email row, reuse an existing row with
  the same (subject, sender, property).

Provider message ids are also protected by a unique index; an insert that
loses a race against a concurrent delivery comes back as LOST_RACE.
"""

from dataclasses import dataclass
from enum import Enum

from compliance_intake.core.database import Database
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import InboundMessage, StoredEmail

log = get_logger(__name__)

DEFAULT_SUBJECT = "No Subject"
DEFAULT_SENDER = "Unknown Sender"


class EmailAction(str, Enum):
    CREATED = "created"
    REUSED_MESSAGE = "reused_message"  # already stored earlier in this message
    REUSED_ENTITY = "reused_entity"  # same subject/sender/property
    LOST_RACE = "lost_race"  # concurrent delivery stored it first


@dataclass
class EmailDecision:
    action: EmailAction
    email: StoredEmail | None = None


class DedupGuard:
    """Decides whether a message or email row was already processed."""

    def __init__(self, db: Database):
        self.db = db

    def is_duplicate_message(self, provider_message_id: str | None) -> bool:
        """True when a message with this provider id was already stored."""
        if not provider_message_id:
            return False
        exists = self.db.email_exists(provider_message_id)
        if exists:
            log.info("duplicate_message", provider_message_id=provider_message_id)
        return exists

    def get_or_create_email(
        self,
        message: InboundMessage,
        property_id: int,
        agency_id: int | None,
        current: StoredEmail | None = None,
    ) -> EmailDecision:
        """
        Return the email row to link the address's tasks to.

        Args:
            message: Message being ingested
            property_id: Property the tasks were created on
            agency_id: Resolved agency
            current: Row already created for an earlier address of the same message
        """
        subject = message.subject or DEFAULT_SUBJECT
        sender = message.sender or DEFAULT_SENDER

        if current is not None:
            self.db.link_email_property(current.id, property_id)
            return EmailDecision(EmailAction.REUSED_MESSAGE, current)

        if not message.provider_message_id:
            existing = self.db.find_email_by_unique_key(subject, sender, property_id)
            if existing:
                log.info(
                    "email_reused",
                    email_id=existing.id,
                    property_id=property_id,
                    reason="same_subject_sender_property",
                )
                return EmailDecision(EmailAction.REUSED_ENTITY, existing)

        email = self.db.insert_email(message, subject, sender, property_id, agency_id)
        if email is None:
            return EmailDecision(EmailAction.LOST_RACE)
        return EmailDecision(EmailAction.CREATED, email)

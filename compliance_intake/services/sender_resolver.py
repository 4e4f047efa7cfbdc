"""
Resolve the From header of an inbound message to an agency and acting user.

Resolution order:
1. Sender is an active registered user -> that user's agency, user acts.
2. Sender is on an agency whitelist -> that agency, lowest-id agency-admin acts.
3. Otherwise the sender is unauthorized and the message is skipped.
"""

from compliance_intake.core.database import Database
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import InboundMessage, SenderResolution, SenderType

log = get_logger(__name__)


def parse_sender(header: str) -> str:
    """Lowercased address from ``Display Name <addr>`` or a bare address."""
    return InboundMessage(sender=header).sender_email


class SenderResolver:
    """Maps a sender address to the agency and user ingestion acts for."""

    def __init__(self, db: Database):
        self.db = db

    def resolve(self, sender: str) -> SenderResolution:
        sender_email = parse_sender(sender)
        if not sender_email:
            log.info("sender_unparseable", sender=sender)
            return SenderResolution(sender_type=SenderType.UNAUTHORIZED)

        user = self.db.get_active_user_by_email(sender_email)
        if user and user.agency_id is not None:
            agency = self.db.get_agency(user.agency_id)
            if agency:
                log.info(
                    "sender_resolved",
                    sender_type=SenderType.USER.value,
                    user_id=user.id,
                    agency_id=agency.id,
                )
                return SenderResolution(
                    sender_type=SenderType.USER,
                    sender_email=sender_email,
                    agency=agency,
                    acting_user=user,
                )

        agency = self.db.get_agency_by_whitelist_email(sender_email)
        if not agency:
            log.info("sender_unauthorized", sender_email=sender_email)
            return SenderResolution(
                sender_type=SenderType.UNAUTHORIZED,
                sender_email=sender_email,
            )

        admin = self.db.get_agency_admin(agency.id)
        if not admin:
            log.warning("whitelist_agency_without_admin", agency_id=agency.id)
            return SenderResolution(
                sender_type=SenderType.NO_ACTING_USER,
                sender_email=sender_email,
                agency=agency,
            )

        log.info(
            "sender_resolved",
            sender_type=SenderType.WHITELIST.value,
            user_id=admin.id,
            agency_id=agency.id,
        )
        return SenderResolution(
            sender_type=SenderType.WHITELIST,
            sender_email=sender_email,
            agency=agency,
            acting_user=admin,
        )

"""
Find-or-create of Property, Task, Contact and Email rows for one address.

For each candidate address:
1. Normalize the address and find (or create) the Property.
2. Warn when the Property's owner belongs to a different agency.
3. Open one Task per classified type and find-or-create the tenant Contact.
4. Create or reuse the Email row and backfill email_id on the new Tasks.

The steps are not one transaction. Repeat deliveries are stopped earlier by
the message-level duplicate check, so retries never reach these writes.
"""

from typing import Protocol

from compliance_intake.core.database import Database
from compliance_intake.core.errors import DuplicateDeliveryError
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import (
    AddressResult,
    Agency,
    InboundMessage,
    ProcessingLog,
    Property,
    SenderResolution,
    StoredEmail,
    TaskSpec,
    TaskStatus,
    TenantInfo,
)
from compliance_intake.services.dedup import DedupGuard, EmailAction

log = get_logger(__name__)

UNKNOWN_CONTACT_NAME = "Unknown"


class Normalizer(Protocol):
    def normalize(self, address: str) -> str: ...


class PropertyTaskUpserter:
    """Idempotent creation of the records one address produces."""

    def __init__(self, db: Database, normalizer: Normalizer, dedup: DedupGuard | None = None):
        self.db = db
        self.normalizer = normalizer
        self.dedup = dedup or DedupGuard(db)

    def upsert_address(
        self,
        address: str,
        message: InboundMessage,
        resolution: SenderResolution,
        task_specs: list[TaskSpec],
        tenant: TenantInfo,
        current_email: StoredEmail | None = None,
    ) -> tuple[AddressResult, StoredEmail]:
        """
        Process one candidate address.

        Args:
            address: Address as extracted from the message
            message: Message being ingested
            resolution: Authorized sender resolution (agency and acting user set)
            task_specs: Tasks the classifier opened for this message
            tenant: Tenant details found in the body
            current_email: Email row stored for an earlier address of this message

        Returns:
            (AddressResult, email row the tasks are linked to)

        Raises:
            DuplicateDeliveryError: a concurrent delivery stored the message first
        """
        agency = resolution.agency
        user = resolution.acting_user

        formatted = self._normalize(address)
        result = AddressResult(address=formatted)

        prop = self._find_or_create_property(formatted, user.id, agency.id, message)
        result.property_id = prop.id
        result.warning = self._agency_warning(prop, agency)
        if result.warning:
            log.warning("property_agency_mismatch", property_id=prop.id, warning=result.warning)

        new_task_ids = []
        for spec in task_specs:
            task = self.db.create_task(
                property_id=prop.id,
                agency_id=agency.id,
                task_name=spec.name,
                task_type=spec.type,
                status=TaskStatus.INCOMPLETE,
                task_description=f"Auto-created from email: {message.subject or ''}",
                repeat_frequency=spec.repeat_frequency,
            )
            new_task_ids.append(task.id)
            self._audit(message, formatted, "task_created", task_id=task.id, type=spec.type.value)

        if not task_specs:
            self._audit(message, formatted, "tasks_skipped", reason="no_task_keywords")

        result.contact_id = self._find_or_create_contact(tenant, prop.id, message, formatted)

        decision = self.dedup.get_or_create_email(
            message, prop.id, agency.id, current=current_email
        )
        if decision.action == EmailAction.LOST_RACE:
            self.db.deactivate_tasks(new_task_ids)
            self._audit(
                message,
                formatted,
                "duplicate_delivery",
                reason="email_insert_conflict",
                deactivated_task_ids=new_task_ids,
            )
            raise DuplicateDeliveryError(message.provider_message_id)

        email = decision.email
        self.db.set_task_email(new_task_ids, email.id)
        result.task_ids = new_task_ids
        result.email_id = email.id
        self._audit(
            message,
            formatted,
            f"email_{decision.action.value}",
            email_id=email.id,
            property_id=prop.id,
        )

        return result, email

    def _normalize(self, address: str) -> str:
        try:
            return self.normalizer.normalize(address) or address
        except Exception as e:
            log.warning("address_normalization_failed", address=address, error=str(e))
            return address

    def _find_or_create_property(
        self, address: str, user_id: int, agency_id: int, message: InboundMessage
    ) -> Property:
        prop = self.db.find_property_by_owner(address, user_id)
        if prop:
            self._audit(message, address, "property_reused", property_id=prop.id, reason="same_owner")
            return prop

        prop = self.db.find_property_by_address(address)
        if prop:
            self._audit(message, address, "property_reused", property_id=prop.id, reason="same_address")
            return prop

        prop = self.db.create_property(address, user_id, agency_id)
        self._audit(message, address, "property_created", property_id=prop.id)
        return prop

    def _agency_warning(self, prop: Property, agency: Agency) -> str | None:
        owner_agency = self._owner_agency(prop)
        if owner_agency is None or owner_agency.id == agency.id:
            return None
        return (
            f"Property belongs to agency {owner_agency.name}, "
            f"but email is from agency {agency.name}"
        )

    def _owner_agency(self, prop: Property) -> Agency | None:
        agency_id = prop.agency_id
        if prop.user_id is not None:
            owner = self.db.get_user(prop.user_id)
            if owner and owner.agency_id is not None:
                agency_id = owner.agency_id
        if agency_id is None:
            return None
        return self.db.get_agency(agency_id)

    def _find_or_create_contact(
        self, tenant: TenantInfo, property_id: int, message: InboundMessage, address: str
    ) -> int | None:
        if not tenant.phone:
            self._audit(message, address, "contact_skipped", reason="no_tenant_phone")
            return None

        contact = self.db.find_contact(tenant.phone, property_id)
        if contact:
            self._audit(message, address, "contact_reused", contact_id=contact.id)
            return contact.id

        contact = self.db.create_contact(
            name=tenant.name or UNKNOWN_CONTACT_NAME,
            phone=tenant.phone,
            property_id=property_id,
        )
        self._audit(message, address, "contact_created", contact_id=contact.id)
        return contact.id

    def _audit(self, message: InboundMessage, address: str, action: str, **details) -> None:
        log.info(action, address=address, **details)
        self.db.add_processing_log(ProcessingLog(
            action=action,
            address=address,
            email_id=details.get("email_id"),
            provider_message_id=message.provider_message_id,
            details=details,
        ))

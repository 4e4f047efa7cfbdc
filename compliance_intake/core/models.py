"""
Data models for email ingestion and the task lifecycle.

Uses dataclasses for clean, typed data structures.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from email.utils import parseaddr
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    UNKNOWN = "UNKNOWN"
    INCOMPLETE = "INCOMPLETE"
    PROCESSING = "PROCESSING"
    DUE_SOON = "DUE_SOON"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"
    HISTORY = "HISTORY"  # superseded by a newer task, hidden


class TaskType(str, Enum):
    """Compliance task types."""

    SMOKE_ALARM = "SMOKE_ALARM"
    GAS_ELECTRIC = "GAS_ELECTRIC"
    SAFETY_CHECK = "SAFETY_CHECK"


class UserRole(str, Enum):
    SUPERUSER = "superuser"
    ADMIN = "admin"
    AGENCY_ADMIN = "agency-admin"
    AGENCY_USER = "agency-user"


class SenderType(str, Enum):
    """How the sender of an inbound message was resolved."""

    USER = "user"  # registered user, acts for themselves
    WHITELIST = "whitelist"  # agency whitelist, agency-admin acts
    UNAUTHORIZED = "unauthorized"
    NO_ACTING_USER = "no_acting_user"


class IngestionStatus(str, Enum):
    """Outcome of ingesting one inbound message."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    NO_ADDRESS = "no_address"
    UNAUTHORIZED = "unauthorized"
    NO_ACTING_USER = "no_acting_user"


@dataclass
class InboundMessage:
    """One inbound message as delivered by a transport."""

    subject: str = ""
    sender: str = ""  # raw From header
    text_body: str = ""
    html_body: str = ""
    provider_message_id: str | None = None
    received_at: datetime | None = None

    @property
    def sender_email(self) -> str:
        """Extract address from 'Name <addr>' or a bare address, lowercased."""
        return self._extract_email(self.sender)

    @staticmethod
    def _extract_email(header: str) -> str:
        if not header:
            return ""
        _, address = parseaddr(header.strip())
        address = address.strip().lower()
        return address if "@" in address else ""


@dataclass
class Agency:
    id: int
    name: str


@dataclass
class User:
    id: int
    email: str
    role: UserRole
    agency_id: int | None = None
    name: str = ""
    is_active: bool = True


@dataclass
class Property:
    id: int
    address: str
    user_id: int | None
    agency_id: int | None = None
    is_active: bool = True


@dataclass
class Contact:
    id: int
    name: str
    phone: str
    property_id: int
    email: str = ""
    is_active: bool = True


@dataclass
class Task:
    id: int
    property_id: int
    agency_id: int | None
    task_name: str
    type: TaskType
    status: TaskStatus
    task_description: str = ""
    due_date: date | None = None
    inspection_date: date | None = None
    repeat_frequency: str | None = None
    email_id: int | None = None
    is_active: bool = True


@dataclass
class StoredEmail:
    """Persisted email row. Never mutated after creation."""

    id: int
    subject: str
    sender: str
    body_text: str = ""
    body_html: str = ""
    property_id: int | None = None
    agency_id: int | None = None
    provider_message_id: str | None = None
    created_at: datetime | None = None


@dataclass
class TenantInfo:
    """Tenant contact details found in a message body."""

    name: str = ""
    phone: str = ""

    @property
    def found(self) -> bool:
        return bool(self.phone)


@dataclass
class ExtractionResult:
    addresses: list[str] = field(default_factory=list)
    tenant: TenantInfo = field(default_factory=TenantInfo)


@dataclass(frozen=True)
class TaskSpec:
    """A task the classifier decided to open for an address."""

    type: TaskType
    name: str
    repeat_frequency: str


@dataclass
class SenderResolution:
    """Result of resolving the From header to an agency and acting user."""

    sender_type: SenderType
    sender_email: str = ""
    agency: Agency | None = None
    acting_user: User | None = None

    @property
    def authorized(self) -> bool:
        return self.sender_type in (SenderType.USER, SenderType.WHITELIST)


@dataclass
class AddressResult:
    """What ingestion did for one candidate address."""

    address: str
    property_id: int | None = None
    task_ids: list[int] = field(default_factory=list)
    contact_id: int | None = None
    email_id: int | None = None
    warning: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["warning"] is None:
            data.pop("warning")
        if data["error"] is None:
            data.pop("error")
        return data


@dataclass
class IngestionResult:
    """Result from ingesting one inbound message."""

    status: IngestionStatus
    per_address: list[AddressResult] = field(default_factory=list)
    agency_name: str | None = None
    sender_type: SenderType | None = None

    @property
    def created(self) -> bool:
        return any(r.property_id is not None for r in self.per_address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "agency": self.agency_name,
            "sender_type": self.sender_type.value if self.sender_type else None,
            "per_address": [r.to_dict() for r in self.per_address],
        }


@dataclass
class TransitionCounts:
    """Rows moved by one run of the scheduled status transitions."""

    completed_to_due_soon: int = 0
    due_soon_to_expired: int = 0

    @property
    def total(self) -> int:
        return self.completed_to_due_soon + self.due_soon_to_expired

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class TaskReminder:
    """An INCOMPLETE task joined with its property address and owner."""

    task: Task
    address: str
    owner_email: str | None = None
    owner_name: str = ""


@dataclass
class ProcessingLog:
    """Audit log entry for one address decision."""

    action: str
    address: str = ""
    email_id: int | None = None
    provider_message_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

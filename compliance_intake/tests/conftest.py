"""
Shared pytest fixtures for compliance_intake tests.
"""

import itertools
from dataclasses import replace
from datetime import date

import pytest

from compliance_intake.core.models import (
    Agency,
    Contact,
    InboundMessage,
    ProcessingLog,
    Property,
    StoredEmail,
    Task,
    TaskReminder,
    TaskStatus,
    TaskType,
    User,
    UserRole,
)
from compliance_intake.processors.ingestion import IngestionOrchestrator
from compliance_intake.services.geocoder import PassthroughNormalizer


class FakeDatabase:
    """In-memory stand-in for Database with the same method surface."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.agencies: dict[int, Agency] = {}
        self.whitelist: dict[str, int] = {}
        self.users: dict[int, User] = {}
        self.properties: dict[int, Property] = {}
        self.contacts: dict[int, Contact] = {}
        self.emails: dict[int, StoredEmail] = {}
        self.email_properties: set[tuple[int, int]] = set()
        self.tasks: dict[int, Task] = {}
        self.logs: list[ProcessingLog] = []
        self.schema_initialized = False

    def _next_id(self) -> int:
        return next(self._ids)

    # Seeding helpers

    def add_agency(self, name: str, whitelist: tuple[str, ...] = ()) -> Agency:
        agency = Agency(id=self._next_id(), name=name)
        self.agencies[agency.id] = agency
        for email in whitelist:
            self.whitelist.setdefault(email.lower(), agency.id)
        return agency

    def add_user(self, email: str, role: UserRole, agency_id: int | None, is_active: bool = True) -> User:
        user = User(id=self._next_id(), email=email, role=role, agency_id=agency_id, is_active=is_active)
        self.users[user.id] = user
        return user

    def add_task(self, property_id: int, task_type: TaskType, status: TaskStatus, due_date: date | None = None) -> Task:
        return self.create_task(
            property_id=property_id,
            agency_id=None,
            task_name=task_type.value.lower(),
            task_type=task_type,
            status=status,
            due_date=due_date,
        )

    # Database surface

    def init_schema(self) -> None:
        self.schema_initialized = True

    def get_active_user_by_email(self, email: str) -> User | None:
        for user in sorted(self.users.values(), key=lambda u: u.id):
            if user.email.lower() == email.lower() and user.is_active and user.agency_id is not None:
                return user
        return None

    def get_user(self, user_id: int) -> User | None:
        return self.users.get(user_id)

    def get_agency(self, agency_id: int) -> Agency | None:
        return self.agencies.get(agency_id)

    def get_agency_by_whitelist_email(self, email: str) -> Agency | None:
        agency_id = self.whitelist.get(email.lower())
        return self.agencies.get(agency_id) if agency_id else None

    def get_agency_admin(self, agency_id: int) -> User | None:
        for user in sorted(self.users.values(), key=lambda u: u.id):
            if user.agency_id == agency_id and user.role == UserRole.AGENCY_ADMIN and user.is_active:
                return user
        return None

    def find_property_by_owner(self, address: str, user_id: int) -> Property | None:
        for prop in self.properties.values():
            if prop.address == address and prop.user_id == user_id and prop.is_active:
                return prop
        return None

    def find_property_by_address(self, address: str) -> Property | None:
        for prop in self.properties.values():
            if prop.address == address and prop.is_active:
                return prop
        return None

    def create_property(self, address: str, user_id: int, agency_id: int | None) -> Property:
        prop = Property(id=self._next_id(), address=address, user_id=user_id, agency_id=agency_id)
        self.properties[prop.id] = prop
        return prop

    def find_contact(self, phone: str, property_id: int) -> Contact | None:
        for contact in self.contacts.values():
            if contact.phone == phone and contact.property_id == property_id and contact.is_active:
                return contact
        return None

    def create_contact(self, name: str, phone: str, property_id: int, email: str = "") -> Contact:
        contact = Contact(id=self._next_id(), name=name, phone=phone, property_id=property_id, email=email)
        self.contacts[contact.id] = contact
        return contact

    def email_exists(self, provider_message_id: str) -> bool:
        return self.get_email_by_message_id(provider_message_id) is not None

    def find_email_by_unique_key(self, subject: str, sender: str, property_id: int) -> StoredEmail | None:
        for email in sorted(self.emails.values(), key=lambda e: e.id):
            linked = email.property_id == property_id or (email.id, property_id) in self.email_properties
            if email.subject == subject and email.sender == sender and linked:
                return email
        return None

    def insert_email(
        self,
        message: InboundMessage,
        subject: str,
        sender: str,
        property_id: int,
        agency_id: int | None,
    ) -> StoredEmail | None:
        if message.provider_message_id and self.email_exists(message.provider_message_id):
            return None
        email = StoredEmail(
            id=self._next_id(),
            subject=subject,
            sender=sender,
            body_text=message.text_body,
            body_html=message.html_body,
            property_id=property_id,
            agency_id=agency_id,
            provider_message_id=message.provider_message_id,
        )
        self.emails[email.id] = email
        self.email_properties.add((email.id, property_id))
        return email

    def link_email_property(self, email_id: int, property_id: int) -> None:
        self.email_properties.add((email_id, property_id))

    def create_task(
        self,
        property_id: int,
        agency_id: int | None,
        task_name: str,
        task_type: TaskType,
        status: TaskStatus,
        task_description: str = "",
        repeat_frequency: str | None = None,
        due_date: date | None = None,
    ) -> Task:
        task = Task(
            id=self._next_id(),
            property_id=property_id,
            agency_id=agency_id,
            task_name=task_name,
            type=task_type,
            status=status,
            task_description=task_description,
            repeat_frequency=repeat_frequency,
            due_date=due_date,
        )
        self.tasks[task.id] = task
        return task

    def set_task_email(self, task_ids: list[int], email_id: int) -> int:
        for task_id in task_ids:
            self.tasks[task_id].email_id = email_id
        return len(task_ids)

    def deactivate_tasks(self, task_ids: list[int]) -> int:
        for task_id in task_ids:
            self.tasks[task_id].is_active = False
        return len(task_ids)

    def get_task(self, task_id: int) -> Task | None:
        task = self.tasks.get(task_id)
        return task if task and task.is_active else None

    def update_task_status(
        self, task_id: int, status: TaskStatus, archive_conflicts: bool = False
    ) -> tuple[Task | None, int]:
        task = self.tasks.get(task_id)
        if task is None or not task.is_active:
            return None, 0
        task.status = status
        archived = 0
        if archive_conflicts:
            for other in self.tasks.values():
                if (
                    other.is_active
                    and other.property_id == task.property_id
                    and other.type == task.type
                    and other.id != task.id
                    and other.status in (TaskStatus.DUE_SOON, TaskStatus.EXPIRED)
                ):
                    other.status = TaskStatus.HISTORY
                    archived += 1
        return replace(task), archived

    def mark_due_soon(self, today: date, window_end: date) -> int:
        moved = 0
        for task in self.tasks.values():
            if (
                task.is_active
                and task.status == TaskStatus.COMPLETED
                and task.due_date is not None
                and today <= task.due_date <= window_end
            ):
                task.status = TaskStatus.DUE_SOON
                moved += 1
        return moved

    def mark_expired(self, today: date) -> int:
        moved = 0
        for task in self.tasks.values():
            if (
                task.is_active
                and task.status == TaskStatus.DUE_SOON
                and task.due_date is not None
                and task.due_date < today
            ):
                task.status = TaskStatus.EXPIRED
                moved += 1
        return moved

    def find_tasks_for_reminder(self, due_dates: list[date]) -> list[TaskReminder]:
        reminders = []
        for task in sorted(self.tasks.values(), key=lambda t: t.id):
            if task.is_active and task.status == TaskStatus.INCOMPLETE and task.due_date in due_dates:
                prop = self.properties.get(task.property_id)
                owner = self.users.get(prop.user_id) if prop else None
                reminders.append(TaskReminder(
                    task=replace(task),
                    address=prop.address if prop else "",
                    owner_email=owner.email if owner else None,
                    owner_name=owner.name if owner else "",
                ))
        return reminders

    def get_task_status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        for task in self.tasks.values():
            if task.is_active:
                counts[task.status.value] += 1
        return counts

    def add_processing_log(self, log_entry: ProcessingLog) -> int:
        self.logs.append(log_entry)
        return len(self.logs)

    # Test helpers

    def get_email_by_message_id(self, provider_message_id: str) -> StoredEmail | None:
        for email in self.emails.values():
            if email.provider_message_id == provider_message_id:
                return email
        return None

    def active_tasks(self) -> list[Task]:
        return [t for t in self.tasks.values() if t.is_active]

    def log_actions(self) -> list[str]:
        return [entry.action for entry in self.logs]


@pytest.fixture
def fake_db() -> FakeDatabase:
    """
    Seeded in-memory database.

    - Acme Realty: registered user agent@acme.com and admin admin@acme.com
    - Beta Property: whitelist pm@beta.com, admin boss@beta.com
    - Gamma Estates: whitelist ops@gamma.com, no admin
    """
    db = FakeDatabase()
    acme = db.add_agency("Acme Realty")
    db.add_user("agent@acme.com", UserRole.AGENCY_USER, acme.id)
    db.add_user("admin@acme.com", UserRole.AGENCY_ADMIN, acme.id)

    beta = db.add_agency("Beta Property", whitelist=("pm@beta.com",))
    db.add_user("boss@beta.com", UserRole.AGENCY_ADMIN, beta.id)

    db.add_agency("Gamma Estates", whitelist=("ops@gamma.com",))
    return db


@pytest.fixture
def orchestrator(fake_db) -> IngestionOrchestrator:
    """Orchestrator wired to the fake database with no geocoding."""
    return IngestionOrchestrator(db=fake_db, normalizer=PassthroughNormalizer())


@pytest.fixture
def sample_body() -> str:
    return """Hi team,

Please arrange a smoke alarm and gas & electric safety check at
12 Smith Street, Richmond VIC 3121

1st Tenant:
Name: Yuwei Zeng
Phone: 0434 643 145

Thanks,
Jane"""


@pytest.fixture
def sample_message(sample_body) -> InboundMessage:
    return InboundMessage(
        subject="Compliance request",
        sender="Jane Agent <agent@acme.com>",
        text_body=sample_body,
        provider_message_id="msg-001",
    )

"""
Database repository for agencies, properties, tasks, contacts and emails.

Synchronous PostgreSQL access with psycopg 3. Every write used by the
ingestion pipeline is either a find-or-create guarded by a lookup, a
conflict-tolerant insert, or a status-qualified bulk update.
"""

from contextlib import contextmanager
from datetime import date
from typing import Generator, Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

from compliance_intake.config import settings
from compliance_intake.core.logging import get_logger
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

log = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS agencies (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS agency_whitelist (
    id SERIAL PRIMARY KEY,
    agency_id INTEGER NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
    email VARCHAR(255) NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE (agency_id, email)
);

CREATE INDEX IF NOT EXISTS idx_whitelist_email ON agency_whitelist(LOWER(email));

CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    email VARCHAR(255) UNIQUE NOT NULL,
    name VARCHAR(255) DEFAULT '',
    role VARCHAR(50) NOT NULL,
    agency_id INTEGER REFERENCES agencies(id),
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_users_agency_role ON users(agency_id, role);

CREATE TABLE IF NOT EXISTS properties (
    id SERIAL PRIMARY KEY,
    address TEXT NOT NULL,
    user_id INTEGER REFERENCES users(id),
    agency_id INTEGER REFERENCES agencies(id),
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_properties_address_user ON properties(address, user_id);

CREATE TABLE IF NOT EXISTS contacts (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    phone VARCHAR(50) NOT NULL,
    email VARCHAR(255) DEFAULT '',
    property_id INTEGER NOT NULL REFERENCES properties(id),
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_contacts_phone_property ON contacts(phone, property_id);

CREATE TABLE IF NOT EXISTS emails (
    id SERIAL PRIMARY KEY,
    subject TEXT NOT NULL,
    sender TEXT NOT NULL,
    body_text TEXT,
    body_html TEXT,
    property_id INTEGER REFERENCES properties(id),
    agency_id INTEGER REFERENCES agencies(id),
    provider_message_id VARCHAR(255),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_emails_provider_message_id
    ON emails(provider_message_id) WHERE provider_message_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_emails_unique_key ON emails(subject, sender);

CREATE TABLE IF NOT EXISTS email_properties (
    email_id INTEGER NOT NULL REFERENCES emails(id) ON DELETE CASCADE,
    property_id INTEGER NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
    PRIMARY KEY (email_id, property_id)
);

CREATE INDEX IF NOT EXISTS idx_email_properties_property ON email_properties(property_id);

CREATE TABLE IF NOT EXISTS tasks (
    id SERIAL PRIMARY KEY,
    property_id INTEGER NOT NULL REFERENCES properties(id),
    agency_id INTEGER REFERENCES agencies(id),
    task_name VARCHAR(255) NOT NULL,
    task_description TEXT DEFAULT '',
    type VARCHAR(50) NOT NULL,
    status VARCHAR(50) NOT NULL DEFAULT 'UNKNOWN',
    due_date DATE,
    inspection_date DATE,
    repeat_frequency VARCHAR(50),
    email_id INTEGER REFERENCES emails(id),
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_tasks_status_due ON tasks(status, due_date) WHERE is_active;
CREATE INDEX IF NOT EXISTS idx_tasks_property_type ON tasks(property_id, type);

CREATE TABLE IF NOT EXISTS processing_logs (
    id SERIAL PRIMARY KEY,
    email_id INTEGER REFERENCES emails(id),
    provider_message_id VARCHAR(255),
    address TEXT,
    action VARCHAR(50),
    details JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_logs_action ON processing_logs(action);
"""

TASK_COLUMNS = """
    id, property_id, agency_id, task_name, task_description, type, status,
    due_date, inspection_date, repeat_frequency, email_id, is_active
"""

REMINDER_TASK_COLUMNS = """
    t.id, t.property_id, t.agency_id, t.task_name, t.task_description, t.type, t.status,
    t.due_date, t.inspection_date, t.repeat_frequency, t.email_id, t.is_active
"""

EMAIL_COLUMNS = """
    id, subject, sender, body_text, body_html, property_id, agency_id,
    provider_message_id, created_at
"""


def _to_user(row: dict[str, Any]) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"] or "",
        role=UserRole(row["role"]),
        agency_id=row["agency_id"],
        is_active=row["is_active"],
    )


def _to_property(row: dict[str, Any]) -> Property:
    return Property(
        id=row["id"],
        address=row["address"],
        user_id=row["user_id"],
        agency_id=row["agency_id"],
        is_active=row["is_active"],
    )


def _to_task(row: dict[str, Any]) -> Task:
    return Task(
        id=row["id"],
        property_id=row["property_id"],
        agency_id=row["agency_id"],
        task_name=row["task_name"],
        task_description=row["task_description"] or "",
        type=TaskType(row["type"]),
        status=TaskStatus(row["status"]),
        due_date=row["due_date"],
        inspection_date=row["inspection_date"],
        repeat_frequency=row["repeat_frequency"],
        email_id=row["email_id"],
        is_active=row["is_active"],
    )


def _to_email(row: dict[str, Any]) -> StoredEmail:
    return StoredEmail(
        id=row["id"],
        subject=row["subject"],
        sender=row["sender"],
        body_text=row["body_text"] or "",
        body_html=row["body_html"] or "",
        property_id=row["property_id"],
        agency_id=row["agency_id"],
        provider_message_id=row["provider_message_id"],
        created_at=row["created_at"],
    )


class Database:
    """PostgreSQL operations for the compliance tables."""

    def __init__(self, connection_string: str | None = None):
        """
        Initialize database access.

        Args:
            connection_string: PostgreSQL connection URL. Uses settings if not provided.
        """
        self.connection_string = connection_string or settings.database_url

    @contextmanager
    def get_connection(self) -> Generator[psycopg.Connection, None, None]:
        """Get a database connection as a context manager."""
        conn = psycopg.connect(self.connection_string, row_factory=dict_row)
        try:
            yield conn
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self.get_connection() as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()
            log.info("database_schema_initialized")

    # Users & agencies

    def get_active_user_by_email(self, email: str) -> User | None:
        """Active user with this email who belongs to an agency."""
        sql = """
        SELECT id, email, name, role, agency_id, is_active
        FROM users
        WHERE LOWER(email) = LOWER(%s)
          AND is_active = TRUE
          AND agency_id IS NOT NULL
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (email,)).fetchone()
            return _to_user(row) if row else None

    def get_user(self, user_id: int) -> User | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT id, email, name, role, agency_id, is_active FROM users WHERE id = %s",
                (user_id,),
            ).fetchone()
            return _to_user(row) if row else None

    def get_agency(self, agency_id: int) -> Agency | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT id, name FROM agencies WHERE id = %s",
                (agency_id,),
            ).fetchone()
            return Agency(id=row["id"], name=row["name"]) if row else None

    def get_agency_by_whitelist_email(self, email: str) -> Agency | None:
        """Agency whose whitelist contains this sender address (lowest id wins)."""
        sql = """
        SELECT a.id, a.name
        FROM agencies a
        JOIN agency_whitelist w ON w.agency_id = a.id
        WHERE LOWER(w.email) = LOWER(%s)
          AND a.is_active = TRUE
        ORDER BY a.id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (email,)).fetchone()
            return Agency(id=row["id"], name=row["name"]) if row else None

    def get_agency_admin(self, agency_id: int) -> User | None:
        """Lowest-id active agency-admin of an agency."""
        sql = """
        SELECT id, email, name, role, agency_id, is_active
        FROM users
        WHERE agency_id = %s
          AND role = %s
          AND is_active = TRUE
        ORDER BY id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (agency_id, UserRole.AGENCY_ADMIN.value)).fetchone()
            return _to_user(row) if row else None

    # Properties & contacts

    def find_property_by_owner(self, address: str, user_id: int) -> Property | None:
        sql = """
        SELECT id, address, user_id, agency_id, is_active
        FROM properties
        WHERE address = %s AND user_id = %s AND is_active = TRUE
        ORDER BY id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (address, user_id)).fetchone()
            return _to_property(row) if row else None

    def find_property_by_address(self, address: str) -> Property | None:
        sql = """
        SELECT id, address, user_id, agency_id, is_active
        FROM properties
        WHERE address = %s AND is_active = TRUE
        ORDER BY id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (address,)).fetchone()
            return _to_property(row) if row else None

    def create_property(self, address: str, user_id: int, agency_id: int | None) -> Property:
        sql = """
        INSERT INTO properties (address, user_id, agency_id)
        VALUES (%s, %s, %s)
        RETURNING id, address, user_id, agency_id, is_active
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (address, user_id, agency_id)).fetchone()
            conn.commit()
            log.info("property_inserted", property_id=row["id"], user_id=user_id)
            return _to_property(row)

    def find_contact(self, phone: str, property_id: int) -> Contact | None:
        sql = """
        SELECT id, name, phone, email, property_id, is_active
        FROM contacts
        WHERE phone = %s AND property_id = %s AND is_active = TRUE
        ORDER BY id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (phone, property_id)).fetchone()
            return Contact(**row) if row else None

    def create_contact(self, name: str, phone: str, property_id: int, email: str = "") -> Contact:
        sql = """
        INSERT INTO contacts (name, phone, email, property_id)
        VALUES (%s, %s, %s, %s)
        RETURNING id, name, phone, email, property_id, is_active
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (name, phone, email, property_id)).fetchone()
            conn.commit()
            return Contact(**row)

    # Emails

    def email_exists(self, provider_message_id: str) -> bool:
        """Check if an email with this provider message id was stored."""
        with self.get_connection() as conn:
            result = conn.execute(
                "SELECT 1 FROM emails WHERE provider_message_id = %s LIMIT 1",
                (provider_message_id,),
            ).fetchone()
            return result is not None

    def find_email_by_unique_key(
        self, subject: str, sender: str, property_id: int
    ) -> StoredEmail | None:
        """Email with the same subject and sender already linked to the property."""
        sql = f"""
        SELECT {EMAIL_COLUMNS}
        FROM emails e
        WHERE e.subject = %s
          AND e.sender = %s
          AND (
              e.property_id = %s
              OR EXISTS (
                  SELECT 1 FROM email_properties ep
                  WHERE ep.email_id = e.id AND ep.property_id = %s
              )
          )
        ORDER BY e.id
        LIMIT 1
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (subject, sender, property_id, property_id)).fetchone()
            return _to_email(row) if row else None

    def insert_email(
        self,
        message: InboundMessage,
        subject: str,
        sender: str,
        property_id: int,
        agency_id: int | None,
    ) -> StoredEmail | None:
        """
        Insert an email row and link it to its property.

        Returns:
            The new row, or None when another delivery already stored the
            same provider message id.
        """
        sql = f"""
        INSERT INTO emails (
            subject, sender, body_text, body_html, property_id, agency_id,
            provider_message_id
        ) VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (provider_message_id) WHERE provider_message_id IS NOT NULL
        DO NOTHING
        RETURNING {EMAIL_COLUMNS}
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (
                subject,
                sender,
                message.text_body,
                message.html_body,
                property_id,
                agency_id,
                message.provider_message_id,
            )).fetchone()
            if row:
                conn.execute(
                    "INSERT INTO email_properties (email_id, property_id) VALUES (%s, %s) "
                    "ON CONFLICT DO NOTHING",
                    (row["id"], property_id),
                )
            conn.commit()

            if not row:
                log.warning(
                    "email_insert_conflict",
                    provider_message_id=message.provider_message_id,
                )
                return None

            log.info("email_inserted", email_id=row["id"], property_id=property_id)
            return _to_email(row)

    def link_email_property(self, email_id: int, property_id: int) -> None:
        with self.get_connection() as conn:
            conn.execute(
                "INSERT INTO email_properties (email_id, property_id) VALUES (%s, %s) "
                "ON CONFLICT DO NOTHING",
                (email_id, property_id),
            )
            conn.commit()

    # Tasks

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
        sql = f"""
        INSERT INTO tasks (
            property_id, agency_id, task_name, task_description, type, status,
            due_date, repeat_frequency
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {TASK_COLUMNS}
        """
        with self.get_connection() as conn:
            row = conn.execute(sql, (
                property_id,
                agency_id,
                task_name,
                task_description,
                task_type.value,
                status.value,
                due_date,
                repeat_frequency,
            )).fetchone()
            conn.commit()
            return _to_task(row)

    def set_task_email(self, task_ids: list[int], email_id: int) -> int:
        """Backfill email_id on the given tasks."""
        if not task_ids:
            return 0
        with self.get_connection() as conn:
            cur = conn.execute(
                "UPDATE tasks SET email_id = %s, updated_at = NOW() WHERE id = ANY(%s)",
                (email_id, task_ids),
            )
            conn.commit()
            return cur.rowcount

    def deactivate_tasks(self, task_ids: list[int]) -> int:
        """Soft-delete tasks."""
        if not task_ids:
            return 0
        with self.get_connection() as conn:
            cur = conn.execute(
                "UPDATE tasks SET is_active = FALSE, updated_at = NOW() WHERE id = ANY(%s)",
                (task_ids,),
            )
            conn.commit()
            return cur.rowcount

    def get_task(self, task_id: int) -> Task | None:
        with self.get_connection() as conn:
            row = conn.execute(
                f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = %s AND is_active = TRUE",
                (task_id,),
            ).fetchone()
            return _to_task(row) if row else None

    def update_task_status(
        self, task_id: int, status: TaskStatus, archive_conflicts: bool = False
    ) -> tuple[Task | None, int]:
        """
        Set the status of an active task.

        With archive_conflicts, other active DUE_SOON/EXPIRED tasks of the
        same property and type move to HISTORY in the same transaction.

        Returns:
            (updated task or None when not found, number of tasks archived)
        """
        update_sql = f"""
        UPDATE tasks
        SET status = %s, updated_at = NOW()
        WHERE id = %s AND is_active = TRUE
        RETURNING {TASK_COLUMNS}
        """
        archive_sql = """
        UPDATE tasks
        SET status = %s, updated_at = NOW()
        WHERE property_id = %s
          AND type = %s
          AND id <> %s
          AND status IN (%s, %s)
          AND is_active = TRUE
        """
        with self.get_connection() as conn:
            row = conn.execute(update_sql, (status.value, task_id)).fetchone()
            if row is None:
                conn.rollback()
                return None, 0

            task = _to_task(row)
            archived = 0
            if archive_conflicts:
                cur = conn.execute(archive_sql, (
                    TaskStatus.HISTORY.value,
                    task.property_id,
                    task.type.value,
                    task.id,
                    TaskStatus.DUE_SOON.value,
                    TaskStatus.EXPIRED.value,
                ))
                archived = cur.rowcount
            conn.commit()
            return task, archived

    def mark_due_soon(self, today: date, window_end: date) -> int:
        """COMPLETED tasks due within [today, window_end] become DUE_SOON."""
        sql = """
        UPDATE tasks
        SET status = %s, updated_at = NOW()
        WHERE status = %s
          AND is_active = TRUE
          AND due_date IS NOT NULL
          AND due_date >= %s
          AND due_date <= %s
        """
        with self.get_connection() as conn:
            cur = conn.execute(sql, (
                TaskStatus.DUE_SOON.value,
                TaskStatus.COMPLETED.value,
                today,
                window_end,
            ))
            conn.commit()
            return cur.rowcount

    def mark_expired(self, today: date) -> int:
        """DUE_SOON tasks whose due date has passed become EXPIRED."""
        sql = """
        UPDATE tasks
        SET status = %s, updated_at = NOW()
        WHERE status = %s
          AND is_active = TRUE
          AND due_date < %s
        """
        with self.get_connection() as conn:
            cur = conn.execute(sql, (
                TaskStatus.EXPIRED.value,
                TaskStatus.DUE_SOON.value,
                today,
            ))
            conn.commit()
            return cur.rowcount

    def get_task_status_counts(self) -> dict[str, int]:
        """Count active tasks per status."""
        sql = """
        SELECT status, COUNT(*) AS count
        FROM tasks
        WHERE is_active = TRUE
        GROUP BY status
        """
        with self.get_connection() as conn:
            rows = conn.execute(sql).fetchall()
            counts = {status.value: 0 for status in TaskStatus}
            for row in rows:
                counts[row["status"]] = row["count"]
            return counts

    def find_tasks_for_reminder(self, due_dates: list[date]) -> list[TaskReminder]:
        """Active INCOMPLETE tasks due on any of `due_dates`, with the property owner."""
        sql = f"""
        SELECT {REMINDER_TASK_COLUMNS},
               p.address, u.email AS owner_email, u.name AS owner_name
        FROM tasks t
        JOIN properties p ON p.id = t.property_id
        LEFT JOIN users u ON u.id = p.user_id
        WHERE t.is_active = TRUE
          AND t.status = %s
          AND t.due_date = ANY(%s)
        ORDER BY t.id
        """
        with self.get_connection() as conn:
            rows = conn.execute(sql, (TaskStatus.INCOMPLETE.value, due_dates)).fetchall()
            return [
                TaskReminder(
                    task=_to_task(row),
                    address=row["address"],
                    owner_email=row["owner_email"],
                    owner_name=row["owner_name"] or "",
                )
                for row in rows
            ]

    # Audit

    def add_processing_log(self, log_entry: ProcessingLog) -> int:
        """Add an entry to the processing audit log."""
        sql = """
        INSERT INTO processing_logs (email_id, provider_message_id, address, action, details)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """
        with self.get_connection() as conn:
            result = conn.execute(sql, (
                log_entry.email_id,
                log_entry.provider_message_id,
                log_entry.address,
                log_entry.action,
                Json(log_entry.details),
            )).fetchone()
            conn.commit()
            return result["id"] if result else 0

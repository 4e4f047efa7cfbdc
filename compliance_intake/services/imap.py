"""
IMAP client for the agency inbox.
"""

import imaplib
import re
from datetime import datetime
from email import message_from_bytes
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import Iterator

from compliance_intake.config import settings
from compliance_intake.core.logging import get_logger
from compliance_intake.core.models import InboundMessage

log = get_logger(__name__)

GMAIL_EXTENSION = "X-GM-EXT-1"
GMAIL_MSGID_RE = re.compile(rb"X-GM-MSGID (\d+)")
UIDNEXT_RE = re.compile(rb"UIDNEXT (\d+)")


class IMAPClient:
    """IMAP client yielding InboundMessage objects."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        folder: str | None = None,
    ):
        self.host = host or settings.imap_host
        self.port = port or settings.imap_port
        self.user = user or settings.imap_user
        self.password = password or settings.imap_password
        self.folder = folder or settings.imap_folder
        self._conn: imaplib.IMAP4_SSL | None = None
        self._gmail = False

    def connect(self) -> None:
        """Connect, authenticate and select the folder."""
        log.info("imap_connecting", host=self.host, user=self.user)
        conn = None
        try:
            conn = imaplib.IMAP4_SSL(self.host, self.port)
            conn.login(self.user, self.password)
            conn.select(self.folder, readonly=True)
            self._gmail = GMAIL_EXTENSION in conn.capabilities
            self._conn = conn  # Only set once fully usable
            if not self._gmail:
                log.warning("imap_no_gmail_extension", reason="falling back to Message-ID header")
            log.info("imap_connected", folder=self.folder)
        except Exception:
            # Clean up partial connection
            if conn:
                try:
                    conn.logout()
                except Exception:
                    pass
            raise

    def disconnect(self) -> None:
        """Close IMAP connection."""
        if self._conn:
            try:
                self._conn.logout()
            except Exception:
                pass
            self._conn = None
            log.info("imap_disconnected")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    @property
    def conn(self) -> imaplib.IMAP4_SSL:
        if not self._conn:
            raise RuntimeError("Not connected to IMAP server")
        return self._conn

    def noop(self) -> None:
        """Keep the connection alive and pick up mailbox changes."""
        status, _ = self.conn.noop()
        if status != "OK":
            raise imaplib.IMAP4.abort(f"NOOP failed: {status}")

    def highest_uid(self) -> int:
        """UID of the newest message currently in the folder."""
        _, data = self.conn.status(self.folder, "(UIDNEXT)")
        match = UIDNEXT_RE.search(data[0] or b"")
        return int(match.group(1)) - 1 if match else 0

    def search_uids(self, since: datetime | None = None, before: datetime | None = None) -> list[int]:
        """UIDs of messages in a date range (IMAP dates are day-granular)."""
        criteria = []
        if since:
            criteria.append(f"SINCE {since.strftime('%d-%b-%Y')}")
        if before:
            criteria.append(f"BEFORE {before.strftime('%d-%b-%Y')}")
        query = f"({' '.join(criteria)})" if criteria else "ALL"

        _, data = self.conn.uid("SEARCH", None, query)
        return [int(uid) for uid in (data[0] or b"").split()]

    def uids_after(self, last_uid: int) -> list[int]:
        """UIDs greater than last_uid."""
        _, data = self.conn.uid("SEARCH", None, f"UID {last_uid + 1}:*")
        # "n:*" always matches the newest message, even when its UID is < n
        return [uid for uid in (int(u) for u in (data[0] or b"").split()) if uid > last_uid]

    def fetch_messages(self, uids: list[int]) -> Iterator[tuple[int, InboundMessage]]:
        """Fetch and parse messages, skipping ones that fail to parse."""
        items = "(X-GM-MSGID RFC822)" if self._gmail else "(RFC822)"

        for uid in uids:
            try:
                _, msg_data = self.conn.uid("FETCH", str(uid), items)
                if not msg_data or not isinstance(msg_data[0], tuple):
                    continue

                envelope, raw_email = msg_data[0]
                gmail_id = GMAIL_MSGID_RE.search(envelope)
                message = self._parse_message(
                    message_from_bytes(raw_email),
                    gmail_id.group(1).decode() if gmail_id else None,
                )
                yield uid, message

            except imaplib.IMAP4.abort:
                raise
            except Exception as e:
                log.error("imap_fetch_error", error=str(e), uid=uid)

    def fetch_range(
        self, since: datetime | None = None, before: datetime | None = None
    ) -> Iterator[InboundMessage]:
        uids = self.search_uids(since=since, before=before)
        log.info("imap_fetching", folder=self.folder, count=len(uids))
        for _, message in self.fetch_messages(uids):
            yield message

    def _decode_header(self, header: str) -> str:
        """Decode MIME-encoded header like '=?UTF-8?B?...?='."""
        if not header:
            return ""
        decoded = str(make_header(decode_header(header)))
        return decoded.replace("\r\n", "").replace("\n", "")

    def _parse_message(self, msg: Message, gmail_id: str | None) -> InboundMessage:
        """Parse a message; Gmail's X-GM-MSGID wins over the Message-ID header."""
        received_at = None
        date_str = msg.get("Date")
        if date_str:
            try:
                received_at = parsedate_to_datetime(date_str)
            except (TypeError, ValueError):
                pass

        body_plain, body_html = self._get_body(msg)

        return InboundMessage(
            subject=self._decode_header(msg.get("Subject", "")),
            sender=self._decode_header(msg.get("From", "")),
            text_body=body_plain,
            html_body=body_html,
            provider_message_id=gmail_id or (msg.get("Message-ID") or "").strip() or None,
            received_at=received_at,
        )

    def _get_body(self, msg: Message) -> tuple[str, str]:
        """Concatenated text/plain and text/html parts, attachments skipped."""
        bodies: dict[str, list[str]] = {"text/plain": [], "text/html": []}

        for part in msg.walk():
            if part.is_multipart() or "attachment" in part.get("Content-Disposition", ""):
                continue
            content_type = part.get_content_type()
            if content_type not in bodies:
                continue
            payload = part.get_payload(decode=True)
            if payload:
                charset = part.get_content_charset() or "utf-8"
                bodies[content_type].append(payload.decode(charset, errors="replace"))

        return "".join(bodies["text/plain"]), "".join(bodies["text/html"])

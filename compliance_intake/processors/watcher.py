"""
Long-running mailbox watcher.

Holds one IMAP connection, polls for messages with a UID above the last one
seen, and ingests each. On any transport error or dropped connection it
waits a fixed backoff and reconnects, indefinitely, until stopped.
"""

import imaplib
import socket
import threading
from typing import Callable

from compliance_intake.config import settings
from compliance_intake.core.errors import InputMissingError
from compliance_intake.core.logging import get_logger
from compliance_intake.processors.ingestion import IngestionOrchestrator
from compliance_intake.services.imap import IMAPClient

log = get_logger(__name__)

TRANSPORT_ERRORS = (imaplib.IMAP4.error, OSError, socket.timeout, EOFError)


class MailboxWatcher:
    """Background thread feeding new inbox messages into ingestion."""

    def __init__(
        self,
        orchestrator: IngestionOrchestrator | None = None,
        client_factory: Callable[[], IMAPClient] = IMAPClient,
        poll_seconds: float | None = None,
        reconnect_seconds: float | None = None,
    ):
        self.orchestrator = orchestrator or IngestionOrchestrator()
        self.client_factory = client_factory
        self.poll_seconds = poll_seconds if poll_seconds is not None else settings.watcher_poll_seconds
        self.reconnect_seconds = (
            reconnect_seconds if reconnect_seconds is not None else settings.watcher_reconnect_seconds
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.stats = {"processed": 0, "skipped": 0, "errors": 0, "reconnects": 0}

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            log.warning("watcher_already_running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="mailbox-watcher", daemon=True)
        self._thread.start()
        log.info("watcher_started", poll_seconds=self.poll_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        log.info("watcher_stopped")

    def run(self) -> None:
        """Reconnect loop. Returns only when stop() is called."""
        while not self._stop.is_set():
            try:
                self._watch()
            except TRANSPORT_ERRORS as e:
                log.error("watcher_connection_lost", error=str(e))
            except Exception as e:
                log.error("watcher_unexpected_error", error=str(e))

            if self._stop.is_set():
                break
            self.stats["reconnects"] += 1
            log.info("watcher_reconnecting", wait_seconds=self.reconnect_seconds)
            self._stop.wait(self.reconnect_seconds)

    def _watch(self) -> None:
        """One connection lifetime: poll until error or stop."""
        client = self.client_factory()
        client.connect()
        try:
            last_uid = client.highest_uid()
            log.info("watcher_listening", folder=client.folder, last_uid=last_uid)

            while not self._stop.is_set():
                client.noop()
                uids = client.uids_after(last_uid)
                if uids:
                    log.info("watcher_new_mail", count=len(uids))
                for uid, message in client.fetch_messages(uids):
                    self._ingest(message)
                    last_uid = max(last_uid, uid)
                if uids:
                    last_uid = max(last_uid, max(uids))
                self._stop.wait(self.poll_seconds)
        finally:
            client.disconnect()

    def _ingest(self, message) -> None:
        try:
            result = self.orchestrator.ingest(message)
        except InputMissingError:
            self.stats["skipped"] += 1
            return
        except Exception as e:
            log.error("watcher_ingest_error", error=str(e), subject=message.subject)
            self.stats["errors"] += 1
            return

        if result.created:
            self.stats["processed"] += 1
        else:
            self.stats["skipped"] += 1


_watcher: MailboxWatcher | None = None


def start_watcher() -> MailboxWatcher:
    """Start the global watcher thread."""
    global _watcher
    if _watcher is None:
        _watcher = MailboxWatcher()
    _watcher.start()
    return _watcher


def stop_watcher() -> None:
    global _watcher
    if _watcher is not None:
        _watcher.stop()
        _watcher = None

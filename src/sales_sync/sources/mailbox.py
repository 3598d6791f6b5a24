"""Mailbox poller: newest report attachment per report kind over IMAP.

Each report kind has a subject filter. Reports are cumulative snapshots, so
only the newest matching message (by its Date header) matters. Its
attachment is ingested in upsert mode, and the message date becomes the
kind's checkpoint. A snapshot not newer than the checkpoint is skipped.

Environment (via MailboxConfig.from_env):
  MAIL_ADDRESS, MAIL_PASSWORD, MAIL_HOST, MAIL_PORT, MAIL_FOLDER
"""

from __future__ import annotations

import email
import email.header
import imaplib
import logging
import socket
from dataclasses import dataclass, field
from datetime import datetime
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import Any, Callable, List, Optional

from sales_sync.checkpoints import OUTCOME_FAILED, OUTCOME_SUCCESS, parse_timestamp
from sales_sync.config import MailboxConfig
from sales_sync.exceptions import CredentialError, IngestionError, SourceConnectionError
from sales_sync.ingest.parser import is_supported_file
from sales_sync.ingest.pipeline import IngestionContext, ingest
from sales_sync.models import DedupMode, SourceKind
from sales_sync.sources.result import (
    STATUS_FAILED,
    STATUS_IMPORTED,
    STATUS_SKIPPED,
    FileOutcome,
    PollResult,
)
from sales_sync.store import SalesStore

logger = logging.getLogger(__name__)

SOURCE_ID = "mailbox"


@dataclass
class MailAttachment:
    filename: str
    content: bytes


@dataclass
class MailMessage:
    """A fetched message with its supported attachments."""

    number: bytes
    subject: str
    date: Optional[datetime]
    attachments: List[MailAttachment] = field(default_factory=list)

    @property
    def report_attachment(self) -> Optional[MailAttachment]:
        """Last supported attachment, the one the report tool attaches."""
        return self.attachments[-1] if self.attachments else None


def _message_date(msg: Message) -> Optional[datetime]:
    raw = msg.get("Date")
    if not raw:
        return None
    try:
        return parse_timestamp(parsedate_to_datetime(raw))
    except (TypeError, ValueError):
        return None


def _decode_subject(msg: Message) -> str:
    raw = msg.get("Subject", "")
    parts = []
    for text, charset in email.header.decode_header(raw):
        if isinstance(text, bytes):
            parts.append(text.decode(charset or "utf-8", errors="replace"))
        else:
            parts.append(text)
    return "".join(parts).strip()


def _attachments(msg: Message) -> List[MailAttachment]:
    found = []
    for part in msg.walk():
        filename = part.get_filename()
        if not filename or not is_supported_file(filename):
            continue
        payload = part.get_payload(decode=True)
        if payload:
            found.append(MailAttachment(filename=filename, content=payload))
    return found


def _fetched_bytes(data: list) -> Optional[bytes]:
    for item in data or []:
        if isinstance(item, tuple) and len(item) >= 2:
            return item[1]
    return None


class MailboxClient:
    """Thin IMAP-over-SSL wrapper.

    Args:
        config: Mailbox settings.
        imap_factory: Connection factory, ``imaplib.IMAP4_SSL`` by default.
            Tests pass a fake.

    Usage:
        with MailboxClient(config) as client:
            msg = client.newest_message("Online Orders by customer")
    """

    def __init__(
        self,
        config: MailboxConfig,
        imap_factory: Callable[..., Any] = imaplib.IMAP4_SSL,
    ) -> None:
        self.config = config
        self._imap_factory = imap_factory
        self._conn: Any = None

    def connect(self) -> None:
        """Open the connection, log in and select the folder.

        Raises:
            CredentialError: If credentials are missing or rejected.
            SourceConnectionError: If the host cannot be reached.
        """
        if not self.config.has_credentials:
            raise CredentialError("Mailbox address and password are not configured")
        try:
            self._conn = self._imap_factory(self.config.host, self.config.port)
        except (OSError, socket.timeout, imaplib.IMAP4.error) as e:
            raise SourceConnectionError(
                f"Cannot reach {self.config.host}:{self.config.port}: {e}"
            ) from e
        try:
            self._conn.login(self.config.address, self.config.password)
        except imaplib.IMAP4.error as e:
            self.close()
            raise CredentialError(f"Mailbox login rejected for {self.config.address}: {e}") from e
        except OSError as e:
            self.close()
            raise SourceConnectionError(f"Connection lost during login: {e}") from e
        typ, _ = self._conn.select(self.config.folder, readonly=True)
        if typ != "OK":
            self.close()
            raise SourceConnectionError(f"Cannot select folder {self.config.folder!r}")
        logger.debug("Connected to %s as %s", self.config.host, self.config.address)

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.logout()
        except (OSError, imaplib.IMAP4.error):
            logger.debug("Ignoring error during IMAP logout", exc_info=True)
        self._conn = None

    def __enter__(self) -> MailboxClient:
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _call(self, method: str, *args: Any) -> list:
        try:
            typ, data = getattr(self._conn, method)(*args)
        except (OSError, imaplib.IMAP4.abort) as e:
            raise SourceConnectionError(f"IMAP {method} failed: {e}") from e
        except imaplib.IMAP4.error as e:
            raise SourceConnectionError(f"IMAP {method} rejected: {e}") from e
        if typ != "OK":
            raise SourceConnectionError(f"IMAP {method} returned {typ}")
        return data

    def search_subject(self, subject: str) -> List[bytes]:
        """Message numbers whose subject contains ``subject`` (read or unread)."""
        escaped = subject.replace('"', '\\"')
        data = self._call("search", None, "SUBJECT", f'"{escaped}"')
        if not data or not data[0]:
            return []
        return data[0].split()

    def fetch(self, number: bytes, parts: str = "(BODY.PEEK[])") -> Message:
        raw = _fetched_bytes(self._call("fetch", number, parts))
        if raw is None:
            raise SourceConnectionError(f"IMAP fetch returned no body for message {number!r}")
        return email.message_from_bytes(raw)

    def newest_message(self, subject: str) -> Optional[MailMessage]:
        """Newest message (by Date header) matching a subject filter.

        Returns:
            MailMessage with its supported attachments, or None when nothing
            matches.
        """
        numbers = self.search_subject(subject)
        if not numbers:
            return None
        logger.debug("Found %d messages matching %r", len(numbers), subject)

        newest_number, newest_date = None, None
        for number in numbers:
            headers = self.fetch(number, "(BODY.PEEK[HEADER.FIELDS (DATE SUBJECT)])")
            sent = _message_date(headers)
            if sent is None:
                continue
            if newest_date is None or sent > newest_date:
                newest_number, newest_date = number, sent
        if newest_number is None:
            # No usable Date header anywhere; fall back to the last message
            newest_number = numbers[-1]

        msg = self.fetch(newest_number)
        return MailMessage(
            number=newest_number,
            subject=_decode_subject(msg),
            date=newest_date,
            attachments=_attachments(msg),
        )

    def test_connection(self) -> dict:
        """Try to log in and select the folder.

        Returns:
            Dict with "ok" and either "host" or "error".
        """
        try:
            self.connect()
        except (CredentialError, SourceConnectionError) as e:
            return {"ok": False, "error": str(e)}
        self.close()
        return {"ok": True, "host": self.config.host, "folder": self.config.folder}


class MailboxPoller:
    """Ingest the newest report attachment for every configured subject.

    Args:
        store: Target store (also holds the checkpoints).
        config: Mailbox settings; ``config.subjects`` maps report kind to subject.
        client_factory: Builds a MailboxClient from the config.
    """

    def __init__(
        self,
        store: SalesStore,
        config: MailboxConfig,
        client_factory: Callable[[MailboxConfig], MailboxClient] = MailboxClient,
    ) -> None:
        self.store = store
        self.config = config
        self.client_factory = client_factory

    def poll(self) -> PollResult:
        """Run one mailbox poll.

        Raises:
            CredentialError: If the mailbox rejects the login.
            SourceConnectionError: If the mailbox cannot be reached. No
                checkpoint is touched in either case.
        """
        result = PollResult(source_id=SOURCE_ID)
        with self.client_factory(self.config) as client:
            for kind_name, subject in self.config.subjects.items():
                kind = SourceKind.parse(kind_name)
                result.files.append(self._poll_kind(client, kind, subject))
        logger.info(result.summary())
        return result

    def _poll_kind(self, client: MailboxClient, kind: SourceKind, subject: str) -> FileOutcome:
        msg = client.newest_message(subject)
        if msg is None:
            return FileOutcome(kind.value, subject, STATUS_SKIPPED, detail="no matching email")
        attachment = msg.report_attachment
        if attachment is None:
            return FileOutcome(
                kind.value, subject, STATUS_SKIPPED, msg.date, detail="no supported attachment"
            )

        checkpoint_time = self.store.last_checkpoint(SOURCE_ID, kind.value)
        if msg.date is not None and checkpoint_time is not None and msg.date <= checkpoint_time:
            logger.info("Skipping %s from %s - already synced", attachment.filename, msg.date)
            return FileOutcome(
                kind.value, attachment.filename, STATUS_SKIPPED, msg.date, detail="already synced"
            )

        context = IngestionContext(
            source_label=f"{subject} / {attachment.filename}",
            file_name=attachment.filename,
        )
        try:
            report = ingest(self.store, attachment.content, kind, DedupMode.UPSERT, context)
        except IngestionError as e:
            logger.error("Failed to ingest %s: %s", attachment.filename, e)
            if msg.date is not None:
                self.store.record_checkpoint(SOURCE_ID, kind.value, msg.date, OUTCOME_FAILED)
            return FileOutcome(
                kind.value, attachment.filename, STATUS_FAILED, msg.date, detail=str(e)
            )

        if msg.date is not None:
            self.store.record_checkpoint(SOURCE_ID, kind.value, msg.date, OUTCOME_SUCCESS)
        return FileOutcome(kind.value, attachment.filename, STATUS_IMPORTED, msg.date, report)

"""Shared fixtures and fakes for the sales sync tests.

The fakes stand in for the external systems (IMAP server, drive REST API)
so pollers can be exercised end to end without network access.
"""

import csv
import io
from datetime import date
from email.message import EmailMessage
from email.utils import format_datetime

import pytest

from sales_sync.models import NaturalKey, SaleRecord, SourceKind
from sales_sync.store import InMemorySalesStore


def make_csv(headers, rows) -> bytes:
    """Render headers + rows as UTF-8 CSV bytes."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buf.getvalue().encode("utf-8")


def seed_record(
    store: InMemorySalesStore,
    reference: str,
    order_date: date,
    amount: float,
    kind: SourceKind = SourceKind.ONLINE,
) -> SaleRecord:
    record = SaleRecord(
        source_channel=kind,
        order_date=order_date,
        net_amount=amount,
        order_reference=reference,
    )
    store.insert_if_new(record, NaturalKey.for_record(record))
    return record


@pytest.fixture
def store() -> InMemorySalesStore:
    return InMemorySalesStore()


# --- IMAP fake ---


def make_email(subject, sent_at, attachments=()) -> bytes:
    """Build a raw RFC 822 message with (filename, content) attachments."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = "reports@shop.example"
    msg["To"] = "owner@shop.example"
    msg["Date"] = format_datetime(sent_at)
    msg.set_content("Report attached.")
    for filename, content in attachments:
        msg.add_attachment(content, maintype="application", subtype="octet-stream", filename=filename)
    return msg.as_bytes()


class FakeIMAP:
    """Just enough of imaplib.IMAP4_SSL for MailboxClient."""

    def __init__(self, messages=None, accept_login=True):
        self.messages = dict(messages or {})
        self.accept_login = accept_login
        self.logged_in = False
        self.logged_out = False
        self.fetches = []

    def __call__(self, host, port):
        self.host = host
        self.port = port
        return self

    def login(self, user, password):
        import imaplib

        if not self.accept_login:
            raise imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials")
        self.logged_in = True
        return "OK", [b"Logged in"]

    def select(self, folder, readonly=False):
        return "OK", [str(len(self.messages)).encode()]

    def search(self, charset, *criteria):
        wanted = criteria[-1].strip('"').replace('\\"', '"')
        import email

        hits = [
            number
            for number, raw in sorted(self.messages.items())
            if wanted in email.message_from_bytes(raw).get("Subject", "")
        ]
        return "OK", [b" ".join(hits)]

    def fetch(self, number, parts):
        self.fetches.append((number, parts))
        raw = self.messages[number]
        return "OK", [(number + b" (BODY[] {%d}" % len(raw), raw), b")"]

    def logout(self):
        self.logged_out = True
        return "BYE", [b"Logging out"]


# --- Drive REST fake ---


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b""):
        self.status_code = status_code
        self._json = json_data if json_data is not None else {}
        self.content = content

    @property
    def text(self) -> str:
        return str(self._json)

    def json(self):
        return self._json


class FakeDriveSession:
    """Stands in for requests.Session against the drive and token endpoints.

    Args:
        files: File metadata dicts as returned by files.list.
        contents: File id -> bytes served by files.get?alt=media.
        page_size: Files per listing page.
        token_status: HTTP status returned by the token endpoint.
    """

    def __init__(self, files=(), contents=None, page_size=100, token_status=200):
        self.files = list(files)
        self.contents = dict(contents or {})
        self.page_size = page_size
        self.token_status = token_status
        self.posts = []
        self.gets = []

    def post(self, url, data=None, **kwargs):
        self.posts.append((url, data))
        if self.token_status != 200:
            return FakeResponse(self.token_status, {"error": "invalid_grant"})
        return FakeResponse(200, {"access_token": "fresh-token", "expires_in": 3600})

    def get(self, url, params=None, headers=None, **kwargs):
        self.gets.append((url, dict(params or {}), dict(headers or {})))
        if url.endswith("/files"):
            start = int((params or {}).get("pageToken", 0))
            page = self.files[start : start + self.page_size]
            payload = {"files": page}
            if start + self.page_size < len(self.files):
                payload["nextPageToken"] = str(start + self.page_size)
            return FakeResponse(200, payload)
        if url.endswith("/about"):
            return FakeResponse(200, {"user": {"emailAddress": "owner@shop.example"}})
        file_id = url.rsplit("/", 1)[-1]
        if file_id not in self.contents:
            return FakeResponse(404, {"error": "not found"})
        return FakeResponse(200, content=self.contents[file_id])

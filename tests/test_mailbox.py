"""Tests for the mailbox poller against a fake IMAP server."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeIMAP, make_csv, make_email
from sales_sync.config import MailboxConfig
from sales_sync.exceptions import CredentialError
from sales_sync.sources.mailbox import SOURCE_ID, MailboxClient, MailboxPoller
from sales_sync.sources.result import STATUS_FAILED, STATUS_IMPORTED, STATUS_SKIPPED

ONLINE_SUBJECT = "Online Orders by customer"
POS_SUBJECT = "POS Sales by staff"

SENT = datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc)

HEADERS = ["Order Name", "Order Date", "Net Sales"]


def _report(*rows) -> bytes:
    return make_csv(HEADERS, rows)


def _config(**overrides) -> MailboxConfig:
    values = dict(address="owner@shop.example", password="app-password", host="imap.test")
    values.update(overrides)
    return MailboxConfig(**values)


def _poller(store, imap, config=None):
    return MailboxPoller(
        store,
        config or _config(),
        client_factory=lambda cfg: MailboxClient(cfg, imap_factory=imap),
    )


def test_newest_snapshot_is_ingested_and_checkpointed(store) -> None:
    """Test only the newest matching email is used and its date becomes the checkpoint."""
    imap = FakeIMAP(
        {
            b"1": make_email(ONLINE_SUBJECT, SENT - timedelta(days=1),
                             [("old.csv", _report(["#1", "2026-02-01", "10"]))]),
            b"2": make_email(ONLINE_SUBJECT, SENT,
                             [("new.csv", _report(["#1", "2026-02-01", "10"], ["#2", "2026-02-02", "20"]))]),
            b"3": make_email("Weekly newsletter", SENT + timedelta(days=1)),
        }
    )

    result = _poller(store, imap).poll()

    assert result.processed == 1
    assert result.records_imported == 2
    online = result.files[0]
    assert online.status == STATUS_IMPORTED
    assert online.name == "new.csv"
    assert online.mod_time == SENT
    assert store.last_checkpoint(SOURCE_ID, "online") == SENT
    assert imap.logged_out


def test_kind_without_email_is_skipped(store) -> None:
    """Test a report kind with no matching email is a skip, not a failure."""
    imap = FakeIMAP({b"1": make_email(ONLINE_SUBJECT, SENT, [("a.csv", _report(["#1", "2026-02-01", "10"]))])})

    result = _poller(store, imap).poll()

    pos = [f for f in result.files if f.file_id == "pos"][0]
    assert pos.status == STATUS_SKIPPED
    assert pos.detail == "no matching email"
    assert result.success


def test_unchanged_snapshot_is_skipped(store) -> None:
    """Test a second poll of the same email does not re-ingest."""
    imap = FakeIMAP({b"1": make_email(ONLINE_SUBJECT, SENT, [("a.csv", _report(["#1", "2026-02-01", "10"]))])})
    poller = _poller(store, imap)

    poller.poll()
    second = poller.poll()

    assert second.files[0].status == STATUS_SKIPPED
    assert second.files[0].detail == "already synced"
    assert len(store) == 1


def test_newer_snapshot_upserts(store) -> None:
    """Test a later cumulative snapshot merges existing rows and adds new ones."""
    imap = FakeIMAP({b"1": make_email(ONLINE_SUBJECT, SENT, [("a.csv", _report(["#1", "2026-02-01", "10"]))])})
    poller = _poller(store, imap)
    poller.poll()

    imap.messages[b"2"] = make_email(
        ONLINE_SUBJECT,
        SENT + timedelta(hours=6),
        [("b.csv", _report(["#1", "2026-02-01", "10"], ["#2", "2026-02-02", "5"]))],
    )
    result = poller.poll()

    report = result.files[0].report
    assert report.mode == "upsert"
    assert report.merged == 1
    assert report.imported == 1
    assert len(store) == 2
    assert store.last_checkpoint(SOURCE_ID, "online") == SENT + timedelta(hours=6)


def test_last_supported_attachment_is_used(store) -> None:
    """Test unsupported attachments are ignored and the last report wins."""
    imap = FakeIMAP(
        {
            b"1": make_email(
                POS_SUBJECT,
                SENT,
                [
                    ("first.csv", _report(["#1", "2026-02-01", "10"])),
                    ("second.csv", _report(["#2", "2026-02-01", "10"])),
                    ("logo.png", b"\x89PNG"),
                ],
            )
        }
    )

    result = _poller(store, imap).poll()

    pos = [f for f in result.files if f.file_id == "pos"][0]
    assert pos.name == "second.csv"
    assert [r.order_reference for r in store.records] == ["#2"]
    assert store.records[0].source_channel.value == "pos"


def test_email_without_attachment_is_skipped(store) -> None:
    """Test a matching email without a report attachment is skipped."""
    imap = FakeIMAP({b"1": make_email(ONLINE_SUBJECT, SENT)})

    result = _poller(store, imap).poll()

    assert result.files[0].status == STATUS_SKIPPED
    assert result.files[0].detail == "no supported attachment"


def test_unparsable_attachment_fails_without_checkpoint(store) -> None:
    """Test a fatal file failure is reported and leaves the kind retryable."""
    imap = FakeIMAP({b"1": make_email(ONLINE_SUBJECT, SENT, [("a.csv", make_csv(HEADERS, []))])})

    result = _poller(store, imap).poll()

    assert result.files[0].status == STATUS_FAILED
    assert not result.success
    assert store.last_checkpoint(SOURCE_ID, "online") is None


def test_failure_after_success_keeps_checkpoint(store) -> None:
    """Test a failed newer snapshot records the outcome but not its date."""
    imap = FakeIMAP({b"1": make_email(ONLINE_SUBJECT, SENT, [("a.csv", _report(["#1", "2026-02-01", "10"]))])})
    poller = _poller(store, imap)
    poller.poll()

    imap.messages[b"2"] = make_email(ONLINE_SUBJECT, SENT + timedelta(days=1), [("b.csv", make_csv(HEADERS, []))])
    result = poller.poll()

    assert result.files[0].status == STATUS_FAILED
    checkpoint = store.checkpoint(SOURCE_ID, "online")
    assert checkpoint.last_run_outcome == "failed"
    assert checkpoint.mod_time == SENT


def test_rejected_login_aborts_run(store) -> None:
    """Test credential failures propagate and touch no checkpoint."""
    imap = FakeIMAP({b"1": make_email(ONLINE_SUBJECT, SENT)}, accept_login=False)

    with pytest.raises(CredentialError):
        _poller(store, imap).poll()
    assert store.last_checkpoint(SOURCE_ID, "online") is None


def test_missing_credentials() -> None:
    """Test an unconfigured mailbox fails before connecting."""
    imap = FakeIMAP()
    client = MailboxClient(_config(password=""), imap_factory=imap)

    with pytest.raises(CredentialError):
        client.connect()
    assert not imap.logged_in


def test_test_connection() -> None:
    """Test the connection check reports success and failure as values."""
    ok = MailboxClient(_config(), imap_factory=FakeIMAP()).test_connection()
    bad = MailboxClient(_config(), imap_factory=FakeIMAP(accept_login=False)).test_connection()

    assert ok == {"ok": True, "host": "imap.test", "folder": "INBOX"}
    assert bad["ok"] is False
    assert "rejected" in bad["error"]

"""Tests for poll checkpoints."""

import json
from datetime import datetime, timedelta, timezone

from sales_sync import checkpoints as cp

T0 = datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)


def test_parse_timestamp_variants() -> None:
    """Test Z suffix, offsets and naive values all become aware datetimes."""
    assert cp.parse_timestamp("2026-02-01T10:00:00.000Z") == T0
    assert cp.parse_timestamp("2026-02-01T18:00:00+08:00") == T0
    assert cp.parse_timestamp(datetime(2026, 2, 1, 10, 0)) == T0
    assert cp.parse_timestamp(None) is None
    assert cp.parse_timestamp("  ") is None


def test_success_advances_mod_time() -> None:
    """Test a successful run records the processed modification time."""
    store = cp.CheckpointStore()

    store.record("drive:f", "file1", T0, cp.OUTCOME_SUCCESS)
    store.record("drive:f", "file1", T1, cp.OUTCOME_SUCCESS)

    checkpoint = store.get("drive:f", "file1")
    assert checkpoint.mod_time == T1
    assert checkpoint.last_run_outcome == cp.OUTCOME_SUCCESS


def test_failure_keeps_previous_mod_time() -> None:
    """Test a failed run never advances past an unprocessed snapshot."""
    store = cp.CheckpointStore()
    store.record("drive:f", "file1", T0, cp.OUTCOME_SUCCESS)

    updated = store.record("drive:f", "file1", T1, cp.OUTCOME_FAILED)

    assert updated.last_run_outcome == cp.OUTCOME_FAILED
    assert store.last_mod_time("drive:f", "file1") == T0


def test_failure_without_previous_creates_nothing() -> None:
    """Test a first-ever failure leaves the file unchekpointed so it is retried."""
    store = cp.CheckpointStore()

    assert store.record("mailbox", "online", T0, cp.OUTCOME_FAILED) is None
    assert store.get("mailbox", "online") is None
    assert store.last_mod_time("mailbox", "online") is None


def test_is_unchanged() -> None:
    """Test the skip comparison is not-newer-than."""
    checkpoint = cp.advance(None, "s", "f", T0, cp.OUTCOME_SUCCESS)

    assert cp.is_unchanged(checkpoint, T0)
    assert cp.is_unchanged(checkpoint, T0 - timedelta(seconds=1))
    assert not cp.is_unchanged(checkpoint, T1)
    assert not cp.is_unchanged(None, T0)


def test_json_store_roundtrip(tmp_path) -> None:
    """Test checkpoints persist as JSON under _meta/."""
    store = cp.JsonCheckpointStore(tmp_path)
    store.record("drive:folder/1", "abc", T0, cp.OUTCOME_SUCCESS)

    path = cp.checkpoint_path(tmp_path, "drive:folder/1", "abc")
    assert path.parent.name == "_meta"
    assert path.exists()
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["source_id"] == "drive:folder/1"
    assert data["last_run_outcome"] == "success"

    reopened = cp.JsonCheckpointStore(tmp_path)
    assert reopened.last_mod_time("drive:folder/1", "abc") == T0


def test_corrupt_checkpoint_is_ignored(tmp_path) -> None:
    """Test an unreadable checkpoint file is treated as missing."""
    path = cp.checkpoint_path(tmp_path, "mailbox", "pos")
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    assert cp.read_checkpoint(tmp_path, "mailbox", "pos") is None

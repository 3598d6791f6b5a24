"""Per-source, per-file checkpoints for the polling sources.

A checkpoint records the modification time of the last snapshot of a file
that was ingested successfully. Pollers compare a file's current
modification time against it to skip unchanged files. Checkpoints are kept
as JSON files in a _meta/ subdirectory, one file per (source, file) pair.

The modification time only moves forward on success. A failed run updates
``last_run_at`` and ``last_run_outcome`` but keeps the previous time, so the
next tick retries the same snapshot.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


def parse_timestamp(value: str | datetime | None) -> Optional[datetime]:
    """Parse an ISO timestamp (with optional trailing Z) into an aware datetime.

    Examples:
        >>> parse_timestamp("2026-02-01T10:00:00.000Z")
        datetime.datetime(2026, 2, 1, 10, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SourceCheckpoint:
    """Checkpoint for one file of one polling source.

    Attributes:
        source_id: Poller identifier (e.g., "mailbox", "drive:<folder id>").
        file_id: File identifier within the source (drive file id, or the
            report kind for the mailbox).
        last_processed_mod_time: ISO timestamp of the last snapshot ingested
            successfully.
        last_run_at: ISO timestamp of the last run that touched this file.
        last_run_outcome: "success" or "failed".
    """

    source_id: str
    file_id: str
    last_processed_mod_time: Optional[str]
    last_run_at: str
    last_run_outcome: str

    @property
    def mod_time(self) -> Optional[datetime]:
        return parse_timestamp(self.last_processed_mod_time)

    def to_dict(self) -> dict:
        """Convert checkpoint to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> SourceCheckpoint:
        """Create checkpoint from dictionary."""
        return cls(**data)


def advance(
    previous: Optional[SourceCheckpoint],
    source_id: str,
    file_id: str,
    mod_time: datetime,
    outcome: str,
    run_at: Optional[datetime] = None,
) -> Optional[SourceCheckpoint]:
    """Compute the checkpoint that follows a run.

    Returns:
        The new checkpoint, or None when a failed run has no previous
        checkpoint to update (a checkpoint is only created by a success).
    """
    run_at_iso = (run_at or utc_now()).isoformat()
    if outcome == OUTCOME_SUCCESS:
        return SourceCheckpoint(
            source_id=source_id,
            file_id=file_id,
            last_processed_mod_time=parse_timestamp(mod_time).isoformat(),
            last_run_at=run_at_iso,
            last_run_outcome=OUTCOME_SUCCESS,
        )
    if previous is None:
        return None
    return SourceCheckpoint(
        source_id=source_id,
        file_id=file_id,
        last_processed_mod_time=previous.last_processed_mod_time,
        last_run_at=run_at_iso,
        last_run_outcome=outcome,
    )


def is_unchanged(checkpoint: Optional[SourceCheckpoint], mod_time: datetime) -> bool:
    """True when ``mod_time`` is not newer than the checkpointed snapshot."""
    if checkpoint is None or checkpoint.mod_time is None:
        return False
    return parse_timestamp(mod_time) <= checkpoint.mod_time


class CheckpointStore:
    """In-process checkpoint store."""

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], SourceCheckpoint] = {}

    def get(self, source_id: str, file_id: str) -> Optional[SourceCheckpoint]:
        return self._items.get((source_id, file_id))

    def put(self, checkpoint: SourceCheckpoint) -> None:
        self._items[(checkpoint.source_id, checkpoint.file_id)] = checkpoint

    def record(
        self,
        source_id: str,
        file_id: str,
        mod_time: datetime,
        outcome: str,
    ) -> Optional[SourceCheckpoint]:
        """Record the outcome of a run for one file."""
        updated = advance(self.get(source_id, file_id), source_id, file_id, mod_time, outcome)
        if updated is None:
            logger.debug("No checkpoint for %s/%s; failed run not recorded", source_id, file_id)
            return None
        self.put(updated)
        return updated

    def last_mod_time(self, source_id: str, file_id: str) -> Optional[datetime]:
        checkpoint = self.get(source_id, file_id)
        return checkpoint.mod_time if checkpoint else None


def checkpoint_path(checkpoint_dir: Path, source_id: str, file_id: str) -> Path:
    """Compute the checkpoint file path for a (source, file) pair.

    Args:
        checkpoint_dir: Root directory for checkpoints (e.g., data/checkpoints).
        source_id: Poller identifier.
        file_id: File identifier within the source.

    Returns:
        Path to the checkpoint JSON file.

    Examples:
        >>> checkpoint_path(Path("data/checkpoints"), "drive:abc", "1x/2").name
        'drive_abc__1x_2.json'
    """
    safe_source = _UNSAFE_CHARS_RE.sub("_", source_id)
    safe_file = _UNSAFE_CHARS_RE.sub("_", file_id)
    return checkpoint_dir / "_meta" / f"{safe_source}__{safe_file}.json"


def write_checkpoint(checkpoint_dir: Path, checkpoint: SourceCheckpoint) -> None:
    """Write checkpoint JSON to the _meta/ subdirectory."""
    path = checkpoint_path(checkpoint_dir, checkpoint.source_id, checkpoint.file_id)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(checkpoint.to_dict(), f, indent=2, ensure_ascii=False)


def read_checkpoint(checkpoint_dir: Path, source_id: str, file_id: str) -> Optional[SourceCheckpoint]:
    """Read checkpoint JSON if it exists.

    Returns:
        SourceCheckpoint if the file exists and is readable, None otherwise.
    """
    path = checkpoint_path(checkpoint_dir, source_id, file_id)

    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return SourceCheckpoint.from_dict(data)
    except (json.JSONDecodeError, KeyError, TypeError):
        # A corrupted checkpoint is treated as missing
        logger.warning("Ignoring unreadable checkpoint %s", path)
        return None


class JsonCheckpointStore(CheckpointStore):
    """Checkpoint store backed by JSON files under ``<root>/_meta/``."""

    def __init__(self, checkpoint_dir: Path) -> None:
        super().__init__()
        self.checkpoint_dir = Path(checkpoint_dir)

    def get(self, source_id: str, file_id: str) -> Optional[SourceCheckpoint]:
        return read_checkpoint(self.checkpoint_dir, source_id, file_id)

    def put(self, checkpoint: SourceCheckpoint) -> None:
        write_checkpoint(self.checkpoint_dir, checkpoint)

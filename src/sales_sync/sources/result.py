"""Per-run summary returned by the pollers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sales_sync.checkpoints import utc_now
from sales_sync.models import IngestionReport

STATUS_IMPORTED = "imported"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class FileOutcome:
    """What happened to one file (or one mail snapshot) during a poll.

    Attributes:
        file_id: Drive file id, or the report kind for the mailbox.
        name: File or attachment name.
        status: "imported", "skipped" or "failed".
        mod_time: Snapshot modification time (drive modifiedTime or mail Date).
        report: IngestionReport when the file was ingested.
        detail: Skip reason or error message.
    """

    file_id: str
    name: str
    status: str
    mod_time: Optional[datetime] = None
    report: Optional[IngestionReport] = None
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "name": self.name,
            "status": self.status,
            "mod_time": self.mod_time.isoformat() if self.mod_time else None,
            "report": self.report.to_dict() if self.report else None,
            "detail": self.detail,
        }


@dataclass
class PollResult:
    source_id: str
    started_at: datetime = field(default_factory=utc_now)
    files: List[FileOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for f in self.files if f.status == status)

    @property
    def processed(self) -> int:
        return self._count(STATUS_IMPORTED)

    @property
    def skipped(self) -> int:
        return self._count(STATUS_SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(STATUS_FAILED)

    @property
    def records_imported(self) -> int:
        return sum(f.report.imported for f in self.files if f.report)

    @property
    def reports(self) -> List[IngestionReport]:
        return [f.report for f in self.files if f.report]

    @property
    def success(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        return (
            f"{self.source_id}: processed={self.processed} skipped={self.skipped} "
            f"failed={self.failed} records_imported={self.records_imported}"
        )

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "started_at": self.started_at.isoformat(),
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "records_imported": self.records_imported,
            "files": [f.to_dict() for f in self.files],
        }

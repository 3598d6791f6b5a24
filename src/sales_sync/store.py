"""Persistence contract used by the ingestion pipeline and the pollers.

The engine never talks to a database directly. Anything that implements
SalesStore can back it. InMemorySalesStore is the reference implementation
used by the tests; CsvSalesStore adds a CSV file under the data root so the
CLI keeps its records between runs.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import pandas as pd

from sales_sync.checkpoints import CheckpointStore, SourceCheckpoint
from sales_sync.exceptions import StoreWriteError
from sales_sync.models import (
    MarketingFlags,
    NaturalKey,
    SaleRecord,
    SourceKind,
    StaffEntry,
    merge_missing,
)

logger = logging.getLogger(__name__)


class WriteOutcome(str, Enum):
    INSERTED = "inserted"
    SKIPPED = "skipped"
    MERGED = "merged"


@dataclass
class WriteResult:
    """Outcome of one store write.

    Attributes:
        outcome: INSERTED, SKIPPED (strict duplicate) or MERGED (upsert hit).
        record_id: Id of the stored record (new or existing).
        filled_fields: Fields filled on the existing record by a merge.
    """

    outcome: WriteOutcome
    record_id: str
    filled_fields: List[str] = field(default_factory=list)


class SalesStore(Protocol):
    def insert_if_new(self, record: SaleRecord, key: Optional[NaturalKey]) -> WriteResult:
        ...

    def upsert(self, record: SaleRecord, key: Optional[NaturalKey]) -> WriteResult:
        ...

    def find(self, key: NaturalKey) -> Optional[str]:
        ...

    def find_by_reference(self, reference: str, channel: SourceKind) -> List[str]:
        ...

    def get(self, record_id: str) -> Optional[SaleRecord]:
        ...

    def merge_into(self, record_id: str, incoming: SaleRecord) -> List[str]:
        ...

    def flush(self) -> None:
        ...

    def staff_directory(self) -> List[StaffEntry]:
        ...

    def record_checkpoint(
        self, source_id: str, file_id: str, mod_time: datetime, outcome: str
    ) -> Optional[SourceCheckpoint]:
        ...

    def last_checkpoint(self, source_id: str, file_id: str) -> Optional[datetime]:
        ...


class InMemorySalesStore:
    """Dict-backed store indexed by natural key.

    Two indexes are kept: the full key (reference, channel, date, amount)
    and (reference, channel) alone. A key without a date, from a row whose
    date was inferred, matches any record with the same reference and
    channel. A dated key falls back to a stored record whose date was
    inferred. Records without a key (no order reference) are always
    inserted.

    Args:
        staff: Initial staff directory entries.
        checkpoints: Checkpoint backend. Defaults to an in-process store; pass
            a JsonCheckpointStore to persist checkpoints across runs.
    """

    def __init__(
        self,
        staff: Optional[Iterable[StaffEntry]] = None,
        checkpoints: Optional[CheckpointStore] = None,
    ) -> None:
        self._records: Dict[str, SaleRecord] = {}
        self._index: Dict[NaturalKey, str] = {}
        self._by_reference: Dict[Tuple[str, SourceKind], List[str]] = {}
        self._staff: List[StaffEntry] = list(staff or [])
        self._checkpoints = checkpoints if checkpoints is not None else CheckpointStore()
        self._seq = 0

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[SaleRecord]:
        return list(self._records.values())

    def get(self, record_id: str) -> Optional[SaleRecord]:
        return self._records.get(record_id)

    def find(self, key: NaturalKey) -> Optional[str]:
        candidates = self.find_by_reference(key.order_reference, key.source_channel)
        if key.order_date is None:
            return candidates[0] if candidates else None
        exact = self._index.get(key)
        if exact is not None:
            return exact
        for record_id in candidates:
            if self._records[record_id].date_inferred:
                return record_id
        return None

    def find_by_reference(self, reference: str, channel: SourceKind) -> List[str]:
        return list(self._by_reference.get((reference, channel), []))

    def _next_id(self) -> str:
        self._seq += 1
        return f"sale-{self._seq:06d}"

    def _add(self, record_id: str, record: SaleRecord) -> None:
        self._records[record_id] = record
        key = NaturalKey.for_record(record)
        if key is None:
            return
        ids = self._by_reference.setdefault((key.order_reference, key.source_channel), [])
        if record_id not in ids:
            ids.append(record_id)
        if key.order_date is not None:
            self._index[key] = record_id

    def _insert(self, record: SaleRecord) -> WriteResult:
        if record.net_amount is None or record.order_date is None:
            raise StoreWriteError(f"Record {record.order_reference!r} lacks amount or date")
        record_id = self._next_id()
        self._add(record_id, record)
        return WriteResult(WriteOutcome.INSERTED, record_id)

    def insert_if_new(self, record: SaleRecord, key: Optional[NaturalKey]) -> WriteResult:
        existing_id = self.find(key) if key is not None else None
        if existing_id is not None:
            return WriteResult(WriteOutcome.SKIPPED, existing_id)
        return self._insert(record)

    def upsert(self, record: SaleRecord, key: Optional[NaturalKey]) -> WriteResult:
        existing_id = self.find(key) if key is not None else None
        if existing_id is None:
            return self._insert(record)
        return WriteResult(WriteOutcome.MERGED, existing_id, self.merge_into(existing_id, record))

    def merge_into(self, record_id: str, incoming: SaleRecord) -> List[str]:
        """Fill null fields of a stored record from ``incoming``.

        A parsed order date also replaces an inferred one.

        Returns:
            Names of the fields that were filled.
        """
        existing = self._records[record_id]
        merged, filled = merge_missing(existing, incoming)
        if existing.date_inferred and not incoming.date_inferred:
            merged = replace(merged, order_date=incoming.order_date, date_inferred=False)
            filled = sorted(filled + ["order_date"])
        if filled:
            self._add(record_id, merged)
            logger.debug("Filled %s on %s", filled, record_id)
        return filled

    def flush(self) -> None:
        """Nothing to write for an in-process store."""

    def add_staff(self, staff_id: str, name: str) -> None:
        self._staff = [s for s in self._staff if s.id != staff_id]
        self._staff.append(StaffEntry(id=staff_id, name=name))

    def staff_directory(self) -> List[StaffEntry]:
        return list(self._staff)

    def record_checkpoint(
        self, source_id: str, file_id: str, mod_time: datetime, outcome: str
    ) -> Optional[SourceCheckpoint]:
        return self._checkpoints.record(source_id, file_id, mod_time, outcome)

    def last_checkpoint(self, source_id: str, file_id: str) -> Optional[datetime]:
        return self._checkpoints.last_mod_time(source_id, file_id)

    def checkpoint(self, source_id: str, file_id: str) -> Optional[SourceCheckpoint]:
        return self._checkpoints.get(source_id, file_id)


_FLAG_NAMES = ("email", "sms", "whatsapp")
_DATE_FIELDS = {"order_date", "actual_order_date"}
_FLOAT_FIELDS = {"net_amount", "total_amount", "shipping_amount"}


def record_to_row(record_id: str, record: SaleRecord) -> Dict[str, Any]:
    """Flatten a record into one CSV row (marketing flags become columns)."""
    row: Dict[str, Any] = {"record_id": record_id}
    for f in fields(SaleRecord):
        value = getattr(record, f.name)
        if f.name == "marketing":
            for name in _FLAG_NAMES:
                row[f"marketing_{name}"] = getattr(value, name)
        elif f.name == "source_channel":
            row[f.name] = value.value
        elif isinstance(value, date):
            row[f.name] = value.isoformat()
        else:
            row[f.name] = value
    return row


def _cell_to_flag(value: str) -> Optional[bool]:
    if value == "":
        return None
    return value == "True"


def row_to_record(row: Dict[str, str]) -> Tuple[str, SaleRecord]:
    """Inverse of record_to_row for a row read back as strings."""
    values: Dict[str, Any] = {}
    for f in fields(SaleRecord):
        if f.name == "marketing":
            values[f.name] = MarketingFlags(
                **{n: _cell_to_flag(row.get(f"marketing_{n}", "")) for n in _FLAG_NAMES}
            )
            continue
        raw = row.get(f.name, "")
        if f.name == "source_channel":
            values[f.name] = SourceKind.parse(raw)
        elif f.name == "date_inferred":
            values[f.name] = raw == "True"
        elif raw == "":
            values[f.name] = None
        elif f.name in _DATE_FIELDS:
            values[f.name] = date.fromisoformat(raw)
        elif f.name in _FLOAT_FIELDS:
            values[f.name] = float(raw)
        else:
            values[f.name] = raw
    return row["record_id"], SaleRecord(**values)


class CsvSalesStore(InMemorySalesStore):
    """InMemorySalesStore backed by a CSV file.

    Records are loaded when the store is created and written back on
    ``flush()``. Checkpoints are only recorded after pending records have
    been flushed, so a checkpoint never runs ahead of the data it covers.

    Args:
        path: CSV file (e.g., data/records/sales.csv). Created on first flush.
        staff: Initial staff directory entries.
        checkpoints: Checkpoint backend.
    """

    def __init__(
        self,
        path: Path,
        staff: Optional[Iterable[StaffEntry]] = None,
        checkpoints: Optional[CheckpointStore] = None,
    ) -> None:
        super().__init__(staff=staff, checkpoints=checkpoints)
        self.path = Path(path)
        self._dirty = False
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        df = pd.read_csv(self.path, dtype=str, keep_default_na=False, encoding="utf-8")
        for row in df.to_dict(orient="records"):
            record_id, record = row_to_record(row)
            self._add(record_id, record)
            self._seq = max(self._seq, int(record_id.rsplit("-", 1)[-1]))
        self._dirty = False
        logger.info("Loaded %d records from %s", len(self), self.path)

    def _add(self, record_id: str, record: SaleRecord) -> None:
        super()._add(record_id, record)
        self._dirty = True

    def flush(self) -> None:
        """Write all records to the CSV file, replacing it atomically."""
        if not self._dirty:
            return
        rows = [record_to_row(rid, r) for rid, r in list(self._records.items())]
        columns = list(record_to_row("", SaleRecord(SourceKind.ONLINE, date.min, 0.0)))
        df = pd.DataFrame(rows, columns=columns)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".csv.tmp")
        df.to_csv(tmp_path, index=False, encoding="utf-8")
        os.replace(tmp_path, self.path)
        self._dirty = False
        logger.debug("Wrote %d records to %s", len(rows), self.path)

    def record_checkpoint(
        self, source_id: str, file_id: str, mod_time: datetime, outcome: str
    ) -> Optional[SourceCheckpoint]:
        self.flush()
        return super().record_checkpoint(source_id, file_id, mod_time, outcome)

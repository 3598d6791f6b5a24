"""Natural-key dedup gate between the normalizer and the store.

The mode is always chosen by the caller:

- strict (manual upload): an existing match is skipped, never modified, so
  operator-driven imports stay auditable.
- upsert (polling): an existing match has its null fields filled from the
  newer snapshot.

Records without an order reference have no key and are always inserted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from sales_sync.models import DedupMode, NaturalKey, SaleRecord
from sales_sync.store import SalesStore, WriteOutcome


class Decision(str, Enum):
    IMPORT = "import"
    SKIP = "skip"
    MERGE = "merge"


@dataclass(frozen=True)
class GateDecision:
    decision: Decision
    existing_ref: Optional[str] = None
    filled_fields: Tuple[str, ...] = ()


_DECISIONS = {
    WriteOutcome.INSERTED: Decision.IMPORT,
    WriteOutcome.SKIPPED: Decision.SKIP,
    WriteOutcome.MERGED: Decision.MERGE,
}


class DedupGate:
    """Admit records into a store under one dedup mode.

    Args:
        store: Target store.
        mode: DedupMode.STRICT or DedupMode.UPSERT (or their string values).
    """

    def __init__(self, store: SalesStore, mode: DedupMode | str) -> None:
        self.store = store
        self.mode = DedupMode(mode)

    def should_import(self, record: SaleRecord) -> GateDecision:
        """Look up a record without writing it.

        Returns:
            IMPORT when no stored record shares the natural key, otherwise
            SKIP with the id of the stored record.
        """
        key = NaturalKey.for_record(record)
        existing = self.store.find(key) if key is not None else None
        if existing is None:
            return GateDecision(Decision.IMPORT)
        return GateDecision(Decision.SKIP, existing)

    def admit(self, record: SaleRecord) -> GateDecision:
        """Write a record through the gate.

        Raises:
            StoreWriteError: When the store rejects the row; the pipeline
                counts it as failed.
        """
        key = NaturalKey.for_record(record)
        if self.mode is DedupMode.STRICT:
            result = self.store.insert_if_new(record, key)
        else:
            result = self.store.upsert(record, key)
        decision = _DECISIONS[result.outcome]
        if decision is Decision.IMPORT:
            return GateDecision(decision)
        return GateDecision(decision, result.record_id, tuple(result.filled_fields))

"""Attribute a sales row to a staff member.

Strategies are tried in a fixed order and the first hit wins:

1. FROM_COLUMN      - point-of-sale reports carry a staff name column
2. FROM_CLIENT_MAP  - order reference -> staff name map sent with an upload
3. FROM_TAG         - customer tag "WVReferredByStaff_<id>" found in the directory
4. FROM_TAG_UNKNOWN - same tag, id not in the directory: "Unknown Staff <id>"
5. UNRESOLVED       - no signal; a normal outcome

The unknown-id branch keeps the identifier so the sale can be reattributed
once the directory catches up. backfill_staff attaches staff names to
records that are already stored.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sales_sync.ingest import columns as c
from sales_sync.ingest.cleaning_utils import clean_reference, to_text
from sales_sync.models import UNRESOLVED_STAFF, SourceKind, StaffEntry, StaffRef, StaffStrategy
from sales_sync.store import SalesStore

logger = logging.getLogger(__name__)

STAFF_TAG_RE = re.compile(r"WVReferredByStaff[_:](\d+)")


def unknown_staff_name(staff_id: str) -> str:
    return f"Unknown Staff {staff_id}"


def directory_name(name: str, staff_id: str) -> str:
    """Display name for a directory match, matching the upload client's labels."""
    return f"{name} {staff_id}"


def extract_tag_ids(tags: Optional[str]) -> List[str]:
    """All staff ids embedded in a customer tag cell.

    Examples:
        >>> extract_tag_ids("VIP, WVReferredByStaff_78319255599")
        ['78319255599']
        >>> extract_tag_ids(None)
        []
    """
    if not tags:
        return []
    return STAFF_TAG_RE.findall(tags)


@dataclass
class StaffContext:
    """Per-batch inputs to staff resolution.

    Attributes:
        directory: Staff id -> name, loaded once per batch from the store.
        client_map: Order reference -> staff name supplied with a manual upload.
    """

    directory: Dict[str, str] = field(default_factory=dict)
    client_map: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        entries: Iterable[StaffEntry],
        client_map: Optional[Mapping[str, str]] = None,
    ) -> StaffContext:
        directory = {str(e.id): e.name for e in entries if e.id}
        cleaned = {}
        for ref, name in (client_map or {}).items():
            key = clean_reference(ref)
            if key and name:
                cleaned[key] = str(name).strip()
        return cls(directory=directory, client_map=cleaned)


def resolve(row: Sequence[Any], column_map: c.ColumnMap, context: StaffContext) -> StaffRef:
    """Resolve the staff identity for one row.

    Returns:
        StaffRef tagged with the strategy that produced it; UNRESOLVED_STAFF
        when no strategy applies.
    """
    if column_map.source_kind is SourceKind.POS:
        name = to_text(column_map.get(row, c.STAFF_NAME))
        if name:
            return StaffRef(StaffStrategy.FROM_COLUMN, name)

    reference = clean_reference(column_map.get(row, c.ORDER_REFERENCE))
    if reference and reference in context.client_map:
        return StaffRef(StaffStrategy.FROM_CLIENT_MAP, context.client_map[reference])

    ids = extract_tag_ids(to_text(column_map.get(row, c.CUSTOMER_TAGS)))
    if ids:
        staff_id = ids[0]
        known = context.directory.get(staff_id)
        if known:
            return StaffRef(StaffStrategy.FROM_TAG, directory_name(known, staff_id), staff_id)
        logger.debug("Staff id %s not in directory (order %s)", staff_id, reference)
        return StaffRef(StaffStrategy.FROM_TAG_UNKNOWN, unknown_staff_name(staff_id), staff_id)

    return UNRESOLVED_STAFF


def extract_staff_ids(
    rows: Iterable[Sequence[Any]],
    column_map: c.ColumnMap,
    directory: Optional[Mapping[str, str]] = None,
) -> dict:
    """List distinct staff ids in a report, for setting up the directory.

    Returns:
        Dict with "staff_ids" (sorted), "mapped_count", "unmapped_count" and
        "orders_per_id".
    """
    directory = directory or {}
    per_id: Counter = Counter()
    for row in rows:
        for staff_id in extract_tag_ids(to_text(column_map.get(row, c.CUSTOMER_TAGS))):
            per_id[staff_id] += 1
    ids = sorted(per_id)
    return {
        "staff_ids": ids,
        "mapped_count": sum(1 for i in ids if i in directory),
        "unmapped_count": sum(1 for i in ids if i not in directory),
        "orders_per_id": dict(per_id),
    }


@dataclass
class StaffBackfillResult:
    """Outcome of a bulk staff backfill.

    Attributes:
        updated: Stored records that received a staff name.
        already_attributed: Matched records that kept their existing name.
        not_found: References with no stored record on the channel.
    """

    source_kind: str
    updated: int = 0
    already_attributed: int = 0
    not_found: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"updated={self.updated} already_attributed={self.already_attributed} "
            f"not_found={len(self.not_found)}"
        )

    def to_dict(self) -> dict:
        return asdict(self)


def backfill_staff(
    store: SalesStore,
    updates: Mapping[str, str],
    source_kind: SourceKind | str,
) -> StaffBackfillResult:
    """Attach staff names to records that are already stored.

    Every record matching (reference, channel) is updated through the
    fill-only merge, so a staff name that is already set is never replaced.

    Args:
        store: Store holding the records.
        updates: Order reference -> staff name.
        source_kind: Channel the references belong to.

    Returns:
        StaffBackfillResult with per-outcome counts.
    """
    kind = SourceKind.parse(source_kind)
    result = StaffBackfillResult(source_kind=kind.value)
    for raw_reference, raw_name in updates.items():
        reference = clean_reference(raw_reference)
        name = to_text(raw_name)
        if not reference or not name:
            continue
        matches = store.find_by_reference(reference, kind)
        if not matches:
            result.not_found.append(reference)
            continue
        for record_id in matches:
            existing = store.get(record_id)
            incoming = replace(
                existing, staff_name=name, staff_strategy=StaffStrategy.FROM_CLIENT_MAP.value
            )
            if "staff_name" in store.merge_into(record_id, incoming):
                result.updated += 1
            else:
                result.already_attributed += 1
    store.flush()
    logger.info("Staff backfill (%s): %s", kind.value, result.summary())
    return result

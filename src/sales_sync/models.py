"""Canonical data model for ingested sales lines.

Every source (manual upload, mailbox, drive folder) converges on the
SaleRecord shape defined here. The module also holds the small value types
passed between pipeline stages: the natural dedup key, staff resolution
variants, row skip reasons and the per-run IngestionReport.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Optional

MAX_FAILED_SAMPLES = 10


class SourceKind(str, Enum):
    """Which sales stream a report belongs to."""

    ONLINE = "online"
    POS = "pos"

    @classmethod
    def parse(cls, value: str | SourceKind) -> SourceKind:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid source kind '{value}'. Must be 'online' or 'pos'."
            ) from None


class DedupMode(str, Enum):
    """How the dedup gate treats an existing record with the same key.

    STRICT skips exact duplicates (manual upload). UPSERT fills missing
    fields on the stored record (polling sources).
    """

    STRICT = "strict"
    UPSERT = "upsert"


class SkipReason(str, Enum):
    EMPTY = "empty"
    SUMMARY = "summary"
    INVALID_AMOUNT = "invalid_amount"
    CROSS_CHANNEL = "cross_channel"

    @property
    def counts_as_empty(self) -> bool:
        """Blank and summary rows carry no transaction; everything else is invalid."""
        return self in (SkipReason.EMPTY, SkipReason.SUMMARY)


@dataclass(frozen=True)
class RowSkip:
    """A row the normalizer declined to turn into a record."""

    reason: SkipReason
    row_number: int
    detail: str = ""


@dataclass
class MarketingFlags:
    email: Optional[bool] = None
    sms: Optional[bool] = None
    whatsapp: Optional[bool] = None


@dataclass
class SaleRecord:
    """One canonical sales line.

    Attributes:
        source_channel: "online" or "pos".
        order_date: Calendar date of the order. Always set for stored records.
        net_amount: Net sales amount, rounded to 2 decimals. Always set.
        actual_order_date: Order date reported separately by newer report vintages.
        order_reference: Upstream order name/number, if the report has one.
        sales_channel_label: Channel or location label as printed in the report.
        payment_gateway: Payment gateway label.
        total_amount: Gross total including shipping and taxes.
        shipping_amount: Shipping charged. Zero is stored as zero.
        staff_name: Resolved staff display name.
        staff_strategy: Which resolution strategy produced staff_name.
        customer_email: Customer email address.
        marketing: Opt-in flags.
        date_inferred: True when order_date was not parsed from the row.
    """

    source_channel: SourceKind
    order_date: date
    net_amount: float
    actual_order_date: Optional[date] = None
    order_reference: Optional[str] = None
    sales_channel_label: Optional[str] = None
    payment_gateway: Optional[str] = None
    total_amount: Optional[float] = None
    shipping_amount: Optional[float] = None
    staff_name: Optional[str] = None
    staff_strategy: Optional[str] = None
    customer_email: Optional[str] = None
    marketing: MarketingFlags = field(default_factory=MarketingFlags)
    date_inferred: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["source_channel"] = self.source_channel.value
        data["order_date"] = self.order_date.isoformat()
        if self.actual_order_date:
            data["actual_order_date"] = self.actual_order_date.isoformat()
        return data


def merge_missing(existing: SaleRecord, incoming: SaleRecord) -> tuple[SaleRecord, list[str]]:
    """Fill null fields of ``existing`` from ``incoming``.

    Later snapshots typically carry richer columns than earlier ones; values
    already stored are never overwritten.

    Returns:
        Tuple of (merged record, names of the fields that were filled).
    """
    updates: dict[str, Any] = {}
    for f in fields(SaleRecord):
        if f.name == "marketing":
            continue
        if getattr(existing, f.name) is None and getattr(incoming, f.name) is not None:
            updates[f.name] = getattr(incoming, f.name)

    flags = existing.marketing
    flag_updates = {
        name: getattr(incoming.marketing, name)
        for name in ("email", "sms", "whatsapp")
        if getattr(flags, name) is None and getattr(incoming.marketing, name) is not None
    }
    if flag_updates:
        updates["marketing"] = replace(flags, **flag_updates)

    filled = sorted(updates)
    if "marketing" in updates:
        filled.remove("marketing")
        filled.extend(f"marketing.{n}" for n in sorted(flag_updates))
    return replace(existing, **updates), filled


def display_shipping(record: SaleRecord, min_fee: float) -> Optional[float]:
    """Shipping amount to show for a stored record.

    Reports print an exact zero when the flat minimum fee was charged. The
    stored value stays zero; the fee is applied only here so the rule can
    change without touching stored rows.

    Examples:
        >>> from datetime import date
        >>> r = SaleRecord(SourceKind.ONLINE, date(2026, 2, 1), 100.0,
        ...                total_amount=130.0, shipping_amount=0.0)
        >>> display_shipping(r, 30.0)
        30.0
    """
    if record.shipping_amount is None:
        return None
    if record.shipping_amount == 0 and record.total_amount:
        return min_fee
    return record.shipping_amount


@dataclass(frozen=True)
class NaturalKey:
    """Heuristic dedup identity derived from business fields.

    Not a guaranteed-unique identity: two distinct sales sharing reference,
    date and amount on the same channel would collapse into one.
    """

    order_reference: str
    source_channel: SourceKind
    order_date: Optional[date] = None
    net_amount: Optional[float] = None

    @classmethod
    def for_record(cls, record: SaleRecord) -> Optional[NaturalKey]:
        """Key for a record, or None when it has no reference to match on."""
        if not record.order_reference:
            return None
        if record.date_inferred:
            return cls(record.order_reference, record.source_channel)
        return cls(
            record.order_reference,
            record.source_channel,
            record.order_date,
            round(record.net_amount, 2),
        )


class StaffStrategy(str, Enum):
    FROM_COLUMN = "column"
    FROM_CLIENT_MAP = "client_map"
    FROM_TAG = "tag"
    FROM_TAG_UNKNOWN = "tag_unknown"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class StaffRef:
    """Outcome of staff resolution for one row.

    ``tag_id`` is set for both tag variants so an unmatched identifier is
    never lost.
    """

    strategy: StaffStrategy
    name: Optional[str] = None
    tag_id: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.strategy is not StaffStrategy.UNRESOLVED


UNRESOLVED_STAFF = StaffRef(StaffStrategy.UNRESOLVED)


@dataclass
class StaffEntry:
    id: str
    name: str


@dataclass
class IngestionReport:
    """Outcome of one ingestion invocation. Returned and logged, never stored."""

    source_kind: str
    mode: str
    source_label: str = ""
    success: bool = False
    imported: int = 0
    imported_amount: float = 0.0
    merged: int = 0
    skipped_duplicate: int = 0
    skipped_invalid: int = 0
    skipped_empty: int = 0
    failed: int = 0
    failed_orders: list[str] = field(default_factory=list)
    total_rows_processed: int = 0
    columns_detected: dict[str, Any] = field(default_factory=dict)
    staff_attribution: Counter = field(default_factory=Counter)
    skip_reasons: Counter = field(default_factory=Counter)
    warnings: list[str] = field(default_factory=list)

    def record_skip(self, skip: RowSkip) -> None:
        self.skip_reasons[skip.reason.value] += 1
        if skip.reason.counts_as_empty:
            self.skipped_empty += 1
        else:
            self.skipped_invalid += 1

    def record_failure(self, identifier: str) -> None:
        self.failed += 1
        if len(self.failed_orders) < MAX_FAILED_SAMPLES:
            self.failed_orders.append(identifier)

    @property
    def accounted_rows(self) -> int:
        """Rows that ended in some bucket. Equals total_rows_processed."""
        return (
            self.imported
            + self.merged
            + self.skipped_duplicate
            + self.skipped_invalid
            + self.skipped_empty
            + self.failed
        )

    def summary(self) -> str:
        return (
            f"imported={self.imported} (amount={self.imported_amount:.2f}) "
            f"merged={self.merged} duplicate={self.skipped_duplicate} "
            f"invalid={self.skipped_invalid} empty={self.skipped_empty} "
            f"failed={self.failed} rows={self.total_rows_processed}"
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["staff_attribution"] = dict(self.staff_attribution)
        data["skip_reasons"] = dict(self.skip_reasons)
        return data

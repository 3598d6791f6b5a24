"""Map canonical business fields onto drifting report headers.

Report vintages rename, reorder and add columns. Each canonical field has an
ordered list of matchers, from most specific (exact normalized header) to
least specific (substring). The first header that satisfies a matcher wins.

Resolution depends on the report kind. Point-of-sale exports carry a
"Sales Channel" column that is always "Point of Sale", so the channel field
prefers "Location Name" there; their "Net sales" column includes gift card
redemptions, so the net amount prefers "Net sales excluding gift card".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from sales_sync.exceptions import ColumnResolutionError
from sales_sync.ingest.cleaning_utils import normalize_header
from sales_sync.models import SourceKind

logger = logging.getLogger(__name__)

NOT_FOUND = -1

ORDER_DATE = "order_date"
ACTUAL_ORDER_DATE = "actual_order_date"
ORDER_REFERENCE = "order_reference"
SALES_CHANNEL = "sales_channel"
PAYMENT_GATEWAY = "payment_gateway"
NET_AMOUNT = "net_amount"
TOTAL_AMOUNT = "total_amount"
SHIPPING_AMOUNT = "shipping_amount"
STAFF_NAME = "staff_name"
CUSTOMER_TAGS = "customer_tags"
CUSTOMER_EMAIL = "customer_email"
EMAIL_MARKETING = "email_marketing"
SMS_MARKETING = "sms_marketing"
WHATSAPP_MARKETING = "whatsapp_marketing"

REQUIRED_FIELDS = (NET_AMOUNT,)


@dataclass(frozen=True)
class Matcher:
    """One header test.

    Attributes:
        kind: "exact" (whole normalized header), "prefix" or "contains".
        token: Normalized fragment to look for.
        exclude: Fragments that disqualify a header even if the token matches.
    """

    kind: str
    token: str
    exclude: Tuple[str, ...] = ()

    def matches(self, header: str) -> bool:
        if not header or any(x in header for x in self.exclude):
            return False
        if self.kind == "exact":
            return header == self.token
        if self.kind == "prefix":
            return header.startswith(self.token)
        return self.token in header

    def __str__(self) -> str:
        return f"{self.kind}:{self.token}"


def exact(token: str, *exclude: str) -> Matcher:
    return Matcher("exact", token, exclude)


def prefix(token: str, *exclude: str) -> Matcher:
    return Matcher("prefix", token, exclude)


def contains(token: str, *exclude: str) -> Matcher:
    return Matcher("contains", token, exclude)


_NET_ONLINE = [
    exact("netsales"),
    contains("netsales"),
    exact("net"),
    exact("netamount"),
    exact("amount"),
]

_NET_POS = [
    exact("netsalesexcludinggiftcard"),
    exact("netsalesexclgiftcard"),
    contains("netsalesexcl"),
    contains("netsaleswithoutgiftcard"),
] + _NET_ONLINE

_CHANNEL_ONLINE = [
    exact("saleschannel"),
    exact("channel"),
    contains("channel"),
]

_CHANNEL_POS = [
    exact("locationname"),
    exact("location"),
    contains("locationname"),
    contains("location"),
] + _CHANNEL_ONLINE

_COMMON: Dict[str, List[Matcher]] = {
    ORDER_DATE: [
        exact("orderdate"),
        exact("date"),
        exact("day"),
        contains("orderdate", "actual"),
        contains("date", "actual", "created", "updated"),
    ],
    ACTUAL_ORDER_DATE: [
        exact("actualorderdate"),
        contains("actualorder"),
    ],
    ORDER_REFERENCE: [
        exact("ordername"),
        exact("order"),
        exact("orderno"),
        exact("ordernumber"),
        exact("orderid"),
        exact("orderreference"),
        exact("orderref"),
        contains("ordername"),
        contains("orderno"),
        contains("orderid", "shipany"),
    ],
    PAYMENT_GATEWAY: [
        exact("paymentgateway"),
        exact("paymentmethod"),
        contains("gateway"),
        contains("paymentmethod"),
    ],
    TOTAL_AMOUNT: [
        exact("totalsales"),
        exact("total"),
        exact("totalamount"),
        contains("totalsales", "net"),
    ],
    SHIPPING_AMOUNT: [
        exact("shipping"),
        exact("shippingcharges"),
        exact("shippingamount"),
        contains("shipping", "tracking", "waybill"),
    ],
    STAFF_NAME: [
        exact("staffname"),
        exact("staff"),
        exact("salesperson"),
        exact("staffmember"),
        exact("employee"),
        contains("staffname"),
    ],
    CUSTOMER_TAGS: [
        exact("customertags"),
        exact("tags"),
        contains("customertag"),
        contains("wvreferredbystaff"),
    ],
    CUSTOMER_EMAIL: [
        exact("customeremail"),
        exact("email"),
        contains("customeremail"),
    ],
    EMAIL_MARKETING: [
        exact("emailmarketing"),
        contains("emailmark"),
    ],
    SMS_MARKETING: [
        exact("smsmarketing"),
        contains("smsmark"),
    ],
    WHATSAPP_MARKETING: [
        exact("whatsappmarketing"),
        contains("whatsapp"),
    ],
}


def matchers_for(source_kind: SourceKind) -> Dict[str, List[Matcher]]:
    """Ordered matchers per canonical field for a report kind."""
    table = dict(_COMMON)
    if source_kind is SourceKind.POS:
        table[SALES_CHANNEL] = _CHANNEL_POS
        table[NET_AMOUNT] = _NET_POS
    else:
        table[SALES_CHANNEL] = _CHANNEL_ONLINE
        table[NET_AMOUNT] = _NET_ONLINE
    return table


@dataclass
class ColumnMatch:
    field: str
    index: int = NOT_FOUND
    header: Optional[str] = None
    matcher: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.index != NOT_FOUND


@dataclass
class ColumnMap:
    """Resolved column indices plus match diagnostics."""

    source_kind: SourceKind
    matches: Dict[str, ColumnMatch] = field(default_factory=dict)
    unmatched_headers: List[str] = field(default_factory=list)

    def index(self, field_name: str) -> int:
        match = self.matches.get(field_name)
        return match.index if match else NOT_FOUND

    def has(self, field_name: str) -> bool:
        return self.index(field_name) != NOT_FOUND

    def get(self, row: Sequence, field_name: str):
        """Cell for a field in a row, or None when the column was not found."""
        idx = self.index(field_name)
        if idx == NOT_FOUND or idx >= len(row):
            return None
        return row[idx]

    @property
    def missing(self) -> List[str]:
        return [name for name, m in self.matches.items() if not m.found]

    def diagnostics(self) -> dict:
        """Column-detection report for the IngestionReport."""
        return {
            "source_kind": self.source_kind.value,
            "fields": {
                name: {"index": m.index, "header": m.header, "matcher": m.matcher}
                for name, m in self.matches.items()
            },
            "not_found": self.missing,
            "unmatched_headers": list(self.unmatched_headers),
        }


def resolve(headers: Sequence[str], source_kind: SourceKind | str) -> ColumnMap:
    """Map canonical fields to column indices.

    Args:
        headers: Header cells as printed in the report.
        source_kind: "online" or "pos"; selects the precedence rules.

    Returns:
        ColumnMap with one ColumnMatch per canonical field.

    Raises:
        ColumnResolutionError: If a required field (net amount) is not found.

    Examples:
        >>> cmap = resolve(["Sales Channel", "Location Name", "Net sales"], "pos")
        >>> cmap.matches["sales_channel"].header
        'Location Name'
    """
    kind = SourceKind.parse(source_kind)
    normalized = [normalize_header(h) for h in headers]
    cmap = ColumnMap(source_kind=kind)

    for field_name, matchers in matchers_for(kind).items():
        match = ColumnMatch(field=field_name)
        for matcher in matchers:
            idx = next((i for i, h in enumerate(normalized) if matcher.matches(h)), None)
            if idx is not None:
                match = ColumnMatch(field_name, idx, headers[idx], str(matcher))
                break
        cmap.matches[field_name] = match

    used = {m.index for m in cmap.matches.values() if m.found}
    cmap.unmatched_headers = [h for i, h in enumerate(headers) if i not in used and h]

    for m in cmap.matches.values():
        if m.found:
            logger.debug("Column %s -> %r (#%d via %s)", m.field, m.header, m.index, m.matcher)
    if cmap.missing:
        logger.debug("Columns not found for %s report: %s", kind.value, cmap.missing)

    for required in REQUIRED_FIELDS:
        if not cmap.has(required):
            raise ColumnResolutionError(required, list(headers))
    return cmap

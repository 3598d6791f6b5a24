"""One raw row -> canonical SaleRecord, or a reason to skip it.

Row classification, in order:

1. Blank row                                   -> skip (empty)
2. Reference or first cell is "Grand Total"/"Total" -> skip (summary)
3. Point-of-sale label in an online report      -> skip (cross_channel)
4. Net amount empty or non-numeric              -> skip (invalid_amount)

A row that gets past these checks has an amount, so it is always kept. An
unparsable order date falls back to the actual order date, then to the run
date (flagged date_inferred).

Summary and blank rows are not failures. Shipping is stored exactly as
reported; the zero-shipping compensation lives in models.display_shipping.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional, Sequence, Union

from sales_sync.ingest import columns as c
from sales_sync.ingest.cleaning_utils import (
    clean_reference,
    is_missing,
    to_amount,
    to_date,
    to_flag,
    to_text,
)
from sales_sync.models import MarketingFlags, RowSkip, SaleRecord, SkipReason, SourceKind

logger = logging.getLogger(__name__)

SUMMARY_LABELS = {"grand total", "total"}
POS_CHANNEL_MARKER = "point of sale"


def is_summary_row(row: Sequence[Any], column_map: c.ColumnMap) -> bool:
    """True for report footer rows such as "Grand Total".

    Examples:
        >>> cmap = c.resolve(["Order Name", "Net Sales"], "online")
        >>> is_summary_row(["Grand Total", "1234.00"], cmap)
        True
        >>> is_summary_row(["#1001", "10"], cmap)
        False
    """
    candidates = [column_map.get(row, c.ORDER_REFERENCE)]
    if row:
        candidates.append(row[0])
    for value in candidates:
        text = to_text(value)
        if text and text.lower() in SUMMARY_LABELS:
            return True
    return False


def is_cross_channel(label: Optional[str], source_kind: SourceKind) -> bool:
    """Point-of-sale rows leaking into the online report."""
    return (
        source_kind is SourceKind.ONLINE
        and label is not None
        and POS_CHANNEL_MARKER in label.lower()
    )


def normalize(
    row: Sequence[Any],
    column_map: c.ColumnMap,
    source_kind: SourceKind | str,
    *,
    row_number: int = 0,
    run_date: Optional[date] = None,
) -> Union[SaleRecord, RowSkip]:
    """Convert one raw row into a SaleRecord.

    Args:
        row: Cells in header order.
        column_map: Resolved columns for the report.
        source_kind: Stream the report is being ingested into.
        row_number: 1-based data row number, used in skip diagnostics.
        run_date: Fallback order date for rows whose date cannot be parsed.
            Defaults to today.

    Returns:
        SaleRecord, or RowSkip describing why the row was not imported.
    """
    kind = SourceKind.parse(source_kind)

    if all(is_missing(v) for v in row):
        return RowSkip(SkipReason.EMPTY, row_number)

    if is_summary_row(row, column_map):
        return RowSkip(SkipReason.SUMMARY, row_number, to_text(row[0]) or "")

    reference = clean_reference(column_map.get(row, c.ORDER_REFERENCE))
    channel_label = to_text(column_map.get(row, c.SALES_CHANNEL))

    if is_cross_channel(channel_label, kind):
        return RowSkip(
            SkipReason.CROSS_CHANNEL, row_number, f"{reference or '?'} ({channel_label})"
        )

    raw_amount = column_map.get(row, c.NET_AMOUNT)
    net_amount = to_amount(raw_amount)
    if net_amount is None:
        return RowSkip(
            SkipReason.INVALID_AMOUNT, row_number, f"{reference or '?'}: {raw_amount!r}"
        )

    actual_order_date = to_date(column_map.get(row, c.ACTUAL_ORDER_DATE))
    order_date = to_date(column_map.get(row, c.ORDER_DATE))
    date_inferred = False
    if order_date is None:
        raw_date = column_map.get(row, c.ORDER_DATE)
        if actual_order_date is not None:
            order_date = actual_order_date
        else:
            order_date = run_date or date.today()
            date_inferred = True
            logger.warning(
                "Row %d (%s): unparsable order date %r, using %s",
                row_number,
                reference or "no reference",
                raw_date,
                order_date,
            )

    return SaleRecord(
        source_channel=kind,
        order_date=order_date,
        net_amount=net_amount,
        actual_order_date=actual_order_date,
        order_reference=reference,
        sales_channel_label=channel_label,
        payment_gateway=to_text(column_map.get(row, c.PAYMENT_GATEWAY)),
        total_amount=to_amount(column_map.get(row, c.TOTAL_AMOUNT)),
        shipping_amount=to_amount(column_map.get(row, c.SHIPPING_AMOUNT)),
        customer_email=to_text(column_map.get(row, c.CUSTOMER_EMAIL)),
        marketing=MarketingFlags(
            email=to_flag(column_map.get(row, c.EMAIL_MARKETING)),
            sms=to_flag(column_map.get(row, c.SMS_MARKETING)),
            whatsapp=to_flag(column_map.get(row, c.WHATSAPP_MARKETING)),
        ),
        date_inferred=date_inferred,
    )

"""Ingestion pipeline: raw report bytes -> stored records + IngestionReport.

Pipeline steps:
1. Parse the blob into headers + rows (fatal on failure)
2. Resolve columns for the report kind (fatal if net amount is missing)
3. Per row, sequentially: normalize -> resolve staff -> dedup gate -> write
4. Flush the store

Only the two fatal steps and a failed flush raise. Every row ends in
exactly one report bucket, so the bucket counts always add up to
``total_rows_processed``.

Examples:
    >>> from sales_sync.store import InMemorySalesStore
    >>> store = InMemorySalesStore()
    >>> report = ingest_upload(store, b"Order Name,Order Date,Net Sales\\n#1,2026-02-01,10\\n", "online")
    >>> report.imported
    1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, Optional

from sales_sync.exceptions import StoreWriteError
from sales_sync.ingest import staff as staff_resolver
from sales_sync.ingest.columns import resolve
from sales_sync.ingest.dedup import Decision, DedupGate
from sales_sync.ingest.normalize import normalize
from sales_sync.ingest.parser import parse
from sales_sync.models import DedupMode, IngestionReport, RowSkip, SourceKind
from sales_sync.store import SalesStore

logger = logging.getLogger(__name__)


@dataclass
class IngestionContext:
    """Caller-supplied inputs for one ingestion run.

    Attributes:
        client_staff_map: Order reference -> staff name, sent with manual uploads.
        expected_row_count: Row count the uploader saw; a mismatch only warns.
        source_label: Free-form label for logs and the report (file name, email subject).
        file_name: Original file name, used for format detection.
        format_hint: "csv", "xlsx" or "xls" when known.
        run_date: Fallback date for rows with an unparsable order date.
    """

    client_staff_map: Dict[str, str] = field(default_factory=dict)
    expected_row_count: Optional[int] = None
    source_label: str = ""
    file_name: Optional[str] = None
    format_hint: Optional[str] = None
    run_date: Optional[date] = None


def ingest(
    store: SalesStore,
    raw: bytes | str,
    source_kind: SourceKind | str,
    mode: DedupMode | str,
    context: Optional[IngestionContext] = None,
) -> IngestionReport:
    """Ingest one report into a store.

    Args:
        store: Target store.
        raw: Report content (delimited text or workbook bytes).
        source_kind: "online" or "pos".
        mode: "strict" or "upsert".
        context: Optional caller inputs.

    Returns:
        IngestionReport with per-bucket counts.

    Raises:
        FatalParseError: If the blob cannot be parsed.
        ColumnResolutionError: If the net amount column is missing.
        OSError: If a file-backed store cannot write its records.
    """
    context = context or IngestionContext()
    kind = SourceKind.parse(source_kind)
    mode = DedupMode(mode)
    label = context.source_label or context.file_name or ""
    report = IngestionReport(source_kind=kind.value, mode=mode.value, source_label=label)

    table = parse(raw, context.format_hint, file_name=context.file_name)
    column_map = resolve(table.headers, kind)
    report.columns_detected = column_map.diagnostics()

    staff_context = staff_resolver.StaffContext.build(
        store.staff_directory(), context.client_staff_map
    )
    gate = DedupGate(store, mode)
    run_date = context.run_date or date.today()
    imported_amount = 0.0

    for row_number, row in enumerate(table.rows, start=1):
        report.total_rows_processed += 1

        result = normalize(row, column_map, kind, row_number=row_number, run_date=run_date)
        if isinstance(result, RowSkip):
            report.record_skip(result)
            logger.debug("Row %d skipped (%s) %s", row_number, result.reason.value, result.detail)
            continue

        staff = staff_resolver.resolve(row, column_map, staff_context)
        record = replace(
            result,
            staff_name=staff.name,
            staff_strategy=staff.strategy.value if staff.resolved else None,
        )
        if record.date_inferred:
            report.warnings.append(
                f"Row {row_number} ({record.order_reference}): order date inferred as "
                f"{record.order_date.isoformat()}"
            )

        try:
            decision = gate.admit(record)
        except (StoreWriteError, OSError) as e:
            # Store write failures are row-level: count it and keep going
            identifier = record.order_reference or f"row {row_number}"
            logger.warning("Failed to write %s: %s", identifier, e)
            report.record_failure(identifier)
            continue

        if decision.decision is Decision.IMPORT:
            report.imported += 1
            imported_amount += record.net_amount
            report.staff_attribution[staff.strategy.value] += 1
        elif decision.decision is Decision.MERGE:
            report.merged += 1
            report.staff_attribution[staff.strategy.value] += 1
        else:
            report.skipped_duplicate += 1

    store.flush()
    report.imported_amount = round(imported_amount, 2)

    expected = context.expected_row_count
    if expected is not None and expected != len(table.rows):
        msg = f"Expected {expected} rows but the file has {len(table.rows)}"
        report.warnings.append(msg)
        logger.warning("%s: %s", label or kind.value, msg)

    report.success = True
    logger.info("Ingested %s report %s: %s", kind.value, label, report.summary())
    if report.failed:
        logger.warning("Failed rows (sample): %s", ", ".join(report.failed_orders))
    return report


def ingest_upload(
    store: SalesStore,
    raw: bytes | str,
    source_kind: SourceKind | str,
    client_staff_map: Optional[Dict[str, str]] = None,
    expected_row_count: Optional[int] = None,
    file_name: Optional[str] = None,
) -> IngestionReport:
    """Manual upload entry point: strict mode, optional client staff map."""
    context = IngestionContext(
        client_staff_map=dict(client_staff_map or {}),
        expected_row_count=expected_row_count,
        source_label=file_name or "upload",
        file_name=file_name,
    )
    return ingest(store, raw, source_kind, DedupMode.STRICT, context)

"""Sales Sync - recurring sales report ingestion and reconciliation.

Three producers deliver tabular sales exports: manual uploads, a mailbox
polled for report attachments, and a drive folder polled for new or
changed files. Every report goes through the same pipeline:

- **Parse**: delimited text or workbook -> headers + rows
- **Resolve**: drifting headers -> canonical fields
- **Normalize**: raw row -> SaleRecord (or a counted skip)
- **Attribute**: staff column, client map or customer tag
- **Dedup**: natural key, strict (upload) or upsert (polling)

Module Structure:
    sales_sync.ingest: Parser, column resolver, normalizer, staff, dedup, pipeline
    sales_sync.sources: Mailbox and drive pollers, scheduled tasks
    sales_sync.store: Store contract, in-memory and CSV-backed implementations
    sales_sync.checkpoints: Per-file poll checkpoints under _meta/
    sales_sync.config: Environment-driven configuration

Quick Start:
    >>> from sales_sync import InMemorySalesStore, ingest_upload
    >>>
    >>> store = InMemorySalesStore()
    >>> with open("orders.csv", "rb") as f:
    ...     report = ingest_upload(store, f.read(), "online", expected_row_count=120)
    >>> print(report.summary())
"""

__version__ = "0.1.0"

from sales_sync.config import SyncConfig
from sales_sync.exceptions import (
    ColumnResolutionError,
    ConfigError,
    CredentialError,
    FatalParseError,
    IngestionError,
    SalesSyncError,
    SourceConnectionError,
    SourceError,
    StoreWriteError,
)
from sales_sync.ingest.pipeline import IngestionContext, ingest, ingest_upload
from sales_sync.models import DedupMode, IngestionReport, SaleRecord, SourceKind
from sales_sync.store import CsvSalesStore, InMemorySalesStore, SalesStore

__all__ = [
    "ColumnResolutionError",
    "ConfigError",
    "CredentialError",
    "CsvSalesStore",
    "DedupMode",
    "FatalParseError",
    "InMemorySalesStore",
    "IngestionContext",
    "IngestionError",
    "IngestionReport",
    "SaleRecord",
    "SalesStore",
    "SalesSyncError",
    "SourceConnectionError",
    "SourceError",
    "SourceKind",
    "StoreWriteError",
    "SyncConfig",
    "__version__",
    "ingest",
    "ingest_upload",
]

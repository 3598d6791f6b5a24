"""Report ingestion: parse, resolve columns, normalize, attribute staff, dedup.

Modules, leaves first:
    cleaning_utils: Cell-level text, amount and date helpers
    parser: Raw blob -> Table(headers, rows)
    columns: Headers -> ColumnMap for a report kind
    normalize: Row -> SaleRecord or RowSkip
    staff: Row -> StaffRef
    dedup: Natural-key gate in front of the store
    pipeline: ingest() and ingest_upload()
"""

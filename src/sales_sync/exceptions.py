"""Domain-specific exceptions for the sales sync engine.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from SalesSyncError for easy catching.

Only the run-aborting kinds are exceptions. Row-level outcomes (bad dates,
summary rows, duplicates) are reported as values in the IngestionReport.
"""


class SalesSyncError(Exception):
    """Base exception for all sales sync errors.

    Users can catch this exception to handle any error raised by the
    ingestion pipeline or the source pollers.
    """

    pass


class ConfigError(SalesSyncError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - Invalid configuration values are provided
    - Required configuration is missing
    """

    pass


class IngestionError(SalesSyncError):
    """Raised when a single report file cannot be ingested.

    Aborts that file only; other files and sources are unaffected.
    """

    pass


class FatalParseError(IngestionError):
    """Raised when a raw blob cannot be parsed into a table.

    This exception is raised when:
    - The workbook or delimited text is unreadable
    - The file has a header row but no data rows
    """

    pass


class ColumnResolutionError(IngestionError):
    """Raised when a required column cannot be located in the headers."""

    def __init__(self, field: str, headers: list[str]):
        self.field = field
        self.headers = headers
        super().__init__(f"Required column '{field}' not found. Headers: {headers}")


class StoreWriteError(SalesSyncError):
    """Raised by a store when a single row cannot be written.

    The pipeline catches this per row, counts the row as failed and moves on.
    """

    pass


class SourceError(SalesSyncError):
    """Raised when a polling source cannot complete a run.

    The poller aborts the run and leaves every checkpoint untouched so the
    next tick retries from the same point.
    """

    pass


class CredentialError(SourceError):
    """Raised when source credentials are missing, rejected or cannot be refreshed."""

    pass


class SourceConnectionError(SourceError):
    """Raised when a mailbox or drive endpoint cannot be reached."""

    pass

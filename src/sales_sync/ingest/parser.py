"""Raw report blob -> headers + ordered rows.

Both report formats end up in the same Table shape before any other logic
runs, so a single normalization path serves delimited text and workbooks:

1. Detect the format (hint, file name, or magic bytes)
2. Read every cell as an untyped object (no pandas type inference)
3. For workbooks, keep only the first sheet
4. Find the header row (reports sometimes carry title rows above it)
5. Drop trailing blank columns and return headers + rows

Examples:
    >>> table = parse(b"Order Date,Order Name,Net Sales\\n2026-02-01,#1001,100\\n", "csv")
    >>> table.headers
    ['Order Date', 'Order Name', 'Net Sales']
    >>> table.rows[0]
    ['2026-02-01', '#1001', '100']
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

import pandas as pd

from sales_sync.exceptions import FatalParseError
from sales_sync.ingest.cleaning_utils import (
    is_missing,
    neutralize,
    normalize_header,
    strip_invisibles,
)

logger = logging.getLogger(__name__)

CSV = "csv"
XLSX = "xlsx"
XLS = "xls"
FORMATS = (CSV, XLSX, XLS)

_XLSX_MAGIC = b"PK\x03\x04"
_XLS_MAGIC = b"\xd0\xcf\x11\xe0"

_MIME_FORMATS = {
    "text/csv": CSV,
    "text/plain": CSV,
    "application/vnd.ms-excel": XLS,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": XLSX,
}

# Normalized header fragments that mark the header row
HEADER_SENTINELS = ("order", "date", "netsales", "sales", "amount", "channel", "location")
MAX_HEADER_SCAN = 30

_NUMERIC_TEXT_RE = re.compile(r"^[+\-]?[\d.,]+$")


@dataclass
class Table:
    """Headers plus data rows; every row has exactly len(headers) cells.

    Attributes:
        headers: Header cells as printed (cleaned of invisible characters).
        rows: Data rows in file order. Cells keep their native type
            (str for delimited text; str, float or datetime for workbooks).
        header_row: 0-based index of the header row in the source sheet.
        source_format: "csv", "xlsx" or "xls".
    """

    headers: List[str]
    rows: List[List[Any]] = field(default_factory=list)
    header_row: int = 0
    source_format: str = CSV

    def __len__(self) -> int:
        return len(self.rows)


def detect_format(
    raw: bytes | str,
    file_name: Optional[str] = None,
    mime_type: Optional[str] = None,
) -> str:
    """Work out the report format.

    File extension wins, then MIME type, then magic bytes. Anything that is
    not recognisably a workbook is treated as delimited text.

    Examples:
        >>> detect_format(b"a,b\\n1,2\\n", "report.CSV")
        'csv'
        >>> detect_format(b"PK\\x03\\x04rest-of-zip")
        'xlsx'
    """
    if file_name:
        lower = file_name.lower()
        for fmt in FORMATS:
            if lower.endswith("." + fmt):
                return fmt
    if mime_type and mime_type in _MIME_FORMATS:
        return _MIME_FORMATS[mime_type]
    if isinstance(raw, bytes):
        if raw.startswith(_XLSX_MAGIC):
            return XLSX
        if raw.startswith(_XLS_MAGIC):
            return XLS
    return CSV


def is_supported_file(file_name: str) -> bool:
    lower = (file_name or "").lower()
    return any(lower.endswith("." + fmt) for fmt in FORMATS)


def _decode_text(raw: bytes | str) -> str:
    if isinstance(raw, str):
        return raw
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise FatalParseError("Delimited report is not valid UTF-8 or cp1252 text")


def _sniff_delimiter(text: str) -> str:
    sample = text[:4096]
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
    except csv.Error:
        return ","


def _read_delimited(raw: bytes | str) -> pd.DataFrame:
    text = _decode_text(raw)
    if not text.strip():
        raise FatalParseError("Report is empty")
    sep = _sniff_delimiter(text)
    try:
        # Title rows above the header are narrower than the data; size the
        # frame on the widest line so pandas does not reject the ragged file
        width = max(len(r) for r in csv.reader(io.StringIO(text), delimiter=sep))
        return pd.read_csv(
            io.StringIO(text),
            sep=sep,
            header=None,
            names=list(range(width)),
            dtype=object,
            keep_default_na=False,
            skip_blank_lines=False,
            skipinitialspace=True,
        )
    except (csv.Error, pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
        raise FatalParseError(f"Could not parse delimited report: {e}") from e


def _read_workbook(raw: bytes, fmt: str) -> pd.DataFrame:
    if isinstance(raw, str):
        raise FatalParseError("Workbook content must be bytes, got text")
    try:
        xls = pd.ExcelFile(io.BytesIO(raw))
    except Exception as e:
        # openpyxl/xlrd raise a wide range of exception types for corrupt files
        raise FatalParseError(f"Could not open {fmt} workbook: {e}") from e
    if not xls.sheet_names:
        raise FatalParseError("Workbook has no sheets")
    first = xls.sheet_names[0]
    if len(xls.sheet_names) > 1:
        logger.debug("Workbook has sheets %s; reading only %r", xls.sheet_names, first)
    try:
        return xls.parse(first, header=None, dtype=object)
    except Exception as e:
        raise FatalParseError(f"Could not read sheet {first!r}: {e}") from e


def detect_header_row(
    grid: List[List[Any]],
    sentinels: Iterable[str] = HEADER_SENTINELS,
) -> int:
    """Detect which row contains the column headers.

    Scans the first 30 rows for the first one where at least two cells
    contain a sentinel fragment such as "order" or "netsales".

    Returns:
        Row index (0-based) where the header is found, or 0 as fallback.
    """
    sentinels = tuple(sentinels)
    for i, row in enumerate(grid[:MAX_HEADER_SCAN]):
        cells = [normalize_header(c) for c in row if not is_missing(c)]
        if not cells:
            continue
        hits = sum(1 for c in cells if any(s in c for s in sentinels))
        if hits >= 2:
            return i
    return 0


def _to_grid(df: pd.DataFrame) -> List[List[Any]]:
    grid: List[List[Any]] = []
    for values in df.itertuples(index=False, name=None):
        row = []
        for v in values:
            if is_missing(v):
                row.append(None)
            elif isinstance(v, str):
                s = strip_invisibles(v)
                # "+852" style amounts are numbers, not formulas
                row.append(s if _NUMERIC_TEXT_RE.match(s) else neutralize(s))
            else:
                row.append(v)
        grid.append(row)
    return grid


def parse(
    raw: bytes | str,
    format_hint: Optional[str] = None,
    *,
    file_name: Optional[str] = None,
) -> Table:
    """Parse a raw report blob into a Table.

    Args:
        raw: File content. Text is accepted for delimited reports.
        format_hint: "csv", "xlsx" or "xls". Detected when omitted.
        file_name: Optional file name, used for format detection and logs.

    Returns:
        Table with headers and data rows.

    Raises:
        FatalParseError: If the blob is unreadable or has no data rows.
    """
    fmt = (format_hint or detect_format(raw, file_name)).lower()
    if fmt not in FORMATS:
        raise FatalParseError(f"Unsupported report format '{fmt}'")

    if fmt == CSV:
        df = _read_delimited(raw)
    else:
        df = _read_workbook(raw, fmt)

    grid = _to_grid(df)
    # Trailing blank rows/columns are common in exported sheets
    while grid and all(c is None for c in grid[-1]):
        grid.pop()
    if not grid:
        raise FatalParseError("Report has no rows")

    header_idx = detect_header_row(grid)
    header_cells = grid[header_idx]
    width = len(header_cells)
    while width and header_cells[width - 1] is None:
        width -= 1
    if width == 0:
        raise FatalParseError("Header row is empty")

    headers = [str(c) if c is not None else "" for c in header_cells[:width]]
    rows = []
    for row in grid[header_idx + 1 :]:
        cells = list(row[:width])
        if len(cells) < width:
            cells.extend([None] * (width - len(cells)))
        rows.append(cells)

    if not rows:
        raise FatalParseError("Report has a header row but no data rows")

    logger.debug(
        "Parsed %s report%s: header row %d, %d columns, %d rows",
        fmt,
        f" {file_name}" if file_name else "",
        header_idx,
        width,
        len(rows),
    )
    return Table(headers=headers, rows=rows, header_row=header_idx, source_format=fmt)

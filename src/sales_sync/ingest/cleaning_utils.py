"""Shared utilities for cleaning raw report cells.

This module provides the cell-level helpers used by the parser, column
resolver and record normalizer:

- Text normalization: strip invisible characters, remove accents
- Header normalization: lowercase alphanumerics for heuristic matching
- Amount parsing: strip currency symbols and separators
- Date parsing: the fixed format order used by every report vintage
- Security: neutralize formula injection in echoed text

Examples:
    >>> from sales_sync.ingest.cleaning_utils import to_amount, to_date, normalize_header
    >>> to_amount("HK$1,234.50")
    1234.5
    >>> to_date("2/13/26")
    datetime.date(2026, 2, 13)
    >>> normalize_header("Net sales (excl. gift card)")
    'netsalesexclgiftcard'
"""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from typing import Any, Optional

import numpy as np
import pandas as pd

# Unicode characters that should be stripped from text
NBSP = "\u00a0"  # Non-breaking space
NNBSP = "\u202f"  # Narrow non-breaking space
ZW = "".join(chr(c) for c in (0x200B, 0x200C, 0x200D, 0xFEFF))  # Zero-width characters

# Prefixes that could trigger formula injection in spreadsheets
DANGEROUS_PREFIXES = ("=", "+", "@")

# Everything that is not a digit, sign or decimal point
_NON_AMOUNT_RE = re.compile(r"[^0-9.\-]")
_AMOUNT_RE = re.compile(r"^-?(\d+\.?\d*|\.\d+)$")

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$")
_MDY_DASH_RE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")
_MDY_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")

# Excel serial day 0
EXCEL_EPOCH = date(1899, 12, 30)

_TRUE_WORDS = {"yes", "y", "true", "1", "subscribed", "opted in", "opt in", "accepted"}
_FALSE_WORDS = {"no", "n", "false", "0", "not subscribed", "unsubscribed", "opted out", "declined"}


def is_missing(x: Any) -> bool:
    """True for None, NaN/NaT and blank strings."""
    if x is None:
        return True
    if isinstance(x, float) and math.isnan(x):
        return True
    if x is pd.NaT:
        return True
    if isinstance(x, str) and not x.strip():
        return True
    return False


def strip_invisibles(x: Any) -> Optional[str]:
    """Remove invisible and problematic whitespace characters from text.

    Strips carriage returns, tabs, non-breaking and zero-width characters,
    then collapses runs of whitespace.

    Examples:
        >>> strip_invisibles("  Hello\\u00a0World  ")
        'Hello World'
        >>> strip_invisibles(None) is None
        True
    """
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return None
    s = str(x)
    s = s.replace("\r", "").replace("\t", " ").replace(NBSP, " ").replace(NNBSP, " ")
    s = re.sub(r"[%s]" % re.escape(ZW), "", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def neutralize(text: Any) -> Any:
    """Prevent formula injection by prefixing dangerous characters.

    A leading minus is left alone because negative amounts start with it.

    Examples:
        >>> neutralize("=SUM(A1:A10)")
        "'=SUM(A1:A10)"
        >>> neutralize("-12.50")
        '-12.50'
    """
    if text is None or (isinstance(text, float) and pd.isna(text)):
        return text
    s = str(text)
    return "'" + s if s.startswith(DANGEROUS_PREFIXES) else s


def remove_accents(s: str) -> str:
    """Remove accents and diacritics from a string.

    Examples:
        >>> remove_accents("Operación")
        'Operacion'
    """
    return "".join(c for c in unicodedata.normalize("NFD", s) if unicodedata.category(c) != "Mn")


def normalize_header(s: Any) -> str:
    """Normalize a header for matching: lowercase, alphanumerics only.

    Examples:
        >>> normalize_header("Order Date")
        'orderdate'
        >>> normalize_header("  Location_Name ")
        'locationname'
    """
    base = strip_invisibles(s) or ""
    base = remove_accents(base).lower()
    return re.sub(r"[^a-z0-9]", "", base)


def to_text(x: Any) -> Optional[str]:
    """Cell value as cleaned text, None for blanks."""
    if is_missing(x):
        return None
    if isinstance(x, float) and x.is_integer():
        # Excel stores order numbers as floats
        x = int(x)
    s = strip_invisibles(x)
    return s or None


def clean_reference(x: Any) -> Optional[str]:
    """Order reference as text, without the ``.0`` suffix workbooks add.

    Examples:
        >>> clean_reference(1042.0)
        '1042'
        >>> clean_reference("#1042.0")
        '#1042'
    """
    s = to_text(x)
    if s is None:
        return None
    return re.sub(r"\.0$", "", s)


def to_amount(x: Any) -> Optional[float]:
    """Parse a currency amount.

    Native numbers are used as-is. Text has every character that is not a
    digit, sign or decimal point stripped; an empty or non-numeric result
    gives None.

    Examples:
        >>> to_amount("$1,234.567")
        1234.57
        >>> to_amount("-12")
        -12.0
        >>> to_amount("") is None
        True
        >>> to_amount("n/a") is None
        True
    """
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float, np.integer, np.floating)):
        v = float(x)
        if math.isnan(v) or math.isinf(v):
            return None
        return round(v, 2)
    s = strip_invisibles(x)
    if not s:
        return None
    neg = s.startswith("(") and s.endswith(")")
    s = _NON_AMOUNT_RE.sub("", s)
    if not _AMOUNT_RE.match(s):
        return None
    v = float(s)
    return round(-v if neg else v, 2)


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def to_date(val: Any) -> Optional[date]:
    """Parse an order date from any report vintage.

    Attempts, in order:
    1. Native date/datetime/Timestamp cells (workbooks)
    2. Excel serial day numbers
    3. ISO: YYYY-MM-DD, optionally followed by a time
    4. MM-DD-YYYY
    5. M/D/YYYY or M/D/YY (two-digit years are 20YY)
    6. Generic text parse

    Returns:
        Parsed date or None if parsing fails.

    Examples:
        >>> to_date("02-13-2026") == to_date("2/13/26") == to_date("2026-02-13")
        True
        >>> to_date("not a date") is None
        True
    """
    if is_missing(val) or isinstance(val, bool):
        return None
    if isinstance(val, pd.Timestamp):
        return val.date()
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    if isinstance(val, np.datetime64):
        ts = pd.to_datetime(val, errors="coerce")
        return None if pd.isna(ts) else ts.date()
    if isinstance(val, (int, float, np.integer, np.floating)):
        serial = float(val)
        if math.isnan(serial) or serial <= 0:
            return None
        return EXCEL_EPOCH + timedelta(days=int(serial))

    s = strip_invisibles(val) or ""

    # A format match with impossible parts (e.g. month 13) falls through
    # to the generic parse below
    m = _ISO_RE.match(s)
    parsed = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3))) if m else None
    if parsed:
        return parsed

    m = _MDY_DASH_RE.match(s)
    parsed = _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2))) if m else None
    if parsed:
        return parsed

    m = _MDY_SLASH_RE.match(s)
    if m:
        year = int(m.group(3))
        if len(m.group(3)) == 2:
            year += 2000
        parsed = _safe_date(year, int(m.group(1)), int(m.group(2)))
        if parsed:
            return parsed

    try:
        ts = pd.to_datetime(s, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts.date()


def to_flag(x: Any) -> Optional[bool]:
    """Parse a yes/no style marketing cell.

    Examples:
        >>> to_flag("Yes")
        True
        >>> to_flag("not subscribed")
        False
        >>> to_flag("") is None
        True
    """
    s = to_text(x)
    if s is None:
        return None
    s = s.lower()
    if s in _TRUE_WORDS:
        return True
    if s in _FALSE_WORDS:
        return False
    return None

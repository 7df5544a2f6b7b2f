"""Normalization functions for shift-schedule ingestion.

Cell values arrive already decoded from the source workbook: text, numbers,
native dates/datetimes, booleans or empty.  Every function here accepts such a
value (or None) and returns the normalized type or None when the value is
empty or cannot be interpreted.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

# Day 1 of the 1900 spreadsheet date system.
_SERIAL_EPOCH = date(1900, 1, 1)
# Last serial before the phantom 1900-02-29 (serial 60).
_SERIAL_LEAP_BUG = 59

_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M %p",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%d %b %Y",
    "%d %B %Y",
    "%a %b %d %Y",
    "%A, %B %d, %Y",
)

_TRUE_TOKENS = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_TOKENS = frozenset({"false", "f", "no", "n", "0"})

_LEADING_DIGITS = re.compile(r"\s*([0-9]+)")
_ALL_DIGITS = re.compile(r"[0-9]+")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: cell_text
# ---------------------------------------------------------------------------

def cell_text(value: Any) -> str | None:
    """Stringify a decoded cell and trim it.

    Integral floats lose their trailing '.0' (spreadsheet numbers are floats),
    dates render as ISO-8601.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            return str(int(value))
        return trim(repr(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return trim(str(value))


# ---------------------------------------------------------------------------
# Rule 3: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: Any) -> str | None:
    """Cell text with internal whitespace runs collapsed to one space.

    Used for natural-key text so 'Jane  Doe' and 'Jane Doe' are one employee.
    """
    v = cell_text(value)
    if v is None:
        return None
    return " ".join(v.split())


# ---------------------------------------------------------------------------
# Rule 4: parse_numeric
# ---------------------------------------------------------------------------

def parse_numeric(value: Any) -> Decimal | None:
    """Parse a decimal number from a cell, returning None on failure."""
    v = cell_text(value)
    if v is None:
        return None
    try:
        result = Decimal(v)
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


# ---------------------------------------------------------------------------
# Rule 5: parse_bool
# ---------------------------------------------------------------------------

def parse_bool(value: Any, default: bool = True) -> bool:
    """Interpret yes/no style cells; anything else yields the default."""
    v = cell_text(value)
    if v is None:
        return default
    token = v.lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return default


# ---------------------------------------------------------------------------
# Rule 6: spreadsheet serial dates
# ---------------------------------------------------------------------------

def serial_to_date(serial: int) -> date | None:
    """Convert a 1900-system spreadsheet serial day count to a date.

    Serial 1 is 1900-01-01.  The 1900 system counts a 1900-02-29 that never
    existed (serial 60), so every serial above 59 is one day ahead of the
    true calendar and is pulled back by one.  Serial 60 therefore lands on
    1900-02-28, the same day as serial 59.
    """
    if serial < 0:
        return None
    try:
        result = _SERIAL_EPOCH + timedelta(days=serial - 1)
        if serial > _SERIAL_LEAP_BUG:
            result -= timedelta(days=1)
    except OverflowError:
        return None
    return result


def date_to_serial(value: date) -> int:
    """Inverse of serial_to_date for every serial except the phantom 60."""
    if isinstance(value, datetime):
        value = value.date()
    serial = (value - _SERIAL_EPOCH).days + 1
    if serial > _SERIAL_LEAP_BUG:
        serial += 1
    return serial


# ---------------------------------------------------------------------------
# Rule 7: parse_date
# ---------------------------------------------------------------------------

def _digits_to_int(digits: str) -> int | None:
    # int() refuses digit strings beyond sys.get_int_max_str_digits().
    try:
        return int(digits)
    except ValueError:
        return None


def _parse_date_text(v: str) -> date | None:
    try:
        return datetime.fromisoformat(v).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


def parse_date(value: Any) -> date | None:
    """Return the calendar date of a cell, or None when unparseable.

    Resolution order:
      1. native date/datetime → its date component (time of day dropped)
      2. numeric cell → serial day count (fractional part is time of day)
      3. ASCII all-digit text → serial day count; when that is out of range
         ('20250701'), the text formats below are tried instead
      4. date text (ISO-8601 or a common US/English format)
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if value != value or value < 0:
            return None
        try:
            return serial_to_date(int(value))
        except OverflowError:
            return None
    v = cell_text(value)
    if v is None:
        return None
    if _ALL_DIGITS.fullmatch(v):
        serial = _digits_to_int(v)
        result = serial_to_date(serial) if serial is not None else None
        if result is not None:
            return result
    return _parse_date_text(v)


# ---------------------------------------------------------------------------
# Rule 8: parse_store_number
# ---------------------------------------------------------------------------

def parse_store_number(value: Any) -> int | None:
    """Extract a store number from a bare number or a 'number - label' cell.

    '79 - Syracuse (Electronics Pkwy)' → 79.  Without the ' - ' separator,
    every non-digit character is dropped ('Store #0412' → 412).  Zero is not
    a store number.
    """
    v = cell_text(value)
    if v is None:
        return None
    if " - " in v:
        m = _LEADING_DIGITS.match(v.split(" - ", 1)[0])
        digits = m.group(1) if m else ""
    else:
        digits = re.sub(r"[^0-9]", "", v)
    if not digits:
        return None
    number = _digits_to_int(digits)
    if number is None or number <= 0:
        return None
    return number

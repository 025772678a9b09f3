"""Cell value normalization shared by the scripts and claims parsers.

Spreadsheet and CSV cells arrive as strings, numbers, datetimes or blanks.
These helpers coerce them into Python values. Where a value cannot be
coerced, the trimmed raw text is returned instead of None so that the
validators can report the bad value against its field.
"""

import math
import numbers
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

# Excel's day zero; serial 1 is 1900-01-01 once the 1900 leap-year bug is absorbed
EXCEL_EPOCH = date(1899, 12, 30)
MAX_EXCEL_SERIAL = 2958465  # 9999-12-31

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ][\d:.]+(?:Z|[+-]\d{2}:?\d{2})?)?$")
_NON_DIGITS = re.compile(r"\D")


def is_blank(value: Any) -> bool:
    """Check for None, NaN, or whitespace-only text."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def to_text(value: Any) -> str | None:
    """Convert a cell to trimmed text.

    Whole-number floats (how spreadsheets often store identifiers) lose their
    trailing ``.0``.
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip() or None


def to_number(value: Any) -> Any:
    """Convert a cell to int or float.

    Returns:
        int or float when the cell is numeric, None when blank, and the
        trimmed raw text when it is not a number.
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return int(value) if isinstance(value, float) and value.is_integer() else value
    if isinstance(value, Decimal):
        return float(value)

    text = str(value).strip().replace(",", "")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return str(value).strip()
    if math.isnan(number) or math.isinf(number):
        return str(value).strip()
    return int(number) if number.is_integer() else number


def parse_currency(value: Any) -> Any:
    """Convert a currency cell to Decimal.

    Handles ``$``, thousands separators, whitespace, and accounting-style
    negatives such as ``(123.45)``.

    Returns:
        Decimal amount, None when blank, or the raw text when unparsable.
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))

    cleaned = re.sub(r"[$,\s]", "", str(value))
    match = re.fullmatch(r"\((.+)\)", cleaned)
    if match:
        cleaned = f"-{match.group(1)}"
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return str(value).strip()
    if not amount.is_finite():
        return str(value).strip()
    return amount


def to_bool(value: Any) -> bool:
    """Convert Yes/No, True/False, 1/0 cells to bool. Blank is False."""
    if is_blank(value):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in {"yes", "y", "true", "1"}


def excel_serial_to_date(serial: float) -> date | None:
    """Convert an Excel serial day number to a date."""
    if not 0 < serial <= MAX_EXCEL_SERIAL:
        return None
    return EXCEL_EPOCH + timedelta(days=int(serial))


def parse_date(value: Any) -> date | None:
    """Read a cell as a calendar date.

    Accepts datetime/date objects (including pandas Timestamps), Excel serial
    numbers, ISO ``YYYY-MM-DD`` text (optionally with a time part) and US
    ``MM/DD/YYYY`` text.

    Returns:
        The date, or None if the cell is blank or not a recognizable date.
    """
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        return excel_serial_to_date(float(value))

    text = str(value).strip()
    try:
        us_match = _US_DATE.match(text)
        if us_match:
            month, day, year = (int(part) for part in us_match.groups())
            return date(year, month, day)
        iso_match = _ISO_DATE.match(text)
        if iso_match:
            year, month, day = (int(part) for part in iso_match.groups())
            return date(year, month, day)
    except ValueError:
        # Matched the shape but not a real calendar day, e.g. 02/30/2024
        return None
    return None


def coerce_date(value: Any) -> Any:
    """Convert a cell to a date, keeping unreadable text for the validator."""
    if is_blank(value):
        return None
    parsed = parse_date(value)
    if parsed is not None:
        return parsed
    return str(value).strip()


def digits_only(value: Any) -> str:
    """Strip everything but digits from a cell's text."""
    text = to_text(value)
    if text is None:
        return ""
    return _NON_DIGITS.sub("", text)


def normalize_ndc(value: Any) -> str | None:
    """Normalize an NDC to 11 digits, restoring dropped leading zeros.

    Hyphenated 4-4-2 / 5-3-2 / 5-4-1 forms and numerically stored codes are
    all reduced to digits and left-padded. Codes longer than 11 digits are
    returned unchanged so they stay visibly wrong.

    Returns:
        11-digit NDC string, or None if the cell holds no digits.
    """
    cleaned = digits_only(value)
    if not cleaned:
        return None
    return cleaned.zfill(11)

"""
Cell-level value parsing: dates, amounts and currencies.

The date routine here is the single source of truth for turning a cell
into a calendar date. It is used by the deterministic parser and by date
recovery in post-processing, so both paths agree on every input.

Known limitation: for ``P1/P2/P3`` dates where both leading parts are
<= 12 there is no signal in the value itself, and month-first is assumed.
"""

import math
import re
from datetime import date, datetime, timedelta
from typing import Optional

import pandas as pd

from .models import Cell, DateValue, Number, Text

# Spreadsheet serial day 0 (the 1900 leap-year bug is absorbed by this epoch)
EXCEL_EPOCH = date(1899, 12, 30)
MAX_EXCEL_SERIAL = 2958465  # 9999-12-31

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_YMD_RE = re.compile(r"^(\d{4})[/.\-](\d{1,2})[/.\-](\d{1,2})$")
_PARTS_RE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4}|\d{2})$")
_TRAILING_TIME_RE = re.compile(
    r",?(?:T|\s)+\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?\s*(?:[AaPp][Mm])?"
    r"\s*(?:Z|[+\-]\d{2}:?\d{2})?$"
)
_ORDINAL_RE = re.compile(r"(\d)(st|nd|rd|th)\b", re.IGNORECASE)
_MONTH_NAME_RE = re.compile(
    r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\b",
    re.IGNORECASE,
)

CALENDAR_FORMATS = [
    "%d %b %Y",
    "%d %B %Y",
    "%d %b %y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%d %b, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%a, %d %b %Y",
    "%A, %B %d, %Y",
]

_PAREN_RE = re.compile(r"^\((.*)\)$")
_DASHES_RE = re.compile("[−‒–—]")
_MARKER_RE = re.compile(r"\s*\b(CR|DR)\.?\s*$", re.IGNORECASE)
_TRAILING_MINUS_RE = re.compile(r"^(.*\d)\s*-$")
_AMOUNT_CHARS_RE = re.compile(r"[^0-9.,\-]")

_CURRENCY_CODES = ("USD", "CAD", "EUR", "GBP", "INR", "JPY", "AUD")
# Prefixed dollars first so "C$" is not read as USD
_CURRENCY_SYMBOLS = (
    ("CAD", re.compile(r"C\$")),
    ("AUD", re.compile(r"A\$")),
    ("USD", re.compile(r"\$")),
    ("EUR", re.compile("€")),
    ("GBP", re.compile("£")),
    ("INR", re.compile("₹")),
    ("JPY", re.compile("¥")),
)


def cell_to_text(cell: Cell) -> str:
    """Render a cell the way it would read in the source sheet."""
    if isinstance(cell, Text):
        return cell.value.strip()
    if isinstance(cell, Number):
        value = cell.value
        if not math.isfinite(value):
            return ""
        if float(value).is_integer() and abs(value) < 1e15:
            return str(int(value))
        return repr(float(value))
    if isinstance(cell, DateValue):
        return cell.value.isoformat()
    return ""


# ---------------------------------------------------------------- dates


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def iso_to_date(text: Optional[str]) -> Optional[date]:
    """Strict ISO ``YYYY-MM-DD`` validation; anything else is None."""
    if not isinstance(text, str):
        return None
    match = _ISO_RE.match(text.strip())
    if not match:
        return None
    return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def is_iso_date(text: Optional[str]) -> bool:
    return iso_to_date(text) is not None


def format_date(value: date) -> str:
    return value.isoformat()


def date_from_serial(value: float) -> Optional[date]:
    """Convert a spreadsheet serial day count to a calendar date."""
    if not math.isfinite(value) or value < 1 or value > MAX_EXCEL_SERIAL:
        return None
    return EXCEL_EPOCH + timedelta(days=int(value))


def _from_parts(first: str, second: str, year_text: str) -> Optional[date]:
    a, b = int(first), int(second)
    year = int(year_text)
    if len(year_text) == 2:
        year += 2000
    if a > 12:
        day, month = a, b
    elif b > 12:
        month, day = a, b
    else:
        # Ambiguous: month-first by default
        month, day = a, b
    return _safe_date(year, month, day)


def _parse_calendar_text(text: str) -> Optional[date]:
    if not _MONTH_NAME_RE.search(text):
        return None
    cleaned = _ORDINAL_RE.sub(r"\1", text)
    cleaned = re.sub(r"\s+", " ", cleaned).strip().rstrip(",")

    for fmt in CALENDAR_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    # Only hand full dates to pandas, it happily fills in a missing day
    if not (re.search(r"\b\d{4}\b", cleaned) and re.search(r"\b\d{1,2}\b", cleaned)):
        return None
    try:
        parsed = pd.to_datetime(cleaned, errors="coerce")
    except (ValueError, OverflowError, TypeError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def parse_date_text(raw: str) -> Optional[date]:
    text = raw.strip()
    if not text:
        return None

    iso = iso_to_date(text)
    if iso:
        return iso

    text = _TRAILING_TIME_RE.sub("", text).strip()
    iso = iso_to_date(text)
    if iso:
        return iso

    match = _YMD_RE.match(text)
    if match:
        return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = _PARTS_RE.match(text)
    if match:
        return _from_parts(match.group(1), match.group(2), match.group(3))

    return _parse_calendar_text(text)


def parse_date(cell: Cell) -> Optional[date]:
    """Resolve a cell to a calendar date, or None.

    Order: native date, spreadsheet serial, ISO text, P1/P2/P3 text with
    day/month disambiguation, generic calendar text.
    """
    if isinstance(cell, DateValue):
        return cell.value
    if isinstance(cell, Number):
        return date_from_serial(cell.value)
    if isinstance(cell, Text):
        return parse_date_text(cell.value)
    return None


# -------------------------------------------------------------- amounts


def parse_amount_text(raw: str) -> Optional[float]:
    """Parse a monetary string such as ``(1,234.50)`` or ``INR 299.00``."""
    text = raw.strip()
    if not text:
        return None

    negative = False
    paren = _PAREN_RE.match(text)
    if paren:
        negative = True
        text = paren.group(1).strip()

    text = _DASHES_RE.sub("-", text)

    marker = None
    marker_match = _MARKER_RE.search(text)
    if marker_match:
        marker = marker_match.group(1).upper()
        text = text[: marker_match.start()]

    trailing = _TRAILING_MINUS_RE.match(text.strip())
    if trailing:
        negative = True
        text = trailing.group(1)

    cleaned = _AMOUNT_CHARS_RE.sub("", text)
    if "," in cleaned:
        last_comma, last_dot = cleaned.rfind(","), cleaned.rfind(".")
        if last_dot == -1 and cleaned.count(",") == 1 and re.search(r",\d{2}$", cleaned):
            cleaned = cleaned.replace(",", ".")
        elif last_dot != -1 and last_comma > last_dot:
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")

    try:
        number = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None

    if negative and number > 0:
        number = -number
    if marker == "CR":
        number = -abs(number)
    elif marker == "DR":
        number = abs(number)
    return number


def parse_amount(cell: Cell) -> Optional[float]:
    if isinstance(cell, Number):
        return cell.value if math.isfinite(cell.value) else None
    if isinstance(cell, Text):
        return parse_amount_text(cell.value)
    return None


def coerce_amount(value) -> Optional[float]:
    """Amount from a provider payload: a JSON number or a string."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        return parse_amount_text(value)
    return None


# ------------------------------------------------------------ currency


def detect_currency(text: Optional[str]) -> Optional[str]:
    """Find a currency code or symbol embedded in free text."""
    if not text:
        return None
    upper = text.upper()
    for code in _CURRENCY_CODES:
        if re.search(rf"\b{code}\b", upper):
            return code
    for code, pattern in _CURRENCY_SYMBOLS:
        if pattern.search(text):
            return code
    return None


def normalize_currency(value: Optional[str]) -> Optional[str]:
    """Upper-case a 3-letter code, or fall back to symbol detection."""
    if not value:
        return None
    candidate = value.strip().upper()
    if re.fullmatch(r"[A-Z]{3}", candidate):
        return candidate
    return detect_currency(value)

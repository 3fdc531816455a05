"""
Tabular reader: raw upload bytes -> RawGrid.

Handles OOXML workbooks (.xlsx/.xlsm), legacy .xls, password-protected
workbooks wrapped in an OLE2 container, and delimited text of unknown
encoding and delimiter. Every cell is coerced exactly once into the
Cell union; downstream stages never see pandas or raw workbook values.
"""

import csv
import io
import math
import numbers
from datetime import date, datetime, time
from pathlib import Path
from typing import List, Optional, Tuple

import msoffcrypto
import numpy as np
import pandas as pd
import structlog
from msoffcrypto.exceptions import DecryptionError, FileFormatError, InvalidKeyError

from .errors import EmptyFile, UnreadableFile
from .models import EMPTY, Cell, DateValue, Empty, Number, RawGrid, Text

logger = structlog.get_logger()

_ZIP_MAGIC = b"PK\x03\x04"
# OLE2 Compound Document magic bytes: legacy .xls, or an encrypted OOXML wrapper
_OLE2_MAGIC = b"\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1"
_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")

CSV_ENCODINGS = ["utf-8-sig", "utf-8", "cp1252", "latin-1"]
CSV_DELIMITERS = ",;\t|"

XLSX_EXTENSIONS = {".xlsx", ".xlsm"}
XLS_EXTENSIONS = {".xls"}
TEXT_EXTENSIONS = {".csv", ".tsv", ".txt"}
SUPPORTED_EXTENSIONS = XLSX_EXTENSIONS | XLS_EXTENSIONS | TEXT_EXTENSIONS

FORMAT_XLSX = "xlsx"
FORMAT_OLE2 = "ole2"
FORMAT_TEXT = "text"


def _extension(filename: Optional[str]) -> str:
    return Path(filename).suffix.lower() if filename else ""


def detect_format(content: bytes, filename: Optional[str] = None) -> str:
    """Magic bytes first, then the file extension, else delimited text."""
    if content.startswith(_ZIP_MAGIC):
        return FORMAT_XLSX
    if content[:8] == _OLE2_MAGIC:
        return FORMAT_OLE2

    ext = _extension(filename)
    if ext in XLSX_EXTENSIONS:
        return FORMAT_XLSX
    if ext in XLS_EXTENSIONS:
        return FORMAT_OLE2
    return FORMAT_TEXT


# ---------------------------------------------------------------- cells


def to_cell(value) -> Cell:
    """Coerce one raw workbook/CSV value into the Cell union."""
    if value is None or value is pd.NaT:
        return EMPTY
    if isinstance(value, (bool, np.bool_)):
        return Text("TRUE" if value else "FALSE")
    if isinstance(value, (pd.Timestamp, datetime)):
        return DateValue(value.date())
    if isinstance(value, date):
        return DateValue(value)
    if isinstance(value, time):
        return Text(value.isoformat())
    if isinstance(value, numbers.Real):
        number = float(value)
        return Number(number) if math.isfinite(number) else EMPTY
    text = str(value).strip()
    return Text(text) if text else EMPTY


def _frame_to_grid(df: pd.DataFrame) -> RawGrid:
    rows: List[Tuple[Cell, ...]] = []
    for values in df.itertuples(index=False, name=None):
        cells = [to_cell(v) for v in values]
        while cells and isinstance(cells[-1], Empty):
            cells.pop()
        if cells:
            rows.append(tuple(cells))

    if not rows:
        raise EmptyFile("No rows found in the uploaded file")
    return RawGrid(tuple(rows))


# --------------------------------------------------------- spreadsheets


def _unwrap_ole2(content: bytes, password: Optional[str]) -> io.BytesIO:
    """Return a readable workbook stream, decrypting when needed."""
    try:
        office_file = msoffcrypto.OfficeFile(io.BytesIO(content))
        encrypted = office_file.is_encrypted()
    except (FileFormatError, OSError, ValueError) as e:
        raise UnreadableFile("Could not read the uploaded workbook") from e

    if not encrypted:
        return io.BytesIO(content)

    if not password:
        raise UnreadableFile("This workbook is password-protected. Password required")

    decrypted_workbook = io.BytesIO()
    try:
        office_file.load_key(password=password)
        office_file.decrypt(decrypted_workbook)
    except (InvalidKeyError, DecryptionError) as e:
        raise UnreadableFile("Invalid password for the protected workbook") from e
    except (FileFormatError, OSError, ValueError) as e:
        raise UnreadableFile("Failed to decrypt the uploaded workbook") from e

    decrypted_workbook.seek(0)
    return decrypted_workbook


def _read_workbook(stream: io.BytesIO) -> RawGrid:
    engine = "openpyxl" if stream.getvalue().startswith(_ZIP_MAGIC) else "xlrd"
    try:
        workbook = pd.ExcelFile(stream, engine=engine)
    except Exception as e:
        raise UnreadableFile("Could not read the uploaded workbook") from e

    with workbook:
        if not workbook.sheet_names:
            raise EmptyFile("The workbook has no sheets")
        try:
            df = workbook.parse(workbook.sheet_names[0], header=None, dtype=object)
        except Exception as e:
            raise UnreadableFile("Could not read the first sheet of the workbook") from e

    return _frame_to_grid(df)


# ------------------------------------------------------- delimited text


def _decode_text(content: bytes) -> str:
    if content.startswith(_UTF16_BOMS):
        try:
            return content.decode("utf-16")
        except UnicodeDecodeError as e:
            raise UnreadableFile("Could not decode the uploaded text file") from e

    for encoding in CSV_ENCODINGS:
        try:
            text = content.decode(encoding)
            break
        except UnicodeDecodeError:
            continue
    else:
        raise UnreadableFile("Could not decode the uploaded text file")

    if "\x00" in text:
        raise UnreadableFile("File does not look like a spreadsheet or delimited text")
    return text


def _sniff_delimiter(text: str, filename: Optional[str]) -> str:
    if _extension(filename) == ".tsv":
        return "\t"

    sample = "\n".join(text.splitlines()[:50])
    try:
        return csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS).delimiter
    except csv.Error:
        counts = {d: sample.count(d) for d in CSV_DELIMITERS}
        best = max(counts, key=counts.get)
        return best if counts[best] else ","


def _read_delimited(content: bytes, filename: Optional[str]) -> RawGrid:
    text = _decode_text(content)
    if not text.strip():
        raise EmptyFile("The uploaded file is empty")

    delimiter = _sniff_delimiter(text, filename)
    try:
        width = max(
            (len(r) for r in csv.reader(io.StringIO(text), delimiter=delimiter)),
            default=0,
        )
    except csv.Error as e:
        raise UnreadableFile("Could not parse the uploaded delimited file") from e
    if width == 0:
        raise EmptyFile("No rows found in the uploaded file")

    # Ragged rows are padded to the widest row
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        raise EmptyFile("No rows found in the uploaded file") from e
    except (pd.errors.ParserError, ValueError) as e:
        raise UnreadableFile("Could not parse the uploaded delimited file") from e

    return _frame_to_grid(df)


def read_grid(
    content: bytes, filename: Optional[str] = None, password: Optional[str] = None
) -> RawGrid:
    """
    Decode an uploaded statement into a RawGrid (first sheet only).

    Raises:
        EmptyFile: zero bytes, no sheets, or no non-blank rows.
        UnreadableFile: undecodable, corrupt, or locked without a valid password.
    """
    if not content:
        raise EmptyFile("The uploaded file is empty")

    file_format = detect_format(content, filename)
    if file_format == FORMAT_TEXT:
        grid = _read_delimited(content, filename)
    elif file_format == FORMAT_OLE2:
        grid = _read_workbook(_unwrap_ole2(content, password))
    else:
        grid = _read_workbook(io.BytesIO(content))

    logger.info("statement_read", format=file_format, rows=len(grid))
    return grid

"""
Spreadsheet reader for asset uploads.

Reads .xlsx, .xls, and .csv files into a header plus a list of row dicts.
No column interpretation happens here; the import schema in asset_import
decides what each column means.

Public API:
  read_table(file_content, filename) -> Table
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ParseError(Exception):
    """Raised when a file cannot be parsed."""
    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class TableRow:
    """One data row: its 1-based line in the spreadsheet and its cells by header."""
    line: int
    values: dict[str, str]


@dataclass
class Table:
    """Result of read_table()."""
    columns: list[str]
    header_line: int = 1
    rows: list[TableRow] = field(default_factory=list)
    sheet_name: str = "Sheet1"


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUPPORTED_EXTENSIONS = {".xlsx", ".xls", ".csv"}

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10 MB

_CSV_ENCODINGS = ["utf-8-sig", "utf-8", "windows-1252", "latin-1"]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _get_extension(filename: str) -> str:
    """Return lower-case file extension including the dot."""
    dot = filename.rfind(".")
    if dot == -1:
        return ""
    return filename[dot:].lower()


def _row_is_all_empty(row_cells: list) -> bool:
    """Return True if all cells in the row are None or empty string."""
    return all(
        cell is None or str(cell).strip() == ""
        for cell in row_cells
    )


def _cell_to_str(value) -> str:
    """
    Convert a cell value to its string representation.

    Whole floats lose their ".0" so serial numbers typed as numbers in Excel
    ("12345.0") compare equal to the same serial in a CSV ("12345").
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


# ---------------------------------------------------------------------------
# CSV parsing
# ---------------------------------------------------------------------------

def _parse_csv_bytes(file_content: bytes) -> tuple[list[list], str]:
    """
    Parse CSV bytes with encoding fallback.
    Returns (list_of_rows, encoding_used).
    """
    for encoding in _CSV_ENCODINGS:
        try:
            text = file_content.decode(encoding)
        except UnicodeDecodeError:
            continue
        try:
            rows = [row for row in csv.reader(io.StringIO(text))]
        except csv.Error as e:
            raise ParseError(f"Could not parse csv file: {e}", "parse_failed")
        return rows, encoding

    raise ParseError(
        "CSV file could not be decoded with any supported encoding",
        "parse_failed",
    )


# ---------------------------------------------------------------------------
# xlsx parsing
# ---------------------------------------------------------------------------

def _parse_xlsx_bytes(file_content: bytes) -> tuple[list[list], str]:
    """
    Parse the first worksheet of an xlsx file.
    Returns (rows, sheet_name).
    """
    import openpyxl

    try:
        wb = openpyxl.load_workbook(
            io.BytesIO(file_content),
            data_only=True,
            read_only=True,
        )
    except Exception as e:
        raise ParseError(f"Could not parse xlsx file: {e}", "parse_failed")

    try:
        ws = wb.worksheets[0]
        rows = [list(row) for row in ws.iter_rows(values_only=True)]
        return rows, ws.title
    finally:
        wb.close()


# ---------------------------------------------------------------------------
# xls parsing
# ---------------------------------------------------------------------------

def _parse_xls_bytes(file_content: bytes) -> tuple[list[list], str]:
    """
    Parse the first sheet of a legacy xls file using xlrd.
    Returns (rows, sheet_name).
    """
    import xlrd

    try:
        wb = xlrd.open_workbook(file_contents=file_content)
    except Exception as e:
        raise ParseError(f"Could not parse xls file: {e}", "parse_failed")

    ws = wb.sheet_by_index(0)
    rows = []
    for row_idx in range(ws.nrows):
        row = []
        for col_idx in range(ws.ncols):
            cell = ws.cell(row_idx, col_idx)
            if cell.ctype == xlrd.XL_CELL_EMPTY:
                row.append(None)
            elif cell.ctype == xlrd.XL_CELL_DATE:
                row.append(xlrd.xldate.xldate_as_datetime(cell.value, wb.datemode))
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                row.append(bool(cell.value))
            else:
                row.append(cell.value)
        rows.append(row)

    return rows, ws.name


# ---------------------------------------------------------------------------
# Core read_table
# ---------------------------------------------------------------------------

def read_table(file_content: bytes, filename: str) -> Table:
    """
    Read an uploaded spreadsheet into a header and row dicts.

    The first non-empty row is the header.  Fully empty rows are skipped but
    line numbers still count them, so error reports point at the line the
    administrator sees in their spreadsheet program.

    Raises:
        ParseError: unsupported type, oversized, unreadable, or empty file.
    """
    ext = _get_extension(filename)

    if ext not in SUPPORTED_EXTENSIONS:
        raise ParseError(
            f"Unsupported file type '{ext}'. Upload a .xlsx, .xls, or .csv file.",
            "unsupported_file_type",
        )

    if len(file_content) > MAX_FILE_SIZE_BYTES:
        raise ParseError("File exceeds the 10 MB upload limit", "file_too_large")

    if ext == ".xlsx":
        raw_rows, sheet_name = _parse_xlsx_bytes(file_content)
    elif ext == ".xls":
        raw_rows, sheet_name = _parse_xls_bytes(file_content)
    else:  # .csv
        raw_rows, encoding = _parse_csv_bytes(file_content)
        logger.debug(f"Decoded {filename} as {encoding}")
        sheet_name = "Sheet1"

    header_idx = next(
        (i for i, row in enumerate(raw_rows) if not _row_is_all_empty(row)),
        None,
    )
    if header_idx is None:
        raise ParseError("File is empty", "empty_file")

    columns = [_cell_to_str(cell) for cell in raw_rows[header_idx]]

    rows: list[TableRow] = []
    for offset, raw in enumerate(raw_rows[header_idx + 1:], start=header_idx + 2):
        if _row_is_all_empty(raw):
            continue
        values = {}
        for col_idx, name in enumerate(columns):
            if not name:
                continue
            cell = raw[col_idx] if col_idx < len(raw) else None
            values[name] = _cell_to_str(cell)
        rows.append(TableRow(line=offset, values=values))

    return Table(
        columns=[c for c in columns if c],
        header_line=header_idx + 1,
        rows=rows,
        sheet_name=sheet_name,
    )

# csv_parser.py
import csv
import io
import logging
import math
import re
import datetime as dt
from decimal import Decimal, InvalidOperation
from dateutil.parser import parse as dateutil_parse, ParserError as DateParserError
from typing import List, Dict, Optional, Any, Union, Tuple, Set

import openpyxl

from config import settings
from errors import ParseError
from models_pydantic import ColumnMapping

# --- Logging Setup ---
log = logging.getLogger('csv_parser')
log.setLevel(logging.DEBUG if settings.DEBUG_MODE else logging.INFO)
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(name)s:%(module)s:%(funcName)s:%(lineno)d] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)

# --- Constants ---
FILE_TYPE_CSV = 'csv'
FILE_TYPE_XLSX = 'xlsx'
DEFAULT_CATEGORY = 'Other'

# Spreadsheet serial day 0; carries the 1900 leap-year bug of legacy spreadsheets
SPREADSHEET_EPOCH = dt.datetime(1899, 12, 30)

CURRENCY_STRIP_RE = re.compile(r'[$₹€£,\s]')
ISO_PREFIX_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})')
US_SLASH_RE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
YEAR_RE = re.compile(r'(?<!\d)\d{4}(?!\d)')
# "March 2024" resolves to the 1st
PARTIAL_DATE_DEFAULT = dt.datetime(2000, 1, 1)

RawValue = Union[str, int, float, Decimal, dt.date, dt.datetime, dt.time, dt.timedelta, None]
RawRow = Dict[str, RawValue]

# (mapping field, record attribute) for the optional columns
OPTIONAL_FIELDS: Tuple[Tuple[str, str], ...] = (
    ('description', 'description'),
    ('category', 'category'),
    ('customer', 'customer_name'),
    ('currency', 'currency'),
    ('transaction_id', 'external_transaction_id'),
)


# --- Candidate Record Data Class ---
class CandidateIncomeRecord:
    def __init__(self, amount: Decimal, transaction_date: str, currency: str = 'USD',
                 description: Optional[str] = None, category: Optional[str] = None,
                 customer_name: Optional[str] = None, external_transaction_id: Optional[str] = None,
                 raw_data: Optional[Dict[str, Any]] = None, source_id: Optional[str] = None,
                 user_id: Optional[str] = None):
        self.amount = amount
        self.transaction_date = transaction_date
        self.currency = currency
        self.description = description
        self.category = category
        self.customer_name = customer_name
        self.external_transaction_id = external_transaction_id
        self.raw_data = raw_data
        self.source_id = source_id
        self.user_id = user_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            k: (str(v) if isinstance(v, Decimal) else v)
            for k, v in self.__dict__.items() if v is not None
        }

    def __repr__(self) -> str:
        return (f"CandidateIncomeRecord(amount={self.amount}, date={self.transaction_date}, "
                f"description={self.description!r})")


# --- Utility Functions ---
def allowed_file(filename: str, allowed_extensions: Optional[Set[str]] = None) -> bool:
    if allowed_extensions is None:
        allowed_extensions = settings.ALLOWED_EXTENSIONS
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed_extensions


def detect_file_type(filename: str) -> str:
    return FILE_TYPE_XLSX if filename.lower().endswith('.xlsx') else FILE_TYPE_CSV


def _is_empty(value: RawValue) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _cell_text(value: RawValue) -> str:
    """Render a cell as the text stored in optional record fields."""
    if isinstance(value, (dt.date, dt.datetime, dt.time)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        # Spreadsheets hand back ids like 10452 as 10452.0
        return str(int(value))
    return str(value).strip()


def _json_safe(row: RawRow) -> Dict[str, Any]:
    safe: Dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, (dt.date, dt.datetime, dt.time)):
            safe[key] = value.isoformat()
        elif isinstance(value, (Decimal, dt.timedelta)):
            # openpyxl yields timedelta for duration-formatted cells
            safe[key] = str(value)
        elif isinstance(value, float) and not math.isfinite(value):
            safe[key] = str(value)
        else:
            safe[key] = value
    return safe


def _unique_headers(raw_headers: List[Any]) -> List[str]:
    """Names blank headers __EMPTY, __EMPTY_1, ... and suffixes repeats with _1, _2, ..."""
    headers: List[str] = []
    seen: Dict[str, int] = {}
    for raw in raw_headers:
        name = '' if raw is None else str(raw)
        if not name.strip():
            name = '__EMPTY'
        base = name
        while name in seen:
            seen[base] += 1
            name = f"{base}_{seen[base]}"
        seen.setdefault(name, 0)
        headers.append(name)
    return headers


# --- Tabular Parser ---
def _decode_text(content: bytes) -> str:
    try:
        return content.decode('utf-8-sig')
    except UnicodeDecodeError:
        log.warning("UTF-8 decoding failed for uploaded file. Trying latin-1.")
        return content.decode('latin-1')


def _read_csv(content: bytes) -> Tuple[List[str], List[RawRow]]:
    text = _decode_text(content)
    reader = csv.reader(io.StringIO(text, newline=''), strict=True)
    headers: Optional[List[str]] = None
    rows: List[RawRow] = []
    try:
        for cells in reader:
            if all(not cell.strip() for cell in cells):
                continue
            if headers is None:
                headers = _unique_headers(cells)
                continue
            rows.append({header: (cells[i] if i < len(cells) else '') for i, header in enumerate(headers)})
    except csv.Error as e:
        log.warning(f"CSV tokenizer error at line {reader.line_num}: {e}")
        raise ParseError(f"CSV parsing error: {e} (line {reader.line_num})") from e

    if headers is None:
        raise ParseError("CSV file appears empty or has no header row.")
    return headers, rows


def _read_xlsx(content: bytes) -> Tuple[List[str], List[RawRow]]:
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        log.warning(f"Could not open workbook: {e}")
        raise ParseError(f"Excel parsing error: {e}") from e

    try:
        if not workbook.worksheets:
            raise ParseError("Excel file has no sheets")
        worksheet = workbook.worksheets[0]
        headers: Optional[List[str]] = None
        rows: List[RawRow] = []
        for values in worksheet.iter_rows(values_only=True):
            if all(_is_empty(v) for v in values):
                continue
            if headers is None:
                header_cells = list(values)
                while header_cells and _is_empty(header_cells[-1]):
                    header_cells.pop()
                headers = _unique_headers(header_cells)
                continue
            row: RawRow = {}
            for i, header in enumerate(headers):
                value = values[i] if i < len(values) else None
                row[header] = '' if value is None else value
            rows.append(row)
    except ParseError:
        raise
    except Exception as e:
        log.warning(f"Error while reading first worksheet: {e}")
        raise ParseError(f"Excel parsing error: {e}") from e
    finally:
        workbook.close()

    if headers is None or not rows:
        raise ParseError("Excel file is empty")
    return headers, rows


def read_table(content: bytes, file_type: str = FILE_TYPE_CSV) -> Tuple[List[str], List[RawRow]]:
    """Decodes an uploaded file into (headers, rows), keeping file order."""
    if file_type == FILE_TYPE_XLSX:
        return _read_xlsx(content)
    if file_type == FILE_TYPE_CSV:
        return _read_csv(content)
    raise ParseError(f"Unsupported file type: {file_type}")


def parse_rows(content: bytes, file_type: str = FILE_TYPE_CSV) -> List[RawRow]:
    _, rows = read_table(content, file_type)
    return rows


def parse_preview(content: bytes, preview_rows: int = 5, file_type: str = FILE_TYPE_CSV) -> Dict[str, Any]:
    headers, rows = read_table(content, file_type)
    sample = rows[:max(preview_rows, 0)]
    log.debug(f"Preview: {len(headers)} headers, {len(sample)} of {len(rows)} rows.")
    return {
        "headers": headers,
        "rows": [_json_safe(r) for r in sample],
        "totalRows": len(rows),
    }


# --- Field Normalizer ---
def normalize_amount(raw: RawValue) -> Optional[Decimal]:
    """
    Converts a raw amount cell to a finite Decimal.
    Strips $, ₹, €, £, thousands commas and whitespace from strings.
    Returns None when the value is not a number.
    """
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)):
        cleaned = str(raw)
    elif isinstance(raw, str):
        cleaned = CURRENCY_STRIP_RE.sub('', raw)
        if not cleaned:
            return None
    else:
        return None

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def _calendar_date(year: str, month: str, day: str) -> Optional[str]:
    try:
        return dt.date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def _serial_to_iso(serial: Union[int, float, Decimal]) -> Optional[str]:
    try:
        days = float(serial)
        if not math.isfinite(days):
            return None
        moment = SPREADSHEET_EPOCH + dt.timedelta(days=days)
    except (OverflowError, ValueError):
        return None
    return moment.date().isoformat()


def _utc_date(moment: dt.datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(dt.timezone.utc)
    return moment.date().isoformat()


def normalize_date(raw: RawValue) -> Optional[str]:
    """
    Converts a raw date cell to 'YYYY-MM-DD', or None when it cannot be read.

    Accepts native date/datetime values, spreadsheet serial numbers and strings.
    Strings are tried as an ISO prefix, then as M/D/YYYY (always month first),
    then with dateutil's generic parser. The generic parser needs a four-digit
    year; a missing day becomes the 1st.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, dt.datetime):
        return _utc_date(raw)
    if isinstance(raw, dt.date):
        return raw.isoformat()
    if isinstance(raw, (int, float, Decimal)):
        return _serial_to_iso(raw)
    if not isinstance(raw, str):
        return None

    cleaned = raw.strip()
    if not cleaned:
        return None

    iso_match = ISO_PREFIX_RE.match(cleaned)
    if iso_match:
        year, month, day = iso_match.groups()
        iso = _calendar_date(year, month, day)
        if iso:
            return iso

    us_match = US_SLASH_RE.match(cleaned)
    if us_match:
        month, day, year = us_match.groups()
        iso = _calendar_date(year, month, day)
        if iso:
            return iso

    # A missing day or month must not be filled from today's date
    if not YEAR_RE.search(cleaned):
        return None
    try:
        parsed = dateutil_parse(cleaned, dayfirst=False, default=PARTIAL_DATE_DEFAULT)
    except (DateParserError, ValueError, OverflowError, TypeError):
        return None
    return _utc_date(parsed)


# --- Record Builder ---
def build_records(rows: List[RawRow], mapping: ColumnMapping,
                  default_currency: Optional[str] = None) -> List[CandidateIncomeRecord]:
    """
    Applies a column mapping to parsed rows.
    Rows whose amount or date is missing or unreadable are skipped without error.
    """
    currency = default_currency or settings.DEFAULT_CURRENCY
    amount_col = mapping.amount
    date_col = mapping.date
    optional_cols = [
        (getattr(mapping, field), attr) for field, attr in OPTIONAL_FIELDS if getattr(mapping, field)
    ]

    records: List[CandidateIncomeRecord] = []
    skipped = 0
    for row_num, row in enumerate(rows, start=1):
        amount_raw = row.get(amount_col)
        date_raw = row.get(date_col)
        if _is_empty(amount_raw) or _is_empty(date_raw):
            log.debug(f"Row {row_num}: Skipping, empty amount ('{amount_raw}') or date ('{date_raw}').")
            skipped += 1
            continue

        amount = normalize_amount(amount_raw)
        if amount is None:
            log.debug(f"Row {row_num}: Skipping, unparseable amount '{amount_raw}'.")
            skipped += 1
            continue

        transaction_date = normalize_date(date_raw)
        if transaction_date is None:
            log.debug(f"Row {row_num}: Skipping, unparseable date '{date_raw}'.")
            skipped += 1
            continue

        record = CandidateIncomeRecord(amount=amount, transaction_date=transaction_date,
                                       currency=currency, raw_data=_json_safe(row))
        for header, attr in optional_cols:
            value = row.get(header)
            if not _is_empty(value):
                setattr(record, attr, _cell_text(value))
        records.append(record)

    log.info(f"Built {len(records)} candidate records from {len(rows)} rows ({skipped} skipped).")
    return records

"""Upload parsing for CSV and spreadsheet contact files"""
import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from openpyxl.utils import get_column_letter

from src.outreach_crm.services.import_types import (
    FILE_TYPE_CSV,
    FILE_TYPE_EXCEL,
    FileParseError,
    ParsedFileData,
    UnsupportedFileError,
)

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = {"csv"}
EXCEL_ENGINES = {"xlsx": "openpyxl", "xls": "xlrd"}
MIN_SPREADSHEET_COLUMNS = 26

CSV_ENCODINGS = ["utf-8-sig", "utf-8", "cp1252", "latin-1"]


def get_file_extension(file_name: str) -> str:
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].strip().lower()


def decode_csv_content(content: bytes) -> str:
    for encoding in CSV_ENCODINGS:
        try:
            return content.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    raise FileParseError("Unable to decode CSV file. Supported encodings: UTF-8, Windows-1252, Latin-1")


def fallback_header(index: int) -> str:
    return f"Column {get_column_letter(index + 1)}"


def dedupe_headers(raw_headers: List[Optional[str]]) -> List[str]:
    """Fill blank header cells and make repeated names unique.

    Blank cells become ``Column A``-style names so data-bearing columns
    are never dropped; a repeated name gets a `` (2)``, `` (3)`` suffix.
    """
    headers: List[str] = []
    seen: Dict[str, int] = {}
    for index, raw in enumerate(raw_headers):
        header = (raw or "").strip() or fallback_header(index)
        if header in seen:
            seen[header] += 1
            header = f"{header} ({seen[header]})"
        else:
            seen[header] = 1
        headers.append(header)
    return headers


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _clean_cell(value: Any) -> Any:
    if _is_blank(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if hasattr(value, "item") and not isinstance(value, (str, bytes, datetime)):
        return value.item()
    return value


def _header_text(value: Any) -> Optional[str]:
    value = _clean_cell(value)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_csv(content: bytes, file_name: str) -> ParsedFileData:
    text = decode_csv_content(content)
    try:
        records = [
            record for record in csv.reader(io.StringIO(text))
            if any(cell.strip() for cell in record)
        ]
    except csv.Error as e:
        raise FileParseError(f"Failed to parse CSV file: {e}") from e

    if not records:
        return ParsedFileData(headers=[], rows=[], file_name=file_name, file_type=FILE_TYPE_CSV)

    headers = dedupe_headers(records[0])
    rows = []
    for record in records[1:]:
        padded = list(record) + [""] * (len(headers) - len(record))
        rows.append({header: padded[i] for i, header in enumerate(headers)})

    logger.info(f"CSV import: extracted {len(headers)} columns and {len(rows)} rows from {file_name}")
    return ParsedFileData(headers=headers, rows=rows, file_name=file_name, file_type=FILE_TYPE_CSV)


def parse_spreadsheet(content: bytes, file_name: str, extension: str) -> ParsedFileData:
    try:
        frame = pd.read_excel(
            io.BytesIO(content),
            sheet_name=0,
            header=None,
            dtype=object,
            engine=EXCEL_ENGINES[extension],
        )
    except Exception as e:
        raise FileParseError(f"Failed to parse spreadsheet: {e}") from e

    grid = [list(row) for row in frame.itertuples(index=False, name=None)]
    while grid and all(_is_blank(cell) for cell in grid[0]):
        grid.pop(0)

    column_count = max(frame.shape[1], MIN_SPREADSHEET_COLUMNS)
    header_cells = grid[0] if grid else []
    raw_headers = [
        _header_text(header_cells[i]) if i < len(header_cells) else None
        for i in range(column_count)
    ]
    headers = dedupe_headers(raw_headers)

    rows = []
    for record in grid[1:]:
        if all(_is_blank(cell) for cell in record):
            continue
        rows.append({
            header: _clean_cell(record[i]) if i < len(record) else None
            for i, header in enumerate(headers)
        })

    logger.info(f"Excel import: extracted {len(headers)} columns and {len(rows)} rows from {file_name}")
    return ParsedFileData(headers=headers, rows=rows, file_name=file_name, file_type=FILE_TYPE_EXCEL)


def parse_import_file(content: bytes, file_name: str) -> ParsedFileData:
    extension = get_file_extension(file_name)
    if extension in CSV_EXTENSIONS:
        return parse_csv(content, file_name)
    if extension in EXCEL_ENGINES:
        return parse_spreadsheet(content, file_name, extension)
    raise UnsupportedFileError("Unsupported file format. Please upload a CSV or Excel file.")

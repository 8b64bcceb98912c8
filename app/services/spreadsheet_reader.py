"""
Reads an uploaded planilha into (headers, rows).

Only the first sheet is read. First row = headers, every later row is data.
No row or column is dropped here: blank rows stay (as all-empty dicts) and
columns without a header get a positional name, so the Column Mapper sees the
sheet exactly as uploaded.
"""
import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import PurePath
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.config import settings
from app.services.column_mapper import build_headers
from app.services.errors import SpreadsheetInputError

logger = logging.getLogger(__name__)


@dataclass
class ParsedSheet:
    headers: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)


def _cell_value(value: Any) -> Any:
    """Keep numbers as numbers; make everything JSON-safe for the data column."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def _read_xlsx_matrix(content: bytes, file_name: str) -> list[list[Any]]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise SpreadsheetInputError(f"Não foi possível ler o arquivo Excel: {e}", file_name) from e

    try:
        if not workbook.sheetnames:
            raise SpreadsheetInputError("A planilha está vazia", file_name)
        sheet = workbook[workbook.sheetnames[0]]
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_csv_matrix(content: bytes, file_name: str) -> list[list[Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")

    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=";,")
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ";"

    return [row for row in csv.reader(io.StringIO(text), delimiter=delimiter)]


def _trim_trailing_empty(matrix: list[list[Any]]) -> list[list[Any]]:
    """read_only worksheets pad every row to the sheet's max_column; keep real width only."""
    width = 0
    for row in matrix:
        for idx in range(len(row) - 1, -1, -1):
            if row[idx] not in (None, ""):
                width = max(width, idx + 1)
                break
    return [row[:width] for row in matrix]


def validate_upload(file_name: str, size: int) -> str:
    ext = PurePath(file_name or "").suffix.lower()
    allowed = settings.upload_extensions
    if ext not in allowed:
        raise SpreadsheetInputError(
            f"Extensão não suportada: '{ext or file_name}'. Use {', '.join(sorted(allowed))}",
            file_name,
        )
    if size <= 0:
        raise SpreadsheetInputError("Arquivo vazio", file_name)
    if size > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes / (1024 * 1024)
        raise SpreadsheetInputError(
            f"O arquivo excede o tamanho máximo permitido de {limit_mb:g}MB", file_name
        )
    return ext


def read_spreadsheet(content: bytes, file_name: str) -> ParsedSheet:
    """Parse an uploaded file. Raises SpreadsheetInputError for unusable input."""
    ext = validate_upload(file_name, len(content or b""))

    if ext == ".csv":
        matrix = _read_csv_matrix(content, file_name)
    else:
        matrix = _read_xlsx_matrix(content, file_name)

    matrix = _trim_trailing_empty(matrix)
    width = max((len(row) for row in matrix), default=0)
    if width == 0:
        raise SpreadsheetInputError("A planilha está vazia", file_name)

    headers = build_headers(matrix[0], width)

    rows: list[dict[str, Any]] = []
    for raw in matrix[1:]:
        rows.append({
            header: _cell_value(raw[idx] if idx < len(raw) else None)
            for idx, header in enumerate(headers)
        })

    logger.info(
        "Planilha %s read: %d columns, %d rows",
        file_name, len(headers), len(rows),
    )
    return ParsedSheet(headers=headers, rows=rows)

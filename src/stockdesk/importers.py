"""Spreadsheet import and export for bulk product operations."""

from __future__ import annotations

import csv
import json
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

import openpyxl

from . import log
from .constants import TABLE_COLUMNS, Table
from .domain_store import PRODUCT_FIELDS
from .setup_workbook import write_header
from .workbook_gateway import save_workbook


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalise_header(header: Any) -> str:
    """Turn ``buyPrice`` / ``Buy Price`` / ``buy_price`` into ``buy_price``."""

    text = str(header or "").strip()
    text = _CAMEL_BOUNDARY.sub("_", text) if " " not in text and "_" not in text else text
    return re.sub(r"[\s\-]+", "_", text).lower()


def _row_to_product(headers: Sequence[str], values: Sequence[Any]) -> Dict[str, Any]:
    row = {}
    for header, value in zip(headers, values):
        if header in PRODUCT_FIELDS:
            row[header] = value.strip() if isinstance(value, str) else value
    return row


def _read_xlsx(path: Path) -> List[Dict[str, Any]]:
    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        headers = [normalise_header(cell) for cell in next(rows, ())]
        return [
            _row_to_product(headers, values)
            for values in rows
            if any(value not in (None, "") for value in values)
        ]
    finally:
        workbook.close()


def _read_csv(path: Path) -> List[Dict[str, Any]]:
    with path.open(newline="", encoding="utf-8-sig") as handle:
        reader = csv.reader(handle)
        headers = [normalise_header(cell) for cell in next(reader, [])]
        return [
            _row_to_product(headers, values)
            for values in reader
            if any(value.strip() for value in values)
        ]


def read_product_rows(path: Path) -> List[Dict[str, Any]]:
    """Load product rows for a bulk import.

    The first row holds the headers; columns that do not name a product
    attribute are ignored. Values are returned raw; validation happens in
    :meth:`~stockdesk.domain_store.DomainStore.add_multiple_products`.

    Args:
        path (Path): ``.xlsx`` or ``.csv`` file.

    Returns:
        list[dict[str, Any]]: One mapping per non-empty data row.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the extension is not supported.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Import file not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".xlsx":
        rows = _read_xlsx(path)
    elif suffix == ".csv":
        rows = _read_csv(path)
    else:
        raise ValueError(f"Unsupported import format: {path.suffix or path.name}")
    log.info("Read %d product rows from '%s'", len(rows), path)
    return rows


def _sheet_records(sheet: Any) -> List[Dict[str, Any]]:
    rows = sheet.iter_rows(values_only=True)
    headers = ["" if cell is None else str(cell) for cell in next(rows, ())]
    return [
        {header: value for header, value in zip(headers, values) if header}
        for values in rows
        if any(value not in (None, "") for value in values)
    ]


def read_snapshot(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """Load a snapshot written by ``stockdesk export`` back into table records.

    ``.json`` files are read as written; ``.xlsx`` files give one table per
    sheet, keyed by the header row.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the extension is unsupported or the JSON is not an
            object of record lists.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".json":
        snapshot = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(snapshot, dict) or not all(isinstance(rows, list) for rows in snapshot.values()):
            raise ValueError(f"Snapshot '{path.name}' is not an object of record lists")
    elif suffix == ".xlsx":
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
        try:
            snapshot = {sheet.title: _sheet_records(sheet) for sheet in workbook.worksheets}
        finally:
            workbook.close()
    else:
        raise ValueError(f"Unsupported snapshot format: {path.suffix or path.name}")
    log.info("Read snapshot '%s' (%s)", path, ", ".join(f"{name}={len(rows)}" for name, rows in snapshot.items()))
    return snapshot


def _cell(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def export_workbook(snapshot: Mapping[str, Sequence[Mapping[str, Any]]], destination: Path) -> Path:
    """Write an exported snapshot to ``destination``, one sheet per table."""

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for table, columns in TABLE_COLUMNS.items():
        sheet = workbook.create_sheet(title=Table(table).value)
        write_header(sheet, columns)
        for record in snapshot.get(Table(table).value, []):
            sheet.append([_cell(record.get(column)) for column in columns])
    destination = Path(destination).expanduser().resolve()
    save_workbook(workbook, destination)
    log.info("Exported snapshot to '%s'", destination)
    return destination

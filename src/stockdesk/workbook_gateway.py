"""Excel-backed gateway for running stockdesk without a remote backend.

Each table lives on its own worksheet named after the table; the first row
holds the storage-native column names listed in
:data:`~stockdesk.constants.TABLE_COLUMNS`. The workbook is saved after every
write so it stays the durable copy of the data, exactly like a remote
backend would be.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import log
from .constants import TABLE_COLUMNS, Table
from .errors import RemoteError
from .gateways import Record, RemoteGateway, TableName, newest_first


def open_workbook(data_file: Path) -> Workbook:
    """Open the workbook at ``data_file`` and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")
    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def header_map(sheet: Worksheet) -> Dict[str, int]:
    """Map each header title of ``sheet`` to its 1-based column index."""

    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(sheet: Worksheet, record_id: int) -> Optional[int]:
    """Find the worksheet row whose ``id`` column equals ``record_id``.

    Returns:
        int | None: 1-based row index when found, otherwise ``None``.

    Raises:
        KeyError: If the sheet has no ``id`` column.
    """

    headers = header_map(sheet)
    if "id" not in headers:
        raise KeyError(f"Sheet '{sheet.title}' has no id column")
    id_index = headers["id"] - 1
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        value = row[id_index]
        if value is not None and int(value) == int(record_id):
            return row_idx
    return None


def _cell_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class WorkbookGateway(RemoteGateway):
    """Gateway persisting every table into one ``.xlsx`` workbook."""

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self.workbook = open_workbook(self.data_file)
        missing = [table.value for table in Table if table.value not in self.workbook.sheetnames]
        if missing:
            raise RemoteError(f"Workbook '{self.data_file}' is missing sheets: {', '.join(missing)}")
        log.info("Opened workbook gateway on '%s'", self.data_file)

    def _sheet(self, table: TableName) -> Worksheet:
        return self.workbook[Table(table).value]

    def _persist(self) -> None:
        try:
            save_workbook(self.workbook, self.data_file)
        except OSError as exc:
            raise RemoteError(f"Unable to save workbook '{self.data_file}': {exc}") from exc

    def _read_row(self, sheet: Worksheet, row_idx: int) -> Record:
        headers = header_map(sheet)
        return {name: sheet.cell(row=row_idx, column=col).value for name, col in headers.items()}

    def _next_id(self, sheet: Worksheet) -> int:
        id_col = header_map(sheet)["id"]
        ids = [
            int(row[id_col - 1])
            for row in sheet.iter_rows(min_row=2, values_only=True)
            if row[id_col - 1] is not None
        ]
        return max(ids, default=0) + 1

    def _require_row(self, table: TableName, record_id: int) -> int:
        row_idx = locate_row(self._sheet(table), record_id)
        if row_idx is None:
            raise RemoteError(f"{Table(table).value} record {record_id} does not exist")
        return row_idx

    def list(self, table: TableName) -> List[Record]:
        sheet = self._sheet(table)
        headers = list(header_map(sheet))
        records = []
        for raw in sheet.iter_rows(min_row=2, values_only=True):
            # skip fully empty rows
            if any(cell is not None for cell in raw):
                records.append(dict(zip(headers, raw)))
        return newest_first(records)

    def create(self, table: TableName, fields: Mapping[str, Any]) -> Record:
        sheet = self._sheet(table)
        record = dict(fields)
        record["id"] = self._next_id(sheet)
        if not record.get("created_at"):
            record["created_at"] = datetime.now(UTC).isoformat()
        columns = TABLE_COLUMNS[Table(table)]
        sheet.append([_cell_value(record.get(column)) for column in columns])
        self._persist()
        return self._read_row(sheet, sheet.max_row)

    def update(self, table: TableName, record_id: int, fields: Mapping[str, Any]) -> Record:
        sheet = self._sheet(table)
        row_idx = self._require_row(table, record_id)
        headers = header_map(sheet)
        for field, value in fields.items():
            if field == "id":
                continue
            if field not in headers:
                raise RemoteError(f"Unknown {Table(table).value} column: {field}")
            sheet.cell(row=row_idx, column=headers[field], value=_cell_value(value))
        self._persist()
        return self._read_row(sheet, row_idx)

    def delete(self, table: TableName, record_id: int) -> None:
        row_idx = self._require_row(table, record_id)
        self._sheet(table).delete_rows(row_idx)
        self._persist()

    def delete_many(self, table: TableName, record_ids: Sequence[int]) -> None:
        rows = [self._require_row(table, record_id) for record_id in record_ids]
        sheet = self._sheet(table)
        # bottom-up so earlier indices stay valid
        for row_idx in sorted(rows, reverse=True):
            sheet.delete_rows(row_idx)
        self._persist()

"""Create the workbook used by the local (offline) backend.

Run it as ``stockdesk-setup-workbook`` or ``python -m stockdesk.setup_workbook``.
The target is, in order of precedence, ``--output``, the ``[Local] DataFile``
entry of ``config.ini``, or ``stockdesk.xlsx`` in the working directory.
``--seed`` fills the ``products`` sheet with the demo catalogue.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from . import log
from .config import load_settings
from .constants import TABLE_COLUMNS, Table
from .errors import RemoteError
from .seed import seed_records
from .workbook_gateway import WorkbookGateway, save_workbook


DEFAULT_DATA_FILE = "stockdesk.xlsx"


def write_header(sheet: Worksheet, columns: Sequence[str]) -> None:
    """Write ``columns`` as the bold first row of ``sheet``."""

    sheet.append(list(columns))
    header_font = Font(bold=True)
    for cell in sheet[1]:
        cell.font = header_font


def create_workbook(
    destination: Path,
    *,
    table_columns: Mapping[Table, Sequence[str]] = TABLE_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty workbook with one sheet per table at ``destination``.

    Args:
        destination (Path): Target ``.xlsx`` file; parent folders are created.
        table_columns (Mapping[Table, Sequence[str]]): Sheets to create and
            their header rows.
        overwrite (bool): Replace an existing file instead of refusing.

    Returns:
        Path: Resolved path of the new workbook.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for table, columns in table_columns.items():
        write_header(workbook.create_sheet(title=Table(table).value), columns)

    save_workbook(workbook, destination)
    log.info("Created workbook '%s' with sheets %s", destination, ", ".join(workbook.sheetnames))
    return destination


def seed_workbook(destination: Path) -> int:
    """Append the demo products to an existing workbook; returns how many."""

    gateway = WorkbookGateway(destination)
    products = seed_records()[Table.PRODUCTS.value]
    for record in products:
        gateway.create(Table.PRODUCTS, record)
    return len(products)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stockdesk-setup-workbook",
        description="Create the workbook used by the local stockdesk backend.",
    )
    parser.add_argument("--config", type=Path, default=None, help="config.ini whose [Local] DataFile is the target.")
    parser.add_argument("--output", type=Path, default=None, help=f"Workbook path (default: DataFile or {DEFAULT_DATA_FILE}).")
    parser.add_argument("--force", action="store_true", help="Replace the workbook if it already exists.")
    parser.add_argument("--seed", action="store_true", help="Fill the products sheet with the demo catalogue.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the setup script; returns the process exit code."""

    args = parse_args(argv)
    try:
        target = args.output
        if target is None:
            target = load_settings(args.config).data_file or Path(DEFAULT_DATA_FILE)
        output_path = create_workbook(target, overwrite=args.force)
        seeded = seed_workbook(output_path) if args.seed else 0
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Pass --force to replace it.")
        return 1
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except (OSError, RemoteError) as exc:
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    suffix = f" with {seeded} demo product(s)" if seeded else ""
    print(f"[SUCCESS] Created workbook at '{output_path}'{suffix}.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

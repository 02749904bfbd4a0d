"""Tests for the workbook gateway, the workbook setup script and spreadsheet import/export."""

from __future__ import annotations

from decimal import Decimal

import openpyxl
import pytest

from conftest import product_record
from stockdesk import setup_workbook
from stockdesk.constants import TABLE_COLUMNS, ProductStatus, Table
from stockdesk.domain_store import DomainStore
from stockdesk.errors import RemoteError
from stockdesk.importers import export_workbook, normalise_header, read_product_rows
from stockdesk.workbook_gateway import WorkbookGateway, locate_row


# ---------------------------------------------------------------------------
# setup_workbook
# ---------------------------------------------------------------------------


def test_create_workbook_writes_one_sheet_per_table(workbook_path):
    workbook = openpyxl.load_workbook(workbook_path)

    assert workbook.sheetnames == [table.value for table in TABLE_COLUMNS]
    for table, columns in TABLE_COLUMNS.items():
        header = [cell.value for cell in workbook[table.value][1]]
        assert header == list(columns)
        assert workbook[table.value]["A1"].font.bold


def test_create_workbook_refuses_to_overwrite(workbook_path):
    with pytest.raises(FileExistsError):
        setup_workbook.create_workbook(workbook_path)

    assert setup_workbook.create_workbook(workbook_path, overwrite=True) == workbook_path


def test_setup_main_uses_configured_data_file(config_factory, tmp_path, capsys):
    """Without --output the [Local] DataFile of config.ini is the target."""

    config_path = config_factory({"Local": {"DataFile": "data/shop.xlsx"}})

    exit_code = setup_workbook.main(["--config", str(config_path)])

    assert exit_code == 0
    assert (tmp_path / "data" / "shop.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out


def test_setup_main_seed_fills_products(tmp_path, capsys):
    target = tmp_path / "demo.xlsx"

    assert setup_workbook.main(["--output", str(target), "--seed"]) == 0

    records = WorkbookGateway(target).list(Table.PRODUCTS)
    assert len(records) == 6
    assert "6 demo product(s)" in capsys.readouterr().out


def test_setup_main_reports_existing_file(workbook_path, capsys):
    exit_code = setup_workbook.main(["--output", str(workbook_path)])

    assert exit_code == 1
    assert "--force" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# WorkbookGateway
# ---------------------------------------------------------------------------


def test_workbook_gateway_persists_writes(workbook_path):
    """Every write is saved so a fresh gateway sees it."""

    gateway = WorkbookGateway(workbook_path)
    created = gateway.create(Table.PRODUCTS, {**product_record(), "buy_price": Decimal("12.50")})
    gateway.update(Table.PRODUCTS, created["id"], {"stock": 4})

    reopened = WorkbookGateway(workbook_path)
    [record] = reopened.list(Table.PRODUCTS)

    assert record["id"] == 1
    assert record["stock"] == 4
    assert record["buy_price"] == pytest.approx(12.5)


def test_workbook_gateway_lists_newest_first_and_allocates_ids(workbook_path):
    gateway = WorkbookGateway(workbook_path)
    gateway.create(Table.SALES, {"product_name": "A", "created_at": "2025-01-01T00:00:00+00:00"})
    gateway.create(Table.SALES, {"product_name": "B", "created_at": "2025-02-01T00:00:00+00:00"})

    records = gateway.list(Table.SALES)

    assert [(record["id"], record["product_name"]) for record in records] == [(2, "B"), (1, "A")]


def test_workbook_gateway_delete_and_delete_many(workbook_path):
    gateway = WorkbookGateway(workbook_path)
    for name in ("A", "B", "C"):
        gateway.create(Table.PRODUCTS, product_record(name=name))

    gateway.delete(Table.PRODUCTS, 2)
    with pytest.raises(RemoteError):
        gateway.delete_many(Table.PRODUCTS, [1, 2])
    assert len(gateway.list(Table.PRODUCTS)) == 2

    gateway.delete_many(Table.PRODUCTS, [1, 3])
    assert gateway.list(Table.PRODUCTS) == []
    assert locate_row(gateway.workbook["products"], 1) is None


def test_workbook_gateway_rejects_unknown_columns(workbook_path):
    gateway = WorkbookGateway(workbook_path)
    gateway.create(Table.PRODUCTS, product_record())

    with pytest.raises(RemoteError):
        gateway.update(Table.PRODUCTS, 1, {"colour": "red"})


def test_workbook_gateway_requires_every_sheet(tmp_path):
    path = tmp_path / "partial.xlsx"
    setup_workbook.create_workbook(path, table_columns={Table.PRODUCTS: TABLE_COLUMNS[Table.PRODUCTS]})

    with pytest.raises(RemoteError, match="missing sheets"):
        WorkbookGateway(path)


def test_workbook_gateway_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        WorkbookGateway(tmp_path / "absent.xlsx")


def test_domain_store_runs_on_a_workbook(workbook_path):
    """A sale round trip works end to end on the workbook backend."""

    store = DomainStore(WorkbookGateway(workbook_path)).refresh()
    product = store.add_product(
        {"name": "Widget", "category": "Caps", "buy_price": "12", "sell_price": "20", "stock": 3}
    )

    sale = store.add_sale(product.id, 3)

    reloaded = DomainStore(WorkbookGateway(workbook_path)).refresh()
    assert reloaded.get_product(product.id).status is ProductStatus.OUT_OF_STOCK
    assert reloaded.get_sale(sale.id).total_margin == Decimal("24")
    assert len(reloaded.activity_log) == 2


# ---------------------------------------------------------------------------
# Import / export
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "header, expected",
    [("buyPrice", "buy_price"), ("Sell Price", "sell_price"), ("stock", "stock"), (" image_url ", "image_url")],
)
def test_normalise_header(header, expected):
    assert normalise_header(header) == expected


def test_read_product_rows_from_xlsx(tmp_path):
    path = tmp_path / "import.xlsx"
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["Name", "Category", "buyPrice", "sellPrice", "Stock", "Notes"])
    sheet.append(["  Bonnet ", "Bonnets", 6, 15, 3, "ignored"])
    sheet.append([None, None, None, None, None, None])
    sheet.append(["Casquette", "Casquettes", 7.5, 19.9, 0, None])
    workbook.save(path)

    rows = read_product_rows(path)

    assert rows == [
        {"name": "Bonnet", "category": "Bonnets", "buy_price": 6, "sell_price": 15, "stock": 3},
        {"name": "Casquette", "category": "Casquettes", "buy_price": 7.5, "sell_price": 19.9, "stock": 0},
    ]


def test_read_product_rows_from_csv(tmp_path):
    path = tmp_path / "import.csv"
    path.write_text("name,category,buy_price,sell_price,stock\nBonnet,Bonnets,6,15,3\n,,,,\n", encoding="utf-8")

    rows = read_product_rows(path)

    assert rows == [{"name": "Bonnet", "category": "Bonnets", "buy_price": "6", "sell_price": "15", "stock": "3"}]


def test_read_product_rows_rejects_missing_and_unknown_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_product_rows(tmp_path / "absent.csv")

    other = tmp_path / "rows.txt"
    other.write_text("name\n", encoding="utf-8")
    with pytest.raises(ValueError):
        read_product_rows(other)


def test_imported_rows_feed_bulk_import(tmp_path, store):
    path = tmp_path / "import.csv"
    path.write_text(
        "name,category,buy_price,sell_price,stock\nBonnet,Bonnets,6,15,3\nBroken,Bonnets,-1,15,3\n",
        encoding="utf-8",
    )

    result = store.add_multiple_products(read_product_rows(path))

    assert [product.name for product in result.created] == ["Bonnet"]
    assert [row.index for row in result.skipped] == [1]


def test_export_workbook_writes_snapshot(tmp_path, store, seed_product):
    product = seed_product()
    store.add_sale(product.id, 1)

    destination = export_workbook(store.export_data(), tmp_path / "out" / "export.xlsx")

    workbook = openpyxl.load_workbook(destination)
    assert workbook.sheetnames == ["products", "sales", "deliveries", "activity_log"]
    products = list(workbook["products"].iter_rows(min_row=2, values_only=True))
    assert products[0][1] == "Widget"
    assert workbook["sales"].max_row == 2

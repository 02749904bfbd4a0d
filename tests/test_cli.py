"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import json
from decimal import Decimal

import openpyxl
import pytest

from stockdesk import cli
from stockdesk.config import load_settings
from stockdesk.constants import Language, ProductStatus
from stockdesk.errors import CompensationFailedError, InsufficientStockError, RemoteError, ValidationError


WRITE_COMMANDS = {
    "add-product",
    "update-product",
    "delete-product",
    "duplicate-product",
    "import-products",
    "bulk-update",
    "sale",
    "cancel-sale",
    "deliver",
    "confirm-delivery",
    "cancel-delivery",
    "configure",
    "reset",
    "import",
}

READ_COMMANDS = {
    "products",
    "sales",
    "deliveries",
    "log",
    "dashboard",
    "stats",
    "export",
}


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return cli.build_parser()


@pytest.fixture
def subparsers_action(cli_parser):
    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def run_cli(monkeypatch, store):
    """Run ``cli.main`` against the in-memory test store."""

    loaded = []

    def _fake_load_store(config_path=None):
        loaded.append(config_path)
        return store

    monkeypatch.setattr(cli, "load_store", _fake_load_store)

    def _run(*argv: str) -> int:
        return cli.main(list(argv))

    _run.loaded = loaded
    return _run


def _registered_choices(parser: argparse.ArgumentParser):
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices
    return {}


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata(cli_parser):
    """build_parser should set user-facing program metadata."""

    assert cli_parser.prog == "stockdesk"
    assert cli_parser.parse_args([]).config is None


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire mutating and reporting sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert set(_registered_choices(cli_parser)) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_and_read_commands_return_specs(subparsers_action):
    write_specs = cli.register_write_commands(subparsers_action)
    read_specs = cli.register_read_commands(subparsers_action)

    assert set(write_specs) == WRITE_COMMANDS
    assert set(read_specs) == READ_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) for spec in {**write_specs, **read_specs}.values())
    assert not write_specs["configure"].needs_store


def test_add_product_arguments_are_required(cli_parser):
    cli.configure_subcommands(cli_parser)

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["add-product", "--name", "Cap"])

    args = cli_parser.parse_args(
        ["add-product", "--name", "Cap", "--category", "Caps", "--buy-price", "1", "--sell-price", "2", "--stock", "3"]
    )
    assert cli.translate_product_fields(args) == {
        "name": "Cap",
        "category": "Caps",
        "buy_price": "1",
        "sell_price": "2",
        "stock": "3",
    }
    assert cli.translate_image(args) is None


def test_reset_requires_confirmation(cli_parser):
    cli.configure_subcommands(cli_parser)

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["reset"])


def test_translate_bulk_update_builds_payload(cli_parser):
    cli.configure_subcommands(cli_parser)
    args = cli_parser.parse_args(
        ["bulk-update", "--product-id", "1", "2", "--stock", "5", "--stock-mode", "increase", "--supplier", "NewCo"]
    )

    assert args.product_id == [1, 2]
    assert cli.translate_bulk_update(args) == {"stock": {"mode": "increase", "value": "5"}, "supplier": "NewCo"}


def test_translate_image_missing_file(tmp_path):
    args = argparse.Namespace(image=tmp_path / "absent.png")

    with pytest.raises(FileNotFoundError):
        cli.translate_image(args)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(store):
    calls = []

    def execute(current, args):
        calls.append((current, args.command))
        return 0

    spec = cli.CommandSpec(
        name="noop",
        help_text="",
        register=lambda action: action.add_parser("noop"),
        execute=execute,
    )
    args = argparse.Namespace(command="noop")

    assert cli.dispatch_command(store, args, {"noop": spec}) == 0
    assert calls == [(store, "noop")]


def test_dispatch_command_handles_unknown_commands(store):
    with pytest.raises(KeyError):
        cli.dispatch_command(store, argparse.Namespace(command="teleport"), {})


def test_build_command_table_detects_duplicate_commands():
    spec = cli.CommandSpec(name="dup", help_text="", register=lambda action: None, execute=lambda s, a: 0)

    with pytest.raises(ValueError):
        cli.build_command_table([spec, spec])


@pytest.mark.parametrize(
    "error, code",
    [
        (ValidationError("bad"), 2),
        (InsufficientStockError("short"), 2),
        (FileNotFoundError("gone"), 3),
        (CompensationFailedError("diverged"), 4),
        (RemoteError("down"), 5),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


# ---------------------------------------------------------------------------
# End-to-end commands
# ---------------------------------------------------------------------------


def test_add_product_then_sale(run_cli, store, capsys):
    exit_code = run_cli(
        "add-product",
        "--name",
        "Cap",
        "--category",
        "Accessoires > Casquettes",
        "--buy-price",
        "12",
        "--sell-price",
        "20",
        "--stock",
        "10",
    )
    assert exit_code == 0
    product = store.products[0]

    assert run_cli("sale", "--product-id", str(product.id), "--quantity", "3") == 0

    output = capsys.readouterr().out
    assert "Created product" in output
    assert "total=60.00 margin=24.00" in output
    assert store.get_product(product.id).stock == 7


def test_sale_with_insufficient_stock_exits_with_code_2(run_cli, seed_product, store):
    product = seed_product(stock=1)

    assert run_cli("sale", "--product-id", str(product.id), "--quantity", "5") == 2
    assert store.sales == []


def test_remote_failure_exits_with_code_5(run_cli, seed_product, gateway):
    product = seed_product()
    gateway.fail("update", "products")

    assert run_cli("update-product", "--product-id", str(product.id), "--name", "Renamed") == 5


def test_delete_product_uses_batch_for_several_ids(run_cli, seed_product, store, gateway, capsys):
    first = seed_product(name="A")
    second = seed_product(name="B")
    gateway.calls.clear()

    assert run_cli("delete-product", "--product-id", str(first.id), str(second.id)) == 0

    assert ("delete_many", "products") in gateway.writes()
    assert store.products == []
    assert "Deleted 2 product(s)" in capsys.readouterr().out


def test_delivery_commands(run_cli, seed_product, store):
    product = seed_product(stock=4)

    assert run_cli("deliver", "--product-id", str(product.id), "--quantity", "2") == 0
    assert store.get_product(product.id).status is ProductStatus.IN_DELIVERY

    delivery_id = store.deliveries[0].id
    assert run_cli("confirm-delivery", "--delivery-id", str(delivery_id)) == 0
    assert store.deliveries == []
    assert store.sales[0].quantity == 2


def test_bulk_update_command(run_cli, seed_product, store):
    first = seed_product(name="A", sell_price="10.00")
    second = seed_product(name="B", sell_price="20.00")

    exit_code = run_cli(
        "bulk-update",
        "--product-id",
        str(first.id),
        str(second.id),
        "--sell-price",
        "2",
        "--sell-price-mode",
        "increase",
    )

    assert exit_code == 0
    assert [store.get_product(pid).sell_price for pid in (first.id, second.id)] == [Decimal("12"), Decimal("22")]


def test_import_products_reports_skipped_rows(run_cli, store, tmp_path, capsys):
    path = tmp_path / "rows.csv"
    path.write_text("name,category,buy_price,sell_price,stock\nCap,Caps,1,2,3\n,Caps,1,2,3\n", encoding="utf-8")

    assert run_cli("import-products", "--file", str(path)) == 0

    output = capsys.readouterr().out
    assert "Imported 1 product(s), skipped 1 row(s)." in output
    assert "row 3: name is required" in output


def test_reports_print_without_errors(run_cli, seed_product, store, capsys):
    product = seed_product(stock=2)
    store.add_sale(product.id, 1)

    reports = (
        ["products", "--sort", "name"],
        ["sales"],
        ["deliveries"],
        ["log", "--limit", "1"],
        ["dashboard"],
        ["stats"],
    )
    for argv in reports:
        assert run_cli(*argv) == 0

    output = capsys.readouterr().out
    assert "Widget" in output
    assert "Stock value:" in output
    assert "Top products:" in output


def test_export_command_writes_json_and_xlsx(run_cli, seed_product, tmp_path):
    seed_product()

    assert run_cli("export", "--output", str(tmp_path / "data.json")) == 0
    assert run_cli("export", "--output", str(tmp_path / "data.xlsx")) == 0
    assert run_cli("export", "--output", str(tmp_path / "data.txt")) == 2

    payload = json.loads((tmp_path / "data.json").read_text(encoding="utf-8"))
    assert payload["products"][0]["buy_price"] == "12.00"
    assert openpyxl.load_workbook(tmp_path / "data.xlsx").sheetnames[0] == "products"


def test_configure_does_not_load_the_store(run_cli, tmp_path):
    config_path = tmp_path / "config.ini"

    exit_code = run_cli(
        "--config",
        str(config_path),
        "configure",
        "--url",
        "https://demo.supabase.co",
        "--key",
        "anon",
        "--language",
        "en",
    )

    assert exit_code == 0
    assert run_cli.loaded == []
    settings = load_settings(config_path)
    assert settings.remote_configured
    assert settings.language is Language.EN


def test_reset_command(run_cli, seed_product, store):
    seed_product()

    assert run_cli("reset", "--yes") == 0
    assert len(store.products) == 6


@pytest.mark.parametrize("suffix", [".json", ".xlsx"])
def test_import_command_restores_an_export(run_cli, seed_product, store, tmp_path, capsys, suffix):
    """An exported file read back by ``import`` recreates every table."""

    product = seed_product(name="Kept")
    store.add_sale(product.id, 2)
    snapshot = tmp_path / f"backup{suffix}"
    assert run_cli("export", "--output", str(snapshot)) == 0
    store.reset_data()

    assert run_cli("import", "--file", str(snapshot), "--yes") == 0

    assert [p.name for p in store.products] == ["Kept"]
    [sale] = store.sales
    assert sale.product_id == store.products[0].id
    assert sale.total_price == Decimal("40")
    assert store.products[0].stock == 8
    assert "1 products" in capsys.readouterr().out


def test_import_command_requires_confirmation_and_a_known_format(run_cli, cli_parser, tmp_path):
    cli.configure_subcommands(cli_parser)
    with pytest.raises(SystemExit):
        cli_parser.parse_args(["import", "--file", "backup.json"])

    other = tmp_path / "backup.txt"
    other.write_text("{}", encoding="utf-8")
    assert run_cli("import", "--file", str(other), "--yes") == 1
    assert run_cli("import", "--file", str(tmp_path / "absent.json"), "--yes") == 3

"""Command-line entry points for stockdesk.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into domain store calls, and printing results. Keeping
the CLI thin ensures the same parser configuration can be reused by tests,
scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import log, views
from .config import CONFIG_FILE_NAME, save_settings
from .constants import BulkUpdateMode, Language, ProductStatus, StockLevel, Theme, TimeRange
from .domain_store import DomainStore, load_store
from .errors import CompensationFailedError, InsufficientStockError, NotFoundError, RemoteError, ValidationError
from .image_storage import ImageUpload
from .importers import export_workbook, read_product_rows, read_snapshot


Executor = Callable[[Optional[DomainStore], argparse.Namespace], int]


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Executor
    needs_store: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stockdesk",
        description="Inventory, sales and delivery management for small shops.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Optional path to {CONFIG_FILE_NAME} (searched upward from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and deliveries."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "duplicate-product": register_duplicate_product_command(subparsers),
        "import-products": register_import_products_command(subparsers),
        "bulk-update": register_bulk_update_command(subparsers),
        "sale": register_sale_command(subparsers),
        "cancel-sale": register_cancel_sale_command(subparsers),
        "deliver": register_deliver_command(subparsers),
        "confirm-delivery": register_confirm_delivery_command(subparsers),
        "cancel-delivery": register_cancel_delivery_command(subparsers),
        "configure": register_configure_command(subparsers),
        "reset": register_reset_command(subparsers),
        "import": register_import_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "products": register_products_command(subparsers),
        "sales": register_sales_command(subparsers),
        "deliveries": register_deliveries_command(subparsers),
        "log": register_log_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "stats": register_stats_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Write command registration
# ---------------------------------------------------------------------------


def _add_product_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required)
    parser.add_argument("--category", required=required, help="Use 'Parent > Child' for sub-categories.")
    parser.add_argument("--supplier", default=None)
    parser.add_argument("--buy-price", required=required)
    parser.add_argument("--sell-price", required=required)
    parser.add_argument("--stock", required=required)
    parser.add_argument("--description", default=None)
    parser.add_argument("--image", type=Path, default=None, help="Picture uploaded to the image bucket.")


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Create a new product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_product_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Edit the fields of an existing product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        _add_product_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Delete one or more products."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, nargs="+", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_duplicate_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``duplicate-product``."""
    name = "duplicate-product"
    help_text = "Copy a product under a suffixed name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_duplicate_product)


def register_import_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-products``."""
    name = "import-products"
    help_text = "Create products from an .xlsx or .csv file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_products)


def register_bulk_update_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bulk-update``."""
    name = "bulk-update"
    help_text = "Apply the same edit to several products."
    modes = [member.value for member in BulkUpdateMode]

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, nargs="+", required=True)
        for field in ("buy-price", "sell-price", "stock"):
            parser.add_argument(f"--{field}", default=None)
            parser.add_argument(f"--{field}-mode", choices=modes, default=BulkUpdateMode.SET.value)
        parser.add_argument("--category", default=None)
        parser.add_argument("--supplier", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bulk_update)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_cancel_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cancel-sale``."""
    name = "cancel-sale"
    help_text = "Cancel a sale and return its units to stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel_sale)


def register_deliver_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``deliver``."""
    name = "deliver"
    help_text = "Reserve product units for delivery."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity", default="1")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_deliver)


def register_confirm_delivery_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``confirm-delivery``."""
    name = "confirm-delivery"
    help_text = "Record a delivered order as a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--delivery-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_confirm_delivery)


def register_cancel_delivery_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cancel-delivery``."""
    name = "cancel-delivery"
    help_text = "Cancel a delivery and return its units to stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--delivery-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel_delivery)


def register_configure_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``configure``."""
    name = "configure"
    help_text = f"Write backend credentials and preferences to {CONFIG_FILE_NAME}."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--url", default=None, help="Supabase project URL.")
        parser.add_argument("--key", default=None, help="Supabase anonymous key.")
        parser.add_argument("--data-file", type=Path, default=None, help="Local workbook backend.")
        parser.add_argument("--theme", choices=[member.value for member in Theme], default=None)
        parser.add_argument("--language", choices=[member.value for member in Language], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_configure,
        needs_store=False,
    )


def register_reset_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reset``."""
    name = "reset"
    help_text = "Erase every table and reload the demo products."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--yes", action="store_true", required=True, help="Confirm the reset.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reset)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Replace every table with a snapshot written by export."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True, help=".json or .xlsx snapshot.")
        parser.add_argument("--yes", action="store_true", required=True, help="Confirm replacing all data.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


# ---------------------------------------------------------------------------
# Read command registration
# ---------------------------------------------------------------------------


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--query", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--supplier", default=None)
        parser.add_argument("--status", choices=[member.value for member in ProductStatus], default=None)
        parser.add_argument("--stock-level", choices=[member.value for member in StockLevel], default=None)
        parser.add_argument("--sort", choices=sorted(views.SORT_KEYS), default="created_at")
        parser.add_argument("--desc", action="store_true", help="Sort in descending order.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products_report)


def _add_range_argument(parser: argparse.ArgumentParser, default: TimeRange) -> None:
    parser.add_argument(
        "--range",
        dest="time_range",
        choices=[member.value for member in TimeRange],
        default=default.value,
    )


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "List sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_range_argument(parser, TimeRange.ALL_TIME)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_report)


def register_deliveries_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``deliveries``."""
    name = "deliveries"
    help_text = "List open deliveries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_deliveries_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the activity log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display inventory figures, weekly profit and stock alerts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard_report)


def register_stats_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stats``."""
    name = "stats"
    help_text = "Display sales statistics over a time range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_range_argument(parser, TimeRange.LAST_30_DAYS)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stats_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export every table to a .json or .xlsx file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def dispatch_command(
    store: Optional[DomainStore],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(store, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


_PRODUCT_ARGUMENTS = {
    "name": "name",
    "category": "category",
    "supplier": "supplier",
    "buy_price": "buy_price",
    "sell_price": "sell_price",
    "stock": "stock",
    "description": "description",
}


def translate_product_fields(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect the product attributes given on the command line."""
    return {
        field: getattr(args, attribute)
        for field, attribute in _PRODUCT_ARGUMENTS.items()
        if getattr(args, attribute, None) is not None
    }


def translate_image(args: argparse.Namespace) -> Optional[ImageUpload]:
    """Load the picture passed with ``--image``, if any."""
    path = getattr(args, "image", None)
    if path is None:
        return None
    if not Path(path).expanduser().exists():
        raise FileNotFoundError(f"Image not found: {path}")
    return ImageUpload.from_path(path)


def translate_bulk_update(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI args into a bulk-edit payload."""
    payload: Dict[str, Any] = {}
    for field in ("buy_price", "sell_price", "stock"):
        value = getattr(args, field, None)
        if value is not None:
            payload[field] = {"mode": getattr(args, f"{field}_mode"), "value": value}
    for field in ("category", "supplier"):
        value = getattr(args, field, None)
        if value is not None:
            payload[field] = value
    return payload


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def _when(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M")


def _print_products(products: Sequence[Any]) -> None:
    if not products:
        print("No products.")
        return
    for product in products:
        print(
            f"#{product.id:<5} {product.name:<32} {views.category_leaf(product.category):<20} "
            f"stock={product.stock:<5} buy={_money(product.buy_price):>9} "
            f"sell={_money(product.sell_price):>9} {product.status.value}"
        )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_product(store: DomainStore, args: argparse.Namespace) -> int:
    """Create a product from the command-line fields."""
    product = store.add_product(translate_product_fields(args), image=translate_image(args))
    print(f"Created product #{product.id} '{product.name}' ({product.status.value}).")
    return 0


def run_update_product(store: DomainStore, args: argparse.Namespace) -> int:
    """Apply the given fields to an existing product."""
    product = store.update_product(args.product_id, translate_product_fields(args), image=translate_image(args))
    print(f"Product #{product.id} '{product.name}' is up to date.")
    return 0


def run_delete_product(store: DomainStore, args: argparse.Namespace) -> int:
    """Delete one product, or several in a single batch."""
    ids = list(args.product_id)
    if len(ids) == 1:
        deleted = [store.delete_product(ids[0])]
    else:
        deleted = store.delete_multiple_products(ids)
    print(f"Deleted {len(deleted)} product(s): {', '.join(product.name for product in deleted)}.")
    return 0


def run_duplicate_product(store: DomainStore, args: argparse.Namespace) -> int:
    product = store.duplicate_product(args.product_id)
    print(f"Created product #{product.id} '{product.name}'.")
    return 0


def run_import_products(store: DomainStore, args: argparse.Namespace) -> int:
    """Bulk-create products from a spreadsheet; skipped rows are reported."""
    result = store.add_multiple_products(read_product_rows(args.file))
    print(f"Imported {len(result.created)} product(s), skipped {len(result.skipped)} row(s).")
    for skipped in result.skipped:
        # header is row 1 in the source file
        print(f"  row {skipped.index + 2}: {skipped.reason}")
    return 0


def run_bulk_update(store: DomainStore, args: argparse.Namespace) -> int:
    updated = store.update_multiple_products(args.product_id, translate_bulk_update(args))
    print(f"Updated {len(updated)} product(s).")
    return 0


def run_sale(store: DomainStore, args: argparse.Namespace) -> int:
    """Record a sale and print its frozen totals."""
    sale = store.add_sale(args.product_id, args.quantity)
    print(
        f"Sale #{sale.id}: {sale.quantity} x '{sale.product_name}' "
        f"total={_money(sale.total_price)} margin={_money(sale.total_margin)}."
    )
    return 0


def run_cancel_sale(store: DomainStore, args: argparse.Namespace) -> int:
    sale = store.cancel_sale(args.sale_id)
    print(f"Cancelled sale #{sale.id} of '{sale.product_name}'.")
    return 0


def run_deliver(store: DomainStore, args: argparse.Namespace) -> int:
    delivery = store.set_product_to_delivery(args.product_id, args.quantity)
    print(f"Delivery #{delivery.id}: {delivery.quantity} x '{delivery.product_name}' reserved.")
    return 0


def run_confirm_delivery(store: DomainStore, args: argparse.Namespace) -> int:
    sale = store.confirm_sale_from_delivery(args.delivery_id)
    print(f"Delivery confirmed as sale #{sale.id} (total={_money(sale.total_price)}).")
    return 0


def run_cancel_delivery(store: DomainStore, args: argparse.Namespace) -> int:
    delivery = store.cancel_delivery(args.delivery_id)
    print(f"Cancelled delivery #{delivery.id} of '{delivery.product_name}'.")
    return 0


def run_configure(store: Optional[DomainStore], args: argparse.Namespace) -> int:
    """Persist the given settings next to the working directory or at ``--config``."""
    target = args.config if args.config is not None else Path.cwd() / CONFIG_FILE_NAME
    written = save_settings(
        target,
        remote_url=args.url,
        remote_key=args.key,
        data_file=args.data_file,
        theme=Theme(args.theme) if args.theme else None,
        language=Language(args.language) if args.language else None,
    )
    print(f"Saved settings to '{written}'.")
    return 0


def run_reset(store: DomainStore, args: argparse.Namespace) -> int:
    count = store.reset_data()
    print(f"Data reset; {count} demo product(s) loaded.")
    return 0


def run_import(store: DomainStore, args: argparse.Namespace) -> int:
    counts = store.import_data(read_snapshot(args.file))
    print("Imported " + ", ".join(f"{count} {table}" for table, count in counts.items()) + ".")
    return 0


def run_products_report(store: DomainStore, args: argparse.Namespace) -> int:
    """List products after filtering and sorting."""
    products = views.filter_products(
        store.products,
        query=args.query,
        category=args.category,
        supplier=args.supplier,
        status=ProductStatus(args.status) if args.status else None,
        stock_level=StockLevel(args.stock_level) if args.stock_level else None,
    )
    _print_products(views.sort_products(products, args.sort, descending=args.desc))
    return 0


def run_sales_report(store: DomainStore, args: argparse.Namespace) -> int:
    sales = views.filter_sales_by_range(store.sales, TimeRange(args.time_range), datetime.now(UTC))
    if not sales:
        print("No sales.")
        return 0
    for sale in sales:
        print(
            f"#{sale.id:<5} {_when(sale.created_at)} {sale.product_name:<32} x{sale.quantity:<4} "
            f"total={_money(sale.total_price):>9} margin={_money(sale.total_margin):>9}"
        )
    return 0


def run_deliveries_report(store: DomainStore, args: argparse.Namespace) -> int:
    if not store.deliveries:
        print("No open deliveries.")
        return 0
    for delivery in store.deliveries:
        print(
            f"#{delivery.id:<5} {_when(delivery.created_at)} {delivery.product_name:<32} "
            f"x{delivery.quantity:<4} value={_money(delivery.sell_price * delivery.quantity):>9}"
        )
    return 0


def run_log_report(store: DomainStore, args: argparse.Namespace) -> int:
    """Print the activity log, newest first."""
    entries = store.activity_log if args.limit is None else store.activity_log[: args.limit]
    if not entries:
        print("Activity log is empty.")
        return 0
    for entry in entries:
        details = f" ({entry.details})" if entry.details else ""
        print(f"{_when(entry.created_at)} {entry.action.value:<18} {entry.product_name}{details}")
    return 0


def run_dashboard_report(store: DomainStore, args: argparse.Namespace) -> int:
    """Print the headline inventory figures, weekly profit and stock alerts."""
    summary = views.inventory_summary(store.products)
    print(f"Products:          {summary.product_count} ({summary.units_in_stock} units)")
    print(f"Stock value:       {_money(summary.stock_value)}")
    print(f"Potential revenue: {_money(summary.potential_revenue)}")
    print(f"Potential profit:  {_money(summary.potential_profit)}")
    print(f"Low stock:         {summary.low_stock_count}  Out of stock: {summary.out_of_stock_count}")
    print("Weekly profit:")
    for point in views.weekly_profit(store.sales, datetime.now(UTC)):
        print(f"  {point.label}  {_money(point.profit)}")
    alerts = views.stock_alerts(store.products)
    if alerts:
        print("Alerts:")
        for alert in alerts:
            print(f"  [{alert.severity}] {alert.product_name}: {alert.stock} left")
    return 0


def run_stats_report(store: DomainStore, args: argparse.Namespace) -> int:
    """Print sales statistics for the selected range."""
    time_range = TimeRange(args.time_range)
    now = datetime.now(UTC)
    summary = views.sales_summary(views.filter_sales_by_range(store.sales, time_range, now))
    print(f"Revenue:      {_money(summary.revenue)}")
    print(f"Profit:       {_money(summary.profit)}")
    print(f"Units sold:   {summary.units}")
    print(f"Orders:       {summary.orders}")
    print(f"Average order {_money(summary.average_order_value)}")
    print(f"Avg margin:   {views.average_margin(store.products):.1f}%")
    print(f"Out of stock: {views.out_of_stock_rate(store.products):.1f}%")
    deliveries = views.delivery_summary(store.deliveries)
    print(f"In delivery:  {deliveries.items} unit(s), {_money(deliveries.value)}")
    print("Profit:")
    for point in views.profit_series(store.sales, time_range, now):
        print(f"  {point.label}  {_money(point.profit)}")
    print("Top products:")
    for ranked in views.top_products_by_revenue(views.filter_sales_by_range(store.sales, time_range, now)):
        print(f"  {ranked.product_name:<32} {_money(ranked.revenue):>10} ({ranked.units} units)")
    print("Stock by category:")
    for category, units in views.stock_by_category(store.products).items():
        print(f"  {category:<24} {units}")
    return 0


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def run_export(store: DomainStore, args: argparse.Namespace) -> int:
    """Write every table to ``--output``; the extension picks the format."""
    snapshot = store.export_data()
    output = Path(args.output).expanduser()
    if output.suffix.lower() == ".xlsx":
        written = export_workbook(snapshot, output)
    elif output.suffix.lower() == ".json":
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(snapshot, default=_json_default, indent=2), encoding="utf-8")
        written = output.resolve()
    else:
        raise ValidationError(f"Unsupported export format: {output.suffix or output.name}")
    print(f"Exported data to '{written}'.")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (ValidationError, NotFoundError, InsufficientStockError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, CompensationFailedError):
        log.critical("%s", error)
        return 4
    if isinstance(error, RemoteError):
        log.error("%s", error)
        return 5
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        spec = command_table.get(args.command)
        store = load_store(args.config) if spec is None or spec.needs_store else None
        return dispatch_command(store, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)

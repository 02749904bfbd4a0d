"""Domain store for stockdesk.

:class:`DomainStore` mirrors the ``products``, ``sales``, ``deliveries`` and
``activity_log`` tables of a :class:`~stockdesk.gateways.RemoteGateway` into
memory and is the only component allowed to mutate them. Every mutation
follows the same recipe:

1. validate the request against local state (no remote call yet);
2. issue the remote calls, the first one gating the second, with a
   compensating call when the second step of a two-step write fails;
3. append the activity-log entries describing the change;
4. refetch every table so local state matches the backend. A failed
   refetch leaves the committed write in place and marks the store stale.

Local collections are never patched optimistically; they only change through
:meth:`DomainStore.refresh`, which swaps all four lists at once.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, TypeVar, Union

import httpx

from . import log
from .bulk_update import BulkUpdate, parse_bulk_payload
from .config import Settings, load_settings
from .constants import COPY_SUFFIX, ActivityAction, ProductStatus, Table
from .errors import CompensationFailedError, InsufficientStockError, NotFoundError, RemoteError, ValidationError
from .gateways import InMemoryGateway, RemoteGateway, SupabaseGateway
from .image_storage import ImageStorage, ImageUpload, SupabaseImageStorage
from .record_mapper import (
    ActivityLog,
    Delivery,
    Product,
    ProductDraft,
    Sale,
    deserialize_delivery,
    deserialize_sale,
    format_timestamp,
    serialize_activity_log,
    serialize_delivery,
    serialize_product,
    serialize_sale,
    to_domain,
    to_storage,
)
from .seed import seed_records
from .workbook_gateway import WorkbookGateway


T = TypeVar("T")

PRODUCT_FIELDS = (
    "name",
    "category",
    "supplier",
    "buy_price",
    "sell_price",
    "stock",
    "image_url",
    "description",
)

# Fields reported in "updated" log entries, in display order.
FIELD_LABELS = {
    "name": "Name",
    "category": "Category",
    "supplier": "Supplier",
    "buy_price": "Buy price",
    "sell_price": "Sell price",
    "stock": "Stock",
    "description": "Description",
}

IMAGE_UPDATED = "image updated"
BULK_DELETE = "bulk delete"
BULK_IMPORT = "bulk import"
BULK_UPDATE = "bulk update"


@dataclass(frozen=True)
class SkippedRow:
    """A bulk-import row rejected by validation."""

    index: int
    reason: str


@dataclass(frozen=True)
class BulkImportResult:
    """Outcome of :meth:`DomainStore.add_multiple_products`."""

    created: List[Product] = field(default_factory=list)
    skipped: List[SkippedRow] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def require_money(value: Any, field_name: str) -> Decimal:
    """Coerce ``value`` into a non-negative :class:`Decimal`.

    Raises:
        ValidationError: If ``value`` is missing, not numeric, or negative.
    """

    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        log.error("Validation failed: %s is missing or invalid (%r)", field_name, value)
        raise ValidationError(f"{field_name} is required and must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        log.error("Validation failed: %s is not a number (%r)", field_name, value)
        raise ValidationError(f"{field_name} must be a number") from exc
    if not amount.is_finite() or amount < 0:
        log.error("Validation failed: %s is negative (%s)", field_name, value)
        raise ValidationError(f"{field_name} must be zero or positive")
    return amount


def require_stock(value: Any, field_name: str = "stock") -> int:
    """Coerce ``value`` into a non-negative integer quantity.

    Raises:
        ValidationError: If ``value`` is negative, fractional, or not numeric.
    """

    amount = require_money(value, field_name)
    if amount != amount.to_integral_value():
        log.error("Validation failed: %s is not a whole number (%s)", field_name, value)
        raise ValidationError(f"{field_name} must be a whole number")
    return int(amount)


def require_quantity(value: Any) -> int:
    """Validate a sale or delivery quantity: a strictly positive integer."""

    quantity = require_stock(value, "quantity")
    if quantity <= 0:
        log.error("Quantity validation failed: %s", value)
        raise ValidationError("quantity must be greater than zero")
    return quantity


def _require_text(data: Mapping[str, Any], field_name: str) -> str:
    value = data.get(field_name)
    text = "" if value is None else str(value).strip()
    if not text:
        log.error("Validation failed: %s is required", field_name)
        raise ValidationError(f"{field_name} is required")
    return text


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_product_draft(data: Union[ProductDraft, Mapping[str, Any]]) -> ProductDraft:
    """Validate raw product attributes and build a :class:`ProductDraft`.

    Args:
        data (ProductDraft | Mapping[str, Any]): Storage-native attribute
            names (``buy_price``, ``image_url`` ...). ``name`` and ``category``
            are required; ``supplier``, ``image_url`` and ``description`` are
            optional.

    Returns:
        ProductDraft: Normalised, validated attributes.

    Raises:
        ValidationError: On unknown fields, missing required text, negative or
            non-numeric prices, or a stock that is not a non-negative integer.
    """

    if isinstance(data, ProductDraft):
        data = asdict(data)
    unknown = sorted(set(data) - set(PRODUCT_FIELDS))
    if unknown:
        log.error("Validation failed: unknown product fields %s", ", ".join(unknown))
        raise ValidationError(f"Unknown product fields: {', '.join(unknown)}")

    return ProductDraft(
        name=_require_text(data, "name"),
        category=_require_text(data, "category"),
        supplier=_optional_text(data.get("supplier")) or "",
        buy_price=require_money(data.get("buy_price"), "buy_price"),
        sell_price=require_money(data.get("sell_price"), "sell_price"),
        stock=require_stock(data.get("stock", 0)),
        image_url=_optional_text(data.get("image_url")),
        description=_optional_text(data.get("description")),
    )


def _draft_of(product: Product) -> Dict[str, Any]:
    return {name: getattr(product, name) for name in PRODUCT_FIELDS}


def _display(value: Any) -> str:
    if value is None or value == "":
        return "(empty)"
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)


def describe_changes(product: Product, values: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Diff ``values`` against ``product``.

    Returns:
        tuple[dict, list[str]]: The fields that actually change and one
            ``"Label: old → new"`` fragment per changed labelled field.
    """

    changed: Dict[str, Any] = {}
    fragments: List[str] = []
    for name, label in FIELD_LABELS.items():
        if name not in values:
            continue
        old, new = getattr(product, name), values[name]
        if old == new:
            continue
        changed[name] = new
        fragments.append(f"{label}: {_display(old)} → {_display(new)}")
    return changed, fragments


def _sale_from(
    product_id: Optional[int],
    product_name: str,
    quantity: int,
    sell_price: Decimal,
    buy_price: Decimal,
    created_at: datetime,
) -> Sale:
    # totals are frozen at sale time
    return Sale(
        id=None,
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        sell_price=sell_price,
        total_price=sell_price * quantity,
        total_margin=(sell_price - buy_price) * quantity,
        created_at=created_at,
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class DomainStore:
    """In-memory mirror of the backend tables and owner of every mutation.

    Args:
        gateway (RemoteGateway): Backend collaborator holding the durable copy.
        image_storage (ImageStorage | None): Blob storage for product images.
            Without it, image uploads are rejected with
            :class:`ValidationError`.
    """

    def __init__(self, gateway: RemoteGateway, *, image_storage: Optional[ImageStorage] = None) -> None:
        self.gateway = gateway
        self.image_storage = image_storage
        self.products: List[Product] = []
        self.sales: List[Sale] = []
        self.deliveries: List[Delivery] = []
        self.activity_log: List[ActivityLog] = []
        self.stale = False

    # -- plumbing ---------------------------------------------------------

    def _now(self) -> datetime:
        return datetime.now(UTC)

    def _remote(self, action: str, call: Callable[..., T], *args: Any) -> T:
        """Run a gateway call, reporting transport and storage failures as :class:`RemoteError`."""

        try:
            return call(*args)
        except RemoteError as exc:
            log.error("%s failed: %s", action, exc)
            raise
        except (httpx.HTTPError, OSError, KeyError) as exc:
            log.error("%s failed: %s", action, exc)
            raise RemoteError(f"{action} failed: {exc}") from exc

    def refresh(self) -> "DomainStore":
        """Refetch every table and replace local state in one step.

        ``in_delivery`` is overlaid on products referenced by an open
        delivery; other statuses come from the mapper. When any list call or
        mapping fails, the current state is kept and :class:`RemoteError` is
        raised.
        """

        raw = {table: self._remote(f"list {table.value}", self.gateway.list, table) for table in Table}
        try:
            products = [to_domain(record, Table.PRODUCTS) for record in raw[Table.PRODUCTS]]
            sales = [to_domain(record, Table.SALES) for record in raw[Table.SALES]]
            deliveries = [to_domain(record, Table.DELIVERIES) for record in raw[Table.DELIVERIES]]
            entries = [to_domain(record, Table.ACTIVITY_LOG) for record in raw[Table.ACTIVITY_LOG]]
        except (ValueError, TypeError) as exc:
            log.error("Malformed record returned by the backend: %s", exc)
            raise RemoteError(f"Malformed record returned by the backend: {exc}") from exc

        reserved = {delivery.product_id for delivery in deliveries if delivery.product_id is not None}
        products = [
            replace(product, status=ProductStatus.IN_DELIVERY) if product.id in reserved else product
            for product in products
        ]

        self.products, self.sales, self.deliveries, self.activity_log = products, sales, deliveries, entries
        self.stale = False
        log.debug(
            "Refreshed state: %d products, %d sales, %d deliveries, %d log entries",
            len(products),
            len(sales),
            len(deliveries),
            len(entries),
        )
        return self

    def _refresh_after_failure(self) -> None:
        # The caller is already raising; a failed refetch must not mask it.
        try:
            self.refresh()
        except RemoteError as exc:
            log.error("Refetch after failure also failed: %s", exc)

    def _refresh_after_write(self) -> bool:
        """Refetch once a write has committed; returns ``False`` if that failed.

        The write and its log entries stand, so the error is not raised. The
        store is marked stale and the next mutation refetches before it
        validates anything.
        """

        try:
            self.refresh()
        except RemoteError as exc:
            self.stale = True
            log.error("Write committed but the refetch failed; local state is stale: %s", exc)
            return False
        return True

    def _ensure_fresh(self) -> None:
        if self.stale:
            self.refresh()

    def _product_after_write(self, record: Mapping[str, Any]) -> Product:
        return self._product_from(record, self._refresh_after_write())

    def _product_from(self, record: Mapping[str, Any], refreshed: bool) -> Product:
        # without a refetch the gateway record is the freshest copy
        if refreshed:
            return self.get_product(int(record["id"]))
        return to_domain(record, Table.PRODUCTS)

    def _append_log(
        self,
        action: ActivityAction,
        product_id: Optional[int],
        product_name: str,
        details: Optional[str] = None,
    ) -> None:
        """Append one activity-log entry.

        The mutation it describes has already succeeded remotely, so a failed
        append is reported in the application log instead of raised.
        """

        entry = ActivityLog(
            id=None,
            product_id=product_id,
            product_name=product_name,
            action=action,
            details=details,
            created_at=self._now(),
        )
        try:
            self._remote("append activity log", self.gateway.create, Table.ACTIVITY_LOG, serialize_activity_log(entry))
        except RemoteError as exc:
            log.error("Activity log entry '%s' for '%s' was not recorded: %s", action.value, product_name, exc)

    def _apply_with_compensation(
        self,
        operation: str,
        first: Callable[[], Any],
        second: Callable[[], Any],
        undo: Callable[[Any], Any],
    ) -> Tuple[Any, Any]:
        """Run a two-step remote write, rolling back ``first`` if ``second`` fails.

        Args:
            operation (str): Human-readable name used in logs and errors.
            first (Callable[[], Any]): First remote step. Its failure aborts the
                operation with nothing to undo.
            second (Callable[[], Any]): Second remote step.
            undo (Callable[[Any], Any]): Compensating call; receives the result
                of ``first``.

        Returns:
            tuple[Any, Any]: Results of ``first`` and ``second``.

        Raises:
            RemoteError: If either step failed and, when needed, the rollback
                succeeded. Remote state is then as before the call.
            CompensationFailedError: If the rollback failed too. State is
                refetched before raising.
        """

        first_result = first()
        try:
            second_result = second()
        except RemoteError as exc:
            log.warning("%s: second step failed (%s); rolling back", operation, exc)
            try:
                undo(first_result)
            except RemoteError as undo_exc:
                log.critical("%s: rollback failed, local and remote state have diverged: %s", operation, undo_exc)
                self._refresh_after_failure()
                raise CompensationFailedError(
                    f"{operation} failed ({exc}) and could not be rolled back: {undo_exc}"
                ) from undo_exc
            raise
        return first_result, second_result

    def _set_stock(self, product_id: int, stock: int) -> Dict[str, Any]:
        return self._remote("update stock", self.gateway.update, Table.PRODUCTS, product_id, {"stock": stock})

    def _upload_image(self, image: ImageUpload) -> str:
        if self.image_storage is None:
            log.error("Image upload requested but no image storage is configured")
            raise ValidationError("Image uploads require a configured remote backend")
        return self._remote("upload image", self.image_storage.upload, image)

    def _discard_images(self, urls: Iterable[Optional[str]], removed_ids: Set[Optional[int]]) -> None:
        """Best-effort removal of images no remaining product references."""

        if self.image_storage is None:
            return
        still_used = {product.image_url for product in self.products if product.id not in removed_ids}
        for url in {url for url in urls if url}:
            if url in still_used:
                continue
            try:
                self._remote("delete image", self.image_storage.delete, url)
            except RemoteError as exc:
                log.warning("Could not delete image '%s': %s", url, exc)

    # -- queries ----------------------------------------------------------

    def _find_product(self, product_id: Optional[int]) -> Optional[Product]:
        if product_id is None:
            return None
        return next((product for product in self.products if product.id == product_id), None)

    def get_product(self, product_id: int) -> Product:
        """Return the product with ``product_id``.

        Raises:
            NotFoundError: If no local product has that identifier.
        """

        product = self._find_product(product_id)
        if product is None:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise NotFoundError(f"Unknown product id: {product_id}")
        return product

    def get_sale(self, sale_id: int) -> Sale:
        for sale in self.sales:
            if sale.id == sale_id:
                return sale
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise NotFoundError(f"Unknown sale id: {sale_id}")

    def get_delivery(self, delivery_id: int) -> Delivery:
        for delivery in self.deliveries:
            if delivery.id == delivery_id:
                return delivery
        log.warning("Delivery lookup failed for id '%s'", delivery_id)
        raise NotFoundError(f"Unknown delivery id: {delivery_id}")

    def delivery_for_product(self, product_id: int) -> Optional[Delivery]:
        return next((d for d in self.deliveries if d.product_id == product_id), None)

    def find_products_by_name(self, query: str) -> List[Product]:
        needle = query.strip().casefold()
        return [product for product in self.products if needle in product.name.casefold()]

    def find_products_by_keywords(self, keywords: Sequence[str]) -> List[Product]:
        """Products whose name, category or supplier contain every keyword."""

        needles = [keyword.strip().casefold() for keyword in keywords if keyword.strip()]
        matches = []
        for product in self.products:
            haystack = " ".join((product.name, product.category, product.supplier)).casefold()
            if all(needle in haystack for needle in needles):
                matches.append(product)
        return matches

    # -- products ---------------------------------------------------------

    def add_product(
        self,
        data: Union[ProductDraft, Mapping[str, Any]],
        image: Optional[ImageUpload] = None,
    ) -> Product:
        """Validate and create a product, then log a ``created`` entry.

        Args:
            data (ProductDraft | Mapping[str, Any]): Product attributes.
            image (ImageUpload | None): Optional picture uploaded before the
                product is created; its URL replaces ``image_url``.

        Returns:
            Product: The product as refetched, or as returned by the gateway
            when that refetch failed.

        Raises:
            ValidationError: If ``data`` is invalid.
            RemoteError: If the upload or the create call fails. A picture
                uploaded for a failed create is deleted again.
        """

        self._ensure_fresh()
        draft = build_product_draft(data)
        uploaded = None
        if image is not None:
            uploaded = self._upload_image(image)
            draft = replace(draft, image_url=uploaded)

        fields = serialize_product(draft)
        fields["created_at"] = format_timestamp(self._now())
        try:
            record = self._remote("create product", self.gateway.create, Table.PRODUCTS, fields)
        except RemoteError:
            if uploaded:
                self._discard_images([uploaded], set())
            raise

        product_id = int(record["id"])
        self._append_log(ActivityAction.CREATED, product_id, draft.name, f"initial stock: {draft.stock}")
        log.info("Created product '%s' (id=%s, stock=%s)", draft.name, product_id, draft.stock)
        return self._product_after_write(record)

    def update_product(
        self,
        product_id: int,
        patch: Mapping[str, Any],
        image: Optional[ImageUpload] = None,
    ) -> Product:
        """Apply ``patch`` to a product and log what changed.

        Only the fields that differ are sent to the backend. The ``updated``
        entry carries one ``Label: old → new`` fragment per changed field; a
        new picture is reported as the single fragment ``image updated``.
        A patch that changes nothing performs no write and logs nothing.

        Raises:
            NotFoundError: If ``product_id`` is unknown.
            ValidationError: If ``patch`` names unknown fields or yields an
                invalid product.
            RemoteError: If the update fails; local state is untouched and a
                freshly uploaded picture is deleted.
        """

        self._ensure_fresh()
        current = self.get_product(product_id)
        draft = build_product_draft({**_draft_of(current), **patch})

        uploaded = None
        if image is not None:
            uploaded = self._upload_image(image)
            draft = replace(draft, image_url=uploaded)

        values = asdict(draft)
        fields, fragments = describe_changes(current, values)
        image_changed = draft.image_url != current.image_url
        if image_changed:
            fields["image_url"] = draft.image_url
            fragments.append(IMAGE_UPDATED)
        if not fields:
            log.info("Update of product '%s' changed nothing", product_id)
            return current

        try:
            record = self._remote("update product", self.gateway.update, Table.PRODUCTS, product_id, fields)
        except RemoteError:
            if uploaded:
                self._discard_images([uploaded], set())
            raise

        self._append_log(ActivityAction.UPDATED, product_id, draft.name, "; ".join(fragments))
        log.info("Updated product '%s': %s", product_id, "; ".join(fragments))
        if image_changed:
            self._discard_images([current.image_url], {product_id})
        return self._product_after_write(record)

    def delete_product(self, product_id: int) -> Product:
        """Delete one product; its sales and log entries are kept."""

        self._ensure_fresh()
        product = self.get_product(product_id)
        self._remote("delete product", self.gateway.delete, Table.PRODUCTS, product_id)
        self._append_log(ActivityAction.DELETED, product_id, product.name)
        log.info("Deleted product '%s' (id=%s)", product.name, product_id)
        self._discard_images([product.image_url], {product_id})
        self._refresh_after_write()
        return product

    def delete_multiple_products(self, product_ids: Sequence[int]) -> List[Product]:
        """Delete several products in one all-or-nothing batch.

        Every identifier is resolved before the batch is sent. One ``deleted``
        entry tagged ``bulk delete`` is appended per product once the batch
        succeeds.

        Raises:
            ValidationError: If ``product_ids`` is empty.
            NotFoundError: If any identifier is unknown; nothing is deleted.
            RemoteError: If the batch fails; nothing is logged.
        """

        self._ensure_fresh()
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            raise ValidationError("No products selected")
        products = [self.get_product(product_id) for product_id in ids]

        self._remote("delete products", self.gateway.delete_many, Table.PRODUCTS, ids)
        for product in products:
            self._append_log(ActivityAction.DELETED, product.id, product.name, BULK_DELETE)
        log.info("Deleted %d products in bulk", len(products))
        self._discard_images([product.image_url for product in products], set(ids))
        self._refresh_after_write()
        return products

    def duplicate_product(self, product_id: int) -> Product:
        """Create a copy of a product with a suffixed name and fresh identity."""

        self._ensure_fresh()
        source = self.get_product(product_id)
        draft = replace(build_product_draft(_draft_of(source)), name=f"{source.name}{COPY_SUFFIX}")
        fields = serialize_product(draft)
        fields["created_at"] = format_timestamp(self._now())
        record = self._remote("duplicate product", self.gateway.create, Table.PRODUCTS, fields)

        new_id = int(record["id"])
        self._append_log(ActivityAction.CREATED, new_id, draft.name, f"duplicated from {source.name}")
        log.info("Duplicated product '%s' as id=%s", source.name, new_id)
        return self._product_after_write(record)

    def add_multiple_products(self, rows: Iterable[Mapping[str, Any]]) -> BulkImportResult:
        """Create products from imported rows, skipping invalid ones.

        Each created product gets its own ``created`` entry tagged
        ``bulk import``. Rows failing validation are reported with their
        zero-based index and the reason.

        Raises:
            RemoteError: If a create call fails. Products created before the
                failure stay (and stay logged); state is refetched first.
        """

        self._ensure_fresh()
        created: List[Dict[str, Any]] = []
        skipped: List[SkippedRow] = []
        for index, row in enumerate(rows):
            try:
                draft = build_product_draft(row)
            except ValidationError as exc:
                skipped.append(SkippedRow(index=index, reason=str(exc)))
                continue

            fields = serialize_product(draft)
            fields["created_at"] = format_timestamp(self._now())
            try:
                record = self._remote("import product", self.gateway.create, Table.PRODUCTS, fields)
            except RemoteError:
                log.error("Bulk import stopped at row %d after %d products", index, len(created))
                self._refresh_after_failure()
                raise
            created.append(record)
            self._append_log(ActivityAction.CREATED, int(record["id"]), draft.name, BULK_IMPORT)

        log.info("Bulk import created %d products, skipped %d rows", len(created), len(skipped))
        refreshed = self._refresh_after_write()
        return BulkImportResult(
            created=[self._product_from(record, refreshed) for record in created],
            skipped=skipped,
        )

    def update_multiple_products(
        self,
        product_ids: Sequence[int],
        payload: Union[BulkUpdate, Mapping[str, Any]],
    ) -> List[Product]:
        """Apply one bulk edit to several products.

        The payload is parsed and every identifier resolved before any write.
        Each product is then updated with its own gateway call and, when
        something changed, gets one ``updated`` entry whose details start with
        ``bulk update``. Products the edit leaves unchanged are skipped.

        Returns:
            list[Product]: The products that changed, as refetched.

        Raises:
            ValidationError: If the payload is invalid or no product is given.
            NotFoundError: If any identifier is unknown.
            RemoteError: If the k-th update fails. Updates 1..k-1 remain
                applied and logged; state is refetched before raising.
        """

        self._ensure_fresh()
        update = payload if isinstance(payload, BulkUpdate) else parse_bulk_payload(payload)
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            raise ValidationError("No products selected")
        products = [self.get_product(product_id) for product_id in ids]

        updated: List[Dict[str, Any]] = []
        for product in products:
            fields, fragments = describe_changes(product, update.changes_for(product))
            if not fields:
                continue
            try:
                record = self._remote(
                    "bulk update product", self.gateway.update, Table.PRODUCTS, product.id, fields
                )
            except RemoteError:
                log.error("Bulk update stopped at product '%s' after %d updates", product.id, len(updated))
                self._refresh_after_failure()
                raise
            updated.append(record)
            self._append_log(
                ActivityAction.UPDATED,
                product.id,
                product.name,
                f"{BULK_UPDATE}: {'; '.join(fragments)}",
            )

        log.info("Bulk update changed %d of %d products", len(updated), len(products))
        refreshed = self._refresh_after_write()
        return [self._product_from(record, refreshed) for record in updated]

    # -- sales ------------------------------------------------------------

    def add_sale(self, product_id: int, quantity: int) -> Sale:
        """Sell ``quantity`` units of a product.

        The product stock is decremented first, then the sale is inserted
        with ``total_price`` and ``total_margin`` frozen from the product's
        current prices. If the insert fails the stock write is reverted.

        Returns:
            Sale: The recorded sale.

        Raises:
            ValidationError: If ``quantity`` is not a positive integer.
            InsufficientStockError: If the product is unknown, reserved by a
                delivery, or has fewer than ``quantity`` units in stock.
            RemoteError: If a remote step fails and was rolled back.
            CompensationFailedError: If the rollback failed as well.
        """

        self._ensure_fresh()
        quantity = require_quantity(quantity)
        product = self._find_product(product_id)
        if product is None:
            log.warning("Sale rejected: unknown product id '%s'", product_id)
            raise InsufficientStockError(f"Unknown product id: {product_id}")
        if product.status is ProductStatus.IN_DELIVERY:
            log.warning("Sale rejected: product '%s' is reserved by a delivery", product_id)
            raise InsufficientStockError(f"'{product.name}' is reserved by a delivery")
        if quantity > product.stock:
            log.warning("Sale rejected: %s requested, %s in stock for '%s'", quantity, product.stock, product_id)
            raise InsufficientStockError(
                f"Only {product.stock} unit(s) of '{product.name}' in stock, {quantity} requested"
            )

        sale = _sale_from(product.id, product.name, quantity, product.sell_price, product.buy_price, self._now())
        _, record = self._apply_with_compensation(
            "sale",
            lambda: self._set_stock(product.id, product.stock - quantity),
            lambda: self._remote("create sale", self.gateway.create, Table.SALES, serialize_sale(sale)),
            lambda _: self._set_stock(product.id, product.stock),
        )

        self._append_log(ActivityAction.SOLD, product.id, product.name, f"{quantity} unit(s) sold")
        log.info("Sold %s x '%s' (total=%s)", quantity, product.name, sale.total_price)
        self._refresh_after_write()
        return deserialize_sale(record)

    def cancel_sale(self, sale_id: int) -> Sale:
        """Cancel a sale and return its quantity to stock.

        The product status is re-derived from the restored stock. When the
        product no longer exists the sale is still deleted; stock cannot be
        restored and the log entry says so.

        Raises:
            NotFoundError: If ``sale_id`` is unknown.
            RemoteError: If a remote step fails and was rolled back.
            CompensationFailedError: If the rollback failed as well.
        """

        self._ensure_fresh()
        sale = self.get_sale(sale_id)
        product = self._find_product(sale.product_id)
        if product is None:
            log.warning("Cancelling sale '%s' of a deleted product; stock not restored", sale_id)
            self._remote("delete sale", self.gateway.delete, Table.SALES, sale.id)
            details = f"{sale.quantity} unit(s); product no longer exists, stock not restored"
        else:
            self._apply_with_compensation(
                "cancel sale",
                lambda: self._set_stock(product.id, product.stock + sale.quantity),
                lambda: self._remote("delete sale", self.gateway.delete, Table.SALES, sale.id),
                lambda _: self._set_stock(product.id, product.stock),
            )
            details = f"{sale.quantity} unit(s) returned to stock"

        self._append_log(ActivityAction.SALE_CANCELLED, sale.product_id, sale.product_name, details)
        log.info("Cancelled sale '%s' of '%s'", sale_id, sale.product_name)
        self._refresh_after_write()
        return sale

    # -- deliveries -------------------------------------------------------

    def set_product_to_delivery(self, product_id: int, quantity: int = 1) -> Delivery:
        """Reserve ``quantity`` units of a product for delivery.

        The units leave the stock and a delivery record snapshots the
        product's name, prices and picture. While the delivery is open the
        product reports ``in_delivery`` and cannot be sold directly.

        Raises:
            ValidationError: If ``quantity`` is invalid or the product is
                already in delivery.
            NotFoundError: If ``product_id`` is unknown.
            InsufficientStockError: If stock is below ``quantity``.
            RemoteError: If a remote step fails and was rolled back.
            CompensationFailedError: If the rollback failed as well.
        """

        self._ensure_fresh()
        quantity = require_quantity(quantity)
        product = self.get_product(product_id)
        if product.status is ProductStatus.IN_DELIVERY:
            log.error("Product '%s' is already in delivery", product_id)
            raise ValidationError(f"'{product.name}' is already in delivery")
        if quantity > product.stock:
            log.warning("Delivery rejected: %s requested, %s in stock for '%s'", quantity, product.stock, product_id)
            raise InsufficientStockError(
                f"Only {product.stock} unit(s) of '{product.name}' in stock, {quantity} requested"
            )

        delivery = Delivery(
            id=None,
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            sell_price=product.sell_price,
            buy_price=product.buy_price,
            created_at=self._now(),
            image_url=product.image_url,
        )
        _, record = self._apply_with_compensation(
            "set delivery",
            lambda: self._set_stock(product.id, product.stock - quantity),
            lambda: self._remote("create delivery", self.gateway.create, Table.DELIVERIES, serialize_delivery(delivery)),
            lambda _: self._set_stock(product.id, product.stock),
        )

        self._append_log(
            ActivityAction.DELIVERY_SET,
            product.id,
            product.name,
            f"{quantity} unit(s) reserved for delivery",
        )
        log.info("Reserved %s x '%s' for delivery", quantity, product.name)
        self._refresh_after_write()
        return deserialize_delivery(record)

    def confirm_sale_from_delivery(self, delivery_id: int) -> Sale:
        """Turn an open delivery into a sale at the delivery's snapshot prices.

        The sale is inserted first, then the delivery removed; if removing the
        delivery fails the new sale is deleted again.

        Raises:
            NotFoundError: If ``delivery_id`` is unknown.
            RemoteError: If a remote step fails and was rolled back.
            CompensationFailedError: If the rollback failed as well.
        """

        self._ensure_fresh()
        delivery = self.get_delivery(delivery_id)
        sale = _sale_from(
            delivery.product_id,
            delivery.product_name,
            delivery.quantity,
            delivery.sell_price,
            delivery.buy_price,
            self._now(),
        )
        record, _ = self._apply_with_compensation(
            "confirm delivery",
            lambda: self._remote("create sale", self.gateway.create, Table.SALES, serialize_sale(sale)),
            lambda: self._remote("delete delivery", self.gateway.delete, Table.DELIVERIES, delivery.id),
            lambda created: self._remote("delete sale", self.gateway.delete, Table.SALES, int(created["id"])),
        )

        self._append_log(
            ActivityAction.SOLD,
            delivery.product_id,
            delivery.product_name,
            f"{delivery.quantity} unit(s) sold from delivery",
        )
        log.info("Confirmed delivery '%s' as a sale", delivery_id)
        self._refresh_after_write()
        return deserialize_sale(record)

    def cancel_delivery(self, delivery_id: int) -> Delivery:
        """Cancel an open delivery and return its units to stock.

        Raises:
            NotFoundError: If ``delivery_id`` is unknown.
            RemoteError: If a remote step fails and was rolled back.
            CompensationFailedError: If the rollback failed as well.
        """

        self._ensure_fresh()
        delivery = self.get_delivery(delivery_id)
        product = self._find_product(delivery.product_id)
        if product is None:
            log.warning("Cancelling delivery '%s' of a deleted product; stock not restored", delivery_id)
            self._remote("delete delivery", self.gateway.delete, Table.DELIVERIES, delivery.id)
            details = f"{delivery.quantity} unit(s); product no longer exists, stock not restored"
        else:
            self._apply_with_compensation(
                "cancel delivery",
                lambda: self._set_stock(product.id, product.stock + delivery.quantity),
                lambda: self._remote("delete delivery", self.gateway.delete, Table.DELIVERIES, delivery.id),
                lambda _: self._set_stock(product.id, product.stock),
            )
            details = f"{delivery.quantity} unit(s) returned to stock"

        self._append_log(ActivityAction.DELIVERY_CANCELLED, delivery.product_id, delivery.product_name, details)
        log.info("Cancelled delivery '%s' of '%s'", delivery_id, delivery.product_name)
        self._refresh_after_write()
        return delivery

    # -- data management --------------------------------------------------

    def export_data(self) -> Dict[str, List[Dict[str, Any]]]:
        """Return a storage-shaped snapshot of every table, newest first."""

        return {
            Table.PRODUCTS.value: [to_storage(product, Table.PRODUCTS) for product in self.products],
            Table.SALES.value: [to_storage(sale, Table.SALES) for sale in self.sales],
            Table.DELIVERIES.value: [to_storage(delivery, Table.DELIVERIES) for delivery in self.deliveries],
            Table.ACTIVITY_LOG.value: [to_storage(entry, Table.ACTIVITY_LOG) for entry in self.activity_log],
        }

    def _wipe(self) -> None:
        # dependents first so no sale or delivery briefly outlives its product
        for table in (Table.ACTIVITY_LOG, Table.SALES, Table.DELIVERIES, Table.PRODUCTS):
            ids = [record["id"] for record in self._remote(f"list {table.value}", self.gateway.list, table)]
            if ids:
                self._remote(f"clear {table.value}", self.gateway.delete_many, table, ids)

    def import_data(self, snapshot: Mapping[str, Sequence[Mapping[str, Any]]]) -> Dict[str, int]:
        """Replace every table with the content of an exported snapshot.

        Product identifiers are reallocated by the backend; ``product_id``
        references in sales, deliveries and log entries are remapped to the
        new identifiers (or cleared when the product is not in the snapshot).
        No activity-log entry is added for the import itself.

        Returns:
            dict[str, int]: Number of records written per table.

        Raises:
            ValidationError: If the snapshot has unknown tables or records
                that cannot be mapped. Nothing is written in that case.
            RemoteError: If a remote call fails mid-way; state is refetched.
        """

        known = {table.value for table in Table}
        unknown = sorted(set(snapshot) - known)
        if unknown:
            raise ValidationError(f"Unknown tables in snapshot: {', '.join(unknown)}")
        try:
            entities = {
                table: [to_domain(record, table) for record in snapshot.get(table.value, [])]
                for table in Table
            }
        except (ValueError, TypeError, AttributeError) as exc:
            log.error("Import rejected: %s", exc)
            raise ValidationError(f"Invalid snapshot: {exc}") from exc

        counts = {table.value: 0 for table in Table}
        id_map: Dict[int, int] = {}
        try:
            self._wipe()
            # oldest first so backends that stamp insertion order keep it
            for product in reversed(entities[Table.PRODUCTS]):
                fields = to_storage(replace(product, id=None), Table.PRODUCTS)
                record = self._remote("import product", self.gateway.create, Table.PRODUCTS, fields)
                if product.id is not None:
                    id_map[product.id] = int(record["id"])
                counts[Table.PRODUCTS.value] += 1
            for table in (Table.SALES, Table.DELIVERIES, Table.ACTIVITY_LOG):
                for entity in reversed(entities[table]):
                    remapped = replace(entity, id=None, product_id=id_map.get(entity.product_id))
                    self._remote(f"import {table.value}", self.gateway.create, table, to_storage(remapped, table))
                    counts[table.value] += 1
        except RemoteError:
            self._refresh_after_failure()
            raise

        log.info("Imported snapshot: %s", ", ".join(f"{name}={count}" for name, count in counts.items()))
        self._refresh_after_write()
        return counts

    def reset_data(self) -> int:
        """Wipe every table, activity log included, and reload the seed products.

        Returns:
            int: Number of seed products created.
        """

        try:
            self._wipe()
            products = seed_records()[Table.PRODUCTS.value]
            for record in products:
                self._remote("seed product", self.gateway.create, Table.PRODUCTS, record)
        except RemoteError:
            self._refresh_after_failure()
            raise
        log.info("Reset data: %d seed products loaded", len(products))
        self._refresh_after_write()
        return len(products)


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


def build_gateway(settings: Settings) -> RemoteGateway:
    """Pick the gateway described by ``settings``.

    Remote credentials win over a local workbook; with neither, the store
    runs in demo mode on an in-memory copy of the seed dataset.
    """

    if settings.remote_configured:
        log.info("Using remote backend at '%s'", settings.remote_url)
        return SupabaseGateway(settings.remote_url, settings.remote_key, timeout=settings.request_timeout)
    if settings.data_file is not None:
        return WorkbookGateway(settings.data_file)
    log.info("No backend configured; running in demo mode on seed data")
    return InMemoryGateway(seed_records())


def build_image_storage(settings: Settings) -> Optional[ImageStorage]:
    if not settings.remote_configured:
        return None
    return SupabaseImageStorage(
        settings.remote_url,
        settings.remote_key,
        bucket=settings.image_bucket,
        timeout=settings.request_timeout,
    )


def load_store(config_path: Optional[Path] = None) -> DomainStore:
    """Load settings, connect the matching gateway and fetch initial state.

    Raises:
        FileNotFoundError: If ``config_path`` is given but missing, or the
            configured workbook does not exist.
        ValueError: If the configuration holds invalid values.
        RemoteError: If the initial fetch fails.
    """

    settings = load_settings(config_path)
    store = DomainStore(build_gateway(settings), image_storage=build_image_storage(settings))
    return store.refresh()

"""Translation between storage-native records and domain entities.

The backend speaks snake_case column names (``buy_price``, ``created_at``,
``product_id`` ...) and returns loosely typed values: numbers may arrive as
floats, strings or ints, timestamps as ISO strings with or without a ``Z``
suffix. This module is the single place that knows that shape. Everything
above it works with the frozen dataclasses defined here.

The functions are pure: no I/O, no clock, no shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .constants import ActivityAction, ProductStatus, Table


EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class Product:
    """In-memory view of a row from the ``products`` table.

    ``status`` is derived, never persisted: the mapper fills it from
    ``stock`` and the domain store overrides it with ``in_delivery`` when an
    open delivery references the product.
    """

    id: Optional[int]
    name: str
    category: str
    supplier: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    created_at: datetime
    status: ProductStatus = ProductStatus.ACTIVE
    image_url: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class ProductDraft:
    """Validated attributes for a product that does not exist yet."""

    name: str
    category: str
    supplier: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int
    image_url: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Sale:
    """In-memory view of a row from the ``sales`` table."""

    id: Optional[int]
    product_id: Optional[int]
    product_name: str
    quantity: int
    sell_price: Decimal
    total_price: Decimal
    total_margin: Decimal
    created_at: datetime


@dataclass(frozen=True)
class Delivery:
    """In-memory view of a row from the ``deliveries`` table."""

    id: Optional[int]
    product_id: Optional[int]
    product_name: str
    quantity: int
    sell_price: Decimal
    buy_price: Decimal
    created_at: datetime
    image_url: Optional[str] = None


@dataclass(frozen=True)
class ActivityLog:
    """In-memory view of a row from the ``activity_log`` table."""

    id: Optional[int]
    product_id: Optional[int]
    product_name: str
    action: ActivityAction
    details: Optional[str]
    created_at: datetime


Entity = Union[Product, Sale, Delivery, ActivityLog]


def stock_status(stock: int) -> ProductStatus:
    """Return the status implied by ``stock`` alone."""

    return ProductStatus.OUT_OF_STOCK if stock == 0 else ProductStatus.ACTIVE


def parse_timestamp(value: Any) -> datetime:
    """Coerce a storage timestamp into a timezone-aware ``datetime``.

    Accepts ``datetime`` instances (naive values are assumed to be UTC) and
    ISO-8601 strings, including the ``Z`` suffix emitted by PostgREST. Missing
    values map to :data:`EPOCH` so that mapping stays total.

    Args:
        value (Any): Raw timestamp as returned by a gateway.

    Returns:
        datetime: Aware datetime.

    Raises:
        ValueError: If ``value`` is a string that is not valid ISO-8601.
    """

    if value is None or value == "":
        return EPOCH
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(str(value).strip())
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime as the canonical ISO string sent to storage."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.isoformat()


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def _int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(_decimal(value))


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return _int(value)


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def deserialize_product(raw: Mapping[str, Any]) -> Product:
    """Convert a raw ``products`` record into a :class:`Product`.

    Any ``status`` column present in storage is ignored; the status is
    recomputed from ``stock``.
    """

    stock = _int(raw.get("stock"))
    return Product(
        id=_optional_int(raw.get("id")),
        name=_text(raw.get("name")),
        category=_text(raw.get("category")),
        supplier=_text(raw.get("supplier")),
        buy_price=_decimal(raw.get("buy_price")),
        sell_price=_decimal(raw.get("sell_price")),
        stock=stock,
        created_at=parse_timestamp(raw.get("created_at")),
        status=stock_status(stock),
        image_url=_optional_text(raw.get("image_url")),
        description=_optional_text(raw.get("description")),
    )


def deserialize_sale(raw: Mapping[str, Any]) -> Sale:
    """Convert a raw ``sales`` record into a :class:`Sale`."""

    return Sale(
        id=_optional_int(raw.get("id")),
        product_id=_optional_int(raw.get("product_id")),
        product_name=_text(raw.get("product_name")),
        quantity=_int(raw.get("quantity")),
        sell_price=_decimal(raw.get("sell_price")),
        total_price=_decimal(raw.get("total_price")),
        total_margin=_decimal(raw.get("total_margin")),
        created_at=parse_timestamp(raw.get("created_at")),
    )


def deserialize_delivery(raw: Mapping[str, Any]) -> Delivery:
    """Convert a raw ``deliveries`` record into a :class:`Delivery`."""

    return Delivery(
        id=_optional_int(raw.get("id")),
        product_id=_optional_int(raw.get("product_id")),
        product_name=_text(raw.get("product_name")),
        quantity=_int(raw.get("quantity")),
        sell_price=_decimal(raw.get("sell_price")),
        buy_price=_decimal(raw.get("buy_price")),
        created_at=parse_timestamp(raw.get("created_at")),
        image_url=_optional_text(raw.get("image_url")),
    )


def deserialize_activity_log(raw: Mapping[str, Any]) -> ActivityLog:
    """Convert a raw ``activity_log`` record into an :class:`ActivityLog`.

    Raises:
        ValueError: If the stored action is not a known
            :class:`~stockdesk.constants.ActivityAction`.
    """

    return ActivityLog(
        id=_optional_int(raw.get("id")),
        product_id=_optional_int(raw.get("product_id")),
        product_name=_text(raw.get("product_name")),
        action=ActivityAction(_text(raw.get("action"))),
        details=_optional_text(raw.get("details")),
        created_at=parse_timestamp(raw.get("created_at")),
    )


def _with_id(entity_id: Optional[int], fields: Dict[str, Any]) -> Dict[str, Any]:
    # Unsaved entities let the backend allocate the identifier.
    if entity_id is not None:
        return {"id": entity_id, **fields}
    return fields


def serialize_product(product: Union[Product, ProductDraft]) -> Dict[str, Any]:
    """Convert a product (or a draft) into storage-native fields.

    Drafts carry no identifier nor creation timestamp, so those keys are left
    for the caller or the backend to supply.
    """

    fields: Dict[str, Any] = {
        "name": product.name,
        "description": product.description,
        "category": product.category,
        "supplier": product.supplier,
        "buy_price": product.buy_price,
        "sell_price": product.sell_price,
        "stock": product.stock,
        "image_url": product.image_url,
    }
    if isinstance(product, ProductDraft):
        return fields
    fields["created_at"] = format_timestamp(product.created_at)
    return _with_id(product.id, fields)


def serialize_sale(sale: Sale) -> Dict[str, Any]:
    return _with_id(
        sale.id,
        {
            "product_id": sale.product_id,
            "product_name": sale.product_name,
            "quantity": sale.quantity,
            "sell_price": sale.sell_price,
            "total_price": sale.total_price,
            "total_margin": sale.total_margin,
            "created_at": format_timestamp(sale.created_at),
        },
    )


def serialize_delivery(delivery: Delivery) -> Dict[str, Any]:
    return _with_id(
        delivery.id,
        {
            "product_id": delivery.product_id,
            "product_name": delivery.product_name,
            "quantity": delivery.quantity,
            "sell_price": delivery.sell_price,
            "buy_price": delivery.buy_price,
            "image_url": delivery.image_url,
            "created_at": format_timestamp(delivery.created_at),
        },
    )


def serialize_activity_log(entry: ActivityLog) -> Dict[str, Any]:
    return _with_id(
        entry.id,
        {
            "product_id": entry.product_id,
            "product_name": entry.product_name,
            "action": entry.action.value,
            "details": entry.details,
            "created_at": format_timestamp(entry.created_at),
        },
    )


_DESERIALIZERS: Dict[Table, Callable[[Mapping[str, Any]], Entity]] = {
    Table.PRODUCTS: deserialize_product,
    Table.SALES: deserialize_sale,
    Table.DELIVERIES: deserialize_delivery,
    Table.ACTIVITY_LOG: deserialize_activity_log,
}

_SERIALIZERS: Dict[Table, Callable[[Any], Dict[str, Any]]] = {
    Table.PRODUCTS: serialize_product,
    Table.SALES: serialize_sale,
    Table.DELIVERIES: serialize_delivery,
    Table.ACTIVITY_LOG: serialize_activity_log,
}


def to_domain(raw: Mapping[str, Any], kind: Table) -> Entity:
    """Map a storage-native record of table ``kind`` to its domain entity.

    Args:
        raw (Mapping[str, Any]): Record as returned by a gateway.
        kind (Table): Table the record belongs to.

    Returns:
        Entity: Frozen dataclass matching ``kind``.
    """

    return _DESERIALIZERS[Table(kind)](raw)


def to_storage(entity: Any, kind: Table) -> Dict[str, Any]:
    """Map a domain entity of table ``kind`` to storage-native fields."""

    return _SERIALIZERS[Table(kind)](entity)


__all__ = [
    "EPOCH",
    "Product",
    "ProductDraft",
    "Sale",
    "Delivery",
    "ActivityLog",
    "Entity",
    "stock_status",
    "parse_timestamp",
    "format_timestamp",
    "deserialize_product",
    "deserialize_sale",
    "deserialize_delivery",
    "deserialize_activity_log",
    "serialize_product",
    "serialize_sale",
    "serialize_delivery",
    "serialize_activity_log",
    "to_domain",
    "to_storage",
]

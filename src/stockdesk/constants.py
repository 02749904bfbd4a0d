"""Enumerations and table layouts shared across stockdesk modules.

Centralises domain constants so that the record mapper, the gateways, the
domain store, and the presentation layers can rely on a single source of
truth for table names, storage columns, and status values.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional, Sequence


class Table(str, Enum):
    """Enumerate the backend tables mirrored by the domain store."""

    PRODUCTS = "products"
    SALES = "sales"
    DELIVERIES = "deliveries"
    ACTIVITY_LOG = "activity_log"


class ProductStatus(str, Enum):
    """Enumerate the derived availability states of a product."""

    ACTIVE = "active"
    OUT_OF_STOCK = "out_of_stock"
    IN_DELIVERY = "in_delivery"


class ActivityAction(str, Enum):
    """Enumerate the audit trail actions appended by the domain store."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    SOLD = "sold"
    SALE_CANCELLED = "sale_cancelled"
    DELIVERY_SET = "delivery_set"
    DELIVERY_CANCELLED = "delivery_cancelled"


class BulkUpdateMode(str, Enum):
    """Enumerate how a numeric field is changed by a bulk edit."""

    SET = "set"
    INCREASE = "increase"
    DECREASE = "decrease"


class TimeRange(str, Enum):
    """Enumerate the reporting windows offered by the statistics views."""

    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_365_DAYS = "365d"
    ALL_TIME = "all"

    @property
    def days(self) -> Optional[int]:
        return _TIME_RANGE_DAYS[self]


_TIME_RANGE_DAYS = {
    TimeRange.LAST_7_DAYS: 7,
    TimeRange.LAST_30_DAYS: 30,
    TimeRange.LAST_365_DAYS: 365,
    TimeRange.ALL_TIME: None,
}


class StockLevel(str, Enum):
    """Enumerate the stock level filters understood by product listings."""

    LOW = "low"
    OUT_OF_STOCK = "out_of_stock"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class Language(str, Enum):
    FR = "fr"
    EN = "en"
    AR = "ar"


# Storage-native column order of every table.
TABLE_COLUMNS: Mapping[Table, Sequence[str]] = {
    Table.PRODUCTS: [
        "id",
        "name",
        "description",
        "category",
        "supplier",
        "buy_price",
        "sell_price",
        "stock",
        "image_url",
        "created_at",
    ],
    Table.SALES: [
        "id",
        "product_id",
        "product_name",
        "quantity",
        "sell_price",
        "total_price",
        "total_margin",
        "created_at",
    ],
    Table.DELIVERIES: [
        "id",
        "product_id",
        "product_name",
        "quantity",
        "sell_price",
        "buy_price",
        "image_url",
        "created_at",
    ],
    Table.ACTIVITY_LOG: [
        "id",
        "product_id",
        "product_name",
        "action",
        "details",
        "created_at",
    ],
}

LOW_STOCK_THRESHOLD = 5
TOP_PRODUCTS_LIMIT = 5
COPY_SUFFIX = " (copy)"
DEFAULT_IMAGE_BUCKET = "product-images"
DEFAULT_REQUEST_TIMEOUT = 10.0


__all__ = [
    "Table",
    "ProductStatus",
    "ActivityAction",
    "BulkUpdateMode",
    "TimeRange",
    "StockLevel",
    "Theme",
    "Language",
    "TABLE_COLUMNS",
    "LOW_STOCK_THRESHOLD",
    "TOP_PRODUCTS_LIMIT",
    "COPY_SUFFIX",
    "DEFAULT_IMAGE_BUCKET",
    "DEFAULT_REQUEST_TIMEOUT",
]

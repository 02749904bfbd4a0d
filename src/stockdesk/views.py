"""Derived views over domain store state.

Every function here is pure: it only reads the entities it is given (plus an
explicit ``now`` where time matters) and returns new values, so calling it
twice with the same inputs gives equal results. Money stays in
:class:`~decimal.Decimal` end to end.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from .constants import LOW_STOCK_THRESHOLD, TOP_PRODUCTS_LIMIT, ProductStatus, StockLevel, TimeRange
from .record_mapper import ActivityLog, Delivery, Product, Sale


ZERO = Decimal("0")
HUNDRED = Decimal("100")
CATEGORY_SEPARATOR = ">"
WEEKLY_PROFIT_WEEKS = 8


@dataclass(frozen=True)
class InventorySummary:
    product_count: int
    units_in_stock: int
    stock_value: Decimal
    potential_revenue: Decimal
    potential_profit: Decimal
    low_stock_count: int
    out_of_stock_count: int


@dataclass(frozen=True)
class SalesSummary:
    revenue: Decimal
    profit: Decimal
    units: int
    orders: int
    average_order_value: Decimal


@dataclass(frozen=True)
class ProfitPoint:
    label: str
    profit: Decimal


@dataclass(frozen=True)
class RankedProduct:
    product_name: str
    revenue: Decimal
    units: int


@dataclass(frozen=True)
class StockAlert:
    product_id: Optional[int]
    product_name: str
    stock: int
    severity: str


@dataclass(frozen=True)
class DeliverySummary:
    count: int
    items: int
    value: Decimal


@dataclass(frozen=True)
class SearchResults:
    products: List[Product]
    sales: List[Sale]
    activity_log: List[ActivityLog]


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def margin_percent(product: Product) -> Decimal:
    """Margin as a percentage of the sell price; ``0`` when nothing is charged."""

    if product.sell_price <= 0:
        return ZERO
    return (product.sell_price - product.buy_price) / product.sell_price * HUNDRED


def stock_value(products: Iterable[Product]) -> Decimal:
    return sum((product.buy_price * product.stock for product in products), ZERO)


def potential_revenue(products: Iterable[Product]) -> Decimal:
    return sum((product.sell_price * product.stock for product in products), ZERO)


def potential_profit(products: Iterable[Product]) -> Decimal:
    return sum(((product.sell_price - product.buy_price) * product.stock for product in products), ZERO)


def is_low_stock(product: Product, threshold: int = LOW_STOCK_THRESHOLD) -> bool:
    return 0 < product.stock <= threshold


def inventory_summary(products: Sequence[Product], threshold: int = LOW_STOCK_THRESHOLD) -> InventorySummary:
    """Aggregate the headline inventory figures shown on the dashboard."""

    return InventorySummary(
        product_count=len(products),
        units_in_stock=sum(product.stock for product in products),
        stock_value=stock_value(products),
        potential_revenue=potential_revenue(products),
        potential_profit=potential_profit(products),
        low_stock_count=sum(1 for product in products if is_low_stock(product, threshold)),
        out_of_stock_count=sum(1 for product in products if product.stock == 0),
    )


def average_margin(products: Sequence[Product]) -> Decimal:
    """Mean of :func:`margin_percent` over ``products``; ``0`` when empty."""

    if not products:
        return ZERO
    return sum((margin_percent(product) for product in products), ZERO) / len(products)


def out_of_stock_rate(products: Sequence[Product]) -> Decimal:
    """Share of products with no stock, as a percentage."""

    if not products:
        return ZERO
    empty = sum(1 for product in products if product.stock == 0)
    return Decimal(empty) / Decimal(len(products)) * HUNDRED


def category_leaf(category: str) -> str:
    """Return the last segment of a hierarchical ``"A > B > C"`` category."""

    leaf = category.split(CATEGORY_SEPARATOR)[-1].strip()
    return leaf or category.strip()


def stock_by_category(products: Iterable[Product]) -> Dict[str, int]:
    """Units in stock per leaf category, in first-seen order."""

    totals: Dict[str, int] = OrderedDict()
    for product in products:
        leaf = category_leaf(product.category)
        totals[leaf] = totals.get(leaf, 0) + product.stock
    return dict(totals)


def count_by_category(products: Iterable[Product]) -> Dict[str, int]:
    """Number of products per leaf category, in first-seen order."""

    counts: Dict[str, int] = OrderedDict()
    for product in products:
        leaf = category_leaf(product.category)
        counts[leaf] = counts.get(leaf, 0) + 1
    return dict(counts)


def stock_alerts(products: Iterable[Product], threshold: int = LOW_STOCK_THRESHOLD) -> List[StockAlert]:
    """Out-of-stock products raise an ``error``, low stock a ``warning``.

    Errors come before warnings; within a severity the input order is kept.
    """

    errors: List[StockAlert] = []
    warnings: List[StockAlert] = []
    for product in products:
        if product.stock == 0:
            errors.append(StockAlert(product.id, product.name, product.stock, "error"))
        elif product.stock <= threshold:
            warnings.append(StockAlert(product.id, product.name, product.stock, "warning"))
    return errors + warnings


def delivery_summary(deliveries: Sequence[Delivery]) -> DeliverySummary:
    """Count of open deliveries, reserved units and their value at sell price."""

    return DeliverySummary(
        count=len(deliveries),
        items=sum(delivery.quantity for delivery in deliveries),
        value=sum((delivery.sell_price * delivery.quantity for delivery in deliveries), ZERO),
    )


# ---------------------------------------------------------------------------
# Sales over time
# ---------------------------------------------------------------------------


def _aware(now: datetime) -> datetime:
    # naive values are UTC, as in record_mapper.parse_timestamp
    return now.replace(tzinfo=UTC) if now.tzinfo is None else now


def range_start(time_range: TimeRange, now: datetime) -> Optional[datetime]:
    """Return the first instant included in ``time_range``.

    The cutoff is a calendar day: midnight of ``now - N days`` in ``now``'s
    timezone, not a rolling ``N * 24h`` window. ``None`` means all time.
    A naive ``now`` is taken as UTC.
    """

    now = _aware(now)
    days = TimeRange(time_range).days
    if days is None:
        return None
    day = (now - timedelta(days=days)).date()
    return datetime.combine(day, time.min, tzinfo=now.tzinfo)


def filter_sales_by_range(sales: Iterable[Sale], time_range: TimeRange, now: datetime) -> List[Sale]:
    now = _aware(now)
    start = range_start(time_range, now)
    if start is None:
        return list(sales)
    return [sale for sale in sales if sale.created_at >= start]


def sales_summary(sales: Sequence[Sale]) -> SalesSummary:
    """Revenue, profit, units, order count and average order value."""

    revenue = sum((sale.total_price for sale in sales), ZERO)
    orders = len(sales)
    return SalesSummary(
        revenue=revenue,
        profit=sum((sale.total_margin for sale in sales), ZERO),
        units=sum(sale.quantity for sale in sales),
        orders=orders,
        average_order_value=revenue / orders if orders else ZERO,
    )


def _uses_month_buckets(time_range: TimeRange) -> bool:
    days = TimeRange(time_range).days
    return days is None or days >= 365


def profit_series(sales: Iterable[Sale], time_range: TimeRange, now: datetime) -> List[ProfitPoint]:
    """Sum ``total_margin`` per day (``YYYY-MM-DD``) or per month (``YYYY-MM``).

    Ranges of a year or more, and all time, use month buckets. Only sales in
    the range are counted and the points are sorted chronologically.
    """

    now = _aware(now)
    label_format = "%Y-%m" if _uses_month_buckets(time_range) else "%Y-%m-%d"
    buckets: Dict[str, Decimal] = {}
    for sale in filter_sales_by_range(sales, time_range, now):
        moment = sale.created_at.astimezone(now.tzinfo)
        label = moment.strftime(label_format)
        buckets[label] = buckets.get(label, ZERO) + sale.total_margin
    return [ProfitPoint(label, buckets[label]) for label in sorted(buckets)]


def weekly_profit(sales: Iterable[Sale], now: datetime, weeks: int = WEEKLY_PROFIT_WEEKS) -> List[ProfitPoint]:
    """Profit per Monday-starting week over the last ``weeks`` weeks.

    Every week of the window is present, empty ones with zero profit; labels
    are the ISO date of each Monday, oldest first.
    """

    now = _aware(now)
    today = now.date()
    current_monday = today - timedelta(days=today.weekday())
    mondays = [current_monday - timedelta(weeks=offset) for offset in range(weeks - 1, -1, -1)]
    totals: Dict[str, Decimal] = OrderedDict((monday.isoformat(), ZERO) for monday in mondays)
    for sale in sales:
        moment = sale.created_at.astimezone(now.tzinfo)
        day = moment.date()
        monday = (day - timedelta(days=day.weekday())).isoformat()
        if monday in totals:
            totals[monday] += sale.total_margin
    return [ProfitPoint(label, profit) for label, profit in totals.items()]


def top_products_by_revenue(sales: Iterable[Sale], n: int = TOP_PRODUCTS_LIMIT) -> List[RankedProduct]:
    """Group sales by product name and keep the ``n`` highest revenues.

    Ties keep the order in which the names were first encountered.
    """

    revenue: Dict[str, Decimal] = OrderedDict()
    units: Dict[str, int] = {}
    for sale in sales:
        revenue[sale.product_name] = revenue.get(sale.product_name, ZERO) + sale.total_price
        units[sale.product_name] = units.get(sale.product_name, 0) + sale.quantity
    ranked = sorted(revenue.items(), key=lambda item: item[1], reverse=True)
    return [RankedProduct(name, total, units[name]) for name, total in ranked[:n]]


# ---------------------------------------------------------------------------
# Listing helpers
# ---------------------------------------------------------------------------


def filter_products(
    products: Iterable[Product],
    *,
    query: Optional[str] = None,
    category: Optional[str] = None,
    supplier: Optional[str] = None,
    status: Optional[ProductStatus] = None,
    stock_level: Optional[StockLevel] = None,
    threshold: int = LOW_STOCK_THRESHOLD,
) -> List[Product]:
    """Filter a product listing; every criterion left as ``None`` is ignored.

    ``query`` matches name, category or supplier case-insensitively.
    ``category`` matches the full category or its leaf segment.
    """

    needle = query.strip().casefold() if query else None
    matches = []
    for product in products:
        if needle and not any(
            needle in value.casefold() for value in (product.name, product.category, product.supplier)
        ):
            continue
        if category and category not in (product.category, category_leaf(product.category)):
            continue
        if supplier and product.supplier != supplier:
            continue
        if status is not None and product.status is not ProductStatus(status):
            continue
        if stock_level is not None:
            level = StockLevel(stock_level)
            if level is StockLevel.OUT_OF_STOCK and product.stock != 0:
                continue
            if level is StockLevel.LOW and not is_low_stock(product, threshold):
                continue
        matches.append(product)
    return matches


SORT_KEYS = {
    "name": lambda product: product.name.casefold(),
    "category": lambda product: product.category.casefold(),
    "supplier": lambda product: product.supplier.casefold(),
    "stock": lambda product: product.stock,
    "buy_price": lambda product: product.buy_price,
    "sell_price": lambda product: product.sell_price,
    "margin": margin_percent,
    "created_at": lambda product: product.created_at,
}


def sort_products(products: Iterable[Product], key: str = "created_at", *, descending: bool = False) -> List[Product]:
    """Stable sort of products by one of :data:`SORT_KEYS`.

    Raises:
        ValueError: If ``key`` is not a known sort key.
    """

    if key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {key}")
    return sorted(products, key=SORT_KEYS[key], reverse=descending)


def search(
    query: str,
    products: Iterable[Product],
    sales: Iterable[Sale],
    activity_log: Iterable[ActivityLog],
) -> SearchResults:
    """Case-insensitive search across products, sales and the activity log."""

    needle = query.strip().casefold()
    if not needle:
        return SearchResults([], [], [])
    return SearchResults(
        products=[
            product
            for product in products
            if any(needle in value.casefold() for value in (product.name, product.category, product.supplier))
        ],
        sales=[sale for sale in sales if needle in sale.product_name.casefold()],
        activity_log=[
            entry
            for entry in activity_log
            if needle in entry.product_name.casefold() or needle in (entry.details or "").casefold()
        ],
    )

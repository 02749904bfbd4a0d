"""Typed bulk-edit payloads applied to several products at once.

A bulk edit arrives from the boundary as a loosely shaped mapping::

    {
        "stock": {"mode": "increase", "value": 5},
        "sell_price": {"mode": "set", "value": "19.90"},
        "category": "Accessoires > Bonnets",
    }

:func:`parse_bulk_payload` validates it once and turns it into a
:class:`BulkUpdate` whose numeric fields are one of :class:`SetValue`,
:class:`Increase` or :class:`Decrease`. Nothing is mutated while parsing, so a
rejected payload never reaches the gateway.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Union

from . import log
from .constants import BulkUpdateMode
from .errors import ValidationError
from .record_mapper import Product


Number = Union[Decimal, int]


@dataclass(frozen=True)
class SetValue:
    value: Number

    def apply(self, current: Number) -> Number:
        return self.value


@dataclass(frozen=True)
class Increase:
    value: Number

    def apply(self, current: Number) -> Number:
        return current + self.value


@dataclass(frozen=True)
class Decrease:
    value: Number

    def apply(self, current: Number) -> Number:
        # never below zero
        return max(current - self.value, type(current)(0))


NumericFieldUpdate = Union[SetValue, Increase, Decrease]

_MODES = {
    BulkUpdateMode.SET: SetValue,
    BulkUpdateMode.INCREASE: Increase,
    BulkUpdateMode.DECREASE: Decrease,
}

NUMERIC_FIELDS = ("buy_price", "sell_price", "stock")
TEXT_FIELDS = ("category", "supplier")


@dataclass(frozen=True)
class BulkUpdate:
    """Validated bulk edit; ``None`` means the field is left untouched."""

    buy_price: Optional[NumericFieldUpdate] = None
    sell_price: Optional[NumericFieldUpdate] = None
    stock: Optional[NumericFieldUpdate] = None
    category: Optional[str] = None
    supplier: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in NUMERIC_FIELDS + TEXT_FIELDS)

    def changes_for(self, product: Product) -> Dict[str, Any]:
        """Return the resulting value of every field this update touches.

        Values equal to the current ones are still included; callers decide
        whether the product actually changed.
        """

        changes: Dict[str, Any] = {}
        for name in NUMERIC_FIELDS:
            update = getattr(self, name)
            if update is not None:
                changes[name] = update.apply(getattr(product, name))
        for name in TEXT_FIELDS:
            value = getattr(self, name)
            if value is not None:
                changes[name] = value
        return changes


def _coerce_amount(field: str, raw: Any) -> Number:
    if isinstance(raw, bool):
        raise ValidationError(f"Invalid value for '{field}': {raw!r}")
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid value for '{field}': {raw!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"Value for '{field}' must be zero or positive")
    if field == "stock":
        if amount != amount.to_integral_value():
            raise ValidationError("Stock changes must be whole numbers")
        return int(amount)
    return amount


def _parse_numeric(field: str, raw: Any) -> NumericFieldUpdate:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"'{field}' expects an object with 'mode' and 'value'")
    try:
        mode = BulkUpdateMode(raw.get("mode"))
    except ValueError as exc:
        raise ValidationError(f"Unknown update mode for '{field}': {raw.get('mode')!r}") from exc
    if "value" not in raw:
        raise ValidationError(f"Missing value for '{field}'")
    return _MODES[mode](_coerce_amount(field, raw["value"]))


def parse_bulk_payload(payload: Mapping[str, Any]) -> BulkUpdate:
    """Validate a raw bulk-edit mapping and build a :class:`BulkUpdate`.

    Args:
        payload (Mapping[str, Any]): ``{field: {"mode", "value"}}`` for
            ``buy_price``, ``sell_price`` and ``stock``; ``{field: text}`` for
            ``category`` and ``supplier``. ``None`` entries are ignored.

    Returns:
        BulkUpdate: Parsed, immutable edit.

    Raises:
        ValidationError: On unknown fields or modes, negative or non-numeric
            values, fractional stock, blank text, or an empty payload.
    """

    unknown = sorted(set(payload) - set(NUMERIC_FIELDS) - set(TEXT_FIELDS))
    if unknown:
        log.error("Bulk update rejected unknown fields: %s", ", ".join(unknown))
        raise ValidationError(f"Unknown bulk update fields: {', '.join(unknown)}")

    values: Dict[str, Any] = {}
    for name in NUMERIC_FIELDS:
        if payload.get(name) is not None:
            values[name] = _parse_numeric(name, payload[name])
    for name in TEXT_FIELDS:
        raw = payload.get(name)
        if raw is None:
            continue
        text = str(raw).strip()
        if not text:
            raise ValidationError(f"'{name}' cannot be blank")
        values[name] = text

    update = BulkUpdate(**values)
    if update.is_empty:
        log.error("Bulk update rejected: no field to change")
        raise ValidationError("Bulk update payload is empty")
    return update

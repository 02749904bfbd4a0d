"""Tests for bulk-edit payload parsing and application."""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_product
from stockdesk.bulk_update import BulkUpdate, Decrease, Increase, SetValue, parse_bulk_payload
from stockdesk.errors import ValidationError


def test_parse_bulk_payload_builds_typed_updates():
    """Numeric fields become mode objects; text is stripped."""

    update = parse_bulk_payload(
        {
            "stock": {"mode": "increase", "value": "5"},
            "sell_price": {"mode": "set", "value": 19.9},
            "buy_price": {"mode": "decrease", "value": "1.50"},
            "category": "  Accessoires > Bonnets ",
            "supplier": None,
        }
    )

    assert update.stock == Increase(5)
    assert isinstance(update.stock.value, int)
    assert update.sell_price == SetValue(Decimal("19.9"))
    assert update.buy_price == Decrease(Decimal("1.50"))
    assert update.category == "Accessoires > Bonnets"
    assert update.supplier is None


@pytest.mark.parametrize(
    "payload, message",
    [
        ({}, "empty"),
        ({"supplier": None}, "empty"),
        ({"colour": "red"}, "Unknown bulk update fields"),
        ({"stock": {"mode": "double", "value": 2}}, "Unknown update mode"),
        ({"stock": {"mode": "set"}}, "Missing value"),
        ({"stock": 4}, "expects an object"),
        ({"stock": {"mode": "set", "value": "2.5"}}, "whole numbers"),
        ({"stock": {"mode": "set", "value": True}}, "Invalid value"),
        ({"sell_price": {"mode": "set", "value": "-1"}}, "zero or positive"),
        ({"sell_price": {"mode": "set", "value": "NaN"}}, "zero or positive"),
        ({"buy_price": {"mode": "set", "value": "cheap"}}, "Invalid value"),
        ({"category": "   "}, "cannot be blank"),
    ],
)
def test_parse_bulk_payload_rejects_invalid_payloads(payload, message):
    """Every malformed payload is rejected with a readable message."""

    with pytest.raises(ValidationError, match=message):
        parse_bulk_payload(payload)


def test_modes_apply_to_current_values():
    assert SetValue(3).apply(10) == 3
    assert Increase(5).apply(10) == 15
    assert Decrease(4).apply(10) == 6
    assert Decrease(40).apply(10) == 0
    assert Decrease(Decimal("2.50")).apply(Decimal("1.00")) == Decimal("0")


def test_changes_for_reports_every_touched_field():
    """changes_for includes touched fields even when the value is unchanged."""

    product = make_product(stock=5, sell="20", supplier="Acme")
    update = BulkUpdate(stock=Increase(5), sell_price=SetValue(Decimal("20")), supplier="NewCo")

    assert update.changes_for(product) == {"stock": 10, "sell_price": Decimal("20"), "supplier": "NewCo"}


def test_is_empty():
    assert BulkUpdate().is_empty
    assert not BulkUpdate(category="Caps").is_empty

from decimal import Decimal

import pytest

from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.services.invoice_types import InvoiceType
from app.factu.services.sale_totals import compute_totals, make_line_item, parse_price_modifier, vat_breakdown


def test_vat_is_extracted_from_inclusive_price():
    breakdown = vat_breakdown(Decimal("1210.00"), Decimal("21"))
    assert breakdown.net == Decimal("1000.00")
    assert breakdown.vat == Decimal("210.00")


def test_type_a_discriminates_vat():
    items = [make_line_item(description="Monitor", unit_price="1210")]
    totals = compute_totals(items, InvoiceType.A)
    assert totals.total == Decimal("1210.00")
    assert totals.net_total == Decimal("1000.00")
    assert totals.vat_total == Decimal("210.00")
    assert totals.discriminated is True
    assert totals.vat_by_rate == {"21": Decimal("210.00")}

    assert compute_totals(items, InvoiceType.B).discriminated is False


def test_mixed_rates_sum_per_line():
    items = [
        make_line_item(description="Libro", unit_price="105", vat_rate="5"),
        make_line_item(description="Cable", unit_price="121", quantity=2),
        make_line_item(description="Pan", unit_price="110.50", vat_rate="10.5"),
    ]
    totals = compute_totals(items, InvoiceType.A)
    assert totals.subtotal == Decimal("457.50")
    assert totals.net_total == Decimal("100.00") + Decimal("200.00") + Decimal("100.00")
    assert totals.vat_total == Decimal("57.50")
    assert totals.vat_by_rate == {"5": Decimal("5.00"), "21": Decimal("42.00"), "10.5": Decimal("10.50")}


def test_discount_applies_before_vat_split():
    item = make_line_item(description="Silla", unit_price="1000", quantity=3, discount_percent=10)
    assert item.gross == Decimal("2700.00")


@pytest.mark.parametrize(
    ("modifier", "expected"),
    [("+10%", "1100.00"), ("-5%", "950.00"), ("+$100", "1100.00"), ("-$50", "950.00"), ("-2,5%", "975.00")],
)
def test_price_modifiers(modifier, expected):
    item = make_line_item(description="Mesa", unit_price="1000", modifier=modifier)
    assert item.unit_price == Decimal(expected)
    assert item.original_price == Decimal("1000.00")
    assert item.modifier == modifier


@pytest.mark.parametrize("modifier", ["10%", "+$10%", "x5", "+"])
def test_invalid_modifiers(modifier):
    with pytest.raises(AppError) as exc:
        parse_price_modifier(modifier)
    assert exc.value.error.code == ErrorCatalog.INVALID_ITEM.code


@pytest.mark.parametrize(
    "fields",
    [
        {"description": " ", "unit_price": "10"},
        {"description": "Item", "unit_price": "10", "quantity": 0},
        {"description": "Item", "unit_price": "10", "discount_percent": 120},
        {"description": "Item", "unit_price": "10", "modifier": "-$20"},
        {"description": "Item", "unit_price": "nope"},
    ],
)
def test_invalid_items(fields):
    with pytest.raises(AppError) as exc:
        make_line_item(**fields)
    assert exc.value.error.code == ErrorCatalog.INVALID_ITEM.code

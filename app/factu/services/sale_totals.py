from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.factu.core.config import settings
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.services.invoice_types import InvoiceType
from app.factu.services.money import CENT, ZERO, to_money

HUNDRED = Decimal("100")
_MODIFIER_PATTERN = re.compile(r"^(?P<sign>[+-])\s*(?P<currency>\$)?\s*(?P<value>\d+(?:[.,]\d+)?)\s*(?P<percent>%)?$")


@dataclass(frozen=True)
class PriceModifier:
    """A cashier shortcut such as ``+10%``, ``-5%``, ``+$100`` or ``-$50``."""

    sign: int
    value: Decimal
    percent: bool

    def apply(self, price: Decimal) -> Decimal:
        if self.percent:
            adjusted = price * (HUNDRED + self.sign * self.value) / HUNDRED
        else:
            adjusted = price + self.sign * self.value
        return adjusted.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_price_modifier(text: str | None) -> PriceModifier | None:
    if text is None or not text.strip():
        return None
    match = _MODIFIER_PATTERN.match(text.strip())
    if match is None or (match.group("currency") and match.group("percent")):
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"modifier": text})
    value = Decimal(match.group("value").replace(",", "."))
    return PriceModifier(
        sign=1 if match.group("sign") == "+" else -1,
        value=value,
        percent=match.group("percent") is not None,
    )


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal = ZERO
    vat_rate: Decimal = Decimal("21")
    product_id: str | None = None
    original_price: Decimal | None = None
    modifier: str | None = None

    @property
    def gross(self) -> Decimal:
        amount = self.quantity * self.unit_price * (HUNDRED - self.discount_percent) / HUNDRED
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def make_line_item(
    *,
    description: str,
    quantity=1,
    unit_price,
    discount_percent=0,
    vat_rate=None,
    product_id: str | None = None,
    modifier: str | None = None,
) -> LineItem:
    if not description or not description.strip():
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"field": "description"})
    qty = _decimal(quantity, "quantity")
    price = to_money(unit_price, error=ErrorCatalog.INVALID_ITEM)
    discount = _decimal(discount_percent, "discount_percent")
    rate = _decimal(settings.DEFAULT_VAT_RATE if vat_rate is None else vat_rate, "vat_rate")
    if qty <= 0:
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"field": "quantity", "value": str(qty)})
    if not ZERO <= discount <= HUNDRED:
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"field": "discount_percent", "value": str(discount)})
    if rate < 0:
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"field": "vat_rate", "value": str(rate)})
    parsed = parse_price_modifier(modifier)
    final_price = parsed.apply(price) if parsed else price
    if final_price < 0:
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"field": "unit_price", "value": str(final_price)})
    return LineItem(
        description=description.strip(),
        quantity=qty,
        unit_price=final_price,
        discount_percent=discount,
        vat_rate=rate,
        product_id=product_id,
        original_price=price if parsed else None,
        modifier=modifier.strip() if parsed else None,
    )


@dataclass(frozen=True)
class LineBreakdown:
    gross: Decimal
    net: Decimal
    vat: Decimal


def vat_breakdown(gross: Decimal, vat_rate: Decimal) -> LineBreakdown:
    """Split a VAT-inclusive amount: net = gross / (1 + rate / 100), vat = gross - net."""
    net = (gross * HUNDRED / (HUNDRED + vat_rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return LineBreakdown(gross=gross, net=net, vat=gross - net)


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    net_total: Decimal
    vat_total: Decimal
    total: Decimal
    discriminated: bool
    lines: tuple[LineBreakdown, ...] = ()
    vat_by_rate: dict[str, Decimal] = field(default_factory=dict)


def compute_totals(items, invoice_type: InvoiceType) -> SaleTotals:
    """Prices are VAT inclusive; only type A invoices show net and VAT separately."""
    breakdowns = tuple(vat_breakdown(item.gross, item.vat_rate) for item in items)
    subtotal = sum((line.gross for line in breakdowns), ZERO)
    net_total = sum((line.net for line in breakdowns), ZERO)
    vat_by_rate: dict[str, Decimal] = {}
    for item, line in zip(items, breakdowns):
        key = format(item.vat_rate.normalize(), "f")
        vat_by_rate[key] = vat_by_rate.get(key, ZERO) + line.vat
    return SaleTotals(
        subtotal=subtotal,
        net_total=net_total,
        vat_total=subtotal - net_total,
        total=subtotal,
        discriminated=invoice_type is InvoiceType.A,
        lines=breakdowns,
        vat_by_rate=vat_by_rate,
    )


def _decimal(value, field_name: str) -> Decimal:
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"field": field_name, "value": str(value)}) from exc
    if not parsed.is_finite():
        raise AppError(ErrorCatalog.INVALID_ITEM, details={"field": field_name, "value": str(value)})
    return parsed

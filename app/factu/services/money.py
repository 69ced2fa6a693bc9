from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.factu.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value, *, error: ErrorDefinition = ErrorCatalog.INVALID_AMOUNT) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise AppError(error, details={"value": value})
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise AppError(error, details={"value": str(value)}) from exc
    if not amount.is_finite():
        raise AppError(error, details={"value": str(value)})
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Decimal) -> str:
    return format(value.quantize(CENT, rounding=ROUND_HALF_UP), "f")

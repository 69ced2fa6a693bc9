"""In-memory tender ledger for the sale being rung up."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable

from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.services.money import ZERO, to_money


class TenderMethod(str, Enum):
    CASH = "cash"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"
    QR = "qr"
    WALLET = "wallet"
    TRANSFER = "transfer"

    @property
    def is_external(self) -> bool:
        return self in _EXTERNAL_METHODS

    @property
    def is_cash_equivalent(self) -> bool:
        return self is TenderMethod.CASH


_EXTERNAL_METHODS = frozenset({TenderMethod.QR, TenderMethod.WALLET, TenderMethod.TRANSFER})


@dataclass(frozen=True)
class TenderEntry:
    method: TenderMethod
    amount: Decimal
    received: Decimal | None = None
    card_type: str | None = None
    external_reference: str | None = None
    confirmation_status: str | None = None
    requested_amount: Decimal | None = None

    @property
    def change(self) -> Decimal:
        if self.received is None:
            return ZERO
        return max(ZERO, self.received - self.amount)


LedgerListener = Callable[["TenderLedger"], None]


class TenderLedger:
    def __init__(self, sale_total: Decimal | int | str = ZERO) -> None:
        self._entries: list[TenderEntry] = []
        self._sale_total = to_money(sale_total)
        self._listeners: list[LedgerListener] = []

    @property
    def entries(self) -> tuple[TenderEntry, ...]:
        return tuple(self._entries)

    @property
    def methods(self) -> tuple[TenderMethod, ...]:
        return tuple(entry.method for entry in self._entries)

    @property
    def sale_total(self) -> Decimal:
        return self._sale_total

    def set_sale_total(self, total) -> None:
        self._sale_total = to_money(total)

    def subscribe(self, listener: LedgerListener) -> None:
        self._listeners.append(listener)

    def add_tender(
        self,
        method: TenderMethod | str,
        amount,
        *,
        received=None,
        card_type: str | None = None,
    ) -> TenderEntry:
        method = TenderMethod(method)
        if method.is_external:
            # external money only lands here once the provider confirms it
            raise AppError(ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED, details={"method": method.value})
        value = _positive(amount)
        cash_received = None
        if received is not None:
            if not method.is_cash_equivalent:
                raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"received": str(received), "method": method.value})
            cash_received = to_money(received)
            if cash_received < value:
                raise AppError(
                    ErrorCatalog.INVALID_AMOUNT,
                    details={"amount": str(value), "received": str(cash_received)},
                )
        entry = TenderEntry(method=method, amount=value, received=cash_received, card_type=card_type)
        self._append(entry)
        return entry

    def add_confirmed_external(
        self,
        method: TenderMethod | str,
        amount,
        *,
        external_reference: str,
        requested_amount=None,
    ) -> TenderEntry:
        method = TenderMethod(method)
        if not method.is_external:
            raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"method": method.value})
        if any(entry.external_reference == external_reference for entry in self._entries):
            raise AppError(
                ErrorCatalog.EXTERNAL_PAYMENT_ALREADY_APPLIED,
                details={"payment_id": external_reference},
            )
        entry = TenderEntry(
            method=method,
            amount=_positive(amount),
            external_reference=external_reference,
            confirmation_status="approved",
            requested_amount=to_money(requested_amount) if requested_amount is not None else None,
        )
        self._append(entry)
        return entry

    def remove_tender(self, index: int) -> TenderEntry:
        if index < 0 or index >= len(self._entries):
            raise AppError(ErrorCatalog.INVALID_TENDER_INDEX, details={"index": index, "size": len(self._entries)})
        entry = self._entries.pop(index)
        self._notify()
        return entry

    def clear(self) -> None:
        had_entries = bool(self._entries)
        self._entries.clear()
        if had_entries:
            self._notify()

    def total_tendered(self) -> Decimal:
        return total_of(self._entries)

    def remaining(self) -> Decimal:
        """Balance still owed; negative when the customer overpaid."""
        return self._sale_total - self.total_tendered()

    def change_due(self) -> Decimal:
        return change_due(self._entries, self._sale_total)

    def has_non_cash(self) -> bool:
        return any(not entry.method.is_cash_equivalent for entry in self._entries)

    def _append(self, entry: TenderEntry) -> None:
        self._entries.append(entry)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)


def total_of(entries) -> Decimal:
    return sum((entry.amount for entry in entries), ZERO)


def change_due(entries, sale_total: Decimal) -> Decimal:
    """Overpayment plus whatever cash was handed over above each cash tender."""
    over = max(ZERO, total_of(entries) - sale_total)
    return over + sum((entry.change for entry in entries), ZERO)


def _positive(amount) -> Decimal:
    value = to_money(amount)
    if value <= ZERO:
        raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"amount": str(value)})
    return value

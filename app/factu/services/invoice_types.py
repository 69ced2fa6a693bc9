"""Invoice type selection.

The selector is a pure reducer: the billing session feeds it an event after
every ledger or client change and stores the state it returns.

  no tenders               -> A for responsable inscripto, X otherwise
  tenders, all cash        -> X
  tenders, any non-cash    -> A for responsable inscripto, B otherwise

C and P are only ever chosen by the cashier and are left alone by the rule.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Union

from app.factu.services.tender_ledger import TenderMethod


class InvoiceFamily(str, Enum):
    FISCAL = "fiscal"
    NON_FISCAL = "non_fiscal"
    QUOTE = "quote"


class InvoiceType(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    X = "X"
    P = "P"

    @property
    def family(self) -> InvoiceFamily:
        if self in _FISCAL_TYPES:
            return InvoiceFamily.FISCAL
        if self is InvoiceType.P:
            return InvoiceFamily.QUOTE
        return InvoiceFamily.NON_FISCAL

    @property
    def is_fiscal(self) -> bool:
        return self in _FISCAL_TYPES


_FISCAL_TYPES = frozenset({InvoiceType.A, InvoiceType.B, InvoiceType.C})
_MANUAL_ONLY_TYPES = frozenset({InvoiceType.C, InvoiceType.P})


class TaxCondition(str, Enum):
    RESPONSABLE_INSCRIPTO = "responsable_inscripto"
    MONOTRIBUTO = "monotributo"
    EXENTO = "exento"
    CONSUMIDOR_FINAL = "consumidor_final"
    NO_CATEGORIZADO = "no_categorizado"

    @property
    def is_registered(self) -> bool:
        return self is TaxCondition.RESPONSABLE_INSCRIPTO


_TAX_CONDITION_ALIASES = {
    "ri": TaxCondition.RESPONSABLE_INSCRIPTO,
    "registered": TaxCondition.RESPONSABLE_INSCRIPTO,
    "monotributista": TaxCondition.MONOTRIBUTO,
    "cf": TaxCondition.CONSUMIDOR_FINAL,
    "final_consumer": TaxCondition.CONSUMIDOR_FINAL,
}


def parse_tax_condition(value: str | TaxCondition) -> TaxCondition:
    if isinstance(value, TaxCondition):
        return value
    key = value.strip().lower().replace(" ", "_")
    return _TAX_CONDITION_ALIASES.get(key) or TaxCondition(key)


class TypeSource(str, Enum):
    TAX_STATUS = "tax_status"  # derived from the client with no tenders present
    PRESET = "preset"  # picked by the cashier before any tender existed
    TENDER_MIX = "tender_mix"
    MANUAL = "manual"


@dataclass(frozen=True)
class InvoiceTypeState:
    invoice_type: InvoiceType
    tax_condition: TaxCondition
    tender_methods: tuple[TenderMethod, ...] = ()
    source: TypeSource = TypeSource.TAX_STATUS
    notice: str | None = None

    @property
    def fixed_before_tenders(self) -> bool:
        return self.source in (TypeSource.TAX_STATUS, TypeSource.PRESET)


@dataclass(frozen=True)
class TendersChanged:
    methods: tuple[TenderMethod, ...]


@dataclass(frozen=True)
class ClientChanged:
    tax_condition: TaxCondition


@dataclass(frozen=True)
class TypeSelected:
    invoice_type: InvoiceType


@dataclass(frozen=True)
class Reset:
    tax_condition: TaxCondition | None = None


InvoiceTypeEvent = Union[TendersChanged, ClientChanged, TypeSelected, Reset]


def default_invoice_type(tax_condition: TaxCondition) -> InvoiceType:
    return InvoiceType.A if tax_condition.is_registered else InvoiceType.X


def initial_state(tax_condition: TaxCondition = TaxCondition.CONSUMIDOR_FINAL) -> InvoiceTypeState:
    return InvoiceTypeState(invoice_type=default_invoice_type(tax_condition), tax_condition=tax_condition)


def tenders_changed(methods: Iterable[TenderMethod]) -> TendersChanged:
    return TendersChanged(methods=tuple(TenderMethod(method) for method in methods))


def next_invoice_type(state: InvoiceTypeState, event: InvoiceTypeEvent) -> InvoiceTypeState:
    if isinstance(event, Reset):
        return initial_state(event.tax_condition or state.tax_condition)
    if isinstance(event, TypeSelected):
        source = TypeSource.MANUAL if state.tender_methods else TypeSource.PRESET
        return replace(state, invoice_type=event.invoice_type, source=source, notice=None)
    if isinstance(event, ClientChanged):
        return _apply_rule(replace(state, tax_condition=event.tax_condition, notice=None))
    if isinstance(event, TendersChanged):
        return _apply_rule(replace(state, tender_methods=event.methods, notice=None))
    raise TypeError(f"Unsupported invoice type event: {event!r}")


def _apply_rule(state: InvoiceTypeState) -> InvoiceTypeState:
    if state.invoice_type in _MANUAL_ONLY_TYPES:
        return state
    if not state.tender_methods:
        target, source = default_invoice_type(state.tax_condition), TypeSource.TAX_STATUS
        if target == state.invoice_type and state.source is TypeSource.PRESET:
            source = TypeSource.PRESET
    elif all(method.is_cash_equivalent for method in state.tender_methods):
        target, source = InvoiceType.X, TypeSource.TENDER_MIX
    else:
        target = InvoiceType.A if state.tax_condition.is_registered else InvoiceType.B
        source = TypeSource.TENDER_MIX
    if target == state.invoice_type:
        return replace(state, source=source)
    notice = None
    if state.tender_methods:
        notice = _change_notice(state.invoice_type, target, state.tender_methods)
    return replace(state, invoice_type=target, source=source, notice=notice)


def _change_notice(previous: InvoiceType, current: InvoiceType, methods: tuple[TenderMethod, ...]) -> str:
    if current is InvoiceType.X:
        reason = "all tenders are cash"
    else:
        reason = "a non-cash tender requires a fiscal invoice"
    return f"Invoice type changed from {previous.value} to {current.value}: {reason}"


def replay_invoice_type(
    tax_condition: TaxCondition,
    methods: Iterable[TenderMethod],
    requested: InvoiceType | None = None,
    *,
    fixed_before_tenders: bool = False,
) -> InvoiceTypeState:
    """Rebuild the selector state for a sale submitted in one piece.

    ``fixed_before_tenders`` says the cashier picked ``requested`` before adding
    any tender; otherwise the pick is treated as a later manual override.
    """
    state = initial_state(tax_condition)
    if requested is not None and fixed_before_tenders:
        state = next_invoice_type(state, TypeSelected(requested))
    methods = tuple(methods)
    if methods:
        state = next_invoice_type(state, tenders_changed(methods))
    if requested is not None and requested != state.invoice_type:
        state = next_invoice_type(state, TypeSelected(requested))
    return state

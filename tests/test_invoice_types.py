import pytest

from app.factu.services.invoice_types import (
    ClientChanged,
    InvoiceFamily,
    InvoiceType,
    Reset,
    TaxCondition,
    TypeSelected,
    TypeSource,
    initial_state,
    next_invoice_type,
    parse_tax_condition,
    replay_invoice_type,
    tenders_changed,
)
from app.factu.services.tender_ledger import TenderMethod

CASH = TenderMethod.CASH
CARD = TenderMethod.CREDIT_CARD
QR = TenderMethod.QR


@pytest.mark.parametrize(
    ("tax_condition", "methods", "expected"),
    [
        (TaxCondition.RESPONSABLE_INSCRIPTO, (), InvoiceType.A),
        (TaxCondition.CONSUMIDOR_FINAL, (), InvoiceType.X),
        (TaxCondition.MONOTRIBUTO, (), InvoiceType.X),
        (TaxCondition.RESPONSABLE_INSCRIPTO, (CASH,), InvoiceType.X),
        (TaxCondition.CONSUMIDOR_FINAL, (CASH, CASH), InvoiceType.X),
        (TaxCondition.RESPONSABLE_INSCRIPTO, (CARD,), InvoiceType.A),
        (TaxCondition.RESPONSABLE_INSCRIPTO, (CASH, QR), InvoiceType.A),
        (TaxCondition.CONSUMIDOR_FINAL, (CARD,), InvoiceType.B),
        (TaxCondition.EXENTO, (CASH, TenderMethod.TRANSFER), InvoiceType.B),
    ],
)
def test_rule_table(tax_condition, methods, expected):
    state = next_invoice_type(initial_state(tax_condition), tenders_changed(methods))
    assert state.invoice_type is expected


def test_registered_client_converges_to_x_with_notice():
    state = initial_state(TaxCondition.RESPONSABLE_INSCRIPTO)
    assert state.invoice_type is InvoiceType.A
    assert state.source is TypeSource.TAX_STATUS

    state = next_invoice_type(state, tenders_changed([CASH]))
    assert state.invoice_type is InvoiceType.X
    assert state.source is TypeSource.TENDER_MIX
    assert state.notice == "Invoice type changed from A to X: all tenders are cash"

    state = next_invoice_type(state, tenders_changed([CASH, CARD]))
    assert state.invoice_type is InvoiceType.A
    assert state.notice == "Invoice type changed from X to A: a non-cash tender requires a fiscal invoice"


def test_unchanged_type_carries_no_notice():
    state = next_invoice_type(initial_state(), tenders_changed([CASH]))
    assert state.invoice_type is InvoiceType.X
    assert state.notice is None


def test_c_and_p_are_left_alone():
    for chosen in (InvoiceType.C, InvoiceType.P):
        state = next_invoice_type(initial_state(TaxCondition.CONSUMIDOR_FINAL), TypeSelected(chosen))
        assert state.source is TypeSource.PRESET
        state = next_invoice_type(state, tenders_changed([CASH]))
        assert state.invoice_type is chosen
        state = next_invoice_type(state, tenders_changed([CARD]))
        assert state.invoice_type is chosen
        assert state.fixed_before_tenders


def test_selection_after_tenders_is_manual():
    state = next_invoice_type(initial_state(), tenders_changed([CARD]))
    state = next_invoice_type(state, TypeSelected(InvoiceType.X))
    assert state.invoice_type is InvoiceType.X
    assert state.source is TypeSource.MANUAL
    assert not state.fixed_before_tenders


def test_client_change_reapplies_rule():
    state = next_invoice_type(initial_state(), tenders_changed([CARD]))
    assert state.invoice_type is InvoiceType.B

    state = next_invoice_type(state, ClientChanged(TaxCondition.RESPONSABLE_INSCRIPTO))
    assert state.invoice_type is InvoiceType.A


def test_reset_returns_to_tax_default():
    state = next_invoice_type(initial_state(TaxCondition.RESPONSABLE_INSCRIPTO), tenders_changed([CASH]))
    state = next_invoice_type(state, Reset())
    assert state.invoice_type is InvoiceType.A
    assert state.tender_methods == ()
    assert state.notice is None


def test_replay_matches_incremental_selection():
    state = replay_invoice_type(TaxCondition.RESPONSABLE_INSCRIPTO, [CASH])
    assert state.invoice_type is InvoiceType.X

    manual = replay_invoice_type(TaxCondition.RESPONSABLE_INSCRIPTO, [CASH], InvoiceType.A)
    assert manual.invoice_type is InvoiceType.A
    assert manual.source is TypeSource.MANUAL

    preset = replay_invoice_type(TaxCondition.CONSUMIDOR_FINAL, [CASH], InvoiceType.C, fixed_before_tenders=True)
    assert preset.invoice_type is InvoiceType.C
    assert preset.fixed_before_tenders


def test_preset_a_or_b_does_not_survive_cash_tenders():
    for tax_condition, chosen in (
        (TaxCondition.RESPONSABLE_INSCRIPTO, InvoiceType.A),
        (TaxCondition.CONSUMIDOR_FINAL, InvoiceType.B),
    ):
        state = next_invoice_type(initial_state(tax_condition), TypeSelected(chosen))
        assert state.fixed_before_tenders
        state = next_invoice_type(state, tenders_changed([CASH]))
        assert state.invoice_type is InvoiceType.X
        assert state.notice == f"Invoice type changed from {chosen.value} to X: all tenders are cash"

        replayed = replay_invoice_type(tax_condition, [CASH], chosen, fixed_before_tenders=True)
        assert replayed.invoice_type is chosen
        assert replayed.source is TypeSource.MANUAL
        assert not replayed.fixed_before_tenders


def test_families_and_tax_condition_aliases():
    assert InvoiceType.A.family is InvoiceFamily.FISCAL
    assert InvoiceType.X.family is InvoiceFamily.NON_FISCAL
    assert InvoiceType.P.family is InvoiceFamily.QUOTE
    assert parse_tax_condition("RI") is TaxCondition.RESPONSABLE_INSCRIPTO
    assert parse_tax_condition("Consumidor Final") is TaxCondition.CONSUMIDOR_FINAL
    with pytest.raises(ValueError):
        parse_tax_condition("unknown")

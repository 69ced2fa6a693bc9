from decimal import Decimal

import pytest

from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.services.tender_ledger import TenderLedger, TenderMethod, change_due, total_of


def test_totals_stay_exact_across_adds_and_removes():
    ledger = TenderLedger("100.00")
    ledger.add_tender(TenderMethod.CASH, "33.33")
    ledger.add_tender(TenderMethod.DEBIT_CARD, "33.33", card_type="visa_debit")
    ledger.add_tender(TenderMethod.CASH, "0.1")
    ledger.add_tender(TenderMethod.CASH, "0.2")

    assert ledger.total_tendered() == Decimal("66.96")

    ledger.remove_tender(2)
    assert ledger.total_tendered() == Decimal("66.86")
    assert ledger.remaining() == Decimal("33.14")
    assert ledger.methods == (TenderMethod.CASH, TenderMethod.DEBIT_CARD, TenderMethod.CASH)


@pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
def test_rejects_non_positive_or_invalid_amounts(amount):
    ledger = TenderLedger("10")
    with pytest.raises(AppError) as exc:
        ledger.add_tender(TenderMethod.CASH, amount)
    assert exc.value.error.code == ErrorCatalog.INVALID_AMOUNT.code
    assert ledger.entries == ()


def test_external_methods_cannot_be_added_directly():
    ledger = TenderLedger("500")
    for method in (TenderMethod.QR, TenderMethod.WALLET, TenderMethod.TRANSFER):
        with pytest.raises(AppError) as exc:
            ledger.add_tender(method, "500")
        assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED.code
    assert ledger.total_tendered() == Decimal("0.00")


def test_confirmed_external_reference_applies_once():
    ledger = TenderLedger("500")
    entry = ledger.add_confirmed_external(
        TenderMethod.QR, "500", external_reference="FP-ABC", requested_amount="500"
    )
    assert entry.confirmation_status == "approved"
    assert entry.external_reference == "FP-ABC"

    with pytest.raises(AppError) as exc:
        ledger.add_confirmed_external(TenderMethod.QR, "500", external_reference="FP-ABC")
    assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_ALREADY_APPLIED.code
    assert len(ledger.entries) == 1


def test_cash_received_produces_change():
    ledger = TenderLedger("850")
    entry = ledger.add_tender(TenderMethod.CASH, "850", received="1000")
    assert entry.change == Decimal("150.00")
    assert ledger.change_due() == Decimal("150.00")


def test_received_below_amount_or_on_card_is_rejected():
    ledger = TenderLedger("100")
    with pytest.raises(AppError):
        ledger.add_tender(TenderMethod.CASH, "100", received="90")
    with pytest.raises(AppError):
        ledger.add_tender(TenderMethod.CREDIT_CARD, "100", received="120")


def test_overpayment_counts_as_change():
    ledger = TenderLedger("90")
    ledger.add_tender(TenderMethod.CASH, "100")
    assert ledger.remaining() == Decimal("-10.00")
    assert ledger.change_due() == Decimal("10.00")
    assert change_due(ledger.entries, Decimal("90.00")) == Decimal("10.00")
    assert total_of(ledger.entries) == Decimal("100.00")


def test_remove_out_of_range_index():
    ledger = TenderLedger("10")
    ledger.add_tender(TenderMethod.CASH, "10")
    with pytest.raises(AppError) as exc:
        ledger.remove_tender(3)
    assert exc.value.error.code == ErrorCatalog.INVALID_TENDER_INDEX.code
    with pytest.raises(AppError):
        ledger.remove_tender(-1)


def test_listeners_see_every_mutation():
    seen = []
    ledger = TenderLedger("10")
    ledger.subscribe(lambda current: seen.append(current.methods))

    ledger.add_tender(TenderMethod.CASH, "5")
    ledger.add_tender(TenderMethod.CREDIT_CARD, "5")
    ledger.remove_tender(0)
    ledger.clear()

    assert seen == [
        (TenderMethod.CASH,),
        (TenderMethod.CASH, TenderMethod.CREDIT_CARD),
        (TenderMethod.CREDIT_CARD,),
        (),
    ]
    assert not ledger.has_non_cash()

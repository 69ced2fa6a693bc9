import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.factu.core.context import RequestContext
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.db.models import PendingPayment, Sale
from app.factu.repos.counters import InvoiceCounterRepository
from app.factu.repos.sales import SaleRepository
from app.factu.services.invoice_types import TaxCondition, replay_invoice_type
from app.factu.services.sale_finalizer import ClientInfo, SaleDraft, SaleFinalizer, receipt_number, validate_draft
from app.factu.services.sale_totals import make_line_item
from app.factu.services.tender_ledger import TenderLedger, TenderMethod


def _context(branch_id=None, point_of_sale=1):
    return RequestContext(
        user_id=str(uuid.uuid4()),
        branch_id=branch_id or str(uuid.uuid4()),
        point_of_sale=point_of_sale,
        role="cashier",
        trace_id="trace-finalizer",
    )


def _draft(ledger, *, price="1000", tax_condition=TaxCondition.CONSUMIDOR_FINAL, awaiting=False):
    return SaleDraft(
        items=(make_line_item(description="Producto", unit_price=price),),
        tenders=ledger.entries,
        invoice_state=replay_invoice_type(tax_condition, ledger.methods),
        client=ClientInfo(tax_condition=tax_condition),
        awaiting_external=awaiting,
    )


def _cash(amount):
    ledger = TenderLedger()
    ledger.add_tender(TenderMethod.CASH, amount)
    return ledger


def _approved_payment(db_session, branch_id, payment_id="FP-FINALIZER-1", status="approved"):
    payment = PendingPayment(
        payment_id=payment_id,
        branch_id=branch_id,
        amount=500.0,
        currency="ARS",
        payment_method="QR / Billetera Virtual",
        status=status,
        expires_at=datetime.utcnow() + timedelta(minutes=15),
        payment_metadata={},
    )
    db_session.add(payment)
    db_session.commit()
    return payment


def test_receipt_number_format():
    assert receipt_number(1, 1) == "0001-00000001"
    assert receipt_number(12, 345) == "0012-00000345"


def test_pending_external_payment_blocks_validation():
    with pytest.raises(AppError) as exc:
        validate_draft(_draft(_cash("1000"), awaiting=True))
    assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_PENDING.code


def test_tolerance_boundary():
    assert validate_draft(_draft(_cash("999.90"))).total == Decimal("1000.00")
    with pytest.raises(AppError) as exc:
        validate_draft(_draft(_cash("999.89")))
    assert exc.value.error.code == ErrorCatalog.INSUFFICIENT_PAYMENT.code
    assert exc.value.details["remaining"] == "0.11"
    validate_draft(_draft(_cash("999.50")), tolerance=Decimal("0.50"))


def test_counters_are_per_family_and_point_of_sale(db_session):
    context = _context()
    finalizer = SaleFinalizer(db_session)

    first = finalizer.commit(_draft(_cash("1000")), context)
    second = finalizer.commit(_draft(_cash("1000")), context)
    card = TenderLedger()
    card.add_tender(TenderMethod.DEBIT_CARD, "1000")
    fiscal = finalizer.commit(_draft(card), context)
    other_pos = finalizer.commit(_draft(_cash("1000")), _context(context.branch_id, point_of_sale=2))

    assert (first.sale.invoice_type, first.sale.invoice_number) == ("X", 1)
    assert second.sale.invoice_number == 2
    assert (fiscal.sale.invoice_type, fiscal.sale.invoice_number) == ("B", 1)
    assert other_pos.receipt_number == "0002-00000001"

    counters = InvoiceCounterRepository(db_session)
    assert counters.peek(branch_id=context.branch_id, point_of_sale=1, family="non_fiscal") == 3
    assert counters.peek(branch_id=context.branch_id, point_of_sale=1, family="fiscal") == 2
    assert db_session.query(Sale).count() == 4


def test_external_tender_must_be_approved_in_same_branch(db_session):
    context = _context()
    _approved_payment(db_session, context.branch_id, payment_id="FP-PENDING", status="pending")
    ledger = TenderLedger()
    ledger.add_confirmed_external(TenderMethod.QR, "500", external_reference="FP-PENDING")

    with pytest.raises(AppError) as exc:
        SaleFinalizer(db_session).commit(_draft(ledger, price="500"), context)
    assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED.code

    _approved_payment(db_session, str(uuid.uuid4()), payment_id="FP-ELSEWHERE")
    ledger = TenderLedger()
    ledger.add_confirmed_external(TenderMethod.QR, "500", external_reference="FP-ELSEWHERE")
    with pytest.raises(AppError) as exc:
        SaleFinalizer(db_session).commit(_draft(ledger, price="500"), context)
    assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED.code
    assert db_session.query(Sale).count() == 0


def test_approved_payment_is_applied_once(db_session):
    context = _context()
    payment = _approved_payment(db_session, context.branch_id)
    ledger = TenderLedger()
    ledger.add_confirmed_external(TenderMethod.QR, "500", external_reference=payment.payment_id, requested_amount="500")

    committed = SaleFinalizer(db_session).commit(_draft(ledger, price="500"), context)
    assert committed.sale.invoice_type == "B"
    assert committed.tenders[0].external_reference == payment.payment_id
    db_session.refresh(payment)
    assert payment.sale_id == committed.sale.id

    with pytest.raises(AppError) as exc:
        SaleFinalizer(db_session).commit(_draft(ledger, price="500"), context)
    assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_ALREADY_APPLIED.code
    assert db_session.query(Sale).count() == 1


def _unique_violation(message):
    return IntegrityError("INSERT", {}, Exception(message))


def test_counter_insert_race_is_retried(db_session, monkeypatch):
    context = _context()
    payment = _approved_payment(db_session, context.branch_id, payment_id="FP-COUNTER-RACE")
    original = InvoiceCounterRepository.next_number
    calls = []

    def racing(self, **kwargs):
        calls.append(kwargs["family"])
        if len(calls) == 1:
            raise _unique_violation(
                "UNIQUE constraint failed: invoice_counters.branch_id, invoice_counters.point_of_sale, invoice_counters.family"
            )
        return original(self, **kwargs)

    monkeypatch.setattr(InvoiceCounterRepository, "next_number", racing)
    ledger = TenderLedger()
    ledger.add_confirmed_external(TenderMethod.QR, "500", external_reference=payment.payment_id)

    committed = SaleFinalizer(db_session).commit(_draft(ledger, price="500"), context)
    assert committed.sale.invoice_number == 1
    assert calls == ["fiscal", "fiscal"]
    assert db_session.query(Sale).count() == 1


def test_only_tender_reference_conflicts_mean_already_applied(db_session, monkeypatch):
    context = _context()
    _approved_payment(db_session, context.branch_id, payment_id="FP-CONFLICT")
    ledger = TenderLedger()
    ledger.add_confirmed_external(TenderMethod.QR, "500", external_reference="FP-CONFLICT")

    def tender_conflict(self, sale, lines, tenders):
        raise _unique_violation("UNIQUE constraint failed: sale_tenders.external_reference")

    monkeypatch.setattr(SaleRepository, "add", tender_conflict)
    with pytest.raises(AppError) as exc:
        SaleFinalizer(db_session).commit(_draft(ledger, price="500"), context)
    assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_ALREADY_APPLIED.code

    def number_conflict(self, sale, lines, tenders):
        raise _unique_violation("UNIQUE constraint failed: sales.branch_id, sales.point_of_sale, sales.invoice_family, sales.invoice_number")

    monkeypatch.setattr(SaleRepository, "add", number_conflict)
    with pytest.raises(IntegrityError):
        SaleFinalizer(db_session).commit(_draft(ledger, price="500"), context)
    assert db_session.query(Sale).count() == 0


def test_external_tender_amount_must_match_confirmation(db_session):
    context = _context()
    payment = _approved_payment(db_session, context.branch_id, payment_id="FP-SHORT")
    ledger = TenderLedger()
    ledger.add_confirmed_external(TenderMethod.QR, "5000", external_reference=payment.payment_id)

    with pytest.raises(AppError) as exc:
        SaleFinalizer(db_session).commit(_draft(ledger, price="5000"), context)
    assert exc.value.error.code == ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED.code
    assert exc.value.details["confirmed_amount"] == "500.00"
    assert db_session.query(Sale).count() == 0

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from app.factu.core.config import settings
from app.factu.core.context import RequestContext
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.logging import log_json
from app.factu.core.metrics import metrics
from app.factu.db.models import Sale, SaleLine, SaleTender
from app.factu.repos.counters import InvoiceCounterRepository
from app.factu.repos.payment_notifications import PaymentNotificationRepository
from app.factu.repos.pending_payments import PendingPaymentRepository
from app.factu.repos.sales import SaleRepository
from app.factu.services.audit import AuditEventPayload, AuditService
from app.factu.services.invoice_types import InvoiceType, InvoiceTypeState, TaxCondition
from app.factu.services.money import money_str, to_money
from app.factu.services.pending_payments import APPROVED, NotificationConsumer
from app.factu.services.sale_totals import LineItem, SaleTotals, compute_totals
from app.factu.services.tender_ledger import TenderEntry, change_due, total_of

logger = logging.getLogger("factu.sales")


@dataclass(frozen=True)
class ClientInfo:
    name: str = "Consumidor Final"
    tax_condition: TaxCondition = TaxCondition.CONSUMIDOR_FINAL
    tax_id: str | None = None


@dataclass(frozen=True)
class SaleDraft:
    items: tuple[LineItem, ...]
    tenders: tuple[TenderEntry, ...]
    invoice_state: InvoiceTypeState
    client: ClientInfo = field(default_factory=ClientInfo)
    awaiting_external: bool = False

    @property
    def invoice_type(self) -> InvoiceType:
        return self.invoice_state.invoice_type

    def totals(self) -> SaleTotals:
        return compute_totals(self.items, self.invoice_type)


def validate_draft(draft: SaleDraft, tolerance: Decimal | None = None) -> SaleTotals:
    tolerance = settings.PAYMENT_TOLERANCE if tolerance is None else tolerance
    if draft.awaiting_external:
        raise AppError(ErrorCatalog.EXTERNAL_PAYMENT_PENDING)
    if not draft.items:
        raise AppError(ErrorCatalog.EMPTY_SALE)
    totals = draft.totals()
    tendered = total_of(draft.tenders)
    if tendered < totals.total - tolerance:
        raise AppError(
            ErrorCatalog.INSUFFICIENT_PAYMENT,
            details={"total": money_str(totals.total), "tendered": money_str(tendered), "remaining": money_str(totals.total - tendered)},
        )
    _check_tender_mix(draft)
    return totals


def _check_tender_mix(draft: SaleDraft) -> None:
    invoice_type = draft.invoice_type
    non_cash = [entry.method.value for entry in draft.tenders if not entry.method.is_cash_equivalent]
    if invoice_type is InvoiceType.X and non_cash:
        raise AppError(
            ErrorCatalog.INVALID_INVOICE_TENDER_MIX,
            details={"invoice_type": invoice_type.value, "non_cash_methods": non_cash},
        )
    if invoice_type.is_fiscal and not non_cash and not draft.invoice_state.fixed_before_tenders:
        raise AppError(
            ErrorCatalog.INVALID_INVOICE_TENDER_MIX,
            details={"invoice_type": invoice_type.value, "reason": "fiscal invoice paid only in cash"},
        )


def receipt_number(point_of_sale: int, number: int) -> str:
    return f"{point_of_sale:04d}-{number:08d}"


@dataclass
class CommittedSale:
    sale: Sale
    lines: list[SaleLine]
    tenders: list[SaleTender]
    totals: SaleTotals

    @property
    def receipt_number(self) -> str:
        return receipt_number(self.sale.point_of_sale, self.sale.invoice_number)


class SaleFinalizer:
    def __init__(self, db, tolerance: Decimal | None = None):
        self.db = db
        self.tolerance = tolerance
        self.sales = SaleRepository(db)
        self.counters = InvoiceCounterRepository(db)
        self.pending = PendingPaymentRepository(db)
        self.notifications = PaymentNotificationRepository(db)

    def commit(self, draft: SaleDraft, context: RequestContext) -> CommittedSale:
        validate_draft(draft, self.tolerance)
        external = [entry for entry in draft.tenders if entry.external_reference]
        if external:
            NotificationConsumer(self.db).process()
        try:
            draft, totals, committed = self._commit_with_retry(draft, context)
        except IntegrityError as exc:
            if external and _is_tender_reference_conflict(exc):
                raise AppError(ErrorCatalog.EXTERNAL_PAYMENT_ALREADY_APPLIED) from exc
            raise

        sale = committed.sale
        family = draft.invoice_type.family.value
        metrics.record_sale_committed(family)
        log_json(
            logger,
            {
                "event": "sale_committed",
                "sale_id": str(sale.id),
                "branch_id": context.branch_id,
                "invoice_type": sale.invoice_type,
                "receipt_number": committed.receipt_number,
                "total": money_str(totals.total),
                "trace_id": context.trace_id,
            },
        )
        AuditService(self.db).record_event(
            AuditEventPayload(
                branch_id=context.branch_id,
                user_id=context.user_id,
                trace_id=context.trace_id,
                action="sale.commit",
                entity_type="sale",
                entity_id=str(sale.id),
                after={
                    "invoice_type": sale.invoice_type,
                    "invoice_number": sale.invoice_number,
                    "total": money_str(totals.total),
                    "tenders": [entry.method.value for entry in draft.tenders],
                },
            )
        )
        return committed

    def _commit_with_retry(self, draft: SaleDraft, context: RequestContext):
        try:
            return self._commit_once(draft, context)
        except IntegrityError as exc:
            if not _is_counter_conflict(exc):
                raise
        # another terminal created the counter row first
        return self._commit_once(draft, context)

    def _commit_once(self, draft: SaleDraft, context: RequestContext):
        try:
            linked = []
            confirmed = {}
            for entry in draft.tenders:
                if not entry.external_reference:
                    continue
                payment, amount = self._confirmed_pending(entry, context)
                linked.append(payment)
                confirmed[entry.external_reference] = (amount, to_money(payment.amount))
            if confirmed:
                draft = replace(draft, tenders=tuple(_settled(entry, confirmed) for entry in draft.tenders))
            totals = validate_draft(draft, self.tolerance)
            committed = self._write(draft, totals, context, linked)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return draft, totals, committed

    def _confirmed_pending(self, entry: TenderEntry, context: RequestContext):
        """Return the approved pending payment behind an external tender and the amount it settled."""
        reference = entry.external_reference
        payment = self.pending.get_by_payment_id(reference)
        if payment is None or str(payment.branch_id) != str(context.branch_id) or payment.status != APPROVED:
            raise AppError(
                ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED,
                details={"payment_id": reference, "status": payment.status if payment else None},
            )
        if self.sales.get_tender_by_reference(reference) is not None:
            raise AppError(ErrorCatalog.EXTERNAL_PAYMENT_ALREADY_APPLIED, details={"payment_id": reference})
        notification = self.notifications.find(reference, APPROVED)
        amount = to_money(notification.amount if notification is not None else payment.amount)
        tolerance = settings.PAYMENT_TOLERANCE if self.tolerance is None else self.tolerance
        if abs(entry.amount - amount) > tolerance:
            raise AppError(
                ErrorCatalog.EXTERNAL_PAYMENT_NOT_CONFIRMED,
                details={
                    "payment_id": reference,
                    "amount": money_str(entry.amount),
                    "confirmed_amount": money_str(amount),
                },
            )
        return payment, amount

    def _write(self, draft: SaleDraft, totals: SaleTotals, context: RequestContext, linked) -> CommittedSale:
        invoice_type = draft.invoice_type
        family = invoice_type.family.value
        number = self.counters.next_number(
            branch_id=context.branch_id, point_of_sale=context.point_of_sale, family=family
        )
        tendered = total_of(draft.tenders)
        sale = Sale(
            branch_id=context.branch_id,
            point_of_sale=context.point_of_sale,
            user_id=context.user_id,
            client_name=draft.client.name,
            client_tax_id=draft.client.tax_id,
            client_tax_condition=draft.client.tax_condition.value,
            invoice_type=invoice_type.value,
            invoice_family=family,
            invoice_number=number,
            subtotal=float(totals.subtotal),
            net_total=float(totals.net_total),
            vat_total=float(totals.vat_total),
            total=float(totals.total),
            tendered_total=float(tendered),
            change_due=float(change_due(draft.tenders, totals.total)),
            authorization_code=None,
            authorization_status="PENDING" if invoice_type.is_fiscal else "NOT_APPLICABLE",
            status="COMPLETED",
            created_at=datetime.utcnow(),
        )
        lines = [
            SaleLine(
                position=index,
                product_id=item.product_id,
                description=item.description,
                quantity=float(item.quantity),
                unit_price=float(item.unit_price),
                discount_percent=float(item.discount_percent),
                vat_rate=float(item.vat_rate),
                line_total=float(breakdown.gross),
                net_amount=float(breakdown.net),
                vat_amount=float(breakdown.vat),
            )
            for index, (item, breakdown) in enumerate(zip(draft.items, totals.lines))
        ]
        tenders = [
            SaleTender(
                position=index,
                method=entry.method.value,
                amount=float(entry.amount),
                received=float(entry.received) if entry.received is not None else None,
                card_type=entry.card_type,
                external_reference=entry.external_reference,
                requested_amount=float(entry.requested_amount) if entry.requested_amount is not None else None,
            )
            for index, entry in enumerate(draft.tenders)
        ]
        self.sales.add(sale, lines, tenders)
        for payment in linked:
            payment.sale_id = sale.id
            payment.updated_at = datetime.utcnow()
        return CommittedSale(sale=sale, lines=lines, tenders=tenders, totals=totals)


def _settled(entry: TenderEntry, confirmed: dict) -> TenderEntry:
    if entry.external_reference not in confirmed:
        return entry
    amount, requested = confirmed[entry.external_reference]
    return replace(
        entry,
        amount=amount,
        requested_amount=entry.requested_amount if entry.requested_amount is not None else requested,
    )


def _constraint_text(exc: IntegrityError) -> str:
    return str(exc.orig).lower()


def _is_tender_reference_conflict(exc: IntegrityError) -> bool:
    text = _constraint_text(exc)
    return "sale_tenders" in text and "external_reference" in text


def _is_counter_conflict(exc: IntegrityError) -> bool:
    return "invoice_counters" in _constraint_text(exc)

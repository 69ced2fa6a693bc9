"""The sale being rung up at a point of sale.

A :class:`BillingSession` owns the draft: items, client, invoice type state,
the tender ledger and at most one external payment in flight. Every ledger
mutation is fed to the invoice type reducer before control returns to the
caller.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from app.factu.core.context import RequestContext
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.logging import log_json
from app.factu.services.external_payments import (
    AwaiterOutcome,
    AwaiterResult,
    ExternalPaymentAwaiter,
    ExternalPaymentRequest,
)
from app.factu.services.invoice_types import (
    ClientChanged,
    InvoiceType,
    InvoiceTypeEvent,
    Reset,
    TypeSelected,
    initial_state,
    next_invoice_type,
    tenders_changed,
)
from app.factu.services.sale_finalizer import ClientInfo, CommittedSale, SaleDraft, SaleFinalizer
from app.factu.services.sale_totals import LineItem, SaleTotals, compute_totals, make_line_item
from app.factu.services.tender_ledger import TenderEntry, TenderLedger, TenderMethod

logger = logging.getLogger("factu.billing")

_OUTCOME_NOTICES = {
    AwaiterOutcome.REJECTED: "External payment {payment_id} was rejected",
    AwaiterOutcome.EXPIRED: "External payment {payment_id} expired without confirmation",
    AwaiterOutcome.CANCELLED: "External payment {payment_id} was cancelled",
}


class BillingSession:
    def __init__(self, *, awaiter: ExternalPaymentAwaiter | None = None, client: ClientInfo | None = None):
        self.client = client or ClientInfo()
        self.items: list[LineItem] = []
        self.ledger = TenderLedger()
        self.ledger.subscribe(self._on_ledger_change)
        self.invoice_state = initial_state(self.client.tax_condition)
        self.notices: list[str] = []
        self.released_confirmations: list[TenderEntry] = []
        self.awaiter = awaiter
        self._watch: asyncio.Task | None = None
        self._generation = 0

    @property
    def invoice_type(self) -> InvoiceType:
        return self.invoice_state.invoice_type

    @property
    def awaiting_external(self) -> bool:
        if self.awaiter is not None and self.awaiter.is_busy:
            return True
        return self._watch is not None and not self._watch.done()

    def totals(self) -> SaleTotals:
        return compute_totals(self.items, self.invoice_type)

    def set_client(self, client: ClientInfo) -> None:
        self.client = client
        self._dispatch(ClientChanged(client.tax_condition))

    def select_invoice_type(self, invoice_type: InvoiceType | str) -> None:
        self._dispatch(TypeSelected(InvoiceType(invoice_type)))

    def add_item(self, **fields) -> LineItem:
        item = make_line_item(**fields)
        self.items.append(item)
        self._sync_total()
        return item

    def remove_item(self, index: int) -> LineItem:
        if index < 0 or index >= len(self.items):
            raise AppError(ErrorCatalog.INVALID_ITEM, details={"index": index})
        item = self.items.pop(index)
        self._sync_total()
        return item

    async def add_tender(
        self,
        method: TenderMethod | str,
        amount,
        *,
        received=None,
        card_type: str | None = None,
        sale_id: str | None = None,
    ) -> TenderEntry | ExternalPaymentRequest:
        """Card and cash tenders land immediately; external ones start a wait and land on confirmation."""
        method = TenderMethod(method)
        if not method.is_external:
            return self.ledger.add_tender(method, amount, received=received, card_type=card_type)
        if self.awaiter is None:
            raise AppError(ErrorCatalog.PAYMENT_PROVIDER_UNAVAILABLE, details={"method": method.value})
        if self.awaiting_external:
            raise AppError(ErrorCatalog.AWAITER_BUSY)
        generation = self._generation
        request = await self.awaiter.start(amount, method, sale_id=sale_id)
        if generation != self._generation:
            self.awaiter.cancel()
        self._watch = asyncio.get_running_loop().create_task(self._apply_when_resolved(request, generation))
        return request

    async def settle_external(self) -> AwaiterResult | None:
        """Wait until the in-flight external payment resolves and has been applied."""
        if self._watch is None:
            return None
        return await self._watch

    def cancel_external(self) -> None:
        if self.awaiter is not None:
            self.awaiter.cancel()

    def remove_tender(self, index: int) -> TenderEntry:
        entry = self.ledger.remove_tender(index)
        if entry.external_reference:
            self.released_confirmations.append(entry)
            log_json(
                logger,
                {
                    "event": "confirmed_tender_removed",
                    "payment_id": entry.external_reference,
                    "amount": str(entry.amount),
                    "method": entry.method.value,
                },
                level=logging.WARNING,
            )
        return entry

    def to_draft(self) -> SaleDraft:
        return SaleDraft(
            items=tuple(self.items),
            tenders=self.ledger.entries,
            invoice_state=self.invoice_state,
            client=self.client,
            awaiting_external=self.awaiting_external,
        )

    def commit(self, finalizer: SaleFinalizer, context: RequestContext) -> CommittedSale:
        committed = finalizer.commit(self.to_draft(), context)
        self.reset()
        return committed

    def reset(self) -> None:
        self.cancel_external()
        self._generation += 1
        self.items.clear()
        self.client = ClientInfo()
        self.ledger.clear()
        self.ledger.set_sale_total(Decimal("0"))
        self.invoice_state = next_invoice_type(self.invoice_state, Reset(self.client.tax_condition))
        self.released_confirmations.clear()
        self.notices.clear()

    async def _apply_when_resolved(self, request: ExternalPaymentRequest, generation: int) -> AwaiterResult:
        result = await self.awaiter.wait()
        if generation != self._generation:
            if result.succeeded:
                # the sale moved on; the notification stays flagged server side
                log_json(
                    logger,
                    {"event": "external_payment_orphaned", "payment_id": request.payment_id, "amount": str(result.amount)},
                    level=logging.WARNING,
                )
            return result
        if result.succeeded:
            self.ledger.add_confirmed_external(
                request.method,
                result.amount,
                external_reference=request.payment_id,
                requested_amount=request.amount,
            )
            if result.amount_mismatch:
                self.notices.append(
                    f"External payment {request.payment_id} confirmed {result.amount} instead of {request.amount}"
                )
        else:
            self.notices.append(_OUTCOME_NOTICES[result.outcome].format(payment_id=request.payment_id))
        return result

    def _sync_total(self) -> None:
        self.ledger.set_sale_total(self.totals().total)

    def _on_ledger_change(self, ledger: TenderLedger) -> None:
        self._dispatch(tenders_changed(ledger.methods))

    def _dispatch(self, event: InvoiceTypeEvent) -> None:
        self.invoice_state = next_invoice_type(self.invoice_state, event)
        if self.invoice_state.notice:
            self.notices.append(self.invoice_state.notice)

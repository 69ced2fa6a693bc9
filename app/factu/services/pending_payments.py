"""Server side of external payments: pending payment rows and the consumer that settles them."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from app.factu.core.config import settings
from app.factu.core.context import RequestContext
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.logging import log_json
from app.factu.db.models import PaymentNotification, PendingPayment
from app.factu.repos.payment_notifications import PaymentNotificationRepository
from app.factu.repos.pending_payments import PendingPaymentFilters, PendingPaymentRepository
from app.factu.services.audit import AuditEventPayload, AuditService
from app.factu.services.mercadopago import PaymentProvider
from app.factu.services.money import to_money
from app.factu.services.tender_ledger import TenderMethod

logger = logging.getLogger("factu.payments")

QR_METHOD_LABEL = "QR / Billetera Virtual"
TRANSFER_METHOD_LABEL = "Transferencia"

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
EXPIRED = "expired"


def method_label(method: TenderMethod) -> str:
    return TRANSFER_METHOD_LABEL if method is TenderMethod.TRANSFER else QR_METHOD_LABEL


def new_payment_id() -> str:
    return f"FP-{uuid.uuid4().hex[:20].upper()}"


class PendingPaymentService:
    def __init__(self, db, provider: PaymentProvider | None = None):
        self.db = db
        self.provider = provider
        self.repo = PendingPaymentRepository(db)

    def create_pending_payment(
        self,
        *,
        context: RequestContext,
        amount,
        method: TenderMethod | str,
        sale_id: str | None = None,
        description: str | None = None,
        expiration_minutes: int | None = None,
    ) -> PendingPayment:
        method = TenderMethod(method)
        if not method.is_external:
            raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"method": method.value})
        value = to_money(amount)
        if value <= 0:
            raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"amount": str(value)})
        payment_id = new_payment_id()
        created_at = datetime.utcnow()
        expires_at = created_at + timedelta(minutes=expiration_minutes or settings.PAYMENT_EXPIRATION_MINUTES)
        description = description or f"Venta {payment_id}"
        metadata = {"description": description, "created_from": "billing_module", "tender_method": method.value}

        external_id = None
        qr_data = None
        qr_image_url = None
        if method is TenderMethod.TRANSFER:
            metadata["transfer_reference"] = payment_id
        else:
            if self.provider is None:
                raise AppError(ErrorCatalog.PAYMENT_PROVIDER_UNAVAILABLE, details={"payment_id": payment_id})
            order = self.provider.create_qr_order(
                payment_id=payment_id,
                amount=value,
                description=description,
                expires_at=expires_at.isoformat() + "Z",
            )
            external_id = order.external_id
            qr_data = order.qr_data
            qr_image_url = order.qr_image_url

        payment = PendingPayment(
            payment_id=payment_id,
            external_id=external_id,
            branch_id=context.branch_id,
            user_id=context.user_id,
            sale_id=sale_id,
            amount=float(value),
            currency=settings.DEFAULT_CURRENCY,
            payment_method=method_label(method),
            status=PENDING,
            qr_data=qr_data,
            qr_image_url=qr_image_url,
            expires_at=expires_at,
            payment_metadata=metadata,
            created_at=created_at,
        )
        self.repo.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        AuditService(self.db).record_event(
            AuditEventPayload(
                branch_id=context.branch_id,
                user_id=context.user_id,
                trace_id=context.trace_id,
                action="pending_payment.create",
                entity_type="pending_payment",
                entity_id=payment_id,
                after={"amount": str(value), "method": method.value, "expires_at": expires_at.isoformat()},
            )
        )
        return payment

    def get(self, payment_id: str) -> PendingPayment:
        payment = self.repo.get_by_payment_id(payment_id)
        if payment is None:
            raise AppError(ErrorCatalog.PENDING_PAYMENT_NOT_FOUND, details={"payment_id": payment_id})
        return payment

    def expire_pending_payment(self, payment_id: str, *, context: RequestContext | None = None) -> PendingPayment:
        """Cancel a pending payment. Settled payments are returned unchanged."""
        payment = self.get(payment_id)
        if payment.status != PENDING:
            return payment
        payment.status = EXPIRED
        payment.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(payment)
        if context is not None:
            AuditService(self.db).record_event(
                AuditEventPayload(
                    branch_id=context.branch_id,
                    user_id=context.user_id,
                    trace_id=context.trace_id,
                    action="pending_payment.cancel",
                    entity_type="pending_payment",
                    entity_id=payment_id,
                    before={"status": PENDING},
                    after={"status": EXPIRED},
                )
            )
        return payment

    def expire_stale(self, now: datetime | None = None) -> list[str]:
        now = now or datetime.utcnow()
        expired = []
        for payment in self.repo.list_stale(now):
            payment.status = EXPIRED
            payment.updated_at = now
            expired.append(payment.payment_id)
        if expired:
            self.db.commit()
            log_json(logger, {"event": "pending_payments_expired", "count": len(expired), "payment_ids": expired})
        return expired

    def history(self, filters: PendingPaymentFilters) -> list[PendingPayment]:
        return self.repo.list_history(filters)


@dataclass(frozen=True)
class ConsumedNotification:
    notification_id: str
    payment_id: str
    status: str
    applied: bool
    manual_review: str | None


class NotificationConsumer:
    """Applies payment notifications to pending payments exactly once.

    Notifications are processed in arrival order. A notification only moves a
    payment that is still pending; anything else is marked for manual review.
    """

    def __init__(self, db, tolerance: Decimal | None = None):
        self.db = db
        self.tolerance = settings.PAYMENT_TOLERANCE if tolerance is None else tolerance
        self.notifications = PaymentNotificationRepository(db)
        self.payments = PendingPaymentRepository(db)

    def process(self, payment_id: str | None = None) -> list[ConsumedNotification]:
        results = [self._consume(notification) for notification in self.notifications.list_unprocessed(payment_id)]
        if results:
            self.db.commit()
        return results

    def _consume(self, notification: PaymentNotification) -> ConsumedNotification:
        payment = self.payments.get_by_payment_id(notification.payment_id)
        review = None
        applied = False
        if payment is None:
            review = "unknown_payment"
        elif payment.status != PENDING:
            review = f"pending_payment_{payment.status}"
        elif notification.status in (APPROVED, REJECTED):
            payment.status = notification.status
            payment.updated_at = datetime.utcnow()
            applied = True
            difference = abs(Decimal(str(notification.amount)) - Decimal(str(payment.amount)))
            if notification.status == APPROVED and difference > self.tolerance:
                review = "amount_mismatch"
        notification.processed = True
        if review:
            metadata = dict(notification.notification_metadata or {})
            metadata["manual_review"] = review
            notification.notification_metadata = metadata
            log_json(
                logger,
                {
                    "event": "payment_notification_manual_review",
                    "payment_id": notification.payment_id,
                    "status": notification.status,
                    "reason": review,
                },
                level=logging.WARNING,
            )
        return ConsumedNotification(
            notification_id=str(notification.id),
            payment_id=notification.payment_id,
            status=notification.status,
            applied=applied,
            manual_review=review,
        )

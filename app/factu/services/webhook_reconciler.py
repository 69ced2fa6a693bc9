"""Turns payment provider callbacks into payment notification rows.

Inserting a notification is the only side effect. Pending payments and sales
are settled by :class:`NotificationConsumer`, never here.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.exc import IntegrityError

from app.factu.core.logging import log_json
from app.factu.core.metrics import metrics
from app.factu.db.models import PaymentNotification
from app.factu.repos.payment_notifications import PaymentNotificationRepository
from app.factu.repos.pending_payments import PendingPaymentRepository
from app.factu.services.mercadopago import PaymentProvider
from app.factu.services.pending_payments import APPROVED, QR_METHOD_LABEL, REJECTED, TRANSFER_METHOD_LABEL

logger = logging.getLogger("factu.webhooks")

MERCADOPAGO = "mercadopago"
BANK_TRANSFER = "bank_transfer"
TEST = "test"

BANK_SIGNATURE_HEADER = "x-bank-signature"
BANK_SETTLED_STATUSES = frozenset({"approved", "completed"})


@dataclass(frozen=True)
class ReconcilerContext:
    """Everything one webhook invocation needs; nothing is read from process-wide state."""

    db: Any
    provider: PaymentProvider | None
    bank_webhook_secret: str
    trace_id: str
    currency: str = "ARS"


@dataclass(frozen=True)
class WebhookOutcome:
    status_code: int
    result: str
    payment_id: str | None = None
    notification: PaymentNotification | None = None

    @property
    def recorded(self) -> bool:
        return self.result == "recorded"


def sign_bank_payload(secret: str, body: bytes | str) -> str:
    message = body.encode("utf-8") if isinstance(body, str) else body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compact_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def verify_bank_signature(secret: str, signature: str | None, raw_body: bytes, payload: Any) -> bool:
    """Accept a signature over the raw body or over the compact JSON re-serialization of it."""
    if not secret or not signature:
        return False
    provided = signature.strip().lower()
    for candidate in (raw_body, compact_json(payload).encode("utf-8")):
        if hmac.compare_digest(sign_bank_payload(secret, candidate), provided):
            return True
    return False


class WebhookReconciler:
    def __init__(self, context: ReconcilerContext):
        self.context = context
        self.db = context.db
        self.notifications = PaymentNotificationRepository(context.db)
        self.pending = PendingPaymentRepository(context.db)

    def handle_mercadopago(self, payload: Any) -> WebhookOutcome:
        self._received(MERCADOPAGO, payload)
        if not isinstance(payload, dict):
            return self._finish(MERCADOPAGO, 400, "invalid_payload")
        if payload.get("type") != "payment" or payload.get("action") != "payment.created":
            return self._finish(MERCADOPAGO, 200, "ignored_event")
        data = payload.get("data")
        provider_id = data.get("id") if isinstance(data, dict) else None
        if provider_id in (None, ""):
            return self._finish(MERCADOPAGO, 400, "invalid_payload")
        provider_id = str(provider_id)

        detail = self.context.provider.get_payment(provider_id) if self.context.provider else None
        amount = _amount(detail.get("transaction_amount")) if detail else None
        if detail is None or amount is None:
            return self._finish(MERCADOPAGO, 200, "fetch_failed", provider_id=provider_id)

        pending = self.pending.get_by_external_id(provider_id)
        if pending is None and detail.get("external_reference"):
            pending = self.pending.get_by_payment_id(str(detail["external_reference"]))
        if pending is None:
            return self._finish(MERCADOPAGO, 200, "unknown_payment", provider_id=provider_id)

        status = detail.get("status")
        if status not in (APPROVED, REJECTED):
            return self._finish(MERCADOPAGO, 200, "status_ignored", payment_id=pending.payment_id)

        payer = detail.get("payer") or {}
        payer_name = f"{payer.get('first_name') or ''} {payer.get('last_name') or ''}".strip()
        notification = PaymentNotification(
            payment_id=pending.payment_id,
            external_id=provider_id,
            branch_id=pending.branch_id,
            user_id=pending.user_id,
            sale_id=pending.sale_id,
            amount=float(amount),
            currency=detail.get("currency_id") or pending.currency or self.context.currency,
            payment_method=QR_METHOD_LABEL,
            status=status,
            status_detail=detail.get("status_detail"),
            transaction_id=provider_id,
            authorization_code=detail.get("authorization_code"),
            payer_email=payer.get("email"),
            payer_name=payer_name or None,
            notification_metadata={
                "payment_method_id": detail.get("payment_method_id"),
                "payment_type_id": detail.get("payment_type_id"),
            },
            raw_webhook_data=detail,
            processed=False,
        )
        return self._record(MERCADOPAGO, notification)

    def handle_bank_transfer(self, payload: Any, *, raw_body: bytes, signature: str | None) -> WebhookOutcome:
        self._received(BANK_TRANSFER, payload)
        if not verify_bank_signature(self.context.bank_webhook_secret, signature, raw_body, payload):
            return self._finish(BANK_TRANSFER, 403, "invalid_signature", level=logging.WARNING)
        if not isinstance(payload, dict):
            return self._finish(BANK_TRANSFER, 400, "invalid_payload")
        status = str(payload.get("status") or "").lower()
        if status not in BANK_SETTLED_STATUSES:
            return self._finish(BANK_TRANSFER, 200, "status_ignored")
        reference = payload.get("reference")
        amount = _amount(payload.get("amount"))
        if not reference or amount is None:
            return self._finish(BANK_TRANSFER, 400, "invalid_payload")

        pending = self.pending.get_by_payment_id(str(reference))
        if pending is None:
            return self._finish(BANK_TRANSFER, 200, "unknown_payment", payment_id=str(reference))

        transaction_id = payload.get("transaction_id")
        notification = PaymentNotification(
            payment_id=pending.payment_id,
            external_id=str(transaction_id) if transaction_id is not None else None,
            branch_id=pending.branch_id,
            user_id=pending.user_id,
            sale_id=pending.sale_id,
            amount=float(amount),
            currency=self.context.currency,
            payment_method=TRANSFER_METHOD_LABEL,
            status=APPROVED,
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            payer_name=payload.get("payer_name"),
            notification_metadata={"payer_account": payload.get("payer_account")},
            raw_webhook_data=payload,
            processed=False,
        )
        return self._record(BANK_TRANSFER, notification)

    def record_test_payment(self, payload: dict) -> WebhookOutcome:
        """Synthesize an approved notification; only wired in development."""
        self._received(TEST, payload)
        amount = _amount(payload.get("amount", 1000))
        if amount is None:
            return self._finish(TEST, 400, "invalid_payload")
        payment_id = str(payload.get("payment_id") or f"TEST-{_token()}")[:64]
        pending = self.pending.get_by_payment_id(payment_id)
        notification = PaymentNotification(
            payment_id=payment_id,
            external_id=f"MP-TEST-{_token()}",
            branch_id=payload.get("branch_id") or (pending.branch_id if pending else None),
            user_id=payload.get("user_id") or (pending.user_id if pending else None),
            sale_id=pending.sale_id if pending else None,
            amount=float(amount),
            currency=self.context.currency,
            payment_method=QR_METHOD_LABEL,
            status=APPROVED,
            transaction_id=f"TXN-TEST-{_token()}",
            payer_email="test@test.com",
            payer_name="Usuario de Prueba",
            notification_metadata={"test": True},
            processed=False,
        )
        return self._record(TEST, notification)

    def _record(self, provider: str, notification: PaymentNotification) -> WebhookOutcome:
        existing = self.notifications.find(notification.payment_id, notification.status)
        if existing is not None:
            return self._finish(provider, 200, "duplicate", payment_id=notification.payment_id, notification=existing)
        try:
            self.notifications.add(notification)
            self.db.commit()
        except IntegrityError:
            # a concurrent delivery of the same event won the insert
            self.db.rollback()
            existing = self.notifications.find(notification.payment_id, notification.status)
            return self._finish(provider, 200, "duplicate", payment_id=notification.payment_id, notification=existing)
        return self._finish(provider, 200, "recorded", payment_id=notification.payment_id, notification=notification)

    def _received(self, provider: str, payload: Any) -> None:
        event_type = payload.get("type") if isinstance(payload, dict) else None
        log_json(
            logger,
            {"event": "webhook_received", "provider": provider, "type": event_type, "trace_id": self.context.trace_id},
        )

    def _finish(
        self,
        provider: str,
        status_code: int,
        result: str,
        *,
        payment_id: str | None = None,
        provider_id: str | None = None,
        notification: PaymentNotification | None = None,
        level: int = logging.INFO,
    ) -> WebhookOutcome:
        metrics.record_webhook(provider=provider, result=result)
        event = "webhook_processed" if result in ("recorded", "duplicate") else "webhook_ignored"
        log_json(
            logger,
            {
                "event": event,
                "provider": provider,
                "result": result,
                "status_code": status_code,
                "payment_id": payment_id,
                "provider_payment_id": provider_id,
                "notification_id": str(notification.id) if notification is not None else None,
                "trace_id": self.context.trace_id,
            },
            level=level,
        )
        return WebhookOutcome(status_code=status_code, result=result, payment_id=payment_id, notification=notification)


def _amount(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def _token() -> str:
    return uuid.uuid4().hex[:12].upper()

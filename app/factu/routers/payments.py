from datetime import datetime

from fastapi import APIRouter, Depends, Query

from app.factu.core.deps import enforce_branch_scope, require_request_context
from app.factu.db.models import PaymentNotification, PendingPayment
from app.factu.db.session import get_db
from app.factu.repos.payment_notifications import PaymentNotificationRepository
from app.factu.repos.pending_payments import PendingPaymentFilters
from app.factu.schemas.payments import (
    PaymentNotificationListResponse,
    PaymentNotificationResponse,
    PendingPaymentCreateRequest,
    PendingPaymentResponse,
    PendingPaymentStatusResponse,
)
from app.factu.services.mercadopago import get_payment_provider
from app.factu.services.money import to_money
from app.factu.services.pending_payments import PENDING, NotificationConsumer, PendingPaymentService

router = APIRouter()


def _optional_str(value) -> str | None:
    return str(value) if value is not None else None


def _pending_response(payment: PendingPayment) -> PendingPaymentResponse:
    metadata = payment.payment_metadata or {}
    return PendingPaymentResponse(
        payment_id=payment.payment_id,
        external_id=payment.external_id,
        branch_id=str(payment.branch_id),
        user_id=_optional_str(payment.user_id),
        sale_id=_optional_str(payment.sale_id),
        amount=to_money(payment.amount),
        currency=payment.currency,
        payment_method=payment.payment_method,
        status=payment.status,
        qr_data=payment.qr_data,
        qr_image_url=payment.qr_image_url,
        transfer_reference=metadata.get("transfer_reference"),
        expires_at=payment.expires_at,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


def _notification_response(notification: PaymentNotification) -> PaymentNotificationResponse:
    return PaymentNotificationResponse(
        id=str(notification.id),
        payment_id=notification.payment_id,
        external_id=notification.external_id,
        branch_id=_optional_str(notification.branch_id),
        sale_id=_optional_str(notification.sale_id),
        amount=to_money(notification.amount),
        currency=notification.currency,
        payment_method=notification.payment_method,
        status=notification.status,
        status_detail=notification.status_detail,
        transaction_id=notification.transaction_id,
        authorization_code=notification.authorization_code,
        payer_email=notification.payer_email,
        payer_name=notification.payer_name,
        metadata=notification.notification_metadata,
        processed=notification.processed,
        created_at=notification.created_at,
    )


@router.post("/api/payments", response_model=PendingPaymentResponse, status_code=201)
def create_payment(
    payload: PendingPaymentCreateRequest,
    context=Depends(require_request_context),
    provider=Depends(get_payment_provider),
    db=Depends(get_db),
):
    payment = PendingPaymentService(db, provider).create_pending_payment(
        context=context,
        amount=payload.amount,
        method=payload.method,
        sale_id=payload.sale_id,
        description=payload.description,
        expiration_minutes=payload.expiration_minutes,
    )
    return _pending_response(payment)


@router.get("/api/payments", response_model=list[PendingPaymentResponse])
def list_payments(
    status: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    filters = PendingPaymentFilters(branch_id=context.branch_id, status=status, since=since, until=until, limit=limit)
    return [_pending_response(payment) for payment in PendingPaymentService(db).history(filters)]


@router.get("/api/payments/notifications", response_model=PaymentNotificationListResponse)
def list_notifications(
    status: str | None = None,
    since: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    rows = PaymentNotificationRepository(db).list_for_branch(context.branch_id, status=status, since=since, limit=limit)
    return PaymentNotificationListResponse(rows=[_notification_response(row) for row in rows])


@router.get("/api/payments/{payment_id}", response_model=PendingPaymentStatusResponse)
def get_payment(payment_id: str, context=Depends(require_request_context), db=Depends(get_db)):
    service = PendingPaymentService(db)
    payment = service.get(payment_id)
    enforce_branch_scope(context, payment.branch_id)
    NotificationConsumer(db).process(payment_id)
    db.refresh(payment)
    if payment.status == PENDING and payment.expires_at <= datetime.utcnow():
        payment = service.expire_pending_payment(payment_id, context=context)
    notifications = PaymentNotificationRepository(db).list_for_payment(payment_id)
    return PendingPaymentStatusResponse(
        payment=_pending_response(payment),
        notifications=[_notification_response(row) for row in notifications],
    )


@router.post("/api/payments/{payment_id}/cancel", response_model=PendingPaymentResponse)
def cancel_payment(payment_id: str, context=Depends(require_request_context), db=Depends(get_db)):
    service = PendingPaymentService(db)
    enforce_branch_scope(context, service.get(payment_id).branch_id)
    return _pending_response(service.expire_pending_payment(payment_id, context=context))

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.factu.core.config import settings
from app.factu.core.error_catalog import ErrorCatalog
from app.factu.core.errors import error_body
from app.factu.core.metrics import metrics
from app.factu.db.session import get_db
from app.factu.schemas.webhooks import TestPaymentRequest, TestPaymentResponse, WebhookAck
from app.factu.services.external_payments import PaymentSignal, notification_hub
from app.factu.services.mercadopago import get_payment_provider
from app.factu.services.webhook_reconciler import (
    BANK_SIGNATURE_HEADER,
    BANK_TRANSFER,
    MERCADOPAGO,
    ReconcilerContext,
    WebhookOutcome,
    WebhookReconciler,
)

logger = logging.getLogger("factu.webhooks")

router = APIRouter()
dev_router = APIRouter()

_UNPARSEABLE = object()


def _reconciler(request: Request, db, provider=None) -> WebhookReconciler:
    return WebhookReconciler(
        ReconcilerContext(
            db=db,
            provider=provider,
            bank_webhook_secret=settings.BANK_WEBHOOK_SECRET,
            trace_id=getattr(request.state, "trace_id", ""),
            currency=settings.DEFAULT_CURRENCY,
        )
    )


def _parse(raw: bytes):
    try:
        return json.loads(raw or b"null")
    except ValueError:
        return _UNPARSEABLE


def _failed(request: Request, db, provider: str) -> JSONResponse:
    # providers retry on 5xx, so processing failures must not be acknowledged
    db.rollback()
    logger.exception("Webhook processing failed", extra={"provider": provider})
    metrics.record_webhook(provider=provider, result="error")
    request.state.error_code = ErrorCatalog.INTERNAL_ERROR.code
    trace_id = getattr(request.state, "trace_id", "")
    return JSONResponse(status_code=500, content=error_body(ErrorCatalog.INTERNAL_ERROR, None, trace_id))


def _respond(request: Request, outcome: WebhookOutcome) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", "")
    if outcome.status_code == 403:
        request.state.error_code = ErrorCatalog.WEBHOOK_SIGNATURE_INVALID.code
        return JSONResponse(status_code=403, content=error_body(ErrorCatalog.WEBHOOK_SIGNATURE_INVALID, None, trace_id))
    if outcome.status_code == 400:
        request.state.error_code = ErrorCatalog.WEBHOOK_PAYLOAD_INVALID.code
        return JSONResponse(
            status_code=400,
            content=error_body(ErrorCatalog.WEBHOOK_PAYLOAD_INVALID, {"result": outcome.result}, trace_id),
        )
    if outcome.recorded:
        notification = outcome.notification
        notification_hub.publish(notification.branch_id, PaymentSignal.from_notification(notification))
    ack = WebhookAck(result=outcome.result, payment_id=outcome.payment_id, trace_id=trace_id)
    return JSONResponse(status_code=outcome.status_code, content=ack.model_dump())


@router.post("/api/webhooks/mercadopago")
async def mercadopago_webhook(request: Request, db=Depends(get_db), provider=Depends(get_payment_provider)):
    payload = _parse(await request.body())
    if payload is _UNPARSEABLE:
        payload = None
    try:
        outcome = await run_in_threadpool(_reconciler(request, db, provider).handle_mercadopago, payload)
    except Exception:
        return _failed(request, db, MERCADOPAGO)
    return _respond(request, outcome)


@router.post("/api/webhooks/bank-transfer")
async def bank_transfer_webhook(request: Request, db=Depends(get_db)):
    raw_body = await request.body()
    payload = _parse(raw_body)
    if payload is _UNPARSEABLE:
        payload = None
    signature = request.headers.get(BANK_SIGNATURE_HEADER)
    try:
        outcome = await run_in_threadpool(
            lambda: _reconciler(request, db).handle_bank_transfer(payload, raw_body=raw_body, signature=signature)
        )
    except Exception:
        return _failed(request, db, BANK_TRANSFER)
    return _respond(request, outcome)


@dev_router.post("/api/webhooks/test-payment", response_model=TestPaymentResponse)
def test_payment(request: Request, payload: TestPaymentRequest, db=Depends(get_db)):
    outcome = _reconciler(request, db).record_test_payment(payload.model_dump(exclude_none=True))
    if outcome.status_code != 200:
        return _respond(request, outcome)
    notification = outcome.notification
    if outcome.recorded:
        notification_hub.publish(notification.branch_id, PaymentSignal.from_notification(notification))
    return TestPaymentResponse(
        success=True,
        message="Pago de prueba creado",
        notification_id=str(notification.id) if notification is not None else None,
        payment_id=outcome.payment_id,
    )

import asyncio
import json
import uuid

from app.factu.core.context import RequestContext
from app.factu.services.external_payments import (
    AwaiterOutcome,
    DatabaseNotificationSource,
    ExternalPaymentAwaiter,
    PendingPaymentGateway,
    PollingNotificationChannel,
)
from app.factu.services.tender_ledger import TenderMethod
from app.factu.services.webhook_reconciler import ReconcilerContext, WebhookReconciler, sign_bank_payload
from tests.payment_helpers import BANK_SECRET, bank_payload, pending_row


def _context():
    return RequestContext(
        user_id=str(uuid.uuid4()),
        branch_id=str(uuid.uuid4()),
        point_of_sale=1,
        role="cashier",
        trace_id="trace-gateway",
    )


def _deliver_transfer(session_factory, payment_id):
    payload = bank_payload(payment_id)
    body = json.dumps(payload).encode("utf-8")
    db = session_factory()
    try:
        reconciler = WebhookReconciler(
            ReconcilerContext(db=db, provider=None, bank_webhook_secret=BANK_SECRET, trace_id="trace-bank")
        )
        return reconciler.handle_bank_transfer(payload, raw_body=body, signature=sign_bank_payload(BANK_SECRET, body))
    finally:
        db.close()


def test_transfer_confirmed_through_persisted_notifications(db_session):
    from app.factu.db.session import SessionLocal

    context = _context()
    gateway = PendingPaymentGateway(SessionLocal, context)
    channel = PollingNotificationChannel(DatabaseNotificationSource(SessionLocal), interval=0.01)

    async def scenario():
        awaiter = ExternalPaymentAwaiter(gateway=gateway, channel=channel, branch_id=context.branch_id, timeout=5)
        request = await awaiter.start("500", TenderMethod.TRANSFER)
        outcome = await asyncio.to_thread(_deliver_transfer, SessionLocal, request.payment_id)
        assert outcome.recorded
        return request, await awaiter.wait()

    request, result = asyncio.run(scenario())

    assert result.outcome is AwaiterOutcome.CONFIRMED
    assert result.amount == request.amount
    row = pending_row(db_session, request.payment_id)
    assert row.payment_method == "Transferencia"
    assert str(row.branch_id) == context.branch_id


def test_expired_wait_releases_pending_payment(db_session):
    from app.factu.db.session import SessionLocal

    context = _context()
    gateway = PendingPaymentGateway(SessionLocal, context)
    channel = PollingNotificationChannel(DatabaseNotificationSource(SessionLocal), interval=0.01)

    async def scenario():
        awaiter = ExternalPaymentAwaiter(gateway=gateway, channel=channel, branch_id=context.branch_id, timeout=0.05)
        request = await awaiter.start("500", TenderMethod.TRANSFER)
        return request, await awaiter.wait()

    request, result = asyncio.run(scenario())

    assert result.outcome is AwaiterOutcome.EXPIRED
    assert pending_row(db_session, request.payment_id).status == "expired"

import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from app.factu.db.models import PaymentNotification, PendingPayment
from app.factu.services.pending_payments import NotificationConsumer, PendingPaymentService


def _pending(db_session, payment_id, *, amount=500.0, status="pending", expires_in=15):
    payment = PendingPayment(
        payment_id=payment_id,
        branch_id=uuid.uuid4(),
        amount=amount,
        currency="ARS",
        payment_method="Transferencia",
        status=status,
        expires_at=datetime.utcnow() + timedelta(minutes=expires_in),
        payment_metadata={"transfer_reference": payment_id},
    )
    db_session.add(payment)
    db_session.commit()
    return payment


def _notification(db_session, payment_id, *, amount=500.0, status="approved", created_at=None):
    notification = PaymentNotification(
        payment_id=payment_id,
        amount=amount,
        currency="ARS",
        payment_method="Transferencia",
        status=status,
        notification_metadata={},
        processed=False,
        created_at=created_at or datetime.utcnow(),
    )
    db_session.add(notification)
    db_session.commit()
    return notification


def test_approved_notification_settles_pending_payment(db_session):
    payment = _pending(db_session, "FP-CONSUME-1")
    _notification(db_session, "FP-CONSUME-1", amount=500.05)

    [result] = NotificationConsumer(db_session).process()

    assert result.applied
    assert result.manual_review is None
    db_session.refresh(payment)
    assert payment.status == "approved"
    assert NotificationConsumer(db_session).process() == []


def test_amount_beyond_tolerance_is_applied_but_flagged(db_session):
    payment = _pending(db_session, "FP-CONSUME-2")
    notification = _notification(db_session, "FP-CONSUME-2", amount=450.0)

    [result] = NotificationConsumer(db_session, tolerance=Decimal("0.10")).process()

    assert result.applied
    assert result.manual_review == "amount_mismatch"
    db_session.refresh(payment)
    db_session.refresh(notification)
    assert payment.status == "approved"
    assert notification.notification_metadata["manual_review"] == "amount_mismatch"


def test_first_notification_wins(db_session):
    payment = _pending(db_session, "FP-CONSUME-3")
    started = datetime.utcnow()
    _notification(db_session, "FP-CONSUME-3", status="rejected", created_at=started)
    late = _notification(db_session, "FP-CONSUME-3", status="approved", created_at=started + timedelta(seconds=1))

    first, second = NotificationConsumer(db_session).process("FP-CONSUME-3")

    assert first.status == "rejected" and first.applied
    assert second.manual_review == "pending_payment_rejected"
    db_session.refresh(payment)
    db_session.refresh(late)
    assert payment.status == "rejected"
    assert late.processed is True


def test_unknown_and_expired_payments_need_review(db_session):
    _notification(db_session, "FP-NOBODY")
    _pending(db_session, "FP-LATE", status="expired")
    _notification(db_session, "FP-LATE")

    reviews = {item.payment_id: item.manual_review for item in NotificationConsumer(db_session).process()}
    assert reviews == {"FP-NOBODY": "unknown_payment", "FP-LATE": "pending_payment_expired"}


def test_expire_stale_only_touches_overdue_pending(db_session):
    _pending(db_session, "FP-OVERDUE", expires_in=-5)
    _pending(db_session, "FP-FRESH")
    _pending(db_session, "FP-DONE", status="approved", expires_in=-5)

    assert PendingPaymentService(db_session).expire_stale() == ["FP-OVERDUE"]
    statuses = {row.payment_id: row.status for row in db_session.query(PendingPayment).all()}
    assert statuses == {"FP-OVERDUE": "expired", "FP-FRESH": "pending", "FP-DONE": "approved"}

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select

from app.factu.db.models import PaymentNotification


class PaymentNotificationRepository:
    def __init__(self, db):
        self.db = db

    def add(self, notification: PaymentNotification) -> PaymentNotification:
        self.db.add(notification)
        self.db.flush()
        return notification

    def find(self, payment_id: str, status: str) -> PaymentNotification | None:
        stmt = select(PaymentNotification).where(
            PaymentNotification.payment_id == payment_id,
            PaymentNotification.status == status,
        )
        return self.db.execute(stmt).scalars().first()

    def list_for_payment(self, payment_id: str) -> list[PaymentNotification]:
        stmt = (
            select(PaymentNotification)
            .where(PaymentNotification.payment_id == payment_id)
            .order_by(PaymentNotification.created_at)
        )
        return self.db.execute(stmt).scalars().all()

    def list_unprocessed(self, payment_id: str | None = None) -> list[PaymentNotification]:
        stmt = select(PaymentNotification).where(PaymentNotification.processed.is_(False))
        if payment_id is not None:
            stmt = stmt.where(PaymentNotification.payment_id == payment_id)
        return self.db.execute(stmt.order_by(PaymentNotification.created_at)).scalars().all()

    def list_for_branch(
        self,
        branch_id: str,
        *,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[PaymentNotification]:
        stmt = select(PaymentNotification).where(PaymentNotification.branch_id == branch_id)
        if status:
            stmt = stmt.where(PaymentNotification.status == status)
        if since:
            stmt = stmt.where(PaymentNotification.created_at >= since)
        stmt = stmt.order_by(PaymentNotification.created_at.desc()).limit(limit)
        return self.db.execute(stmt).scalars().all()

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select

from app.factu.db.models import PendingPayment


@dataclass(frozen=True)
class PendingPaymentFilters:
    branch_id: str
    status: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = 100


class PendingPaymentRepository:
    def __init__(self, db):
        self.db = db

    def add(self, payment: PendingPayment) -> PendingPayment:
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_by_payment_id(self, payment_id: str) -> PendingPayment | None:
        stmt = select(PendingPayment).where(PendingPayment.payment_id == payment_id)
        return self.db.execute(stmt).scalars().first()

    def get_by_external_id(self, external_id: str) -> PendingPayment | None:
        stmt = select(PendingPayment).where(PendingPayment.external_id == external_id)
        return self.db.execute(stmt).scalars().first()

    def list_stale(self, now: datetime) -> list[PendingPayment]:
        stmt = select(PendingPayment).where(
            PendingPayment.status == "pending",
            PendingPayment.expires_at <= now,
        )
        return self.db.execute(stmt).scalars().all()

    def list_history(self, filters: PendingPaymentFilters) -> list[PendingPayment]:
        stmt = select(PendingPayment).where(PendingPayment.branch_id == filters.branch_id)
        if filters.status:
            stmt = stmt.where(PendingPayment.status == filters.status)
        if filters.since:
            stmt = stmt.where(PendingPayment.created_at >= filters.since)
        if filters.until:
            stmt = stmt.where(PendingPayment.created_at <= filters.until)
        stmt = stmt.order_by(PendingPayment.created_at.desc()).limit(filters.limit)
        return self.db.execute(stmt).scalars().all()

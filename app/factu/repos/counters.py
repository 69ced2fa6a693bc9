from datetime import datetime

from sqlalchemy import select

from app.factu.db.models import InvoiceCounter


class InvoiceCounterRepository:
    def __init__(self, db):
        self.db = db

    def get(self, *, branch_id: str, point_of_sale: int, family: str) -> InvoiceCounter | None:
        stmt = (
            select(InvoiceCounter)
            .where(
                InvoiceCounter.branch_id == branch_id,
                InvoiceCounter.point_of_sale == point_of_sale,
                InvoiceCounter.family == family,
            )
            .with_for_update()
        )
        return self.db.execute(stmt).scalars().first()

    def next_number(self, *, branch_id: str, point_of_sale: int, family: str) -> int:
        """Reserve the next receipt number in the caller's transaction."""
        counter = self.get(branch_id=branch_id, point_of_sale=point_of_sale, family=family)
        if counter is None:
            counter = InvoiceCounter(branch_id=branch_id, point_of_sale=point_of_sale, family=family, last_number=0)
            self.db.add(counter)
        counter.last_number += 1
        counter.updated_at = datetime.utcnow()
        self.db.flush()
        return counter.last_number

    def peek(self, *, branch_id: str, point_of_sale: int, family: str) -> int:
        counter = self.get(branch_id=branch_id, point_of_sale=point_of_sale, family=family)
        return (counter.last_number if counter else 0) + 1

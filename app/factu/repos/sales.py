from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select

from app.factu.db.models import Sale, SaleLine, SaleTender


@dataclass(frozen=True)
class SaleQueryFilters:
    branch_id: str
    invoice_type: str | None = None
    limit: int = 100


class SaleRepository:
    def __init__(self, db):
        self.db = db

    def add(self, sale: Sale, lines: list[SaleLine], tenders: list[SaleTender]) -> Sale:
        self.db.add(sale)
        self.db.flush()
        for line in lines:
            line.sale_id = sale.id
            self.db.add(line)
        for tender in tenders:
            tender.sale_id = sale.id
            self.db.add(tender)
        self.db.flush()
        return sale

    def get_by_id(self, sale_id: str) -> Sale | None:
        return self.db.execute(select(Sale).where(Sale.id == sale_id)).scalars().first()

    def list_sales(self, filters: SaleQueryFilters) -> list[Sale]:
        query = select(Sale).where(Sale.branch_id == filters.branch_id)
        if filters.invoice_type:
            query = query.where(Sale.invoice_type == filters.invoice_type)
        query = query.order_by(Sale.created_at.desc()).limit(filters.limit)
        return self.db.execute(query).scalars().all()

    def get_lines(self, sale_id) -> list[SaleLine]:
        stmt = select(SaleLine).where(SaleLine.sale_id == sale_id).order_by(SaleLine.position)
        return self.db.execute(stmt).scalars().all()

    def get_tenders(self, sale_id) -> list[SaleTender]:
        stmt = select(SaleTender).where(SaleTender.sale_id == sale_id).order_by(SaleTender.position)
        return self.db.execute(stmt).scalars().all()

    def get_tender_by_reference(self, external_reference: str) -> SaleTender | None:
        stmt = select(SaleTender).where(SaleTender.external_reference == external_reference)
        return self.db.execute(stmt).scalars().first()

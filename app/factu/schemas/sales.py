from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

TaxConditionValue = Literal["responsable_inscripto", "monotributo", "exento", "consumidor_final", "no_categorizado"]
InvoiceTypeValue = Literal["A", "B", "C", "X", "P"]
TenderMethodValue = Literal["cash", "debit_card", "credit_card", "qr", "wallet", "transfer"]


class SaleClient(BaseModel):
    name: str = Field(default="Consumidor Final", max_length=150)
    tax_condition: TaxConditionValue = "consumidor_final"
    tax_id: str | None = Field(default=None, max_length=20)


class SaleItemCreate(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    quantity: Decimal = Decimal("1")
    unit_price: Decimal
    discount_percent: Decimal = Decimal("0")
    vat_rate: Decimal | None = None
    product_id: str | None = None
    modifier: str | None = Field(default=None, max_length=16)


class SaleTenderCreate(BaseModel):
    method: TenderMethodValue
    amount: Decimal
    received: Decimal | None = None
    card_type: str | None = Field(default=None, max_length=50)
    payment_id: str | None = None


class SaleCommitRequest(BaseModel):
    client: SaleClient = Field(default_factory=SaleClient)
    items: list[SaleItemCreate]
    tenders: list[SaleTenderCreate]
    invoice_type: InvoiceTypeValue | None = None
    invoice_type_fixed_before_tenders: bool = False


class SaleLineResponse(BaseModel):
    position: int
    product_id: str | None
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    vat_rate: Decimal
    line_total: Decimal
    net_amount: Decimal
    vat_amount: Decimal


class SaleTenderResponse(BaseModel):
    position: int
    method: str
    amount: Decimal
    received: Decimal | None
    card_type: str | None
    external_reference: str | None
    requested_amount: Decimal | None


class SaleResponse(BaseModel):
    id: str
    branch_id: str
    point_of_sale: int
    user_id: str | None
    client_name: str
    client_tax_id: str | None
    client_tax_condition: str
    invoice_type: str
    invoice_family: str
    invoice_number: int
    receipt_number: str
    subtotal: Decimal
    net_total: Decimal
    vat_total: Decimal
    total: Decimal
    tendered_total: Decimal
    change_due: Decimal
    vat_discriminated: bool
    authorization_status: str
    authorization_code: str | None
    status: str
    created_at: datetime
    lines: list[SaleLineResponse]
    tenders: list[SaleTenderResponse]
    notices: list[str] = []


class SaleListResponse(BaseModel):
    rows: list[SaleResponse]

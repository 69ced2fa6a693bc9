from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class PendingPaymentCreateRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    method: Literal["qr", "wallet", "transfer"] = "qr"
    sale_id: str | None = None
    description: str | None = Field(default=None, max_length=255)
    expiration_minutes: int | None = Field(default=None, gt=0, le=1440)


class PendingPaymentResponse(BaseModel):
    payment_id: str
    external_id: str | None
    branch_id: str
    user_id: str | None
    sale_id: str | None
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    qr_data: str | None
    qr_image_url: str | None
    transfer_reference: str | None = None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime | None = None


class PaymentNotificationResponse(BaseModel):
    id: str
    payment_id: str
    external_id: str | None
    branch_id: str | None
    sale_id: str | None
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    status_detail: str | None
    transaction_id: str | None
    authorization_code: str | None
    payer_email: str | None
    payer_name: str | None
    metadata: dict | None
    processed: bool
    created_at: datetime


class PendingPaymentStatusResponse(BaseModel):
    payment: PendingPaymentResponse
    notifications: list[PaymentNotificationResponse]


class PaymentNotificationListResponse(BaseModel):
    rows: list[PaymentNotificationResponse]

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class WebhookAck(BaseModel):
    result: str
    payment_id: str | None = None
    trace_id: str | None = None


class TestPaymentRequest(BaseModel):
    payment_id: str | None = None
    amount: Decimal | None = None
    branch_id: UUID | None = None
    user_id: UUID | None = None


class TestPaymentResponse(BaseModel):
    success: bool
    message: str
    notification_id: str | None = None
    payment_id: str | None = None

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select

from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.security import create_cashier_token
from app.factu.db.models import PaymentNotification, PendingPayment
from app.factu.services.mercadopago import QrOrder
from app.factu.services.webhook_reconciler import BANK_SIGNATURE_HEADER, sign_bank_payload

BANK_SECRET = "test-bank-secret"


@dataclass
class Cashier:
    branch_id: str
    user_id: str
    headers: dict

    def with_key(self, key: str) -> dict:
        return {**self.headers, "Idempotency-Key": key}


def make_cashier(branch_id: str | None = None, *, point_of_sale: int = 1) -> Cashier:
    branch_id = branch_id or str(uuid.uuid4())
    user_id = str(uuid.uuid4())
    token = create_cashier_token(user_id=user_id, branch_id=branch_id, point_of_sale=point_of_sale)
    return Cashier(branch_id=branch_id, user_id=user_id, headers={"Authorization": f"Bearer {token}"})


@dataclass
class FakeProvider:
    payments: dict = field(default_factory=dict)
    orders: list = field(default_factory=list)
    fail_orders: bool = False

    def get_payment(self, payment_id: str):
        detail = self.payments.get(str(payment_id))
        if isinstance(detail, Exception):
            raise detail
        return dict(detail) if detail is not None else None

    def create_qr_order(self, *, payment_id: str, amount: Decimal, description: str, expires_at: str | None = None):
        if self.fail_orders:
            raise AppError(ErrorCatalog.PAYMENT_PROVIDER_UNAVAILABLE, details={"payment_id": payment_id})
        self.orders.append({"payment_id": payment_id, "amount": amount, "description": description})
        return QrOrder(
            external_id=f"ORDER-{len(self.orders)}",
            qr_data=f"00020101021243650016COM.MERCADOLIBRE{payment_id}",
        )

    def approve(self, provider_id: str, *, external_reference: str, amount="500.00", status: str = "approved"):
        self.payments[str(provider_id)] = {
            "id": provider_id,
            "status": status,
            "status_detail": "accredited" if status == "approved" else "cc_rejected_other_reason",
            "transaction_amount": float(amount),
            "currency_id": "ARS",
            "external_reference": external_reference,
            "payment_method_id": "account_money",
            "payment_type_id": "account_money",
            "payer": {"email": "buyer@example.com", "first_name": "Ana", "last_name": "Gomez"},
        }


def create_pending(client, cashier: Cashier, *, amount: str = "500.00", method: str = "transfer", **extra) -> dict:
    response = client.post(
        "/api/payments",
        headers=cashier.headers,
        json={"amount": amount, "method": method, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


def mp_event(provider_id, *, event_type: str = "payment", action: str = "payment.created") -> dict:
    return {"type": event_type, "action": action, "data": {"id": provider_id}}


def post_bank_transfer(client, payload, *, secret: str = BANK_SECRET, signature: str | None = None):
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    headers[BANK_SIGNATURE_HEADER] = signature if signature is not None else sign_bank_payload(secret, body)
    return client.post("/api/webhooks/bank-transfer", content=body, headers=headers)


def bank_payload(reference: str, *, amount: str = "500.00", status: str = "approved", **extra) -> dict:
    return {
        "reference": reference,
        "amount": amount,
        "status": status,
        "transaction_id": f"BANK-{reference}",
        "payer_name": "Juan Perez",
        "payer_account": "0170099220000067797370",
        **extra,
    }


def notifications_for(db_session, payment_id: str) -> list[PaymentNotification]:
    db_session.expire_all()
    return list(
        db_session.execute(select(PaymentNotification).where(PaymentNotification.payment_id == payment_id)).scalars()
    )


def all_notifications(db_session) -> list[PaymentNotification]:
    db_session.expire_all()
    return list(db_session.execute(select(PaymentNotification)).scalars())


def pending_row(db_session, payment_id: str) -> PendingPayment:
    db_session.expire_all()
    return db_session.execute(select(PendingPayment).where(PendingPayment.payment_id == payment_id)).scalar_one()


def sale_item(description: str = "Producto", unit_price: str = "1000.00", **extra) -> dict:
    return {"description": description, "unit_price": unit_price, **extra}


def sale_payload(items: list[dict], tenders: list[dict], **extra) -> dict:
    return {"items": items, "tenders": tenders, **extra}

import json
from decimal import Decimal

import pytest
import responses

from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.services.mercadopago import MercadoPagoClient

BASE_URL = "https://api.mercadopago.test"
QR_URL = f"{BASE_URL}/instore/orders/qr/seller/collectors/123456/pos/CAJA01/qrs"


def _client():
    return MercadoPagoClient(
        access_token="TEST-TOKEN",
        base_url=BASE_URL,
        collector_id="123456",
        pos_id="CAJA01",
        notification_url="https://factu.test/api/webhooks/mercadopago",
        timeout=2.0,
    )


@responses.activate
def test_get_payment_returns_detail():
    responses.add(
        responses.GET,
        f"{BASE_URL}/v1/payments/42",
        json={"id": 42, "status": "approved", "transaction_amount": 500},
        status=200,
    )

    detail = _client().get_payment("42")

    assert detail["status"] == "approved"
    assert responses.calls[0].request.headers["Authorization"] == "Bearer TEST-TOKEN"


@responses.activate
def test_get_payment_failures_return_none():
    responses.add(responses.GET, f"{BASE_URL}/v1/payments/404", json={"message": "not found"}, status=404)
    responses.add(responses.GET, f"{BASE_URL}/v1/payments/bad", body="<html>", status=200)
    responses.add(responses.GET, f"{BASE_URL}/v1/payments/list", json=[1, 2], status=200)

    client = _client()
    assert client.get_payment("404") is None
    assert client.get_payment("bad") is None
    assert client.get_payment("list") is None
    # unregistered URLs raise ConnectionError inside the client
    assert client.get_payment("unreachable") is None


@responses.activate
def test_create_qr_order_sends_reference():
    responses.add(
        responses.POST,
        QR_URL,
        json={"in_store_order_id": "ORD-9", "qr_data": "00020101021243650016COM.MERCADOLIBRE"},
        status=201,
    )

    order = _client().create_qr_order(
        payment_id="FP-ABC", amount=Decimal("500.00"), description="Venta FP-ABC", expires_at="2026-01-01T00:15:00Z"
    )

    assert order.external_id == "ORD-9"
    assert order.qr_data.startswith("000201")
    sent = json.loads(responses.calls[0].request.body)
    assert sent["external_reference"] == "FP-ABC"
    assert sent["total_amount"] == 500.0
    assert sent["expiration_date"] == "2026-01-01T00:15:00Z"
    assert sent["notification_url"] == "https://factu.test/api/webhooks/mercadopago"


@responses.activate
def test_create_qr_order_failure_raises_provider_unavailable():
    responses.add(responses.POST, QR_URL, json={"message": "boom"}, status=500)

    with pytest.raises(AppError) as exc:
        _client().create_qr_order(payment_id="FP-ABC", amount=Decimal("500.00"), description="Venta")
    assert exc.value.error.code == ErrorCatalog.PAYMENT_PROVIDER_UNAVAILABLE.code


@responses.activate
def test_create_qr_order_without_qr_data_is_rejected():
    responses.add(responses.POST, QR_URL, json={"in_store_order_id": "ORD-10"}, status=201)

    with pytest.raises(AppError):
        _client().create_qr_order(payment_id="FP-ABC", amount=Decimal("500.00"), description="Venta")

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter

from app.factu.core.config import settings
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.logging import log_json

logger = logging.getLogger("factu.mercadopago")


class PaymentProvider(Protocol):
    def get_payment(self, payment_id: str) -> dict[str, Any] | None: ...

    def create_qr_order(
        self, *, payment_id: str, amount: Decimal, description: str, expires_at: str | None = None
    ) -> "QrOrder": ...


@dataclass(frozen=True)
class QrOrder:
    external_id: str | None
    qr_data: str
    qr_image_url: str | None = None


@dataclass
class MercadoPagoClient:
    access_token: str
    base_url: str = "https://api.mercadopago.com"
    collector_id: str = ""
    pos_id: str = ""
    notification_url: str = ""
    timeout: float = 10.0
    session: requests.Session | None = None

    def __post_init__(self) -> None:
        if self.session is None:
            self.session = requests.Session()
            adapter = HTTPAdapter(pool_connections=4, pool_maxsize=4)
            self.session.mount("https://", adapter)
            self.session.mount("http://", adapter)

    @classmethod
    def from_settings(cls) -> "MercadoPagoClient":
        return cls(
            access_token=settings.MERCADOPAGO_ACCESS_TOKEN,
            base_url=settings.MERCADOPAGO_API_BASE_URL,
            collector_id=settings.MERCADOPAGO_COLLECTOR_ID,
            pos_id=settings.MERCADOPAGO_POS_ID,
            notification_url=settings.MERCADOPAGO_NOTIFICATION_URL,
            timeout=settings.MERCADOPAGO_TIMEOUT_SEC,
        )

    def _build_url(self, path: str) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        """Authoritative payment detail, or None when it cannot be obtained right now."""
        url = self._build_url(f"/v1/payments/{payment_id}")
        try:
            response = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            log_json(
                logger,
                {"event": "provider_fetch_failed", "payment_id": payment_id, "error_class": type(exc).__name__},
                level=logging.WARNING,
            )
            return None
        if not response.ok:
            log_json(
                logger,
                {"event": "provider_fetch_failed", "payment_id": payment_id, "status_code": response.status_code},
                level=logging.WARNING,
            )
            return None
        try:
            payload = response.json()
        except ValueError:
            log_json(
                logger,
                {"event": "provider_fetch_failed", "payment_id": payment_id, "error_class": "InvalidJSON"},
                level=logging.WARNING,
            )
            return None
        return payload if isinstance(payload, dict) else None

    def create_qr_order(
        self, *, payment_id: str, amount: Decimal, description: str, expires_at: str | None = None
    ) -> QrOrder:
        path = f"/instore/orders/qr/seller/collectors/{self.collector_id}/pos/{self.pos_id}/qrs"
        body: dict[str, Any] = {
            "external_reference": payment_id,
            "title": description,
            "description": description,
            "total_amount": float(amount),
            "items": [
                {
                    "title": description,
                    "unit_price": float(amount),
                    "quantity": 1,
                    "unit_measure": "unit",
                    "total_amount": float(amount),
                }
            ],
        }
        if self.notification_url:
            body["notification_url"] = self.notification_url
        if expires_at:
            body["expiration_date"] = expires_at
        try:
            response = self.session.post(self._build_url(path), headers=self._headers(), json=body, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise AppError(
                ErrorCatalog.PAYMENT_PROVIDER_UNAVAILABLE,
                details={"payment_id": payment_id, "type": type(exc).__name__},
            ) from exc
        qr_data = payload.get("qr_data") if isinstance(payload, dict) else None
        if not qr_data:
            raise AppError(ErrorCatalog.PAYMENT_PROVIDER_UNAVAILABLE, details={"payment_id": payment_id})
        external_id = payload.get("in_store_order_id")
        return QrOrder(external_id=str(external_id) if external_id else None, qr_data=qr_data)


def get_payment_provider() -> PaymentProvider:
    return MercadoPagoClient.from_settings()

"""Waiting for a provider-confirmed payment (QR, wallet or bank transfer).

An :class:`ExternalPaymentAwaiter` asks a :class:`PaymentGateway` for a pending
payment, subscribes to a :class:`NotificationChannel` for the branch and
resolves once: confirmed, rejected, expired at its deadline, or cancelled by
the cashier. Expired and cancelled waits release the pending payment on a best
effort basis; a confirmation arriving afterwards is still recorded server side
but no longer reaches this awaiter.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Protocol

from app.factu.core.config import settings
from app.factu.core.context import RequestContext
from app.factu.core.error_catalog import AppError, ErrorCatalog
from app.factu.core.logging import log_json
from app.factu.core.metrics import metrics
from app.factu.repos.payment_notifications import PaymentNotificationRepository
from app.factu.services.money import to_money
from app.factu.services.pending_payments import PendingPaymentService
from app.factu.services.tender_ledger import TenderMethod

logger = logging.getLogger("factu.billing")


class AwaiterOutcome(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AwaiterState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    WAITING = "waiting"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class ExternalPaymentRequest:
    payment_id: str
    method: TenderMethod
    amount: Decimal
    expires_at: datetime | None = None
    external_id: str | None = None
    qr_data: str | None = None
    qr_image_url: str | None = None


@dataclass(frozen=True)
class PaymentSignal:
    payment_id: str
    status: str
    amount: Decimal
    external_id: str | None = None
    notification_id: str | None = None

    @classmethod
    def from_notification(cls, notification) -> "PaymentSignal":
        return cls(
            payment_id=notification.payment_id,
            status=notification.status,
            amount=to_money(notification.amount),
            external_id=notification.external_id,
            notification_id=str(notification.id) if notification.id is not None else None,
        )


@dataclass(frozen=True)
class AwaiterResult:
    outcome: AwaiterOutcome
    request: ExternalPaymentRequest
    amount: Decimal | None = None
    signal: PaymentSignal | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is AwaiterOutcome.CONFIRMED

    @property
    def amount_mismatch(self) -> bool:
        return self.succeeded and self.amount != self.request.amount


class PaymentGateway(Protocol):
    def request_payment(self, *, amount: Decimal, method: TenderMethod, sale_id: str | None) -> ExternalPaymentRequest: ...

    def expire_payment(self, payment_id: str) -> None: ...


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


SignalHandler = Callable[[PaymentSignal], None]


class NotificationChannel(Protocol):
    def subscribe(self, branch_id: str, on_insert: SignalHandler) -> Subscription: ...


class _LocalSubscription:
    def __init__(self, channel: "LocalNotificationChannel", branch_id: str, handler: SignalHandler):
        self._channel = channel
        self.branch_id = branch_id
        self.handler = handler

    def unsubscribe(self) -> None:
        self._channel._remove(self)


class LocalNotificationChannel:
    """In-process fan-out of inserted notifications, keyed by branch."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[_LocalSubscription] = []

    def subscribe(self, branch_id: str, on_insert: SignalHandler) -> Subscription:
        subscription = _LocalSubscription(self, str(branch_id), on_insert)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def publish(self, branch_id: str | None, signal: PaymentSignal) -> int:
        with self._lock:
            targets = [item for item in self._subscriptions if item.branch_id == str(branch_id)]
        for subscription in targets:
            subscription.handler(signal)
        return len(targets)

    def _remove(self, subscription: _LocalSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


NotificationFetcher = Callable[[str, datetime | None], list[PaymentSignal]]


class _PollingSubscription:
    def __init__(self, task: asyncio.Task):
        self._task = task

    def unsubscribe(self) -> None:
        self._task.cancel()


class PollingNotificationChannel:
    """Short-polls persisted notifications for a branch; must be subscribed from a running loop."""

    def __init__(self, fetch: NotificationFetcher, *, interval: float | None = None) -> None:
        self._fetch = fetch
        self._interval = settings.NOTIFICATION_POLL_INTERVAL_SEC if interval is None else interval

    def subscribe(self, branch_id: str, on_insert: SignalHandler) -> Subscription:
        since = datetime.utcnow()
        task = asyncio.get_running_loop().create_task(self._poll(str(branch_id), on_insert, since))
        return _PollingSubscription(task)

    async def _poll(self, branch_id: str, on_insert: SignalHandler, since: datetime) -> None:
        seen: set[tuple[str, str]] = set()
        while True:
            try:
                signals = await asyncio.to_thread(self._fetch, branch_id, since)
            except Exception:
                logger.exception("Notification poll failed", extra={"branch_id": branch_id})
                signals = []
            for signal in signals:
                key = (signal.payment_id, signal.status)
                if key not in seen:
                    seen.add(key)
                    on_insert(signal)
            await asyncio.sleep(self._interval)


class DatabaseNotificationSource:
    """Fetcher for :class:`PollingNotificationChannel` backed by the notifications table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def __call__(self, branch_id: str, since: datetime | None) -> list[PaymentSignal]:
        db = self._session_factory()
        try:
            rows = PaymentNotificationRepository(db).list_for_branch(branch_id, since=since)
            return [PaymentSignal.from_notification(row) for row in reversed(rows)]
        finally:
            db.close()


class PendingPaymentGateway:
    """Gateway that creates and expires pending payments directly through the service layer."""

    def __init__(self, session_factory, context: RequestContext, provider=None):
        self._session_factory = session_factory
        self._context = context
        self._provider = provider

    def request_payment(self, *, amount: Decimal, method: TenderMethod, sale_id: str | None) -> ExternalPaymentRequest:
        db = self._session_factory()
        try:
            payment = PendingPaymentService(db, self._provider).create_pending_payment(
                context=self._context, amount=amount, method=method, sale_id=sale_id
            )
            return ExternalPaymentRequest(
                payment_id=payment.payment_id,
                method=method,
                amount=to_money(payment.amount),
                expires_at=payment.expires_at,
                external_id=payment.external_id,
                qr_data=payment.qr_data,
                qr_image_url=payment.qr_image_url,
            )
        finally:
            db.close()

    def expire_payment(self, payment_id: str) -> None:
        db = self._session_factory()
        try:
            PendingPaymentService(db).expire_pending_payment(payment_id, context=self._context)
        finally:
            db.close()


class ExternalPaymentAwaiter:
    def __init__(
        self,
        *,
        gateway: PaymentGateway,
        channel: NotificationChannel,
        branch_id: str,
        timeout: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._channel = channel
        self._branch_id = str(branch_id)
        self._timeout = settings.PAYMENT_EXPIRATION_MINUTES * 60 if timeout is None else timeout
        self._state = AwaiterState.IDLE
        self._request: ExternalPaymentRequest | None = None
        self._future: asyncio.Future | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._subscription: Subscription | None = None
        self._release_task: asyncio.Task | None = None
        self._cancel_requested = False

    @property
    def state(self) -> AwaiterState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state in (AwaiterState.REQUESTING, AwaiterState.WAITING)

    @property
    def request(self) -> ExternalPaymentRequest | None:
        return self._request

    async def start(self, amount, method: TenderMethod | str, sale_id: str | None = None) -> ExternalPaymentRequest:
        if self.is_busy:
            raise AppError(
                ErrorCatalog.AWAITER_BUSY,
                details={"payment_id": self._request.payment_id if self._request else None},
            )
        method = TenderMethod(method)
        if not method.is_external:
            raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"method": method.value})
        value = to_money(amount)
        if value <= 0:
            raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"amount": str(value)})

        self._state = AwaiterState.REQUESTING
        self._request = None
        self._cancel_requested = False
        try:
            request = await asyncio.to_thread(
                self._gateway.request_payment, amount=value, method=method, sale_id=sale_id
            )
        except BaseException:
            self._state = AwaiterState.IDLE
            raise

        self._loop = asyncio.get_running_loop()
        self._request = request
        self._future = self._loop.create_future()
        self._release_task = None
        if self._cancel_requested:
            # cancelled while the gateway call was in flight
            self._cancel_requested = False
            self._resolve(AwaiterOutcome.CANCELLED)
            return request
        self._state = AwaiterState.WAITING
        self._subscription = self._channel.subscribe(self._branch_id, self._on_signal)
        self._timer = self._loop.call_later(self._timeout, self._on_deadline)
        log_json(
            logger,
            {
                "event": "external_payment_waiting",
                "payment_id": request.payment_id,
                "method": method.value,
                "amount": str(value),
                "branch_id": self._branch_id,
            },
        )
        return request

    async def wait(self) -> AwaiterResult:
        if self._future is None:
            raise RuntimeError("No external payment has been requested")
        result = await asyncio.shield(self._future)
        if self._release_task is not None:
            await self._release_task
        return result

    def cancel(self) -> AwaiterResult | None:
        if self._state is AwaiterState.REQUESTING:
            self._cancel_requested = True
            return None
        if self._state is not AwaiterState.WAITING:
            return None
        return self._resolve(AwaiterOutcome.CANCELLED)

    def _on_signal(self, signal: PaymentSignal) -> None:
        # channels may deliver from another thread
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._handle_signal, signal)
        except RuntimeError:
            # loop already closed; the notification stays recorded server side
            return

    def _handle_signal(self, signal: PaymentSignal) -> None:
        if self._state is not AwaiterState.WAITING or self._request is None:
            return
        if signal.payment_id != self._request.payment_id:
            return
        if signal.status == "approved":
            self._resolve(AwaiterOutcome.CONFIRMED, signal)
        elif signal.status == "rejected":
            self._resolve(AwaiterOutcome.REJECTED, signal)

    def _on_deadline(self) -> None:
        if self._state is AwaiterState.WAITING:
            self._resolve(AwaiterOutcome.EXPIRED)

    def _resolve(self, outcome: AwaiterOutcome, signal: PaymentSignal | None = None) -> AwaiterResult:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        result = AwaiterResult(
            outcome=outcome,
            request=self._request,
            amount=signal.amount if signal is not None and outcome is AwaiterOutcome.CONFIRMED else None,
            signal=signal,
        )
        self._state = AwaiterState.RESOLVED
        if outcome in (AwaiterOutcome.EXPIRED, AwaiterOutcome.CANCELLED):
            self._release_task = self._loop.create_task(self._release(self._request.payment_id))
        if not self._future.done():
            self._future.set_result(result)
        metrics.record_external_payment(outcome.value)
        log_json(
            logger,
            {
                "event": "external_payment_resolved",
                "payment_id": self._request.payment_id,
                "outcome": outcome.value,
                "requested_amount": str(self._request.amount),
                "confirmed_amount": str(result.amount) if result.amount is not None else None,
                "branch_id": self._branch_id,
            },
        )
        return result

    async def _release(self, payment_id: str) -> None:
        try:
            await asyncio.to_thread(self._gateway.expire_payment, payment_id)
        except Exception:
            logger.exception("Failed to expire pending payment", extra={"payment_id": payment_id})


notification_hub = LocalNotificationChannel()


from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.factu.core.config import settings


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    def __init__(self, enabled: bool | None = None) -> None:
        self.enabled = settings.METRICS_ENABLED if enabled is None else enabled
        self._registry = None
        if self.enabled:
            self._initialize_registry()

    def _initialize_registry(self) -> None:
        self._registry = CollectorRegistry()
        self._http_requests_total = Counter(
            "http_requests_total",
            "HTTP requests by route/method/status.",
            ["route", "method", "status"],
            registry=self._registry,
        )
        self._http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            ["route", "method", "status"],
            buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
            registry=self._registry,
        )
        self._idempotency_replay_total = Counter(
            "idempotency_replay_total",
            "Idempotent replay responses.",
            registry=self._registry,
        )
        self._webhook_events_total = Counter(
            "webhook_events_total",
            "Payment webhook deliveries by provider and result.",
            ["provider", "result"],
            registry=self._registry,
        )
        self._external_payment_resolutions_total = Counter(
            "external_payment_resolutions_total",
            "External payment awaiter resolutions by outcome.",
            ["outcome"],
            registry=self._registry,
        )
        self._sales_committed_total = Counter(
            "sales_committed_total",
            "Committed sales by invoice family.",
            ["family"],
            registry=self._registry,
        )

    def reset(self) -> None:
        if self.enabled:
            self._initialize_registry()

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._http_requests_total.labels(**labels).inc()
        self._http_request_duration_ms.labels(**labels).observe(latency_ms)

    def increment_idempotency_replay(self) -> None:
        if self.enabled:
            self._idempotency_replay_total.inc()

    def record_webhook(self, *, provider: str, result: str) -> None:
        if self.enabled:
            self._webhook_events_total.labels(provider=provider, result=result).inc()

    def record_external_payment(self, outcome: str) -> None:
        if self.enabled:
            self._external_payment_resolutions_total.labels(outcome=outcome).inc()

    def record_sale_committed(self, family: str) -> None:
        if self.enabled:
            self._sales_committed_total.labels(family=family).inc()

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()

"""
Metrics Collection with Prometheus.

Exposes purchase-flow and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from hotspot_billing.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names; pass `.value` to prometheus_client."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    RESULT = "result"
    STATE = "state"
    ERROR_TYPE = "error_type"


class PortalMetrics:
    """
    Centralized metrics for the hotspot billing service.

    Covers:
    - HTTP requests (rate, duration)
    - STK push initiations (rate, success/failure)
    - Payment status checks (rate by classification)
    - Access grants (rate, success/failure)
    - Purchase outcomes by final state
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "hotspot_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "hotspot_http_requests_total",
            "Total HTTP requests",
            [
                MetricLabels.ENDPOINT.value,
                MetricLabels.METHOD.value,
                MetricLabels.STATUS_CODE.value,
            ],
        )

        self.http_request_duration_seconds = Histogram(
            "hotspot_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT.value, MetricLabels.METHOD.value],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.initiations_total = Counter(
            "hotspot_stk_push_initiations_total",
            "Total STK push initiations",
            ["success", MetricLabels.ERROR_TYPE.value],
        )

        self.initiation_duration_seconds = Histogram(
            "hotspot_stk_push_duration_seconds",
            "STK push call duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.poll_attempts_total = Counter(
            "hotspot_payment_status_checks_total",
            "Total payment verification calls by classification",
            [MetricLabels.RESULT.value],
        )

        self.payment_amount = Histogram(
            "hotspot_payment_amount",
            "Confirmed payment amounts in the smallest currency unit",
            buckets=(10, 20, 50, 100, 250, 500, 1000, 2500),
        )

        # ====================================================================
        # Access Grant Metrics
        # ====================================================================
        self.grants_total = Counter(
            "hotspot_access_grants_total",
            "Total access grant calls",
            ["success"],
        )

        # ====================================================================
        # Purchase Metrics
        # ====================================================================
        self.purchases_total = Counter(
            "hotspot_purchases_total",
            "Purchases by final state",
            [MetricLabels.STATE.value],
        )

        self.purchase_duration_seconds = Histogram(
            "hotspot_purchase_duration_seconds",
            "Time from submission to terminal state",
            buckets=(1.0, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0, 90.0, 120.0),
        )

        self.active_sessions = Gauge(
            "hotspot_active_purchase_sessions",
            "Purchase sessions not yet terminal",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "hotspot_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE.value, MetricLabels.OPERATION.value],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_initiation(
        self, success: bool, duration: float, error_type: str | None = None
    ) -> None:
        """Record STK push initiation metrics."""
        self.initiations_total.labels(
            success=str(success), error_type=error_type or "none"
        ).inc()
        self.initiation_duration_seconds.observe(duration)

    def record_poll_attempt(self, result: str) -> None:
        """Record one verification call."""
        self.poll_attempts_total.labels(result=result).inc()

    def record_grant(self, success: bool) -> None:
        """Record access grant metrics."""
        self.grants_total.labels(success=str(success)).inc()

    def record_purchase(self, state: str, amount: int, duration: float) -> None:
        """Record a purchase reaching a terminal state."""
        self.purchases_total.labels(state=state).inc()
        self.purchase_duration_seconds.observe(duration)
        if state == "completed":
            self.payment_amount.observe(amount)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = PortalMetrics()


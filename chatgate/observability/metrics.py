"""
Metrics Collection with Prometheus.

Exposes gateway, credit and authentication metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from chatgate.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    PROVIDER = "provider"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class ChatGateMetrics:
    """
    Centralized metrics for the chat gateway.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Chat turns (outcome by provider family, upstream latency)
    - Credits (debited amounts, provisioned profiles)
    - OTP sends and verifications by outcome
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "chatgate_service",
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
            "chatgate_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "chatgate_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        self.http_requests_in_progress = Gauge(
            "chatgate_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Chat Metrics
        # ====================================================================
        self.chat_turns_total = Counter(
            "chatgate_chat_turns_total",
            "Chat turns by provider family and outcome kind",
            [MetricLabels.PROVIDER, MetricLabels.OUTCOME],
        )

        self.provider_call_duration_seconds = Histogram(
            "chatgate_provider_call_duration_seconds",
            "Upstream provider call duration in seconds",
            [MetricLabels.PROVIDER],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
        )

        # ====================================================================
        # Credit Metrics
        # ====================================================================
        self.credits_charged_total = Counter(
            "chatgate_credits_charged_total",
            "Total credits debited from free-tier profiles",
        )

        self.profiles_created_total = Counter(
            "chatgate_profiles_created_total",
            "Total profiles lazily provisioned",
        )

        # ====================================================================
        # OTP Metrics
        # ====================================================================
        self.otp_sends_total = Counter(
            "chatgate_otp_sends_total",
            "OTP send attempts by outcome",
            [MetricLabels.OUTCOME],
        )

        self.otp_verifications_total = Counter(
            "chatgate_otp_verifications_total",
            "OTP verifications by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "chatgate_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
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

    def record_chat_turn(self, provider: str, outcome: str) -> None:
        """Record a finished chat turn; outcome is 'success' or an error kind."""
        self.chat_turns_total.labels(provider=provider, outcome=outcome).inc()

    def record_provider_call(self, provider: str, duration: float) -> None:
        """Record upstream latency, successful or not."""
        self.provider_call_duration_seconds.labels(provider=provider).observe(duration)

    def record_charge(self, amount: int) -> None:
        """Record a committed free-tier debit."""
        self.credits_charged_total.inc(amount)

    def record_otp_send(self, outcome: str) -> None:
        """Record an OTP send outcome."""
        self.otp_sends_total.labels(outcome=outcome).inc()

    def record_otp_verification(self, outcome: str) -> None:
        """Record an OTP verification outcome."""
        self.otp_verifications_total.labels(outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ChatGateMetrics()

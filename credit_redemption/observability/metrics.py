"""
Metrics Collection with Prometheus.

Exposes redemption pipeline metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info

from credit_redemption.config import get_settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    PROTOCOL = "protocol"
    RESULT = "result"
    REASON = "reason"
    SOURCE = "source"
    ENDPOINT = "endpoint"


class RedemptionMetrics:
    """
    Centralized metrics for the redemption pipeline.

    Covers:
    - Ledger calls (rate, duration, errors)
    - Redemption attempts per protocol
    - Finished transactions by reason
    - Verification failures and listener throughput
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize all Prometheus metrics."""
        settings = get_settings()

        self.service_info = Info(
            "credit_redemption_service",
            "Service information",
            registry=registry,
        )
        self.service_info.info(
            {
                "version": settings.service_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_requests_total = Counter(
            "credit_redemption_ledger_requests_total",
            "Total ledger requests",
            [MetricLabels.ENDPOINT, MetricLabels.RESULT],
            registry=registry,
        )

        self.ledger_request_duration_seconds = Histogram(
            "credit_redemption_ledger_request_duration_seconds",
            "Ledger request duration in seconds",
            [MetricLabels.ENDPOINT],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=registry,
        )

        # ====================================================================
        # Redemption Metrics
        # ====================================================================
        self.redemptions_total = Counter(
            "credit_redemption_redemptions_total",
            "Redemption attempts per protocol",
            [MetricLabels.PROTOCOL, MetricLabels.RESULT],
            registry=registry,
        )

        self.credits_granted_total = Counter(
            "credit_redemption_credits_granted_total",
            "Credits granted by the ledger",
            [MetricLabels.PROTOCOL],
            registry=registry,
        )

        self.transactions_finished_total = Counter(
            "credit_redemption_transactions_finished_total",
            "Transactions acknowledged to the platform",
            [MetricLabels.REASON, MetricLabels.SOURCE],
            registry=registry,
        )

        self.transactions_left_unfinished_total = Counter(
            "credit_redemption_transactions_left_unfinished_total",
            "Transactions left for platform re-delivery",
            [MetricLabels.SOURCE],
            registry=registry,
        )

        self.verification_failures_total = Counter(
            "credit_redemption_verification_failures_total",
            "Transactions rejected by platform verification",
            [MetricLabels.SOURCE],
            registry=registry,
        )

        self.listener_updates_total = Counter(
            "credit_redemption_listener_updates_total",
            "Transaction updates consumed by the update listener",
            registry=registry,
        )

    def record_ledger_request(self, endpoint: str, success: bool, duration: float) -> None:
        """Record a ledger HTTP call."""
        self.ledger_requests_total.labels(
            endpoint=endpoint, result="success" if success else "error"
        ).inc()
        self.ledger_request_duration_seconds.labels(endpoint=endpoint).observe(duration)

    def record_redemption(self, protocol: str, success: bool, granted: int = 0) -> None:
        """Record one redemption attempt on a protocol."""
        self.redemptions_total.labels(
            protocol=protocol, result="success" if success else "error"
        ).inc()
        if success and granted > 0:
            self.credits_granted_total.labels(protocol=protocol).inc(granted)

    def record_finished(self, reason: str, source: str) -> None:
        """Record a transaction finish ('redeemed' or 'irrelevant')."""
        self.transactions_finished_total.labels(reason=reason, source=source).inc()

    def record_unfinished(self, source: str) -> None:
        """Record a transaction left unfinished for re-delivery."""
        self.transactions_left_unfinished_total.labels(source=source).inc()

    def record_verification_failure(self, source: str) -> None:
        """Record a verification failure."""
        self.verification_failures_total.labels(source=source).inc()


# Global metrics instance
metrics = RedemptionMetrics()

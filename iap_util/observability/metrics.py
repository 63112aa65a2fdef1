"""
Metrics Collection with Prometheus.

Exposes verification, notification and vendor-call metrics for monitoring.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from prometheus_client import CollectorRegistry, Counter, Histogram, Info
from prometheus_client import REGISTRY as DEFAULT_REGISTRY

from iap_util.config import Settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    VENDOR = "vendor"
    PRODUCT_TYPE = "product_type"
    OUTCOME = "outcome"
    VARIANT = "variant"
    OPERATION = "operation"


class IapMetrics:
    """
    Centralized metrics for in-app purchase verification.

    Covers:
    - Verifications (rate by vendor, product type and outcome)
    - Notifications (rate by vendor and normalized variant)
    - Vendor API calls (duration by vendor and operation)
    """

    def __init__(self, registry: CollectorRegistry = DEFAULT_REGISTRY) -> None:
        """Initialize all Prometheus metrics."""
        self.enabled = True

        self.service_info = Info(
            "iap_service",
            "Service information",
            registry=registry,
        )

        self.verifications_total = Counter(
            "iap_verifications_total",
            "Total purchase verifications",
            [MetricLabels.VENDOR, MetricLabels.PRODUCT_TYPE, MetricLabels.OUTCOME],
            registry=registry,
        )

        self.notifications_total = Counter(
            "iap_notifications_total",
            "Total vendor notifications normalized",
            [MetricLabels.VENDOR, MetricLabels.VARIANT],
            registry=registry,
        )

        self.vendor_call_duration_seconds = Histogram(
            "iap_vendor_call_duration_seconds",
            "Vendor API call duration in seconds",
            [MetricLabels.VENDOR, MetricLabels.OPERATION],
            buckets=(0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=registry,
        )

    def configure(self, settings: Settings) -> None:
        """Apply settings: toggle recording and publish service info."""
        self.enabled = settings.metrics_enabled
        if self.enabled:
            self.service_info.info(
                {
                    "version": settings.service_version,
                    "service_name": settings.service_name,
                }
            )

    def record_verification(self, vendor: str, product_type: str, outcome: str) -> None:
        """Record a verification outcome (active, inactive or an error class name)."""
        if not self.enabled:
            return
        self.verifications_total.labels(
            vendor=vendor, product_type=product_type, outcome=outcome
        ).inc()

    def record_notification(self, vendor: str, variant: str) -> None:
        """Record a normalized notification by variant name."""
        if not self.enabled:
            return
        self.notifications_total.labels(vendor=vendor, variant=variant).inc()

    @contextmanager
    def time_vendor_call(self, vendor: str, operation: str) -> Iterator[None]:
        """
        Time a vendor API call, including calls that raise.

        Usage:
            with metrics.time_vendor_call(Vendor.APPLE, "get_transaction_info"):
                response = await client.get(...)
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            if self.enabled:
                self.vendor_call_duration_seconds.labels(
                    vendor=vendor, operation=operation
                ).observe(time.perf_counter() - start)


# Global metrics instance
metrics = IapMetrics()

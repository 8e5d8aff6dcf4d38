"""
Prometheus metrics for the Nexvoy booking core.

Metrics live in a dedicated registry so the host service decides whether and
where to expose them.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

booking_transitions_total = Counter(
    "nexvoy_booking_transitions_total",
    "Booking state-machine operations by outcome",
    ["operation", "outcome"],
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "nexvoy_booking_lock_total",
    "Booking lock acquisitions and releases",
    ["backend", "action", "outcome"],
    registry=REGISTRY,
)

booking_lock_wait_seconds = Histogram(
    "nexvoy_booking_lock_wait_seconds",
    "Time spent waiting for a booking lock",
    ["backend"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0),
)

reaper_sweeps_total = Counter(
    "nexvoy_reaper_sweeps_total",
    "Expiry reaper sweeps",
    ["outcome"],
    registry=REGISTRY,
)

reaper_expired_bookings_total = Counter(
    "nexvoy_reaper_expired_bookings_total",
    "Pending bookings expired by the reaper",
    registry=REGISTRY,
)

refund_attempts_total = Counter(
    "nexvoy_refund_attempts_total",
    "Refund applications by outcome",
    ["outcome"],
    registry=REGISTRY,
)

service_operation_duration_seconds = Histogram(
    "nexvoy_service_operation_duration_seconds",
    "Duration of booking service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade over the module-level collectors."""

    @staticmethod
    def record_transition(operation: str, outcome: str) -> None:
        booking_transitions_total.labels(operation=operation, outcome=outcome).inc()

    @staticmethod
    def record_booking_lock(backend: str, action: str, outcome: str) -> None:
        booking_lock_total.labels(backend=backend, action=action, outcome=outcome).inc()

    @staticmethod
    def observe_lock_wait(backend: str, seconds: float) -> None:
        booking_lock_wait_seconds.labels(backend=backend).observe(max(seconds, 0.0))

    @staticmethod
    def record_reaper_sweep(outcome: str, expired: int = 0) -> None:
        reaper_sweeps_total.labels(outcome=outcome).inc()
        if expired:
            reaper_expired_bookings_total.inc(expired)

    @staticmethod
    def record_refund(outcome: str) -> None:
        refund_attempts_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_service_operation(service: str, operation: str, duration: float, status: str) -> None:
        service_operation_duration_seconds.labels(
            service=service, operation=operation, status=status
        ).observe(duration)

    @staticmethod
    def get_metrics() -> bytes:
        """Generate metrics in Prometheus text exposition format."""
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()

"""Prometheus metrics for observability."""

from functools import lru_cache

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info

from punchclock import __version__


class Metrics:
    """Prometheus metrics for tracking, reporting and storage."""

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize all metrics.

        Args:
            registry: Collector registry to register on (tests pass a fresh one)
        """
        self.info = Info(
            "punchclock",
            "Punchclock information",
            registry=registry,
        )
        self.info.info({"version": __version__})

        # Tracking transitions
        self.tracking_transitions_total = Counter(
            "tracking_transitions_total",
            "Total number of session transitions attempted",
            ["operation", "status"],
            registry=registry,
        )

        self.tracking_operation_duration_seconds = Histogram(
            "tracking_operation_duration_seconds",
            "Duration of tracking operations in seconds",
            ["operation"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=registry,
        )

        # Reports
        self.reports_generated_total = Counter(
            "reports_generated_total",
            "Total number of reports generated",
            ["report"],
            registry=registry,
        )

        self.report_duration_seconds = Histogram(
            "report_duration_seconds",
            "Duration of report generation in seconds",
            ["report"],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
            registry=registry,
        )

        # Storage
        self.storage_operations_total = Counter(
            "storage_operations_total",
            "Total number of storage transactions",
            ["repository", "operation", "status"],
            registry=registry,
        )

    def record_transition(self, operation: str, status: str, duration: float) -> None:
        """Record a tracking transition.

        Args:
            operation: start, pause, resume or stop
            status: success or the error class name
            duration: Operation duration in seconds
        """
        self.tracking_transitions_total.labels(operation=operation, status=status).inc()
        self.tracking_operation_duration_seconds.labels(operation=operation).observe(duration)

    def record_report(self, report: str, duration: float) -> None:
        self.reports_generated_total.labels(report=report).inc()
        self.report_duration_seconds.labels(report=report).observe(duration)

    def record_storage_operation(self, repository: str, operation: str, status: str) -> None:
        self.storage_operations_total.labels(
            repository=repository,
            operation=operation,
            status=status,
        ).inc()


@lru_cache
def get_metrics() -> Metrics:
    """Get cached metrics instance."""
    return Metrics()

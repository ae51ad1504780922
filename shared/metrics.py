"""
Shared metrics configuration for the identity and session access layer.
"""

from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Every collector owns a registry so several services can be built in the
    same process (tests do this constantly) without duplicate-series errors.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._metrics["external_call_duration_seconds"] = Histogram(
            "external_call_duration_seconds",
            "Duration of calls to the identity provider and stores",
            ["target"],
            registry=self.registry
        )

        self._setup_identity_metrics()
        self._setup_session_metrics()

    def _setup_identity_metrics(self):
        """Set up identity cache metrics."""
        self._metrics["identity_cache_lookups_total"] = Counter(
            "identity_cache_lookups_total",
            "Identity cache lookups by result",
            ["result"],
            registry=self.registry
        )

        self._metrics["identity_provider_fetch_total"] = Counter(
            "identity_provider_fetch_total",
            "Identity provider fetches by outcome",
            ["outcome"],
            registry=self.registry
        )

    def _setup_session_metrics(self):
        """Set up session lifecycle metrics."""
        self._metrics["session_events_total"] = Counter(
            "session_events_total",
            "Session lifecycle events",
            ["event"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def get_sample(self, metric_name: str, **labels) -> float:
        """Read the current value of a series (0.0 if it was never touched)."""
        value = self.registry.get_sample_value(metric_name, labels)
        return value or 0.0

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_cache_lookup(self, result: str):
        """Record an identity cache lookup (hit, miss, stale, error)."""
        self.increment_counter("identity_cache_lookups_total", result=result)

    def record_provider_fetch(self, outcome: str):
        """Record an identity provider fetch outcome."""
        self.increment_counter("identity_provider_fetch_total", outcome=outcome)

    def record_session_event(self, event: str):
        """Record a session lifecycle event."""
        self.increment_counter("session_events_total", event=event)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            with self._lock:
                self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

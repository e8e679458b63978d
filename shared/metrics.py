"""
Shared metrics configuration for the sentiment data loader.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, start_http_server


class MetricsCollector:
    """Prometheus metrics for a loader engine.

    Each collector owns its registry unless one is passed in, so several
    engines (tests, per-process instances) never collide on metric names.
    """

    def __init__(self, service_name: str = "dataloader", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up loader metrics."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._metrics["loader_requests_total"] = Counter(
            "loader_requests_total",
            "Total load_data calls by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["loader_loads_total"] = Counter(
            "loader_loads_total",
            "Total settled loads by result",
            ["result"],
            registry=self.registry
        )

        self._metrics["loader_retries_total"] = Counter(
            "loader_retries_total",
            "Total producer retries",
            registry=self.registry
        )

        self._metrics["loader_load_duration_seconds"] = Histogram(
            "loader_load_duration_seconds",
            "Load duration in seconds, retries included",
            ["result"],
            registry=self.registry
        )

        self._metrics["loader_active_loads"] = Gauge(
            "loader_active_loads",
            "Number of loads currently in flight",
            registry=self.registry
        )

        self._metrics["loader_cache_entries"] = Gauge(
            "loader_cache_entries",
            "Number of keys holding a cached value",
            registry=self.registry
        )

    def get_sample_value(self, name: str, **labels) -> Optional[float]:
        """Read a sample back from this collector's registry."""
        return self.registry.get_sample_value(name, labels or None)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).observe(value)


def get_metrics_collector(service_name: str = "dataloader",
                          registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

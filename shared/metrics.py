"""
Shared metrics configuration for the DuckBuck API Gateway.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry unless one is passed in, so several
    service instances (tests, workers) can coexist in one interpreter.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
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

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "gateway":
            self._setup_gateway_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["token_verifications_total"] = Counter(
            "token_verifications_total",
            "Total bearer token verifications",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["verdict_cache_hits_total"] = Counter(
            "verdict_cache_hits_total",
            "Verdict cache hits",
            registry=self.registry
        )

        self._metrics["verdict_cache_misses_total"] = Counter(
            "verdict_cache_misses_total",
            "Verdict cache misses",
            registry=self.registry
        )

        self._metrics["upstream_verification_duration_seconds"] = Histogram(
            "upstream_verification_duration_seconds",
            "Identity provider verification duration in seconds",
            registry=self.registry
        )

        self._metrics["token_revocations_total"] = Counter(
            "token_revocations_total",
            "Total token revocations",
            ["source"],
            registry=self.registry
        )

        self._metrics["abuse_failures_total"] = Counter(
            "abuse_failures_total",
            "Requests recorded as abuse failures",
            ["trigger"],
            registry=self.registry
        )

        self._metrics["blocked_requests_total"] = Counter(
            "blocked_requests_total",
            "Requests refused because the source address is blocked",
            registry=self.registry
        )

        self._metrics["rate_limited_requests_total"] = Counter(
            "rate_limited_requests_total",
            "Requests refused by the per-address rate limiter",
            ["limit_type"],
            registry=self.registry
        )

        self._metrics["structure_size"] = Gauge(
            "structure_size",
            "Entries held by in-memory security structures",
            ["structure"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

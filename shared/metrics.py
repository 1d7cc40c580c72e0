"""
Shared metrics configuration for the auth middleware.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for a service.

    Each collector owns its registry, so several apps (or tests) can live in
    one process without duplicate-timeseries errors.
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

        # Auth metrics
        self._metrics["token_validations_total"] = Counter(
            "token_validations_total",
            "Total token validations",
            ["driver", "outcome"],
            registry=self.registry
        )

        self._metrics["ticket_operations_total"] = Counter(
            "ticket_operations_total",
            "Total ticket client operations",
            ["driver", "operation", "outcome"],
            registry=self.registry
        )

        self._metrics["authz_decisions_total"] = Counter(
            "authz_decisions_total",
            "Total authorization decisions",
            ["decision"],
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

    def record_validation(self, driver: str, outcome: str):
        """Record a token validation outcome (valid, invalid, error)."""
        self._metrics["token_validations_total"].labels(driver=driver, outcome=outcome).inc()

    def record_ticket_operation(self, driver: str, operation: str, outcome: str):
        """Record an obtain/renew/delete outcome."""
        self._metrics["ticket_operations_total"].labels(
            driver=driver,
            operation=operation,
            outcome=outcome
        ).inc()

    def record_authz_decision(self, allowed: bool):
        """Record an authorization decision."""
        self._metrics["authz_decisions_total"].labels(decision="allow" if allowed else "deny").inc()

    def render(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

"""
Shared metrics configuration for the marketplace session client.
"""

import threading
from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


class SessionMetrics:
    """Prometheus metrics for the session engine.

    Each instance owns its registry so several clients (or tests) can live
    in one process without duplicate registration errors.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up session metrics."""
        self._metrics["session_transitions_total"] = Counter(
            "session_transitions_total",
            "Total session state transitions",
            ["status"],
            registry=self.registry
        )

        self._metrics["token_refresh_total"] = Counter(
            "token_refresh_total",
            "Total forced token refreshes",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["backend_requests_total"] = Counter(
            "backend_requests_total",
            "Total backend requests",
            ["method", "status_class"],
            registry=self.registry
        )

        self._metrics["backend_request_duration_seconds"] = Histogram(
            "backend_request_duration_seconds",
            "Backend request duration in seconds",
            ["method"],
            registry=self.registry
        )

        self._metrics["forced_sign_outs_total"] = Counter(
            "forced_sign_outs_total",
            "Sessions ended by refresh failure or remote revocation",
            ["cause"],
            registry=self.registry
        )

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_transition(self, status: str):
        self._metrics["session_transitions_total"].labels(status=status).inc()

    def record_refresh(self, outcome: str):
        self._metrics["token_refresh_total"].labels(outcome=outcome).inc()

    def record_backend_request(self, method: str, status_code: Optional[int], duration: float):
        """Record backend request metrics."""
        status_class = f"{status_code // 100}xx" if status_code else "error"
        self._metrics["backend_requests_total"].labels(
            method=method,
            status_class=status_class
        ).inc()
        self._metrics["backend_request_duration_seconds"].labels(method=method).observe(duration)

    def record_forced_sign_out(self, cause: str):
        self._metrics["forced_sign_outs_total"].labels(cause=cause).inc()

    def sample(self, name: str, **labels) -> float:
        """Read the current value of a sample, 0.0 when absent."""
        value = self.registry.get_sample_value(name, labels)
        return value or 0.0


_session_metrics: Optional[SessionMetrics] = None
_session_metrics_lock = threading.Lock()


def get_session_metrics() -> SessionMetrics:
    """Get the process-wide session metrics."""
    global _session_metrics
    with _session_metrics_lock:
        if _session_metrics is None:
            _session_metrics = SessionMetrics()
        return _session_metrics

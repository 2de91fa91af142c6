"""
Monitoring and metrics collection for the hash archive.
"""

import logging
import time
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from ..crawler.outcome import FetchError, Outcome


class MetricsCollector:
    """Owns a private Prometheus registry and the archive's metrics."""

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.responses_total = Counter(
            'archive_responses_total',
            'Crawl responses stored, by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.fetch_duration_seconds = Histogram(
            'archive_fetch_duration_seconds',
            'Time spent in the fetch pipeline per request',
            registry=self.registry
        )
        self.enqueue_decisions_total = Counter(
            'archive_enqueue_decisions_total',
            'Freshness decisions, by resulting state',
            ['state'],
            registry=self.registry
        )
        self.storage_errors_total = Counter(
            'archive_storage_errors_total',
            'Storage operations that aborted',
            registry=self.registry
        )
        self.active_workers = Gauge(
            'archive_active_workers',
            'Number of running crawl workers',
            registry=self.registry
        )
        self.free_connections = Gauge(
            'archive_free_connections',
            'Storage connections not currently borrowed',
            registry=self.registry
        )

    def start_prometheus_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0 if it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0


class ArchiveMonitor:
    """High-level monitoring interface for the archive."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.start_time = time.time()

    def record_response(self, outcome: Outcome, fetch_time: float):
        """Record a stored crawl response."""
        if isinstance(outcome, FetchError):
            label = outcome.kind.name.lower()
        else:
            label = str(outcome.code)
        self.metrics.responses_total.labels(outcome=label).inc()
        self.metrics.fetch_duration_seconds.observe(fetch_time)

    def record_decision(self, pending: bool, outdated: bool):
        """Record a freshness decision."""
        if pending:
            state = 'pending'
        elif outdated:
            state = 'enqueued'
        else:
            state = 'fresh'
        self.metrics.enqueue_decisions_total.labels(state=state).inc()

    def record_storage_error(self):
        self.metrics.storage_errors_total.inc()

    def update_active_workers(self, count: int):
        self.metrics.active_workers.set(count)

    def update_free_connections(self, count: int):
        self.metrics.free_connections.set(count)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the main counters."""
        runtime = time.time() - self.start_time
        responses = sum(
            sample.value
            for metric in self.metrics.responses_total.collect()
            for sample in metric.samples
            if sample.name.endswith('_total')
        )
        return {
            'runtime_seconds': runtime,
            'responses': responses,
            'active_workers': self.metrics.sample('archive_active_workers'),
            'responses_per_minute': responses / (runtime / 60) if runtime > 0 else 0,
        }


def initialize_monitoring(enable_prometheus: bool = False, prometheus_port: int = 8000) -> ArchiveMonitor:
    """Create a monitor with its own registry."""
    return ArchiveMonitor(MetricsCollector(enable_prometheus, prometheus_port))

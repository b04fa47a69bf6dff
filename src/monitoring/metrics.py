"""
Prometheus Metrics for the Telemetry Pipeline

Metrics for reconciliation runs and for the ingestion loop. Each metrics
object registers against its own registry unless one is passed in, so
several runs (and tests) can coexist in one process.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)


class ReconciliationMetrics:
    """Prometheus metrics for reconciliation runs."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.runs_total = Counter(
            'telemetry_reconciliation_runs_total',
            'Total number of reconciliation runs',
            ['table', 'outcome'],
            registry=self.registry
        )

        self.steps_total = Counter(
            'telemetry_reconciliation_steps_total',
            'Differ steps by classification',
            ['table', 'kind'],
            registry=self.registry
        )

        self.records_read_total = Counter(
            'telemetry_reconciliation_records_read_total',
            'Records read per side',
            ['table', 'side'],
            registry=self.registry
        )

        self.backfills_total = Counter(
            'telemetry_reconciliation_backfills_total',
            'Corrective writes by status',
            ['table', 'status'],
            registry=self.registry
        )

        self.duration_seconds = Histogram(
            'telemetry_reconciliation_duration_seconds',
            'Duration of reconciliation runs in seconds',
            ['table'],
            buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
            registry=self.registry
        )

    def record_run(self, table: str, summary) -> None:
        """
        Record a finished run.

        Args:
            table: Reconciled table
            summary: ReconciliationSummary of the run
        """
        self.runs_total.labels(table=table, outcome=summary.outcome).inc()
        for kind, count in summary.counts.items():
            if count:
                self.steps_total.labels(table=table, kind=kind.name.lower()).inc(count)
        self.records_read_total.labels(table=table, side='source').inc(summary.source_records)
        self.records_read_total.labels(table=table, side='destination').inc(summary.dest_records)
        if summary.backfills:
            self.backfills_total.labels(table=table, status='success').inc(summary.backfills)
        self.duration_seconds.labels(table=table).observe(summary.duration_seconds)

    def record_failure(self, table: str, backfill_failed: bool = False) -> None:
        self.runs_total.labels(table=table, outcome='failed').inc()
        if backfill_failed:
            self.backfills_total.labels(table=table, status='failure').inc()


class IngestionMetrics:
    """Prometheus metrics for the ingestion loop."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.messages_total = Counter(
            'telemetry_ingestion_messages_total',
            'Bus messages by result',
            ['topic', 'status'],
            registry=self.registry
        )

    def record_message(self, topic: str, status: str) -> None:
        """status is one of stored, skipped, invalid."""
        self.messages_total.labels(topic=topic, status=status).inc()


def start_metrics_server(port: int, registry: CollectorRegistry) -> None:
    """Expose a registry over HTTP for Prometheus scraping."""
    try:
        start_http_server(port, registry=registry)
        logger.info(f"Metrics server started on port {port}")
    except OSError as e:
        if "Address already in use" in str(e):
            logger.warning(f"Metrics server already running on port {port}")
        else:
            raise

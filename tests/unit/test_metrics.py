"""
Unit tests for Prometheus metrics.
"""

import pytest
from unittest.mock import patch
from prometheus_client import CollectorRegistry

from src.monitoring.metrics import IngestionMetrics, ReconciliationMetrics, start_metrics_server
from src.reconciliation.comparer import StepKind
from src.reconciliation.differ import ReconciliationSummary


class TestReconciliationMetrics:
    """Test recording of reconciliation runs."""

    @pytest.fixture
    def metrics(self):
        return ReconciliationMetrics(registry=CollectorRegistry())

    def sample(self, metrics, name, **labels):
        return metrics.registry.get_sample_value(name, labels)

    def test_record_run(self, metrics):
        summary = ReconciliationSummary(outcome="both ended", steps=7, source_records=6,
                                        dest_records=5, backfills=2, duration_seconds=1.5)
        summary.counts[StepKind.SYNCED] = 5
        summary.counts[StepKind.DEST_BEHIND] = 2

        metrics.record_run("power", summary)

        assert self.sample(metrics, 'telemetry_reconciliation_runs_total',
                           table='power', outcome='both ended') == 1.0
        assert self.sample(metrics, 'telemetry_reconciliation_steps_total',
                           table='power', kind='dest_behind') == 2.0
        assert self.sample(metrics, 'telemetry_reconciliation_steps_total',
                           table='power', kind='source_behind') is None
        assert self.sample(metrics, 'telemetry_reconciliation_records_read_total',
                           table='power', side='destination') == 5.0
        assert self.sample(metrics, 'telemetry_reconciliation_backfills_total',
                           table='power', status='success') == 2.0
        assert self.sample(metrics, 'telemetry_reconciliation_duration_seconds_count',
                           table='power') == 1.0

    def test_record_failure(self, metrics):
        metrics.record_failure("power", backfill_failed=True)

        assert self.sample(metrics, 'telemetry_reconciliation_runs_total',
                           table='power', outcome='failed') == 1.0
        assert self.sample(metrics, 'telemetry_reconciliation_backfills_total',
                           table='power', status='failure') == 1.0

    def test_separate_registries(self):
        """Two metrics objects never collide on registration."""
        ReconciliationMetrics()
        ReconciliationMetrics()


class TestIngestionMetrics:
    """Test ingestion counters."""

    def test_record_message(self):
        metrics = IngestionMetrics(registry=CollectorRegistry())
        metrics.record_message("tele.power", "stored")
        metrics.record_message("tele.power", "stored")

        assert metrics.registry.get_sample_value(
            'telemetry_ingestion_messages_total', {'topic': 'tele.power', 'status': 'stored'}
        ) == 2.0


class TestMetricsServer:
    """Test metrics HTTP server startup."""

    def test_start(self):
        registry = CollectorRegistry()
        with patch('src.monitoring.metrics.start_http_server') as server:
            start_metrics_server(9108, registry)

        server.assert_called_once_with(9108, registry=registry)

    def test_port_in_use_is_tolerated(self):
        with patch('src.monitoring.metrics.start_http_server',
                   side_effect=OSError("[Errno 98] Address already in use")):
            start_metrics_server(9108, CollectorRegistry())

    def test_other_errors_propagate(self):
        with patch('src.monitoring.metrics.start_http_server', side_effect=OSError("Permission denied")):
            with pytest.raises(OSError):
                start_metrics_server(80, CollectorRegistry())

"""
Monitoring Module for the Telemetry Pipeline

Prometheus metrics for reconciliation runs and the ingestion loop.

Usage:
    from src.monitoring import ReconciliationMetrics

    metrics = ReconciliationMetrics()
    metrics.record_run(table="home", summary=summary)
"""

from src.monitoring.metrics import IngestionMetrics, ReconciliationMetrics, start_metrics_server

__all__ = [
    "IngestionMetrics",
    "ReconciliationMetrics",
    "start_metrics_server",
]

__version__ = "1.0.0"

"""
Reconciliation Module for the Telemetry Pipeline

This module detects divergence between two independently populated
time-series tables (a source and a destination) and backfills gaps.

Main components:
- source: Ordered record sources over a backing store
- producer: Producer threads feeding bounded record channels
- comparer: Step classification against a tolerance window
- differ: The online merge/compare loop with drain handling
- reporter: Run-length suppressed divergence reporting
- repairer: Corrective writes for detected gaps

Usage:
    from src.reconciliation import run_reconciliation
    from src.utils.config import load_config

    summary = run_reconciliation(load_config("config.yaml"))
    print(summary.as_dict())
"""

from src.reconciliation.comparer import StepKind, classify
from src.reconciliation.differ import ComparatorConfig, ReconciliationDiffer, ReconciliationSummary
from src.reconciliation.producer import RecordChannel, StreamProducer
from src.reconciliation.records import END_OF_STREAM, TimedRecord, TimeField
from src.reconciliation.repairer import BackfillPolicy, CorrectiveWriter
from src.reconciliation.reporter import DivergenceReporter
from src.reconciliation.source import OrderedRecordSource
from src.reconciliation.sync import run_reconciliation

__all__ = [
    "StepKind",
    "classify",
    "ComparatorConfig",
    "ReconciliationDiffer",
    "ReconciliationSummary",
    "RecordChannel",
    "StreamProducer",
    "END_OF_STREAM",
    "TimedRecord",
    "TimeField",
    "BackfillPolicy",
    "CorrectiveWriter",
    "DivergenceReporter",
    "OrderedRecordSource",
    "run_reconciliation",
]

__version__ = "1.0.0"

"""
Reconciliation Differ for Time-Series Tables

Merges two independently produced, time-ordered record streams online,
classifies every step against a tolerance window, triggers backfills for
detected gaps and drains the remaining side once one stream is exhausted.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from src.reconciliation.comparer import StepKind, classify
from src.reconciliation.producer import ReconciliationCancelled
from src.reconciliation.records import TimedRecord, TimeField, is_end
from src.reconciliation.reporter import DEFAULT_REPEAT_BUDGET, DivergenceReporter
from src.reconciliation.repairer import CorrectiveWriter

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCES = {
    TimeField.EVENT_TIME: timedelta(minutes=2),
    TimeField.INSERTED_AT: timedelta(minutes=1),
}

SOURCE = "source"
DESTINATION = "destination"


@dataclass
class ComparatorConfig:
    """
    Parameters of one reconciliation run.

    Attributes:
        time_field: Record time driving the comparison
        tolerance: Window for SYNCED; defaults per time field
        repeat_budget: Suppressed divergent steps between two report lines
        backfill_on_drain: Also backfill records drained after the other side ended
    """

    time_field: TimeField = TimeField.EVENT_TIME
    tolerance: Optional[timedelta] = None
    repeat_budget: int = DEFAULT_REPEAT_BUDGET
    backfill_on_drain: bool = True

    def __post_init__(self):
        if self.tolerance is None:
            self.tolerance = DEFAULT_TOLERANCES[self.time_field]
        if self.tolerance < timedelta(0):
            raise ValueError("tolerance must not be negative")


@dataclass
class ReconciliationSummary:
    """Result of one reconciliation run."""

    outcome: str = "running"
    steps: int = 0
    counts: Dict[StepKind, int] = field(default_factory=lambda: {kind: 0 for kind in StepKind})
    source_records: int = 0
    dest_records: int = 0
    backfills: int = 0
    last_source: Optional[TimedRecord] = None
    last_dest: Optional[TimedRecord] = None
    duration_seconds: float = 0.0

    @property
    def cancelled(self) -> bool:
        return self.outcome == "cancelled"

    def as_dict(self) -> Dict[str, object]:
        return {
            "outcome": self.outcome,
            "steps": self.steps,
            "counts": {kind.name.lower(): count for kind, count in self.counts.items()},
            "source_records": self.source_records,
            "dest_records": self.dest_records,
            "backfills": self.backfills,
            "duration_seconds": self.duration_seconds,
        }


class ReconciliationDiffer:
    """
    Single-threaded comparator consuming one channel per side.

    The differ only ever holds the current head of each side. It blocks on
    a channel only when it needs that side's next record.
    """

    def __init__(
        self,
        source_channel,
        dest_channel,
        config: Optional[ComparatorConfig] = None,
        writer: Optional[CorrectiveWriter] = None,
        reporter: Optional[DivergenceReporter] = None
    ):
        """
        Initialize the differ.

        Args:
            source_channel: Channel fed by the source producer
            dest_channel: Channel fed by the destination producer
            config: Comparison parameters
            writer: Corrective writer; None runs a report-only reconciliation
            reporter: Divergence reporter; created from config if omitted
        """
        self.source_channel = source_channel
        self.dest_channel = dest_channel
        self.config = config or ComparatorConfig()
        # A report-only writer is never consulted
        self.writer = writer if writer is not None and writer.enabled else None
        self.reporter = reporter or DivergenceReporter(self.config.repeat_budget)
        self.summary = ReconciliationSummary()
        self._stop = threading.Event()

    def stop(self) -> None:
        """
        Abandon the loop before the next step; a write in progress completes.

        A wait on a stalled channel is abandoned too.
        """
        self._stop.set()

    def run(self) -> ReconciliationSummary:
        """
        Reconcile both streams until they are exhausted.

        Raises:
            ProtocolViolationError: If a channel closes without end marker or a
                record lacks the compared time
            BackfillWriteError: If a corrective write fails
        """
        started = time.monotonic()
        summary = self.summary

        try:
            self._merge()
        except ReconciliationCancelled as e:
            logger.warning(f"Reconciliation cancelled after {summary.steps} steps: {e}")
            summary.outcome = "cancelled"

        summary.duration_seconds = time.monotonic() - started
        self.reporter.finished(
            summary.outcome,
            summary.steps,
            summary.source_records,
            summary.dest_records,
            self._last_time(summary.last_source),
            self._last_time(summary.last_dest),
        )
        logger.info(f"Reconciliation {summary.outcome}: {summary.as_dict()}")
        return summary

    def _last_time(self, record: Optional[TimedRecord]):
        if record is None:
            return None
        return getattr(record, self.config.time_field.value)

    def _merge(self) -> None:
        """Advance both heads until one side ends, then drain the other."""
        time_field = self.config.time_field
        summary = self.summary

        source_head = self._next(SOURCE)
        dest_head = self._next(DESTINATION)

        while True:
            if self._stop.is_set():
                logger.warning(f"Reconciliation cancelled after {summary.steps} steps")
                summary.outcome = "cancelled"
                break

            if is_end(source_head) and is_end(dest_head):
                summary.outcome = "both ended"
                break
            if is_end(source_head):
                self._drain(DESTINATION, dest_head)
                break
            if is_end(dest_head):
                self._drain(SOURCE, source_head)
                break

            source_time = source_head.time_of(time_field)
            dest_time = dest_head.time_of(time_field)
            delta = source_time - dest_time
            kind = classify(delta, self.config.tolerance)

            summary.steps += 1
            summary.counts[kind] += 1
            self.reporter.step(summary.steps, kind, source_time, dest_time, delta)

            if kind is StepKind.SYNCED:
                source_head = self._next(SOURCE)
                dest_head = self._next(DESTINATION)
            elif kind is StepKind.SOURCE_BEHIND:
                source_head = self._next(SOURCE)
            else:
                if self.writer is not None and self.writer.backfill(source_head, dest_head):
                    summary.backfills += 1
                dest_head = self._next(DESTINATION)

    def _next(self, side: str):
        """Take the next item of one side, keeping track of the last record seen."""
        channel = self.source_channel if side == SOURCE else self.dest_channel
        item = channel.get(cancel=self._stop)
        if is_end(item):
            return item
        if side == SOURCE:
            self.summary.source_records += 1
            self.summary.last_source = item
        else:
            self.summary.dest_records += 1
            self.summary.last_dest = item
        return item

    def _drain(self, side: str, head) -> None:
        """Consume and report the rest of ``side`` after the other side ended."""
        summary = self.summary
        exhausted = SOURCE if side == DESTINATION else DESTINATION
        kind = StepKind.SOURCE_REST if side == SOURCE else StepKind.DEST_REST
        self.reporter.drain_started(exhausted)

        while not is_end(head):
            if self._stop.is_set():
                logger.warning(f"Reconciliation cancelled during {side} drain")
                summary.outcome = "cancelled"
                return
            summary.steps += 1
            summary.counts[kind] += 1
            self.reporter.drained(summary.steps, kind, head, head.time_of(self.config.time_field))
            if (self.writer is not None and self.config.backfill_on_drain
                    and self.writer.backfill_rest(side, head)):
                summary.backfills += 1
            head = self._next(side)

        summary.outcome = f"{exhausted} ended"

"""
Divergence Reporter for Time-Series Reconciliation

Renders one line per divergence run instead of one line per record. A line
is emitted when the divergence direction changes or when the run-length
budget is used up; every other divergent step is suppressed (DEBUG only).
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.reconciliation.comparer import DIRECTIONS, Direction, StepKind
from src.reconciliation.records import LAYOUT, TimedRecord

logger = logging.getLogger(__name__)

report_logger = logging.getLogger("src.reconciliation.report")

DEFAULT_REPEAT_BUDGET = 25


def format_delta(delta: Optional[timedelta]) -> str:
    """Render a signed delta, e.g. '+0:05:00' or '-1 day, 0:00:30'."""
    if delta is None:
        return "-"
    sign = "-" if delta < timedelta(0) else "+"
    return f"{sign}{abs(delta)}"


def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime(LAYOUT)


class DivergenceReporter:
    """
    Run-length suppressed progress and divergence lines.

    Lines go to ``sink`` (defaults to INFO on the
    ``src.reconciliation.report`` logger).
    """

    def __init__(
        self,
        repeat_budget: int = DEFAULT_REPEAT_BUDGET,
        sink: Optional[Callable[[str], None]] = None
    ):
        if repeat_budget < 1:
            raise ValueError("repeat_budget must be at least 1")
        self.repeat_budget = repeat_budget
        self.remaining = repeat_budget
        self.direction = Direction.NONE
        self.sink = sink or report_logger.info
        self.lines_emitted = 0
        self.lines_suppressed = 0

    def emit(self, line: str) -> None:
        self.lines_emitted += 1
        self.sink(line)

    def step(
        self,
        step: int,
        kind: StepKind,
        source_time: datetime,
        dest_time: datetime,
        delta: timedelta
    ) -> bool:
        """
        Report a classified step.

        Returns:
            True if a line was emitted
        """
        direction = DIRECTIONS[kind]
        line = self.format_step(step, kind, source_time, dest_time, delta)

        if kind is StepKind.SYNCED:
            # Only the end of a divergence run is worth a line
            if self.direction is Direction.NONE:
                return False
            self.direction = Direction.NONE
            self.remaining = self.repeat_budget
            self.emit(line)
            return True

        if direction is not self.direction or self.remaining < 1:
            self.direction = direction
            self.remaining = self.repeat_budget
            self.emit(line)
            return True

        self.remaining -= 1
        self.lines_suppressed += 1
        logger.debug(line)
        return False

    def drain_started(self, exhausted_side: str) -> None:
        """Announce that one side ended and the other is being drained."""
        self.emit(f"{exhausted_side.capitalize()} rest")

    def drained(self, step: int, kind: StepKind, record: TimedRecord, time_value: datetime) -> None:
        """Report one record consumed during drain; drain lines are never suppressed."""
        if kind is StepKind.SOURCE_REST:
            line = f"{step:07d}: {kind.value} S: {format_time(time_value):>19} -> {'rest':>14} -> D: -"
        else:
            line = f"{step:07d}: {kind.value} S: {'-':>19} -> {'rest':>14} -> D: {format_time(time_value)}"
        self.emit(line)

    def finished(self, outcome: str, steps: int, source_count: int, dest_count: int,
                 last_source: Optional[datetime], last_dest: Optional[datetime]) -> None:
        self.emit(
            f"{outcome.capitalize()} {steps} {source_count} {dest_count} "
            f"{format_time(last_source)} {format_time(last_dest)}"
        )

    @staticmethod
    def format_step(step: int, kind: StepKind, source_time: datetime,
                    dest_time: datetime, delta: timedelta) -> str:
        return (
            f"{step:07d}: {kind.value} S: {format_time(source_time):>19} -> "
            f"{format_delta(delta):>14} -> D: {format_time(dest_time)}"
        )

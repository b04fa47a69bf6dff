"""
Unit tests for reconciliation reporter module.

Tests run-length suppression of divergence lines and line formatting.
"""

import pytest
from datetime import timedelta

from src.reconciliation.comparer import StepKind
from src.reconciliation.reporter import DivergenceReporter, format_delta, format_time
from tests.conftest import at, make_records


class TestDivergenceReporter:
    """Test divergence line suppression."""

    @pytest.fixture
    def lines(self):
        return []

    @pytest.fixture
    def reporter(self, lines):
        return DivergenceReporter(repeat_budget=25, sink=lines.append)

    def report(self, reporter, step, kind, delta_minutes=5):
        return reporter.step(step, kind, at(step + delta_minutes), at(step), timedelta(minutes=delta_minutes))

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            DivergenceReporter(repeat_budget=0)

    def test_synced_steps_are_silent(self, reporter, lines):
        for step in range(1, 11):
            assert reporter.step(step, StepKind.SYNCED, at(step), at(step), timedelta(0)) is False

        assert lines == []
        assert reporter.lines_suppressed == 0

    def test_long_divergence_run_is_suppressed(self, reporter, lines):
        """40 DEST_BEHIND steps with budget 25 produce lines at steps 1 and 27."""
        emitted = [step for step in range(1, 41) if self.report(reporter, step, StepKind.DEST_BEHIND)]

        assert emitted == [1, 27]
        assert len(lines) == 2
        assert all(" A " in line for line in lines)
        assert reporter.lines_suppressed == 38

    def test_direction_change_emits(self, reporter, lines):
        self.report(reporter, 1, StepKind.DEST_BEHIND)
        self.report(reporter, 2, StepKind.DEST_BEHIND)
        self.report(reporter, 3, StepKind.SOURCE_BEHIND, delta_minutes=-5)

        assert len(lines) == 2
        assert lines[0].startswith("0000001: A")
        assert lines[1].startswith("0000003: B")

    def test_end_of_divergence_emits_synced_line(self, reporter, lines):
        self.report(reporter, 1, StepKind.SOURCE_BEHIND, delta_minutes=-5)
        reporter.step(2, StepKind.SYNCED, at(2), at(2), timedelta(0))
        reporter.step(3, StepKind.SYNCED, at(3), at(3), timedelta(0))

        assert len(lines) == 2
        assert lines[1].startswith("0000002: =")

    def test_budget_resets_after_sync(self, reporter, lines):
        self.report(reporter, 1, StepKind.DEST_BEHIND)
        reporter.step(2, StepKind.SYNCED, at(2), at(2), timedelta(0))
        self.report(reporter, 3, StepKind.DEST_BEHIND)

        assert len(lines) == 3
        assert reporter.remaining == 25

    def test_drain_lines_are_never_suppressed(self, reporter, lines):
        reporter.drain_started("destination")
        for step, record in enumerate(make_records(*range(40)), start=1):
            reporter.drained(step, StepKind.SOURCE_REST, record, record.timestamp)

        assert lines[0] == "Destination rest"
        assert len(lines) == 41
        assert lines[1].startswith("0000001: S S: 2024-03-01T12:00:00")

    def test_destination_drain_line(self, reporter, lines):
        record = make_records(3)[0]
        reporter.drained(7, StepKind.DEST_REST, record, record.timestamp)

        assert len(lines) == 1
        assert lines[0].startswith("0000007: D S: ")
        assert lines[0].endswith("rest -> D: 2024-03-01T12:03:00")

    def test_finished_line(self, reporter, lines):
        reporter.finished("both ended", 12, 10, 8, at(10), at(9))

        assert lines == ["Both ended 12 10 8 2024-03-01T12:10:00 2024-03-01T12:09:00"]


class TestFormatting:
    """Test formatting helpers."""

    def test_format_step(self):
        line = DivergenceReporter.format_step(
            1, StepKind.DEST_BEHIND, at(5), at(0), timedelta(minutes=5)
        )
        assert line == "0000001: A S: 2024-03-01T12:05:00 ->       +0:05:00 -> D: 2024-03-01T12:00:00"

    def test_format_delta_sign(self):
        assert format_delta(timedelta(minutes=5)) == "+0:05:00"
        assert format_delta(timedelta(minutes=-5)) == "-0:05:00"
        assert format_delta(None) == "-"

    def test_format_time_none(self):
        assert format_time(None) == "-"

"""
Step Classification for Time-Series Reconciliation

Compares the current head records of the source and destination streams
and decides which side(s) the differ advances.
"""

from datetime import timedelta
from enum import Enum


class StepKind(Enum):
    """Outcome of one differ step; the value is the report tag."""

    SYNCED = "="
    SOURCE_BEHIND = "B"
    DEST_BEHIND = "A"
    SOURCE_REST = "S"   # destination exhausted, draining source
    DEST_REST = "D"     # source exhausted, draining destination


class Direction(Enum):
    """Which side was behind on the previous step."""

    NONE = 0
    SOURCE_LEAD = 1
    DEST_LEAD = 2


DIRECTIONS = {
    StepKind.SYNCED: Direction.NONE,
    StepKind.SOURCE_BEHIND: Direction.SOURCE_LEAD,
    StepKind.DEST_BEHIND: Direction.DEST_LEAD,
}


def classify(delta: timedelta, tolerance: timedelta) -> StepKind:
    """
    Classify a source/destination time delta.

    Args:
        delta: source time minus destination time
        tolerance: Largest delta (exclusive) still considered the same event

    Returns:
        SYNCED if |delta| < tolerance (ties are always SYNCED),
        SOURCE_BEHIND if the source is earlier, DEST_BEHIND otherwise
    """
    if delta == timedelta(0) or abs(delta) < tolerance:
        return StepKind.SYNCED
    if delta < timedelta(0):
        return StepKind.SOURCE_BEHIND
    return StepKind.DEST_BEHIND

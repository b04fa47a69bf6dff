"""
Corrective Writer for Time-Series Reconciliation

Backfills gaps detected by the differ by upserting a reconciled record into
the target store. Which record is written is a configurable policy.
"""

import logging
from enum import Enum
from typing import List, Optional, Sequence

from src.reconciliation.records import TimedRecord
from src.utils.errors import BackfillWriteError, ConfigurationError

logger = logging.getLogger(__name__)


class BackfillPolicy(Enum):
    """Which record a detected gap is repaired with."""

    REPLAY_SOURCE = "replay_source"
    MIRROR_DESTINATION = "mirror_destination"
    NONE = "none"

    @classmethod
    def parse(cls, value: str) -> "BackfillPolicy":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = [p.value for p in cls]
            raise ConfigurationError(
                f"Invalid backfill policy: {value}. Must be one of {valid}"
            )


class CorrectiveWriter:
    """
    Upserts reconciled records into a target table.

    A record is written at most once in a row: repeated gap signals carrying
    the same record (a source head that stays put while the destination
    advances) produce a single insert.
    """

    def __init__(
        self,
        store,
        table: str,
        key_fields: Sequence[str],
        policy: BackfillPolicy = BackfillPolicy.REPLAY_SOURCE,
        dry_run: bool = False
    ):
        """
        Initialize the corrective writer.

        Args:
            store: Storage driver exposing insert_or_update
            table: Target table
            key_fields: Columns identifying a row for insert-or-update
            policy: Record chosen for a gap
            dry_run: Log intended writes without executing them

        Raises:
            ConfigurationError: If table or key fields are missing
        """
        if not table:
            raise ConfigurationError("Backfill target table not defined")
        if not key_fields:
            raise ConfigurationError("Backfill key fields not defined")

        self.store = store
        self.table = table
        self.key_fields: List[str] = list(key_fields)
        self.policy = policy
        self.dry_run = dry_run
        self.written = 0
        self._last_written: Optional[TimedRecord] = None

    @property
    def enabled(self) -> bool:
        return self.policy is not BackfillPolicy.NONE

    def backfill(self, source_record: TimedRecord, dest_record: TimedRecord) -> bool:
        """
        Repair a gap detected while both streams are live.

        Returns:
            True if a record was written
        """
        if self.policy is BackfillPolicy.REPLAY_SOURCE:
            return self.write(source_record)
        if self.policy is BackfillPolicy.MIRROR_DESTINATION:
            return self.write(dest_record)
        return False

    def backfill_rest(self, side: str, record: TimedRecord) -> bool:
        """
        Repair a gap found while draining ``side`` after the other side ended.

        Only the side the policy replays is written.
        """
        if self.policy is BackfillPolicy.REPLAY_SOURCE and side == "source":
            return self.write(record)
        if self.policy is BackfillPolicy.MIRROR_DESTINATION and side == "destination":
            return self.write(record)
        return False

    def write(self, record: TimedRecord) -> bool:
        """
        Insert-or-update one record.

        Raises:
            BackfillWriteError: If the store rejects the write
        """
        if self._last_written is not None and record == self._last_written:
            logger.debug(f"Record {record} already backfilled")
            return False

        if self.dry_run:
            logger.info(f"DRY RUN - would backfill {record} into {self.table}")
        else:
            logger.debug(f"Backfilling {record} into {self.table}")
            try:
                self.store.insert_or_update(self.table, self.key_fields, record.as_row())
            except Exception as e:
                raise BackfillWriteError(
                    f"Backfill of {record} into {self.table} failed: {e}"
                ) from e

        self._last_written = record
        self.written += 1
        return True

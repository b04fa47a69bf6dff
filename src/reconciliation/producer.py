"""
Stream Producers for Time-Series Reconciliation

Each side of a reconciliation run is read by one StreamProducer thread that
pushes records onto a bounded RecordChannel, followed by exactly one
END_OF_STREAM marker.
"""

import logging
import queue
import threading
from typing import Optional

from src.reconciliation.records import END_OF_STREAM
from src.utils.errors import ProtocolViolationError

logger = logging.getLogger(__name__)


class ChannelClosedError(ProtocolViolationError):
    """The channel was closed before the end-of-stream marker was delivered."""


class ReconciliationCancelled(Exception):
    """A blocking channel operation was abandoned because the run was stopped."""


class RecordChannel:
    """
    Bounded FIFO between one producer and the differ.

    ``put`` blocks while the channel is full and gives up once the channel
    is closed; nothing is ever dropped from an open channel.
    ``get`` on a closed, drained channel raises ChannelClosedError.
    """

    def __init__(self, maxsize: int = 1000, name: str = "channel", poll_interval: float = 0.5):
        self.name = name
        self.poll_interval = poll_interval
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._failure: Optional[BaseException] = None

    def put(self, item) -> None:
        while True:
            if self._closed.is_set():
                raise ChannelClosedError(f"Channel '{self.name}' is closed")
            try:
                self._queue.put(item, timeout=self.poll_interval)
                return
            except queue.Full:
                continue

    def get(self, cancel: Optional[threading.Event] = None):
        """
        Take the next item, waiting while the channel is open and empty.

        Raises:
            ChannelClosedError: If the channel is closed and drained
            ReconciliationCancelled: If ``cancel`` is set while waiting
        """
        while True:
            try:
                return self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._closed.is_set() and self._queue.empty():
                    cause = self._failure
                    message = f"Channel '{self.name}' closed without end-of-stream marker"
                    if cause is not None:
                        message += f": {cause}"
                    raise ChannelClosedError(message) from cause
                if cancel is not None and cancel.is_set():
                    raise ReconciliationCancelled(f"Waiting on channel '{self.name}' cancelled")

    def close(self, failure: Optional[BaseException] = None) -> None:
        """Close the channel, remembering the producer failure if any."""
        if failure is not None and self._failure is None:
            self._failure = failure
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()


class StreamProducer(threading.Thread):
    """
    Drives one OrderedRecordSource and feeds its records into a channel.

    On success the channel receives every record followed by END_OF_STREAM.
    On failure the channel is closed without the marker and the differ
    reports the protocol violation together with the original cause.
    A channel closed by the consumer ends the thread quietly.
    """

    def __init__(self, source, channel: RecordChannel, name: Optional[str] = None):
        super().__init__(name=name or f"producer-{channel.name}", daemon=True)
        self.source = source
        self.channel = channel
        self.count = 0
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            for record in self.source:
                self.channel.put(record)
                self.count += 1
            self.channel.put(END_OF_STREAM)
            logger.info(f"{self.name}: query ended after {self.count} records")
            self.channel.close()
        except ChannelClosedError:
            logger.info(f"{self.name}: channel closed by consumer after {self.count} records")
        except Exception as e:
            self.error = e
            logger.error(f"{self.name}: reading failed after {self.count} records: {e}")
            self.channel.close(failure=e)

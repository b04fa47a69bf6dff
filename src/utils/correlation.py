"""
Correlation IDs for the Telemetry Pipeline

Every ingestion or reconciliation run gets a correlation ID that is attached
to log records, so lines of one run can be told apart in the trace file.
Bus messages may carry their own ID in a header.
"""

import contextvars
import logging
import uuid
from typing import Iterable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

HEADER_NAME = "correlation_id"

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)


def generate_correlation_id() -> str:
    """Generate a new correlation ID (UUID4)."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set the correlation ID in the current context.

    Raises:
        ValueError: If correlation_id is empty or not a string
    """
    if not correlation_id or not isinstance(correlation_id, str):
        raise ValueError("Correlation ID must be a non-empty string")
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationContext:
    """
    Context manager scoping a correlation ID to one run.

    The previous ID is restored on exit.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self) -> str:
        if not self.correlation_id:
            self.correlation_id = generate_correlation_id()
        self._token = _correlation_id.set(self.correlation_id)
        logger.debug(f"Entered correlation context: {self.correlation_id}")
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)


def correlation_id_filter(record):
    """Logging filter adding the current correlation ID to each record."""
    record.correlation_id = get_correlation_id() or "N/A"
    return True


def correlation_id_from_headers(
    headers: Optional[Iterable[Tuple[str, Union[bytes, str, None]]]]
) -> Optional[str]:
    """
    Extract a correlation ID from Kafka message headers.

    Args:
        headers: Sequence of (key, value) pairs as delivered by the consumer

    Returns:
        Decoded correlation ID if present
    """
    for key, value in headers or ():
        if key != HEADER_NAME or value is None:
            continue
        if isinstance(value, bytes):
            try:
                value = value.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Ignoring undecodable correlation header")
                return None
        return value or None
    return None

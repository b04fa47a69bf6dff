"""
Error Taxonomy for the Telemetry Pipeline

All errors raised by the ingestion and reconciliation paths derive from
Telemetry2DBError so the CLI can report them uniformly.
"""


class Telemetry2DBError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(Telemetry2DBError):
    """Configuration is missing or invalid; raised before any stream is opened."""


class StoreConnectionError(Telemetry2DBError):
    """A backing store could not be reached."""


class BusConnectionError(Telemetry2DBError):
    """The message bus could not be reached."""


class StoreQueryError(Telemetry2DBError):
    """A query against a backing store failed."""


class ProtocolViolationError(Telemetry2DBError):
    """An upstream contract was breached (channel closed early, malformed row)."""


class StreamOrderError(ProtocolViolationError):
    """A record source yielded records out of time order."""


class BackfillWriteError(Telemetry2DBError):
    """A corrective insert into the target store failed."""


class MappingError(Telemetry2DBError):
    """A bus payload could not be mapped into a record."""

"""
Ingestion Module for the Telemetry Pipeline

Consumes telemetry payloads from the message bus, maps them into the fixed
record shape and stores them.

Usage:
    from src.ingestion import PayloadMapper, TelemetryIngestor

    mapper = PayloadMapper(config.mapping)
    TelemetryIngestor(config.bus, store, config.database.store_tablename, mapper).run()
"""

from src.ingestion.consumer import TelemetryIngestor
from src.ingestion.mapping import PayloadMapper

__all__ = [
    "PayloadMapper",
    "TelemetryIngestor",
]
